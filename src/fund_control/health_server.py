"""
Health check HTTP server for Kubernetes liveness and readiness checks.

Provides endpoints for monitoring the health and readiness of fund control:
the event log, the balance ledgers and the current fund position.
"""

import sqlite3
from pathlib import Path
from typing import Any

from flask import Flask, Response, jsonify

from fund_control import __version__
from fund_control.kernel.logging import get_logger

logger = get_logger(__name__)

app = Flask(__name__)

# Global state - will be set by initialize_health_server()
_db_path: Path | None = None
_fc_instance: Any = None  # FundControl instance for fund position

LEDGER_TABLES = ("appropriation_balances", "budget_balances", "obligation_balances")

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Cache-Control": "no-store",
}


def initialize_health_server(db_path: str | Path, fc_instance: Any = None) -> None:
    """
    Initialize the health server with database path and FundControl instance.

    Args:
        db_path: Path to SQLite database
        fc_instance: Optional FundControl instance for the fund position
    """
    global _db_path, _fc_instance
    _db_path = Path(db_path)
    _fc_instance = fc_instance
    logger.info("Health server initialized", db_path=str(_db_path))


@app.after_request
def add_security_headers(response: Response) -> Response:
    for header, value in SECURITY_HEADERS.items():
        response.headers[header] = value
    return response


@app.route("/health/live", methods=["GET"])
def liveness() -> tuple[Response, int]:
    """
    Liveness check - reports if the process is running.

    Returns:
        JSON response with status and 200 OK
    """
    return jsonify({"status": "alive", "service": "fund-control"}), 200


@app.route("/health/ready", methods=["GET"])
def readiness() -> tuple[Response, int]:
    """
    Readiness check - reports if the service is ready to accept requests.

    Checks:
    - Database file exists
    - The event log can be queried
    - The balance ledger tables exist

    Returns:
        JSON response with status and 200 OK if ready, 503 if not ready
    """
    if _db_path is None:
        logger.error("Readiness check failed: DB path not initialized")
        return (
            jsonify({"status": "not_ready", "reason": "database_path_not_initialized"}),
            503,
        )

    if not _db_path.exists():
        logger.error("Readiness check failed: DB file does not exist", db_path=str(_db_path))
        return (
            jsonify(
                {
                    "status": "not_ready",
                    "reason": "database_file_not_found",
                    "db_path": str(_db_path),
                }
            ),
            503,
        )

    try:
        conn = sqlite3.connect(str(_db_path), timeout=1.0)
        try:
            event_count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
            present = {
                row[0]
                for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            }
        finally:
            conn.close()
    except sqlite3.OperationalError as e:
        logger.error("Readiness check failed: DB operational error", error=str(e))
        return (
            jsonify(
                {"status": "not_ready", "reason": "database_operational_error", "error": str(e)}
            ),
            503,
        )
    except Exception as e:
        logger.error("Readiness check failed: Unexpected error", error=str(e), exc_info=True)
        return (
            jsonify({"status": "not_ready", "reason": "unexpected_error", "error": str(e)}),
            503,
        )

    missing = [table for table in LEDGER_TABLES if table not in present]
    if missing:
        logger.error("Readiness check failed: ledger tables missing", missing=missing)
        return (
            jsonify({"status": "not_ready", "reason": "ledger_not_initialized", "missing": missing}),
            503,
        )

    logger.debug("Readiness check passed", event_count=event_count)
    return (
        jsonify({"status": "ready", "database": "accessible", "event_count": event_count}),
        200,
    )


@app.route("/health", methods=["GET"])
def detailed_health() -> tuple[Response, int]:
    """
    Detailed health check - includes the fund position if available.

    Returns:
        JSON response with detailed health information
    """
    health_data: dict[str, Any] = {
        "status": "healthy",
        "service": "fund-control",
        "version": __version__,
    }

    if _db_path and _db_path.exists():
        try:
            conn = sqlite3.connect(str(_db_path), timeout=1.0)
            try:
                event_count = conn.execute("SELECT COUNT(*) FROM events").fetchone()[0]
                stream_count = conn.execute(
                    "SELECT COUNT(DISTINCT stream_id) FROM events"
                ).fetchone()[0]
                page_count = conn.execute("PRAGMA page_count").fetchone()[0]
                page_size = conn.execute("PRAGMA page_size").fetchone()[0]
            finally:
                conn.close()

            health_data["database"] = {
                "status": "healthy",
                "path": str(_db_path),
                "event_count": event_count,
                "stream_count": stream_count,
                "size_mb": round((page_count * page_size) / (1024 * 1024), 2),
            }

        except Exception as e:
            logger.error("Database health check failed", error=str(e))
            health_data["database"] = {"status": "unhealthy", "error": str(e)}
            health_data["status"] = "degraded"
    else:
        health_data["database"] = {"status": "not_initialized"}
        health_data["status"] = "degraded"

    if _fc_instance is not None:
        try:
            position = _fc_instance.health()
            health_data["funds"] = {
                "current_fiscal_year": position["current_fiscal_year"],
                "total_appropriated": str(position["total_appropriated"]),
                "total_obligated": str(position["total_obligated"]),
                "total_available": str(position["total_available"]),
                "requests_under_review": position["requests_under_review"],
                "overdue_requests": position["overdue_requests"],
            }
        except Exception as e:
            logger.warning("Could not compute fund position", error=str(e))
            health_data["funds"] = {"status": "unavailable", "error": str(e)}

    status_code = 200 if health_data["status"] == "healthy" else 503
    return jsonify(health_data), status_code


def run_health_server(port: int = 8080, debug: bool = False) -> None:
    """
    Run the health check server.

    Args:
        port: Port to listen on (default: 8080)
        debug: Enable Flask debug mode (default: False)
    """
    logger.info("Starting health check server", port=port)
    app.run(host="0.0.0.0", port=port, debug=debug)


if __name__ == "__main__":
    # For local checks: python -m fund_control.health_server
    initialize_health_server("/tmp/fund-control-test.db")
    run_health_server(port=8080, debug=True)
