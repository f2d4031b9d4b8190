"""
Prometheus metrics server for fund control.

Starts an HTTP server that exposes Prometheus metrics at /metrics. With
--db it also runs the periodic tick, so the appropriation utilization gauge
and the tick duration stay current.

Usage:
    python -m fund_control.metrics_server --port 9090
    python -m fund_control.metrics_server --port 9090 --db funds.db --tick-seconds 3600
"""

import argparse
import time

from fund_control.kernel.logging import configure_logging, get_logger
from fund_control.kernel.metrics import start_metrics_server

logger = get_logger(__name__)


def main() -> None:
    """
    Start the Prometheus metrics server.

    The server exposes all fund control metrics at
    http://0.0.0.0:<port>/metrics in Prometheus text format.
    """
    parser = argparse.ArgumentParser(description="Fund Control Metrics Server")
    parser.add_argument(
        "--port",
        type=int,
        default=9090,
        help="Port to listen on (default: 9090)",
    )
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Database to tick periodically (default: metrics only)",
    )
    parser.add_argument(
        "--tick-seconds",
        type=int,
        default=3600,
        help="Seconds between ticks when --db is given (default: 3600)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs in JSON format (default: False)",
    )

    args = parser.parse_args()

    configure_logging(json_output=args.json_logs, log_level=args.log_level)

    logger.info(
        "Starting Prometheus metrics server",
        port=args.port,
        endpoint=f"http://0.0.0.0:{args.port}/metrics",
    )

    start_metrics_server(port=args.port)

    logger.info("Metrics server started successfully")

    fc = None
    if args.db:
        from fund_control.core import FundControl

        fc = FundControl(args.db)

    next_tick = time.monotonic()
    try:
        while True:
            if fc is not None and time.monotonic() >= next_tick:
                result = fc.tick()
                logger.info("Periodic tick", summary=result.summary())
                next_tick = time.monotonic() + args.tick_seconds
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Shutting down metrics server")


if __name__ == "__main__":
    main()
