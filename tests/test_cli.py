"""
CLI Integration Tests

Tests the fund control CLI commands end-to-end against a temporary database.
"""

import json
from datetime import date
from pathlib import Path

import pytest
from typer.testing import CliRunner

from fund_control.cli.main import app
from fund_control.fiscal.calendar import fiscal_year_of

runner = CliRunner()


def _created(output: str, label: str) -> str:
    return output.split(f"{label}: ")[1].split("\n")[0].strip()


@pytest.fixture
def db(tmp_path: Path) -> str:
    path = tmp_path / "funds.db"
    result = runner.invoke(app, ["init", "--db", str(path)])
    assert result.exit_code == 0
    assert f"✓ Initialized fund control database: {path}" in result.stdout
    return str(path)


@pytest.fixture
def roles(tmp_path: Path) -> str:
    path = tmp_path / "roles.json"
    path.write_text(json.dumps({"alice": ["budget_analyst"], "bob": ["comptroller"]}))
    return str(path)


@pytest.fixture
def funded(db: str) -> dict[str, str]:
    """Current fiscal year (by today's date) with one O&M appropriation"""
    year = fiscal_year_of(date.today())
    result = runner.invoke(
        app, ["fiscal-year", "open", "--year", str(year), "--state", "current", "--db", db]
    )
    assert result.exit_code == 0
    fiscal_year_id = _created(result.stdout, "✓ Opened fiscal year")

    result = runner.invoke(
        app,
        [
            "appropriation", "establish",
            "--fiscal-year", fiscal_year_id,
            "--code", "OM-CLI",
            "--name", "Operations",
            "--color", "OM",
            "--amount", "100000.00",
            "--db", db,
        ],
    )
    assert result.exit_code == 0
    appropriation_id = _created(result.stdout, "✓ Established appropriation")

    result = runner.invoke(
        app,
        [
            "workflow", "define",
            "--name", "single",
            "--steps", json.dumps([{"level": 1, "required_role": "comptroller"}]),
            "--db", db,
        ],
    )
    assert result.exit_code == 0
    assert "✓ Defined workflow:" in result.stdout

    return {"fiscal_year_id": fiscal_year_id, "appropriation_id": appropriation_id}


def test_init_refuses_existing_database(db: str) -> None:
    result = runner.invoke(app, ["init", "--db", db])
    assert result.exit_code == 1
    assert "Database already exists" in result.output


def test_missing_database(tmp_path: Path) -> None:
    result = runner.invoke(app, ["fiscal-year", "list", "--db", str(tmp_path / "none.db")])
    assert result.exit_code == 1
    assert "Database not found" in result.output


def test_fiscal_year_list_json(db: str, funded: dict[str, str]) -> None:
    result = runner.invoke(app, ["fiscal-year", "list", "--json", "--db", db])

    assert result.exit_code == 0
    [fiscal_year] = json.loads(result.stdout)
    assert fiscal_year["fiscal_year_id"] == funded["fiscal_year_id"]
    assert fiscal_year["state"] == "current"


def test_budget_to_expenditure_lifecycle(db: str, roles: str, funded: dict[str, str]) -> None:
    """Draft, approve, obligate, spend"""
    result = runner.invoke(
        app,
        [
            "budget", "create",
            "--organization", "Ops",
            "--fiscal-year", funded["fiscal_year_id"],
            "--title", "Base operations",
            "--amount", "50000.00",
            "--db", db,
        ],
    )
    assert result.exit_code == 0
    budget_id = _created(result.stdout, "✓ Created budget")

    result = runner.invoke(app, ["budget", "submit", "--id", budget_id, "--actor", "alice", "--db", db])
    assert result.exit_code == 0
    request_id = _created(result.stdout, "✓ Submitted request")
    assert "Waiting on level 1 (comptroller)" in result.stdout

    result = runner.invoke(
        app,
        [
            "approval", "process",
            "--request", request_id,
            "--approver", "bob",
            "--action", "approved",
            "--roles", roles,
            "--db", db,
        ],
    )
    assert result.exit_code == 0
    assert f"✓ Recorded approved on {request_id}" in result.stdout

    result = runner.invoke(
        app,
        [
            "obligation", "create",
            "--budget", budget_id,
            "--appropriation", funded["appropriation_id"],
            "--amount", "20000.00",
            "--vendor", "Acme",
            "--db", db,
        ],
    )
    assert result.exit_code == 0
    obligation_id = _created(result.stdout, "✓ Created obligation")
    assert "Appropriation available: $80000.00" in result.stdout

    result = runner.invoke(
        app,
        ["expenditure", "create", "--obligation", obligation_id, "--amount", "5000.00", "--db", db],
    )
    assert result.exit_code == 0
    assert "✓ Recorded expenditure:" in result.stdout
    assert "Unliquidated: $15000.00" in result.stdout

    result = runner.invoke(app, ["budget", "show", "--id", budget_id, "--json", "--db", db])
    budget = json.loads(result.stdout)
    assert budget["status"] == "approved"
    assert budget["obligated"] == "20000.00"
    assert budget["expended"] == "5000.00"


def test_unauthorized_approver_is_an_error(db: str, roles: str, funded: dict[str, str]) -> None:
    result = runner.invoke(
        app,
        [
            "budget", "create",
            "--organization", "Ops",
            "--fiscal-year", funded["fiscal_year_id"],
            "--title", "Base operations",
            "--amount", "50000.00",
            "--db", db,
        ],
    )
    budget_id = _created(result.stdout, "✓ Created budget")
    result = runner.invoke(app, ["budget", "submit", "--id", budget_id, "--db", db])
    request_id = _created(result.stdout, "✓ Submitted request")

    result = runner.invoke(
        app,
        [
            "approval", "process",
            "--request", request_id,
            "--approver", "alice",
            "--action", "approved",
            "--roles", roles,
            "--db", db,
        ],
    )

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_fund_check_reports_shortfall(db: str, funded: dict[str, str]) -> None:
    result = runner.invoke(
        app,
        [
            "appropriation", "check",
            "--id", funded["appropriation_id"],
            "--amount", "150000.00",
            "--db", db,
        ],
    )

    assert result.exit_code == 0
    assert "✗ Funds unavailable" in result.stdout
    assert "Shortfall: $50000.00" in result.stdout


def test_obligation_against_unapproved_budget_fails(db: str, funded: dict[str, str]) -> None:
    result = runner.invoke(
        app,
        [
            "budget", "create",
            "--organization", "Ops",
            "--fiscal-year", funded["fiscal_year_id"],
            "--title", "Draft only",
            "--amount", "1000.00",
            "--db", db,
        ],
    )
    budget_id = _created(result.stdout, "✓ Created budget")

    result = runner.invoke(
        app,
        [
            "obligation", "create",
            "--budget", budget_id,
            "--appropriation", funded["appropriation_id"],
            "--amount", "500.00",
            "--db", db,
        ],
    )

    assert result.exit_code == 1
    assert "Error:" in result.output


def test_tick_and_health(db: str, funded: dict[str, str]) -> None:
    result = runner.invoke(app, ["tick", "--db", db])
    assert result.exit_code == 0
    assert "✓ Tick completed:" in result.stdout

    result = runner.invoke(app, ["health", "--json", "--db", db])
    assert result.exit_code == 0
    status = json.loads(result.stdout)
    assert status["appropriations"] == 1
    assert status["total_available"] == "100000.00"
