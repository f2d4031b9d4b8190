"""
Fund Control CLI

Command-line interface for the fund control system.
Provides commands for fiscal years, appropriations, budgets, approvals,
obligations, expenditures and monitoring.

Usage:
    fund-control init --db funds.db
    fund-control fiscal-year open --year 2025 --state current
    fund-control appropriation establish --fiscal-year <id> --code OM-25 ...
    fund-control workflow define --name standard --steps '[{"level": 1, ...}]'
    fund-control budget create --organization Ops --fiscal-year <id> ...
    fund-control budget submit --id <budget_id> --actor alice
    fund-control approval process --request <id> --approver bob --action approved
    fund-control obligation create --budget <id> --appropriation <id> --amount 500
    fund-control variance --fiscal-year <id>
    fund-control tick
"""

import json
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from fund_control.core import FundControl
from fund_control.integrations import (
    LoggingAuditSink,
    LoggingNotificationDispatcher,
    StaticRoleDirectory,
)
from fund_control.kernel.errors import FundControlError
from fund_control.kernel.logging import configure_logging
from fund_control.kernel.policy import FundControlPolicy

# Configure logging to stderr (avoids polluting stdout for JSON output)
configure_logging(json_output=False, log_level="INFO")

app = typer.Typer(
    name="fund-control",
    help="Fund Control - Federal budget fund control",
    add_completion=False,
)

# Sub-apps
fiscal_year_app = typer.Typer(help="Fiscal year commands")
appropriation_app = typer.Typer(help="Appropriation commands")
workflow_app = typer.Typer(help="Approval workflow definition commands")
budget_app = typer.Typer(help="Budget and version commands")
approval_app = typer.Typer(help="Approval request commands")
obligation_app = typer.Typer(help="Obligation commands")
expenditure_app = typer.Typer(help="Expenditure commands")

app.add_typer(fiscal_year_app, name="fiscal-year")
app.add_typer(appropriation_app, name="appropriation")
app.add_typer(workflow_app, name="workflow")
app.add_typer(budget_app, name="budget")
app.add_typer(approval_app, name="approval")
app.add_typer(obligation_app, name="obligation")
app.add_typer(expenditure_app, name="expenditure")

# Global state
DEFAULT_DB = Path(".fund_control.db")

DbOption = Annotated[Optional[Path], typer.Option("--db", help="Database path")]
PolicyOption = Annotated[
    Optional[Path], typer.Option("--policy", help="Policy JSON file")
]
RolesOption = Annotated[
    Optional[Path],
    typer.Option("--roles", help='Role assignments JSON file ({"actor": ["role", ...]})'),
]
ActorOption = Annotated[str, typer.Option("--actor", help="Acting user")]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]


def get_fc(
    db_path: Optional[Path] = None,
    policy_path: Optional[Path] = None,
    roles_path: Optional[Path] = None,
) -> FundControl:
    """Get FundControl instance"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'fund-control init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return FundControl(
        str(db),
        policy=FundControlPolicy.from_file(policy_path) if policy_path else None,
        role_directory=StaticRoleDirectory.from_file(roles_path) if roles_path else None,
        audit_sink=LoggingAuditSink(),
        notification_dispatcher=LoggingNotificationDispatcher(),
    )


@contextmanager
def reporting_errors() -> Iterator[None]:
    """Turn rejected operations into an error line and exit code 1"""
    try:
        yield
    except FundControlError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e


def echo_json(value: Any) -> None:
    if hasattr(value, "model_dump"):
        value = value.model_dump(mode="json")
    typer.echo(json.dumps(value, indent=2, default=str))


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option(help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new fund control database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    # Create database (event log and balance tables) by initializing FundControl
    FundControl(str(db))
    typer.echo(f"✓ Initialized fund control database: {db}")


# Fiscal year commands


@fiscal_year_app.command("open")
def fiscal_year_open(
    year: Annotated[int, typer.Option("--year", help="Fiscal year (ending calendar year)")],
    state: Annotated[
        str, typer.Option("--state", help="Initial state (future, current, past)")
    ] = "future",
    actor: ActorOption = "system",
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Open a fiscal year"""
    fc = get_fc(db, policy)
    with reporting_errors():
        fiscal_year = fc.open_fiscal_year(year, state=state, actor_id=actor)

    typer.echo(f"✓ Opened fiscal year: {fiscal_year['fiscal_year_id']}")
    typer.echo(f"  Year: FY{fiscal_year['year']}")
    typer.echo(f"  Window: {fiscal_year['start_date']} to {fiscal_year['end_date']}")
    typer.echo(f"  State: {fiscal_year['state']}")


@fiscal_year_app.command("transition")
def fiscal_year_transition(
    fiscal_year_id: Annotated[str, typer.Option("--id", help="Fiscal year ID")],
    to: Annotated[str, typer.Option("--to", help="Target state (current, past, locked)")],
    reason: Annotated[str, typer.Option("--reason", help="Reason")] = "manual",
    actor: ActorOption = "system",
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Move a fiscal year forward"""
    fc = get_fc(db, policy)
    with reporting_errors():
        fiscal_year = fc.transition_fiscal_year(
            fiscal_year_id, to, reason=reason, actor_id=actor
        )

    typer.echo(f"✓ FY{fiscal_year['year']} is now {fiscal_year['state']}")


@fiscal_year_app.command("list")
def fiscal_year_list(
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List fiscal years"""
    fc = get_fc(db)
    fiscal_years = fc.list_fiscal_years()

    if json_output:
        echo_json(fiscal_years)
        return
    if not fiscal_years:
        typer.echo("No fiscal years")
        return

    typer.echo(f"Fiscal Years ({len(fiscal_years)}):")
    for fy in fiscal_years:
        typer.echo(f"  {fy['fiscal_year_id']}: FY{fy['year']} [{fy['state']}]")


# Appropriation commands


@appropriation_app.command("establish")
def appropriation_establish(
    fiscal_year: Annotated[str, typer.Option("--fiscal-year", help="Fiscal year ID")],
    code: Annotated[str, typer.Option("--code", help="Unique appropriation code")],
    name: Annotated[str, typer.Option("--name", help="Appropriation name")],
    color: Annotated[
        str,
        typer.Option(
            "--color",
            help="Color of money (OM, OM_RESERVE, OM_GUARD, PROCUREMENT, RDTE, "
            "MILPERS, MILCON, FAMILY_HOUSING)",
        ),
    ],
    amount: Annotated[str, typer.Option("--amount", help="Appropriated amount")],
    expires: Annotated[
        Optional[str],
        typer.Option("--expires", help="Expiration date (YYYY-MM-DD, default by color)"),
    ] = None,
    actor: ActorOption = "system",
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Establish an appropriation"""
    fc = get_fc(db, policy)
    with reporting_errors():
        appropriation = fc.establish_appropriation(
            fiscal_year_id=fiscal_year,
            code=code,
            name=name,
            color_of_money=color,
            amount=amount,
            expiration_date=date.fromisoformat(expires) if expires else None,
            actor_id=actor,
        )

    typer.echo(f"✓ Established appropriation: {appropriation['appropriation_id']}")
    typer.echo(f"  Code: {appropriation['code']}")
    typer.echo(f"  Amount: ${appropriation['appropriated']}")
    typer.echo(f"  Expires: {appropriation['expiration_date']}")


@appropriation_app.command("list")
def appropriation_list(
    fiscal_year: Annotated[
        Optional[str], typer.Option("--fiscal-year", help="Filter by fiscal year")
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List appropriations with their ledger balances"""
    fc = get_fc(db)
    appropriations = fc.list_appropriations(fiscal_year)

    rows = []
    for appropriation in appropriations:
        balance = fc.get_appropriation_balance(appropriation["appropriation_id"]) or {}
        rows.append({**appropriation, "balance": balance})

    if json_output:
        echo_json(rows)
        return
    if not rows:
        typer.echo("No appropriations")
        return

    typer.echo(f"Appropriations ({len(rows)}):")
    for row in rows:
        balance = row["balance"]
        typer.echo(f"\n  {row['appropriation_id']}: {row['code']} - {row['name']}")
        typer.echo(f"    Color: {row['color_of_money']}")
        typer.echo(f"    Appropriated: ${balance.get('appropriated')}")
        typer.echo(f"    Obligated: ${balance.get('obligated')}")
        typer.echo(f"    Available: ${balance.get('available')}")


@appropriation_app.command("check")
def appropriation_check(
    appropriation_id: Annotated[str, typer.Option("--id", help="Appropriation ID")],
    amount: Annotated[str, typer.Option("--amount", help="Amount to check")],
    json_output: JsonOption = False,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Check whether an amount could be obligated now"""
    fc = get_fc(db, policy)
    with reporting_errors():
        check = fc.check_fund_availability(appropriation_id, amount)

    if json_output:
        echo_json(check)
        return

    mark = "✓" if check.available else "✗"
    typer.echo(f"{mark} Funds {'available' if check.available else 'unavailable'}")
    typer.echo(f"  Available balance: ${check.available_balance}")
    if check.shortfall:
        typer.echo(f"  Shortfall: ${check.shortfall}")
    typer.echo(f"  ADA risk: {check.risk.value}")
    if check.blocked_reason:
        typer.echo(f"  Blocked: {check.blocked_reason}")


# Workflow commands


@workflow_app.command("define")
def workflow_define(
    name: Annotated[str, typer.Option("--name", help="Workflow name")],
    steps: Annotated[
        str,
        typer.Option(
            "--steps",
            help='Steps (JSON array of {"level", "required_role", '
            '"auto_approve_threshold", "due_in_days"})',
        ),
    ],
    actor: ActorOption = "system",
    db: DbOption = None,
) -> None:
    """Define an approval workflow (the newest becomes the default)"""
    fc = get_fc(db)
    with reporting_errors():
        workflow = fc.define_workflow(name=name, steps=json.loads(steps), actor_id=actor)

    typer.echo(f"✓ Defined workflow: {workflow['workflow_id']}")
    for step in workflow["steps"]:
        threshold = step.get("auto_approve_threshold")
        auto = f" (auto ≤ ${threshold})" if threshold is not None else ""
        typer.echo(f"  Level {step['level']}: {step['required_role']}{auto}")


@workflow_app.command("list")
def workflow_list(
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List approval workflows"""
    fc = get_fc(db)
    workflows = fc.list_workflows()

    if json_output:
        echo_json(workflows)
        return
    if not workflows:
        typer.echo("No workflows")
        return

    typer.echo(f"Workflows ({len(workflows)}):")
    for workflow in workflows:
        roles = " → ".join(s["required_role"] for s in workflow["steps"])
        typer.echo(f"  {workflow['workflow_id']}: {workflow['name']} ({roles})")


# Budget commands


@budget_app.command("create")
def budget_create(
    organization: Annotated[str, typer.Option("--organization", help="Organization")],
    fiscal_year: Annotated[str, typer.Option("--fiscal-year", help="Fiscal year ID")],
    title: Annotated[str, typer.Option("--title", help="Budget title")],
    amount: Annotated[str, typer.Option("--amount", help="Requested amount")],
    line_items: Annotated[
        str,
        typer.Option(
            "--line-items",
            help='Line items (JSON array of {"category", "description", "amount"})',
        ),
    ] = "[]",
    justification: Annotated[str, typer.Option("--justification", help="Justification")] = "",
    workflow: Annotated[
        Optional[str], typer.Option("--workflow", help="Approval workflow ID")
    ] = None,
    actor: ActorOption = "system",
    db: DbOption = None,
) -> None:
    """Create a budget (version 1 is its draft)"""
    fc = get_fc(db)
    with reporting_errors():
        budget = fc.create_budget(
            organization=organization,
            fiscal_year_id=fiscal_year,
            title=title,
            requested_amount=amount,
            line_items=json.loads(line_items),
            justification=justification,
            workflow_id=workflow,
            actor_id=actor,
        )

    typer.echo(f"✓ Created budget: {budget['budget_id']}")
    typer.echo(f"  Title: {budget['title']}")
    typer.echo(f"  Requested: ${budget['requested_amount']}")
    typer.echo(f"  Status: {budget['status']}")


@budget_app.command("revise")
def budget_revise(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    changes: Annotated[
        str,
        typer.Option(
            "--changes",
            help="Changes (JSON object: title, requested_amount, line_items, justification)",
        ),
    ],
    actor: ActorOption = "system",
    db: DbOption = None,
) -> None:
    """Edit the draft of a budget that was never approved"""
    fc = get_fc(db)
    with reporting_errors():
        budget = fc.revise_draft(budget_id, json.loads(changes), actor_id=actor)

    typer.echo(f"✓ Revised draft of {budget['budget_id']}")
    typer.echo(f"  Requested: ${budget['requested_amount']}")


@budget_app.command("version")
def budget_version(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    changes: Annotated[
        str,
        typer.Option(
            "--changes",
            help="Changes (JSON object: title, requested_amount, line_items, justification)",
        ),
    ],
    expected_version: Annotated[
        int, typer.Option("--expected-version", help="Current version the change is based on")
    ],
    actor: ActorOption = "system",
    db: DbOption = None,
) -> None:
    """Propose a change as a new pending version"""
    fc = get_fc(db)
    with reporting_errors():
        version = fc.create_budget_version(
            budget_id, json.loads(changes), expected_version, actor_id=actor
        )

    typer.echo(f"✓ Created pending version {version['version_number']}")
    typer.echo(f"  Based on: v{version['base_version']}")
    for warning in version["reconciliation_warnings"]:
        typer.echo(f"  Warning: {warning}")


@budget_app.command("submit")
def budget_submit(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    actor: ActorOption = "system",
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Submit the budget's pending version for approval"""
    fc = get_fc(db, policy)
    with reporting_errors():
        request = fc.submit_for_approval(budget_id, actor_id=actor)

    typer.echo(f"✓ Submitted request: {request['request_id']}")
    typer.echo(f"  Version: {request['version_number']}")
    typer.echo(f"  Status: {request['status']}")
    if request["current_level"]:
        step = request["steps"][request["current_level"] - 1]
        typer.echo(f"  Waiting on level {request['current_level']} ({step['required_role']})")


@budget_app.command("rollback")
def budget_rollback(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    target: Annotated[int, typer.Option("--to-version", help="Committed version to restore")],
    expected_version: Annotated[
        Optional[int], typer.Option("--expected-version", help="Expected current version")
    ] = None,
    actor: ActorOption = "system",
    db: DbOption = None,
    policy: PolicyOption = None,
    roles: RolesOption = None,
) -> None:
    """Restore an earlier version as a new version"""
    fc = get_fc(db, policy, roles)
    with reporting_errors():
        version = fc.rollback_budget(
            budget_id, target, expected_version=expected_version, actor_id=actor
        )

    typer.echo(f"✓ Restored v{target} as version {version['version_number']}")
    typer.echo(f"  State: {version['state']}")


@budget_app.command("history")
def budget_history(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    include_pending: Annotated[
        bool, typer.Option("--include-pending", help="Include pending and discarded versions")
    ] = False,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show a budget's version history"""
    fc = get_fc(db)
    with reporting_errors():
        history = fc.get_version_history(budget_id, include_pending=include_pending)

    if json_output:
        echo_json(history)
        return

    typer.echo(f"Versions of {budget_id}:")
    for version in history:
        origin = version["source"]
        if version.get("rolled_back_from"):
            origin += f" of v{version['rolled_back_from']}"
        typer.echo(
            f"  v{version['version_number']} [{version['state']}] "
            f"${version['content']['requested_amount']} ({origin})"
        )


@budget_app.command("show")
def budget_show(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show budget details"""
    fc = get_fc(db)
    budget = fc.get_budget(budget_id)
    if not budget:
        typer.echo(f"Error: Budget not found: {budget_id}", err=True)
        raise typer.Exit(1)

    if json_output:
        echo_json(budget)
        return

    typer.echo(f"Budget: {budget['budget_id']}")
    typer.echo(f"  Title: {budget['title']}")
    typer.echo(f"  Organization: {budget['organization']}")
    typer.echo(f"  Status: {budget['status']}")
    typer.echo(f"  Current version: v{budget['current_version']}")
    if budget["pending_version"]:
        typer.echo(f"  Pending version: v{budget['pending_version']}")
    typer.echo(f"  Requested: ${budget['requested_amount']}")
    typer.echo(f"  Approved: ${budget['approved_amount']}")
    typer.echo(f"  Obligated: ${budget['obligated']}")
    typer.echo(f"  Expended: ${budget['expended']}")


@budget_app.command("list")
def budget_list(
    fiscal_year: Annotated[
        Optional[str], typer.Option("--fiscal-year", help="Filter by fiscal year")
    ] = None,
    status: Annotated[Optional[str], typer.Option("--status", help="Filter by status")] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List budgets"""
    fc = get_fc(db)
    with reporting_errors():
        budgets = fc.list_budgets(fiscal_year_id=fiscal_year, status=status)

    if json_output:
        echo_json(budgets)
        return
    if not budgets:
        typer.echo("No budgets")
        return

    typer.echo(f"Budgets ({len(budgets)}):")
    for budget in budgets:
        typer.echo(
            f"  {budget['budget_id']}: {budget['title']} [{budget['status']}] "
            f"v{budget['current_version']}"
        )


# Approval commands


@approval_app.command("process")
def approval_process(
    request_id: Annotated[str, typer.Option("--request", help="Approval request ID")],
    approver: Annotated[str, typer.Option("--approver", help="Approver ID")],
    action: Annotated[
        str, typer.Option("--action", help="Action (approved, rejected, returned)")
    ],
    comments: Annotated[Optional[str], typer.Option("--comments", help="Comments")] = None,
    db: DbOption = None,
    policy: PolicyOption = None,
    roles: RolesOption = None,
) -> None:
    """Act on the current level of an approval request"""
    fc = get_fc(db, policy, roles)
    with reporting_errors():
        request = fc.process_approval(request_id, approver, action, comments)

    typer.echo(f"✓ Recorded {action} on {request['request_id']}")
    typer.echo(f"  Status: {request['status']}")
    if request["current_level"]:
        typer.echo(f"  Now at level {request['current_level']}")


@approval_app.command("delegate")
def approval_delegate(
    request_id: Annotated[str, typer.Option("--request", help="Approval request ID")],
    from_approver: Annotated[str, typer.Option("--from", help="Current approver")],
    to_approver: Annotated[str, typer.Option("--to", help="Delegate")],
    comments: Annotated[Optional[str], typer.Option("--comments", help="Comments")] = None,
    db: DbOption = None,
    roles: RolesOption = None,
) -> None:
    """Delegate the current level to someone else"""
    fc = get_fc(db, roles_path=roles)
    with reporting_errors():
        request = fc.delegate_approval(request_id, from_approver, to_approver, comments)

    typer.echo(f"✓ Level {request['current_level']} delegated to {request['assignee_id']}")


@approval_app.command("history")
def approval_history(
    entity_id: Annotated[str, typer.Option("--entity", help="Budget ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show every approval request and action for an entity"""
    fc = get_fc(db)
    requests = fc.get_approval_history(entity_id)

    if json_output:
        echo_json(requests)
        return
    if not requests:
        typer.echo(f"No approval requests for {entity_id}")
        return

    for request in requests:
        typer.echo(
            f"Request {request['request_id']} (v{request['version_number']}): {request['status']}"
        )
        for action in request["actions"]:
            who = "auto" if action["auto"] else action["approver_id"]
            line = f"  L{action['level']} {action['action']} by {who}"
            if action["delegated_to"]:
                line += f" → {action['delegated_to']}"
            if action["comments"]:
                line += f": {action['comments']}"
            typer.echo(line)


@approval_app.command("pending")
def approval_pending(
    approver: Annotated[str, typer.Option("--approver", help="Approver ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
    roles: RolesOption = None,
) -> None:
    """List requests an approver can act on now"""
    fc = get_fc(db, roles_path=roles)
    requests = fc.get_pending_approvals(approver)

    if json_output:
        echo_json(requests)
        return
    if not requests:
        typer.echo(f"Nothing waiting on {approver}")
        return

    typer.echo(f"Waiting on {approver} ({len(requests)}):")
    for request in requests:
        typer.echo(
            f"  {request['request_id']}: {request['entity_type']} {request['entity_id']} "
            f"level {request['current_level']} ${request['amount']}"
        )


# Obligation commands


@obligation_app.command("create")
def obligation_create(
    budget_id: Annotated[str, typer.Option("--budget", help="Budget ID")],
    appropriation_id: Annotated[str, typer.Option("--appropriation", help="Appropriation ID")],
    amount: Annotated[str, typer.Option("--amount", help="Obligation amount")],
    obligation_date: Annotated[
        Optional[str], typer.Option("--date", help="Obligation date (YYYY-MM-DD, default today)")
    ] = None,
    line_item: Annotated[
        Optional[str], typer.Option("--line-item", help="Line item ID")
    ] = None,
    vendor: Annotated[Optional[str], typer.Option("--vendor", help="Vendor")] = None,
    description: Annotated[str, typer.Option("--description", help="Description")] = "",
    justification: Annotated[
        Optional[str],
        typer.Option("--justification", help="Bona fide need exception justification"),
    ] = None,
    exception_type: Annotated[
        Optional[str],
        typer.Option("--exception-type", help="Bona fide need exception category"),
    ] = None,
    actor: ActorOption = "system",
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Obligate funds"""
    fc = get_fc(db, policy)
    with reporting_errors():
        obligation = fc.create_obligation(
            budget_id=budget_id,
            appropriation_id=appropriation_id,
            amount=amount,
            obligation_date=date.fromisoformat(obligation_date) if obligation_date else None,
            line_item_id=line_item,
            vendor=vendor,
            description=description,
            justification=justification,
            exception_type=exception_type,
            actor_id=actor,
        )

    typer.echo(f"✓ Created obligation: {obligation['obligation_id']}")
    typer.echo(f"  Amount: ${obligation['amount']}")
    if obligation["bona_fide_need_exception"]:
        typer.echo(f"  Bona fide need exception: {obligation['exception_type']}")
    balance = fc.get_appropriation_balance(appropriation_id)
    typer.echo(f"  Appropriation available: ${balance['available']}")


@obligation_app.command("cancel")
def obligation_cancel(
    obligation_id: Annotated[str, typer.Option("--id", help="Obligation ID")],
    reason: Annotated[str, typer.Option("--reason", help="Reason")] = "",
    actor: ActorOption = "system",
    db: DbOption = None,
) -> None:
    """Cancel an obligation and release its funds"""
    fc = get_fc(db)
    with reporting_errors():
        obligation = fc.cancel_obligation(obligation_id, reason=reason, actor_id=actor)

    typer.echo(f"✓ Cancelled obligation: {obligation['obligation_id']}")
    typer.echo(f"  Released: ${obligation['amount']}")


@obligation_app.command("list")
def obligation_list(
    budget_id: Annotated[Optional[str], typer.Option("--budget", help="Filter by budget")] = None,
    appropriation_id: Annotated[
        Optional[str], typer.Option("--appropriation", help="Filter by appropriation")
    ] = None,
    active_only: Annotated[bool, typer.Option("--active", help="Active only")] = False,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List obligations"""
    fc = get_fc(db)
    obligations = fc.list_obligations(
        budget_id=budget_id, appropriation_id=appropriation_id, active_only=active_only
    )

    if json_output:
        echo_json({"obligations": obligations, "summary": fc.obligation_summary(budget_id)})
        return
    if not obligations:
        typer.echo("No obligations")
        return

    typer.echo(f"Obligations ({len(obligations)}):")
    for obligation in obligations:
        typer.echo(
            f"  {obligation['obligation_id']}: ${obligation['amount']} "
            f"[{obligation['status']}] expended ${obligation['expended']}"
        )


# Expenditure commands


@expenditure_app.command("create")
def expenditure_create(
    obligation_id: Annotated[str, typer.Option("--obligation", help="Obligation ID")],
    amount: Annotated[str, typer.Option("--amount", help="Expenditure amount")],
    expenditure_date: Annotated[
        Optional[str], typer.Option("--date", help="Expenditure date (YYYY-MM-DD, default today)")
    ] = None,
    description: Annotated[str, typer.Option("--description", help="Description")] = "",
    actor: ActorOption = "system",
    db: DbOption = None,
) -> None:
    """Record a payment against an obligation"""
    fc = get_fc(db)
    with reporting_errors():
        expenditure = fc.create_expenditure(
            obligation_id,
            amount,
            expenditure_date=date.fromisoformat(expenditure_date) if expenditure_date else None,
            description=description,
            actor_id=actor,
        )

    obligation = fc.get_obligation(obligation_id)
    typer.echo(f"✓ Recorded expenditure: {expenditure['expenditure_id']}")
    typer.echo(f"  Amount: ${expenditure['amount']}")
    unliquidated = Decimal(obligation["amount"]) - Decimal(obligation["expended"])
    typer.echo(f"  Unliquidated: ${unliquidated}")


@expenditure_app.command("list")
def expenditure_list(
    obligation_id: Annotated[
        Optional[str], typer.Option("--obligation", help="Filter by obligation")
    ] = None,
    budget_id: Annotated[Optional[str], typer.Option("--budget", help="Filter by budget")] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List expenditures"""
    fc = get_fc(db)
    expenditures = fc.list_expenditures(obligation_id=obligation_id, budget_id=budget_id)

    if json_output:
        echo_json({"expenditures": expenditures, "summary": fc.expenditure_summary(budget_id)})
        return
    if not expenditures:
        typer.echo("No expenditures")
        return

    typer.echo(f"Expenditures ({len(expenditures)}):")
    for expenditure in expenditures:
        typer.echo(
            f"  {expenditure['expenditure_id']}: ${expenditure['amount']} "
            f"on {expenditure['expenditure_date']} ({expenditure['obligation_id']})"
        )


# Analysis and monitoring commands


@app.command()
def variance(
    budget_id: Annotated[Optional[str], typer.Option("--budget", help="One budget")] = None,
    fiscal_year: Annotated[
        Optional[str], typer.Option("--fiscal-year", help="Every budget of a fiscal year")
    ] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Approved vs. obligated vs. expended"""
    fc = get_fc(db, policy)
    with reporting_errors():
        summary = fc.get_variance_summary(budget_id=budget_id, fiscal_year_id=fiscal_year)

    if json_output:
        echo_json(summary)
        return

    typer.echo(f"Variance ({summary.scope}): {summary.status.value}")
    typer.echo(f"  Approved: ${summary.total_approved}")
    typer.echo(f"  Obligated: ${summary.total_obligated}")
    typer.echo(f"  Expended: ${summary.total_expended}")
    typer.echo(f"  Unobligated: ${summary.total_unobligated}")
    if summary.variance_percent is not None:
        typer.echo(f"  Variance: ${summary.variance_amount} ({summary.variance_percent}%)")
    for row in summary.budgets:
        typer.echo(f"\n  {row.budget_id}: {row.title} [{row.status.value}]")
        typer.echo(
            f"    Obligation rate: {row.obligation_rate}%  "
            f"Expenditure rate: {row.expenditure_rate}%"
        )


@app.command()
def tick(
    db: DbOption = None,
    policy: PolicyOption = None,
) -> None:
    """Run the periodic monitoring loop"""
    fc = get_fc(db, policy)
    with reporting_errors():
        result = fc.tick()

    typer.echo(f"✓ Tick completed: {result.tick_id}")
    for transition in result.fiscal_year_transitions:
        payload = transition.payload
        typer.echo(f"  FY{payload['year']}: {payload['from_state']} → {payload['to_state']}")
    if result.triggered_events:
        typer.echo(f"  Triggered events: {len(result.triggered_events)}")
        for event in result.triggered_events:
            payload = event.payload
            subject = (
                payload.get("appropriation_id")
                or payload.get("budget_id")
                or payload.get("request_id")
            )
            typer.echo(f"    - {event.event_type} ({subject})")
    if result.has_violations():
        typer.echo("  ✗ Overobligation detected")


@app.command()
def health(
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show current fund position and system counts"""
    fc = get_fc(db)
    status = fc.health()

    if json_output:
        echo_json(status)
        return

    fiscal_year = status["current_fiscal_year"]
    typer.echo(f"Fund Control Status (FY{fiscal_year or '-'})")
    typer.echo(f"  Events: {status['events']} in {status['streams']} streams")
    typer.echo(f"  Appropriated: ${status['total_appropriated']}")
    typer.echo(f"  Obligated: ${status['total_obligated']}")
    typer.echo(f"  Available: ${status['total_available']}")
    typer.echo(f"  Requests under review: {status['requests_under_review']}")
    if status["overdue_requests"]:
        typer.echo(f"  Overdue: {status['overdue_requests']}")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
