"""
Fund Ledger CLI

Command-line interface for the fund ledger.
Provides commands for the fund pool, budgets, disbursements, supplementary
budgets, expenditures, the audit trail and reconciliation.

Usage:
    fund-ledger init --db ledger.db
    fund-ledger pool adjust --delta 500000 --note "Opening balance" --actor alice --role ADMIN
    fund-ledger remittance submit --amount 2500 --proof QK7H2M1XYZ --actor bob
    fund-ledger remittance verify --id <remittance_id> --actor alice --role ADMIN
    fund-ledger budget create --title "Library books" --amount 100000 --actor bob
    fund-ledger budget approve --id <budget_id> --amount 80000 --actor alice --role ADMIN
    fund-ledger disburse --budget <budget_id> --amount 80000 --actor alice --role ADMIN
    fund-ledger settle --ref <channel_ref> --outcome SUCCESS
    fund-ledger tick
    fund-ledger health
"""

import json
import os
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Optional, TypeVar

import typer
from pydantic import ValidationError
from typing_extensions import Annotated

from fund_ledger.budget.models import (
    BudgetStatus,
    DisbursementMethod,
    DisbursementType,
    Priority,
    SupplementaryStatus,
    TransactionStatus,
)
from fund_ledger.kernel.authz import Actor, Role
from fund_ledger.kernel.errors import LedgerError
from fund_ledger.kernel.logging import configure_logging
from fund_ledger.ledger import FundLedger
from fund_ledger.pool.models import RemittanceStatus

# Logs go to stderr, stdout carries command output
configure_logging(log_level=os.getenv("FUND_LEDGER_LOG_LEVEL", "WARNING"))

app = typer.Typer(
    name="fund-ledger",
    help="Fund Ledger - Budget lifecycle and disbursement ledger",
    add_completion=False,
)

# Sub-apps
pool_app = typer.Typer(help="Fund pool commands")
budget_app = typer.Typer(help="Budget lifecycle commands")
supplementary_app = typer.Typer(help="Supplementary budget commands")
expenditure_app = typer.Typer(help="Expenditure commands")
remittance_app = typer.Typer(help="Remittance commands")
audit_app = typer.Typer(help="Audit trail commands")

app.add_typer(pool_app, name="pool")
app.add_typer(remittance_app, name="remittance")
app.add_typer(budget_app, name="budget")
app.add_typer(supplementary_app, name="supplementary")
app.add_typer(expenditure_app, name="expenditure")
app.add_typer(audit_app, name="audit")

# Global state
DEFAULT_DB = Path(".fund-ledger.db")

DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", envvar="FUND_LEDGER_DB", help="Database path"),
]
ActorOption = Annotated[
    str,
    typer.Option("--actor", envvar="FUND_LEDGER_ACTOR", help="Acting user id"),
]
RoleOption = Annotated[
    Role,
    typer.Option("--role", envvar="FUND_LEDGER_ROLE", help="Acting user's role"),
]
JsonOption = Annotated[bool, typer.Option("--json", help="Output as JSON")]

F = TypeVar("F", bound=Callable[..., Any])


def reports_errors(func: F) -> F:
    """Turn ledger and validation errors into a message on stderr and exit code 1"""

    @wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except LedgerError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from e
        except ValidationError as e:
            for error in e.errors():
                field = ".".join(str(part) for part in error["loc"]) or "input"
                typer.echo(f"Error: {field}: {error['msg']}", err=True)
            raise typer.Exit(1) from e

    return wrapper  # type: ignore[return-value]


def get_ledger(db_path: Optional[Path] = None) -> FundLedger:
    """Get FundLedger instance"""
    db = db_path or DEFAULT_DB
    if not db.exists():
        typer.echo(f"Error: Database not found: {db}", err=True)
        typer.echo(f"Run 'fund-ledger init --db {db}' to initialize", err=True)
        raise typer.Exit(1)
    return FundLedger(str(db))


def parse_json(value: str, option: str) -> Any:
    try:
        return json.loads(value)
    except json.JSONDecodeError as e:
        typer.echo(f"Error: {option} is not valid JSON: {e.msg}", err=True)
        raise typer.Exit(1) from e


def echo_json(data: Any) -> None:
    typer.echo(json.dumps(data, indent=2, default=str))


def echo_budget(budget, verb: str) -> None:
    typer.echo(f"✓ {verb} budget: {budget.budget_id}")
    typer.echo(f"  Title: {budget.title}")
    typer.echo(f"  Status: {budget.status.value}")
    typer.echo(f"  Requested: {budget.requested_amount}")
    if budget.is_funded() or budget.status == BudgetStatus.REVOKED:
        typer.echo(f"  Allocated: {budget.allocated_amount}")
        typer.echo(f"  Effective allocation: {budget.effective_allocation()}")
        typer.echo(f"  Disbursed: {budget.disbursed_amount()}")


# Initialization command


@app.command()
def init(
    db: Annotated[
        Path,
        typer.Option("--db", envvar="FUND_LEDGER_DB", help="Database path"),
    ] = DEFAULT_DB,
) -> None:
    """Initialize a new ledger database"""
    if db.exists():
        typer.echo(f"Error: Database already exists: {db}", err=True)
        raise typer.Exit(1)

    # Create database by initializing the ledger
    FundLedger(str(db))
    typer.echo(f"✓ Initialized ledger database: {db}")


# Fund pool commands


@pool_app.command("show")
@reports_errors
def pool_show(db: DbOption = None, json_output: JsonOption = False) -> None:
    """Show the fund pool balance"""
    ledger = get_ledger(db)
    pool = ledger.pool_balance()

    if json_output:
        echo_json(pool.summary())
    else:
        typer.echo(f"Fund pool balance: {pool.balance} {ledger.policy.currency}")
        typer.echo(f"  Movements: {len(pool.movements)}")


@pool_app.command("history")
@reports_errors
def pool_history(db: DbOption = None, json_output: JsonOption = False) -> None:
    """Show every pool movement"""
    ledger = get_ledger(db)
    movements = ledger.pool_history()

    if json_output:
        echo_json([m.model_dump(mode="json") for m in movements])
    else:
        typer.echo(f"Pool movements: {len(movements)}")
        for m in movements:
            target = f" budget={m.budget_id}" if m.budget_id else ""
            typer.echo(
                f"  {m.occurred_at.isoformat()} {m.kind.value:<10} {m.delta:>14} "
                f"→ {m.balance_after}{target}  {m.note}"
            )


@pool_app.command("adjust")
@reports_errors
def pool_adjust(
    delta: Annotated[str, typer.Option("--delta", help="Signed amount (negative withdraws)")],
    note: Annotated[str, typer.Option("--note", help="Reason recorded in the audit trail")],
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Deposit into or withdraw from the fund pool"""
    ledger = get_ledger(db)
    pool = ledger.adjust_pool(Actor(actor_id=actor, role=role), delta, note)
    typer.echo(f"✓ Pool adjusted by {delta}")
    typer.echo(f"  Balance: {pool.balance}")


# Remittance commands


@remittance_app.command("submit")
@reports_errors
def remittance_submit(
    amount: Annotated[str, typer.Option("--amount", help="Amount sent in")],
    note: Annotated[str, typer.Option("--note")] = "",
    proof: Annotated[str, typer.Option("--proof", help="Receipt or transfer code")] = "",
    actor: ActorOption = "user",
    role: RoleOption = Role.USER,
    db: DbOption = None,
) -> None:
    """Report money sent in to the pool"""
    ledger = get_ledger(db)
    remittance = ledger.submit_remittance(Actor(actor_id=actor, role=role), amount, note, proof)
    typer.echo(f"✓ Submitted remittance: {remittance.remittance_id}")
    typer.echo(f"  Amount: {remittance.amount}")
    typer.echo(f"  Status: {remittance.status.value}")


@remittance_app.command("verify")
@reports_errors
def remittance_verify(
    remittance_id: Annotated[str, typer.Option("--id", help="Remittance ID")],
    note: Annotated[str, typer.Option("--note")] = "",
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Verify a remittance and credit the pool"""
    ledger = get_ledger(db)
    remittance = ledger.verify_remittance(Actor(actor_id=actor, role=role), remittance_id, note)
    typer.echo(f"✓ Remittance {remittance.status.value}: {remittance.remittance_id}")
    typer.echo(f"  Pool balance: {ledger.pool_balance().balance}")


@remittance_app.command("reject")
@reports_errors
def remittance_reject(
    remittance_id: Annotated[str, typer.Option("--id", help="Remittance ID")],
    note: Annotated[str, typer.Option("--note")] = "",
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Reject a remittance"""
    ledger = get_ledger(db)
    remittance = ledger.reject_remittance(Actor(actor_id=actor, role=role), remittance_id, note)
    typer.echo(f"✓ Remittance {remittance.status.value}: {remittance.remittance_id}")


@remittance_app.command("list")
@reports_errors
def remittance_list(
    status: Annotated[Optional[RemittanceStatus], typer.Option("--status")] = None,
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List remittances, newest first (non-admins see their own)"""
    ledger = get_ledger(db)
    remittances = ledger.list_remittances(Actor(actor_id=actor, role=role), status)

    if json_output:
        echo_json([r.model_dump(mode="json") for r in remittances])
    else:
        typer.echo(f"Remittances: {len(remittances)}")
        for r in remittances:
            typer.echo(
                f"  {r.remittance_id}  {r.status.value:<8} {r.amount:>14}  by={r.submitted_by}  {r.note}"
            )


# Budget commands


@budget_app.command("create")
@reports_errors
def budget_create(
    title: Annotated[str, typer.Option("--title", help="Budget title")],
    amount: Annotated[
        Optional[str],
        typer.Option("--amount", help="Requested amount (defaults to the item total)"),
    ] = None,
    description: Annotated[str, typer.Option("--description")] = "",
    priority: Annotated[Priority, typer.Option("--priority")] = Priority.NORMAL,
    disbursement_type: Annotated[
        DisbursementType, typer.Option("--type", help="FULL or BATCHES")
    ] = DisbursementType.FULL,
    batch_count: Annotated[Optional[int], typer.Option("--batches")] = None,
    items: Annotated[
        Optional[str],
        typer.Option("--items", help='Items (JSON array of {"name", "unit_price", "quantity"})'),
    ] = None,
    draft: Annotated[bool, typer.Option("--draft", help="Keep the budget in DRAFT")] = False,
    actor: ActorOption = "user",
    role: RoleOption = Role.USER,
    db: DbOption = None,
) -> None:
    """Create a budget request"""
    ledger = get_ledger(db)
    budget = ledger.create_budget(
        Actor(actor_id=actor, role=role),
        title=title,
        description=description,
        requested_amount=amount,
        priority=priority,
        disbursement_type=disbursement_type,
        batch_count=batch_count,
        items=parse_json(items, "--items") if items else None,
        submit=not draft,
    )
    echo_budget(budget, "Created")
    typer.echo(f"  Items: {len(budget.items)}")


@budget_app.command("submit")
@reports_errors
def budget_submit(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    actor: ActorOption = "user",
    role: RoleOption = Role.USER,
    db: DbOption = None,
) -> None:
    """Submit a DRAFT budget for review"""
    ledger = get_ledger(db)
    echo_budget(ledger.submit_budget(Actor(actor_id=actor, role=role), budget_id), "Submitted")


@budget_app.command("add-item")
@reports_errors
def budget_add_item(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    name: Annotated[str, typer.Option("--name")],
    unit_price: Annotated[str, typer.Option("--unit-price")],
    quantity: Annotated[int, typer.Option("--quantity")] = 1,
    actor: ActorOption = "user",
    role: RoleOption = Role.USER,
    db: DbOption = None,
) -> None:
    """Add a line item to a DRAFT or PENDING budget"""
    ledger = get_ledger(db)
    budget = ledger.add_budget_item(
        Actor(actor_id=actor, role=role), budget_id, name, unit_price, quantity
    )
    typer.echo(f"✓ Added item to budget: {budget_id}")
    typer.echo(f"  Items: {len(budget.items)}")


@budget_app.command("request-revision")
@reports_errors
def budget_request_revision(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    reason: Annotated[str, typer.Option("--reason")],
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Send a PENDING budget back to its owner"""
    ledger = get_ledger(db)
    budget = ledger.request_revision(Actor(actor_id=actor, role=role), budget_id, reason)
    typer.echo(f"✓ Revision requested: {budget_id}")
    typer.echo(f"  Open revisions: {len(budget.open_revisions())}")


@budget_app.command("revise")
@reports_errors
def budget_revise(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    title: Annotated[Optional[str], typer.Option("--title")] = None,
    description: Annotated[Optional[str], typer.Option("--description")] = None,
    amount: Annotated[Optional[str], typer.Option("--amount")] = None,
    priority: Annotated[Optional[Priority], typer.Option("--priority")] = None,
    actor: ActorOption = "user",
    role: RoleOption = Role.USER,
    db: DbOption = None,
) -> None:
    """Revise a budget in answer to a revision request"""
    ledger = get_ledger(db)
    budget = ledger.revise_budget(
        Actor(actor_id=actor, role=role),
        budget_id,
        title=title,
        description=description,
        requested_amount=amount,
        priority=priority,
    )
    echo_budget(budget, "Revised")


@budget_app.command("approve")
@reports_errors
def budget_approve(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    amount: Annotated[
        Optional[str], typer.Option("--amount", help="Allocation (defaults to requested)")
    ] = None,
    disbursement_type: Annotated[Optional[DisbursementType], typer.Option("--type")] = None,
    batch_count: Annotated[Optional[int], typer.Option("--batches")] = None,
    batch_amounts: Annotated[
        Optional[str], typer.Option("--batch-amounts", help="Batch amounts (JSON array)")
    ] = None,
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Approve a PENDING budget (debits the fund pool)"""
    ledger = get_ledger(db)
    budget = ledger.approve_budget(
        Actor(actor_id=actor, role=role),
        budget_id,
        allocated_amount=amount,
        disbursement_type=disbursement_type,
        batch_count=batch_count,
        batch_amounts=parse_json(batch_amounts, "--batch-amounts") if batch_amounts else None,
    )
    echo_budget(budget, "Approved")
    for batch in budget.batches:
        typer.echo(f"  Batch {batch.sequence}: {batch.amount} ({batch.status.value})")


@budget_app.command("reject")
@reports_errors
def budget_reject(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    reason: Annotated[str, typer.Option("--reason")] = "",
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Reject a PENDING budget"""
    ledger = get_ledger(db)
    echo_budget(ledger.reject_budget(Actor(actor_id=actor, role=role), budget_id, reason), "Rejected")


@budget_app.command("delete")
@reports_errors
def budget_delete(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    actor: ActorOption = "user",
    role: RoleOption = Role.USER,
    db: DbOption = None,
) -> None:
    """Delete a DRAFT budget"""
    ledger = get_ledger(db)
    ledger.delete_budget(Actor(actor_id=actor, role=role), budget_id)
    typer.echo(f"✓ Deleted budget: {budget_id}")


@budget_app.command("revoke")
@reports_errors
def budget_revoke(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    reason: Annotated[str, typer.Option("--reason")] = "",
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Revoke a funded budget (reverses disbursements, credits the pool)"""
    ledger = get_ledger(db)
    echo_budget(ledger.revoke_budget(Actor(actor_id=actor, role=role), budget_id, reason), "Revoked")


@budget_app.command("rebatch")
@reports_errors
def budget_rebatch(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    amounts: Annotated[str, typer.Option("--amounts", help="New batch amounts (JSON array)")],
    reason: Annotated[str, typer.Option("--reason")],
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Replace a budget's pending batches"""
    ledger = get_ledger(db)
    budget = ledger.rebatch(
        Actor(actor_id=actor, role=role), budget_id, parse_json(amounts, "--amounts"), reason
    )
    typer.echo(f"✓ Rebatched budget: {budget_id}")
    for batch in budget.batches:
        typer.echo(f"  Batch {batch.sequence}: {batch.amount} ({batch.status.value})")


@budget_app.command("show")
@reports_errors
def budget_show(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show budget details"""
    ledger = get_ledger(db)
    budget = ledger.get_budget(budget_id)

    if json_output:
        echo_json(budget.model_dump(mode="json"))
        return

    summary = budget.summary()
    typer.echo(f"Budget: {budget.budget_id}")
    for key in (
        "title",
        "owner_id",
        "status",
        "priority",
        "disbursement_type",
        "requested_amount",
        "allocated_amount",
        "effective_allocation",
        "disbursed_amount",
        "pending_disbursements",
        "spent_amount",
    ):
        typer.echo(f"  {key.replace('_', ' ').capitalize()}: {summary[key]}")
    if budget.items:
        typer.echo("  Items:")
        for item in budget.items.values():
            typer.echo(f"    {item.item_id}: {item.name} {item.quantity} x {item.unit_price}")
    if budget.batches:
        typer.echo("  Batches:")
        for batch in budget.batches:
            typer.echo(f"    {batch.sequence}: {batch.amount} ({batch.status.value})")


@budget_app.command("list")
@reports_errors
def budget_list(
    owner: Annotated[Optional[str], typer.Option("--owner")] = None,
    status: Annotated[Optional[BudgetStatus], typer.Option("--status")] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List budgets, newest first"""
    ledger = get_ledger(db)
    budgets = ledger.list_budgets(owner_id=owner, status=status)

    if json_output:
        echo_json([b.summary() for b in budgets])
    else:
        typer.echo(f"Budgets: {len(budgets)}")
        for b in budgets:
            typer.echo(f"  {b.budget_id}  {b.status.value:<20} {b.requested_amount:>14}  {b.title}")


@budget_app.command("queue")
@reports_errors
def budget_queue(json_output: JsonOption = False, db: DbOption = None) -> None:
    """PENDING budgets in review order"""
    ledger = get_ledger(db)
    budgets = ledger.admin_queue()

    if json_output:
        echo_json([b.summary() for b in budgets])
    else:
        typer.echo(f"Awaiting review: {len(budgets)}")
        for b in budgets:
            typer.echo(f"  {b.budget_id}  {b.priority.value:<10} {b.requested_amount:>14}  {b.title}")


@budget_app.command("transactions")
@reports_errors
def budget_transactions(
    budget_id: Annotated[str, typer.Option("--id", help="Budget ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List a budget's ledger transactions"""
    ledger = get_ledger(db)
    transactions = ledger.list_transactions(budget_id)

    if json_output:
        echo_json([t.model_dump(mode="json") for t in transactions])
    else:
        typer.echo(f"Transactions for budget {budget_id}: {len(transactions)}")
        for t in transactions:
            typer.echo(
                f"  {t.reference}  {t.type.value:<12} {t.status.value:<10} {t.amount:>14}"
            )


# Disbursement commands


@app.command()
@reports_errors
def disburse(
    budget_id: Annotated[str, typer.Option("--budget", help="Budget ID")],
    amount: Annotated[str, typer.Option("--amount")],
    method: Annotated[DisbursementMethod, typer.Option("--method")] = DisbursementMethod.BANK_TRANSFER,
    destination: Annotated[Optional[str], typer.Option("--destination")] = None,
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Disburse funds from a budget's allocation"""
    ledger = get_ledger(db)
    transaction = ledger.disburse(
        Actor(actor_id=actor, role=role), budget_id, amount, method=method, destination=destination
    )
    typer.echo(f"✓ Disbursement {transaction.status.value}: {transaction.reference}")
    typer.echo(f"  Amount: {transaction.amount}")
    if transaction.channel_ref:
        typer.echo(f"  Channel reference: {transaction.channel_ref}")


@app.command()
@reports_errors
def settle(
    channel_ref: Annotated[str, typer.Option("--ref", help="Channel or disbursement reference")],
    outcome: Annotated[str, typer.Option("--outcome", help="SUCCESS/COMPLETED or FAILED")],
    reason: Annotated[Optional[str], typer.Option("--reason")] = None,
    db: DbOption = None,
) -> None:
    """Record a payment channel settlement"""
    ledger = get_ledger(db)
    events = ledger.settle(channel_ref, outcome, reason=reason)
    if not events:
        typer.echo(f"Settlement already recorded for {channel_ref}; nothing changed")
        return
    typer.echo(f"✓ Settled {channel_ref}: {TransactionStatus(events[0].payload['outcome']).value}")


# Supplementary commands


@supplementary_app.command("request")
@reports_errors
def supplementary_request(
    budget_id: Annotated[str, typer.Option("--budget", help="Budget ID")],
    amount: Annotated[str, typer.Option("--amount")],
    reason: Annotated[str, typer.Option("--reason")],
    actor: ActorOption = "user",
    role: RoleOption = Role.USER,
    db: DbOption = None,
) -> None:
    """Request a supplementary budget"""
    ledger = get_ledger(db)
    request = ledger.request_supplementary(Actor(actor_id=actor, role=role), budget_id, amount, reason)
    typer.echo(f"✓ Requested supplementary: {request.supplementary_id}")
    typer.echo(f"  Amount: {request.amount}")
    typer.echo(f"  Status: {request.status.value}")


@supplementary_app.command("decide")
@reports_errors
def supplementary_decide(
    supplementary_id: Annotated[str, typer.Option("--id", help="Supplementary ID")],
    decision: Annotated[SupplementaryStatus, typer.Option("--decision", help="APPROVED or REJECTED")],
    note: Annotated[str, typer.Option("--note")] = "",
    actor: ActorOption = "admin",
    role: RoleOption = Role.ADMIN,
    db: DbOption = None,
) -> None:
    """Approve or reject a supplementary budget"""
    ledger = get_ledger(db)
    request = ledger.decide_supplementary(
        Actor(actor_id=actor, role=role), supplementary_id, decision, note
    )
    typer.echo(f"✓ Supplementary {request.status.value}: {request.supplementary_id}")


@supplementary_app.command("list")
@reports_errors
def supplementary_list(json_output: JsonOption = False, db: DbOption = None) -> None:
    """List supplementary requests awaiting a decision"""
    ledger = get_ledger(db)
    pending = ledger.list_pending_supplementaries()

    if json_output:
        echo_json(
            [{"budget_id": budget_id, **s.model_dump(mode="json")} for budget_id, s in pending]
        )
    else:
        typer.echo(f"Pending supplementaries: {len(pending)}")
        for budget_id, s in pending:
            typer.echo(f"  {s.supplementary_id}  budget={budget_id}  {s.amount:>14}  {s.reason}")


# Expenditure commands


@expenditure_app.command("post")
@reports_errors
def expenditure_post(
    budget_id: Annotated[str, typer.Option("--budget", help="Budget ID")],
    title: Annotated[str, typer.Option("--title")],
    items: Annotated[
        str,
        typer.Option("--items", help='Lines (JSON array of {"budget_item_id", "spent_amount"})'),
    ],
    description: Annotated[str, typer.Option("--description")] = "",
    request_supplementary: Annotated[
        bool,
        typer.Option("--request-supplementary", help="Cover an overrun with a supplementary"),
    ] = False,
    actor: ActorOption = "user",
    role: RoleOption = Role.USER,
    db: DbOption = None,
) -> None:
    """Post an expenditure against a funded budget"""
    ledger = get_ledger(db)
    expenditure = ledger.post_expenditure(
        Actor(actor_id=actor, role=role),
        budget_id,
        title=title,
        items=parse_json(items, "--items"),
        description=description,
        request_supplementary=request_supplementary,
    )
    typer.echo(f"✓ Posted expenditure: {expenditure.expenditure_id}")
    typer.echo(f"  Amount: {expenditure.amount}")
    if expenditure.flagged:
        typer.echo("  Flagged: spend exceeds plan")
    if expenditure.supplementary_id:
        typer.echo(f"  Supplementary requested: {expenditure.supplementary_id}")


@expenditure_app.command("void")
@reports_errors
def expenditure_void(
    expenditure_id: Annotated[str, typer.Option("--id", help="Expenditure ID")],
    reason: Annotated[str, typer.Option("--reason")],
    actor: ActorOption = "user",
    role: RoleOption = Role.USER,
    db: DbOption = None,
) -> None:
    """Void an expenditure"""
    ledger = get_ledger(db)
    expenditure = ledger.void_expenditure(Actor(actor_id=actor, role=role), expenditure_id, reason)
    typer.echo(f"✓ Voided expenditure: {expenditure.expenditure_id}")


@expenditure_app.command("list")
@reports_errors
def expenditure_list(
    budget_id: Annotated[str, typer.Option("--budget", help="Budget ID")],
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """List expenditures for a budget"""
    ledger = get_ledger(db)
    expenditures = ledger.list_expenditures(budget_id)

    if json_output:
        echo_json([e.model_dump(mode="json") for e in expenditures])
    else:
        typer.echo(f"Expenditures for budget {budget_id}: {len(expenditures)}")
        for e in expenditures:
            flag = " [flagged]" if e.flagged else ""
            typer.echo(f"  {e.expenditure_id}  {e.status.value:<9} {e.amount:>14}  {e.title}{flag}")


# Audit commands


@audit_app.command("list")
@reports_errors
def audit_list(
    budget_id: Annotated[Optional[str], typer.Option("--budget", help="Budget ID")] = None,
    entity: Annotated[Optional[str], typer.Option("--entity")] = None,
    user: Annotated[Optional[str], typer.Option("--user")] = None,
    action: Annotated[Optional[str], typer.Option("--action")] = None,
    limit: Annotated[Optional[int], typer.Option("--limit")] = None,
    json_output: JsonOption = False,
    db: DbOption = None,
) -> None:
    """Show the audit trail"""
    ledger = get_ledger(db)
    entries = ledger.get_audit_trail(
        entity=entity, user_id=user, action=action, budget_id=budget_id, limit=limit
    )

    if json_output:
        echo_json([e.model_dump(mode="json") for e in entries])
    else:
        typer.echo(f"Audit entries: {len(entries)}")
        for e in entries:
            typer.echo(
                f"  {e.created_at.isoformat()} {e.action:<24} {e.entity}:{e.entity_id} by {e.user_id}"
            )


# Monitoring commands


@app.command()
@reports_errors
def tick(db: DbOption = None, json_output: JsonOption = False) -> None:
    """Reconcile stale settlements and check ledger invariants"""
    ledger = get_ledger(db)
    result = ledger.tick()

    if json_output:
        echo_json(
            {
                "tick_id": result.tick_id,
                "tick_at": result.tick_at.isoformat(),
                "reconciled": [e.payload for e in result.reconciled_events],
                "warnings": [
                    {"type": e.event_type, **e.payload} for e in result.triggered_events
                ],
                "reconcile_errors": result.reconcile_errors,
            }
        )
        return

    typer.echo(result.summary())
    for event in result.triggered_events:
        typer.echo(f"  ⚠ {event.event_type}: budget {event.payload['budget_id']}")


@app.command()
@reports_errors
def health(db: DbOption = None, json_output: JsonOption = False) -> None:
    """Show ledger health"""
    ledger = get_ledger(db)
    status = ledger.health()

    if json_output:
        echo_json(status)
        return

    typer.echo("Ledger health")
    for key, value in status.items():
        typer.echo(f"  {key.replace('_', ' ').capitalize()}: {value}")


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
