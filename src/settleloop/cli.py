"""CLI for SettleLoop using Typer."""

import logging
import sys
from decimal import Decimal

import typer
from rich.console import Console
from rich.table import Table

from .clients import InMemoryNotificationSink, JsonFileTransactionFeed
from .config import Settings, load_settings
from .db import Database
from .exceptions import SettleLoopError
from .models import Member, Notification, SettlementSummary
from .service import LedgerService

app = typer.Typer(
    name="settleloop",
    help="Shared-expense ledgers: balances, settlement plans and AutoSplit imports",
)

console = Console()


def setup_logging(verbose: bool = False):
    """Setup logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def open_service(
    settings: Settings,
) -> tuple[LedgerService, Database, InMemoryNotificationSink]:
    """Build a ledger service on the configured database and bank feed."""
    db = Database(settings.database_path)
    notifications = InMemoryNotificationSink()
    service = LedgerService(
        settings=settings,
        transactions=JsonFileTransactionFeed(settings.transactions_path),
        notifications=notifications,
        database=db,
    )
    return service, db, notifications


def format_money(amount: Decimal, use_color: bool = True) -> str:
    """
    Format money in accounting style with alignment.

    Negative amounts use parentheses: ($85.02)
    Positive amounts have spaces:      $85.02
    """
    abs_amount = abs(amount)
    if amount < 0:
        if use_color:
            return f"($[red]{abs_amount:,.2f}[/red])"
        return f"(${abs_amount:,.2f})"
    if use_color:
        return f" [green]${abs_amount:,.2f}[/green] "
    return f" ${abs_amount:,.2f} "


def display_balances(members: list[Member], currency: str):
    """Display member balances in a table."""
    table = Table(title="Balances", show_header=True, header_style="bold magenta")
    table.add_column("Member", style="cyan")
    table.add_column("ID", style="dim")
    table.add_column(f"Balance ({currency})", justify="right")

    for member in members:
        table.add_row(member.name, member.id, format_money(member.balance))

    console.print(table)


def display_plan(summary: SettlementSummary, members: list[Member], currency: str):
    """Display a settlement plan in a table."""
    names = {member.id: member.name for member in members}

    if not summary.transfers:
        console.print("[green]Everyone is square. Nothing to settle.[/green]")
        return

    table = Table(
        title="Settlement Plan", show_header=True, header_style="bold magenta"
    )
    table.add_column("From", style="cyan")
    table.add_column("To", style="cyan")
    table.add_column(f"Amount ({currency})", justify="right")

    for transfer in summary.transfers:
        table.add_row(
            names.get(transfer.from_member_id, transfer.from_member_id),
            names.get(transfer.to_member_id, transfer.to_member_id),
            format_money(transfer.amount),
        )

    console.print(table)
    console.print(
        f"  Total moved: {format_money(summary.total_sending)} {currency}"
    )


def display_notifications(notifications: list[Notification]):
    for notification in reversed(notifications):
        console.print(f"  [bold]{notification.title}[/bold]: {notification.message}")


def _fail(e: Exception, verbose: bool):
    console.print(f"\n[bold red]Error:[/bold red] {e}")
    if verbose:
        raise e
    sys.exit(1)


@app.command()
def missions(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """List shared ledgers."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        service, db, _ = open_service(settings)

        all_missions = service.list_missions()
        if not all_missions:
            console.print("[yellow]No shared ledgers yet.[/yellow]")
            return

        table = Table(
            title="Shared Ledgers", show_header=True, header_style="bold magenta"
        )
        table.add_column("ID", style="dim")
        table.add_column("Title", style="cyan")
        table.add_column("Status")
        table.add_column("Members", justify="right")
        table.add_column("Expenses", justify="right")

        for mission in all_missions:
            status = (
                "[green]settled[/green]" if mission.status == "settled" else "active"
            )
            table.add_row(
                mission.id,
                mission.title,
                status,
                str(len(mission.members)),
                str(len(mission.expenses)),
            )

        console.print(table)

    except (SettleLoopError, ValueError) as e:
        _fail(e, verbose)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def balances(
    mission_id: str = typer.Argument(..., help="Mission ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show each member's balance."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        service, db, _ = open_service(settings)
        display_balances(service.get_balances(mission_id), settings.currency)

    except (SettleLoopError, ValueError) as e:
        _fail(e, verbose)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def plan(
    mission_id: str = typer.Argument(..., help="Mission ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Show the transfers that would settle a ledger."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        service, db, _ = open_service(settings)
        members = service.get_balances(mission_id)
        display_plan(
            service.get_settlement_plan(mission_id), members, settings.currency
        )

    except (SettleLoopError, ValueError) as e:
        _fail(e, verbose)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def scan(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Match recent bank transactions against AutoSplit rules."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        service, db, _ = open_service(settings)

        console.print(
            f"\n[bold blue]Scanning the last {settings.lookback_days} days "
            f"of transactions...[/bold blue]"
        )
        created = service.check_transactions()

        if not created:
            console.print("[yellow]No new matching transactions.[/yellow]")
        else:
            table = Table(
                title="Imported Expenses", show_header=True, header_style="bold magenta"
            )
            table.add_column("Expense", style="dim")
            table.add_column("Title", style="cyan")
            table.add_column(f"Amount ({settings.currency})", justify="right")
            table.add_column("Rule", style="dim")
            for expense in created:
                table.add_row(
                    expense.id,
                    expense.title,
                    format_money(expense.amount),
                    expense.source_rule_id or "",
                )
            console.print(table)

        for warning in service.warnings:
            console.print(f"[yellow]⚠️  {warning}[/yellow]")

    except (SettleLoopError, ValueError) as e:
        _fail(e, verbose)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def monthly(
    mission_id: str = typer.Argument(..., help="Mission ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Send due monthly bill pack requests."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        service, db, notifications = open_service(settings)

        results = service.process_monthly_requests(mission_id)
        if not results:
            console.print("[yellow]No bill packs send monthly requests.[/yellow]")
            return

        for result in results:
            pack = service.get_bill_pack(result.pack_id)
            line = f"{pack.name} ({result.period:%b %Y}): {result.status}"
            if result.status == "needs_review":
                console.print(
                    f"[yellow]⚠️  {line}, total "
                    f"{format_money(result.total, False)} "
                    f"exceeds the safety limit. "
                    f"Run 'settleloop approve {pack.id}'.[/yellow]"
                )
            else:
                console.print(line)

        display_notifications(notifications.notifications)

    except (SettleLoopError, ValueError) as e:
        _fail(e, verbose)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def approve(
    pack_id: str = typer.Argument(..., help="Bill pack ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Send a monthly request that was held for review."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        service, db, notifications = open_service(settings)

        result = service.approve_monthly_request(pack_id)
        console.print(
            f"[bold green]✓ Sent {result.period:%b %Y} request for "
            f"{format_money(result.total, False).strip()} "
            f"{settings.currency}[/bold green]"
        )
        display_notifications(notifications.notifications)

    except (SettleLoopError, ValueError) as e:
        _fail(e, verbose)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def dismiss(
    pack_id: str = typer.Argument(..., help="Bill pack ID"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Drop the oldest held monthly request without sending it."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        service, db, _ = open_service(settings)

        pack = service.dismiss_monthly_request(pack_id)
        remaining = len(pack.pending_review_periods)
        console.print(
            f"[yellow]Dismissed. {remaining} held request(s) left for "
            f"{pack.name}.[/yellow]"
        )

    except (SettleLoopError, ValueError) as e:
        _fail(e, verbose)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def settle(
    mission_id: str = typer.Argument(..., help="Mission ID"),
    user: str = typer.Option(..., "--user", "-u", help="Your member ID"),
    account: str | None = typer.Option(
        None, "--account", help="Bank account to record transfers against"
    ),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Record the settlement and close the ledger."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        service, db, notifications = open_service(settings)

        members = service.get_balances(mission_id)
        display_plan(
            service.get_settlement_plan(mission_id), members, settings.currency
        )

        if not yes and not typer.confirm("\nMark this ledger as settled?"):
            console.print("[yellow]Cancelled.[/yellow]")
            return

        service.confirm_settlement(mission_id, user, account_id=account)
        console.print("\n[bold green]✓ Ledger settled![/bold green]")
        display_notifications(notifications.notifications)

    except (SettleLoopError, ValueError) as e:
        _fail(e, verbose)
    finally:
        if "db" in locals():
            db.close()


@app.command()
def remind(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
):
    """Send reminders for stalled settlements."""
    setup_logging(verbose)

    try:
        settings = load_settings()
        service, db, _ = open_service(settings)

        sent = service.send_settlement_reminders()
        if not sent:
            console.print("[dim]No reminders due.[/dim]")
        display_notifications(sent)

    except (SettleLoopError, ValueError) as e:
        _fail(e, verbose)
    finally:
        if "db" in locals():
            db.close()


if __name__ == "__main__":
    app()
