"""billsync command line interface."""

import asyncio
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from billsync import __version__
from billsync.core.database import async_session_factory
from billsync.core.logging import configure_logging
from billsync.modules.billing.catalog import DEFAULT_PLANS, load_plan_seeds, seed_plans
from billsync.modules.billing.entitlements import EntitlementResolver
from billsync.modules.billing.models import Plan
from billsync.modules.billing.repos import BillingRepository
from billsync.modules.billing.schemas import Entitlements


console = Console()

app = typer.Typer(
    name="billsync",
    help="Manage the plan catalog and inspect entitlements.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


@app.callback(invoke_without_command=True)
def version_callback(
    version: bool = typer.Option(
        False, "--version", "-v", help="Show version and exit."
    ),
) -> None:
    """billsync - Stripe subscription reconciliation."""
    if version:
        console.print(f"[bold cyan]billsync[/bold cyan] version {__version__}")
        raise typer.Exit()


def _format_limit(value: int) -> str:
    return "unlimited" if value == -1 else str(value)


@app.command(name="seed-plans")
def seed_plans_command(
    file: Path | None = typer.Option(
        None,
        "--file",
        "-f",
        exists=True,
        dir_okay=False,
        help="YAML file with plan definitions (defaults to the built-in catalog)",
    ),
) -> None:
    """Insert missing plans into the catalog.

    Existing plans are left unchanged.
    """
    seeds = load_plan_seeds(file) if file else DEFAULT_PLANS

    async def run() -> dict[str, bool]:
        async with async_session_factory() as session:
            results = await seed_plans(BillingRepository(session), seeds)
            await session.commit()
            return results

    results = asyncio.run(run())
    for plan_id, inserted in results.items():
        if inserted:
            console.print(f"[green]✓[/green] Seeded plan: {plan_id}")
        else:
            console.print(f"[dim]-[/dim] Plan already exists: {plan_id}")


@app.command(name="plans")
def list_plans_command(
    all_plans: bool = typer.Option(
        False, "--all", "-a", help="Include inactive plans"
    ),
) -> None:
    """List the plan catalog."""

    async def run() -> list[Plan]:
        async with async_session_factory() as session:
            return await BillingRepository(session).list_plans(
                include_inactive=all_plans
            )

    plans = asyncio.run(run())
    if not plans:
        console.print("[yellow]No plans found. Run 'billsync seed-plans'.[/yellow]")
        return

    table = Table(title="Plans", show_header=True)
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name")
    table.add_column("Monthly price", no_wrap=True)
    table.add_column("Annual price", no_wrap=True)
    table.add_column("Trial", justify="right")
    table.add_column("Limits")
    table.add_column("Active", no_wrap=True)

    for plan in plans:
        limits = ", ".join(
            f"{key}={_format_limit(value)}" for key, value in (plan.limits or {}).items()
        )
        table.add_row(
            plan.id,
            plan.name,
            plan.stripe_price_id,
            plan.stripe_annual_price_id or "",
            f"{plan.trial_period_days}d" if plan.trial_period_days else "",
            limits,
            "[green]yes[/green]" if plan.is_active else "[red]no[/red]",
        )

    console.print()
    console.print(table)
    console.print()


@app.command(name="entitlements")
def entitlements_command(
    reference_id: str = typer.Argument(..., help="User or organization ID"),
) -> None:
    """Show the limits in effect for a user or organization."""

    async def run() -> Entitlements:
        async with async_session_factory() as session:
            resolver = EntitlementResolver(BillingRepository(session))
            return await resolver.get_effective_limits(reference_id)

    entitlements = asyncio.run(run())

    source = (
        f"subscription [cyan]{entitlements.subscription_id}[/cyan]"
        if entitlements.subscription_id
        else "[yellow]free tier[/yellow]"
    )
    table = Table(title=f"Entitlements for {reference_id}", show_header=True)
    table.add_column("Limit", style="cyan")
    table.add_column("Value", justify="right")
    for key, value in sorted(entitlements.limits.items()):
        table.add_row(key, _format_limit(value))

    console.print()
    console.print(f"Source: {source}")
    console.print(table)
    console.print()


def main() -> None:
    """Entry point for the CLI."""
    configure_logging()
    app()


if __name__ == "__main__":
    main()
