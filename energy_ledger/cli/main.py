"""
CLI interface for Energy Ledger.

Provides command-line access to usage tracking and bill projection.
"""

import logging
import sys
from decimal import Decimal
from typing import Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from energy_ledger.config.loader import Settings, load_settings, load_tariff_config
from energy_ledger.core.billing import BillProjection, compute_bill
from energy_ledger.core.consumption import (
    consumption_summary,
    project_cycle_bill,
    submit_meter_reading,
    toggle_device,
    top_consumers,
)
from energy_ledger.demo.seed_demo_data import seed_demo
from energy_ledger.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_OK = 0
EXIT_CODE_FAIL = 1


def _settings() -> Settings:
    return load_settings()


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show informational logs"),
):
    """Energy Ledger CLI."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=console, show_path=False)],
        force=True,
    )
    if ctx.invoked_subcommand is None:
        console.print("Energy Ledger - Use --help to see available commands")


@app.command()
def status():
    """Show the database in use and how many tariff slabs are active."""
    try:
        settings = _settings()
        slabs = get_repository(settings.db_path).list_active_slabs()
        console.print(f"[green]✓[/] Database: {settings.db_path}")
        console.print(f"Active tariff slabs: {len(slabs)}")
        console.print(f"Billing cycle length: {settings.cycle_days} days")
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def init():
    """Initialize the Energy Ledger database."""
    try:
        initialize_schema(_settings().db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_OK)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command("load-slabs")
def load_slabs(
    path: Optional[str] = typer.Argument(None, help="Tariff YAML file (defaults to the bundled schedule)")
):
    """Replace the tariff slab schedule from a YAML file."""
    try:
        settings = _settings()
        config = load_tariff_config(path or settings.tariff_path)
        count = get_repository(settings.db_path).replace_slabs(config.slabs)
        console.print(f"[green]✓[/] Loaded {count} tariff slabs")
    except Exception as e:
        console.print(f"[red]Error loading slabs:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def demo():
    """Seed a demo home with rooms, appliances and the default slabs."""
    try:
        home = seed_demo(_settings().db_path)
        console.print(f"[green]✓[/] Demo home created with id {home.id}")
    except Exception as e:
        console.print(f"[red]Error seeding demo data:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def toggle(
    device_id: int = typer.Argument(..., help="Device to switch"),
    on: bool = typer.Option(..., "--on/--off", help="Switch the device on or off"),
):
    """Switch a device on or off."""
    try:
        device = toggle_device(get_repository(_settings().db_path), device_id, on)
        state = "[green]ON[/]" if device.is_on else "[dim]OFF[/]"
        console.print(f"{device.name} ({device.wattage:g} W) is {state}")
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def usage(home_id: int = typer.Argument(..., help="Home to summarise")):
    """Show live load and consumption for today, this cycle and since the last reading."""
    try:
        settings = _settings()
        summary = consumption_summary(
            get_repository(settings.db_path), home_id, cycle_days=settings.cycle_days
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(f"\n[bold]Consumption for home {home_id}[/bold]")
    console.print("-" * 40)
    console.print(f"Live load: {summary.live_load_watts:,.0f} W ({summary.active_device_count} on)")
    console.print(f"Today: {summary.today_kwh:.2f} kWh")
    console.print(
        f"This cycle: {summary.cycle_kwh:.2f} kWh "
        f"({summary.cycle.start_date} to {summary.cycle.end_date}, "
        f"{summary.days_remaining} days left)"
    )
    if summary.last_reading is not None:
        console.print(
            f"Last reading: {summary.last_reading.value:.2f} kWh "
            f"at {summary.last_reading.timestamp:%Y-%m-%d %H:%M}"
        )
    console.print(f"Since last reading: {summary.since_last_reading_kwh:.2f} kWh")
    console.print(f"Estimated meter now: {summary.current_estimated_reading:.2f} kWh")

    if summary.active_devices:
        table = Table(title="Running now")
        table.add_column("Device")
        table.add_column("Watts", justify="right")
        table.add_column("Hours", justify="right")
        table.add_column("kWh", justify="right")
        for active in summary.active_devices:
            table.add_row(
                active.name,
                f"{active.wattage:g}",
                f"{active.duration_hours:.2f}",
                f"{active.energy_kwh:.4f}",
            )
        console.print(table)


@app.command()
def bill(
    units: Optional[float] = typer.Option(None, "--units", "-u", help="Project the bill for this many units"),
    home: Optional[int] = typer.Option(None, "--home", help="Project the current cycle bill for a home"),
):
    """Project a slab tariff bill for a unit quantity or a home's current cycle."""
    if (units is None) == (home is None):
        console.print("[red]Error:[/] pass exactly one of --units or --home")
        sys.exit(EXIT_CODE_FAIL)

    try:
        settings = _settings()
        repository = get_repository(settings.db_path)
        if home is not None:
            projection = project_cycle_bill(repository, home, cycle_days=settings.cycle_days)
        else:
            projection = compute_bill(units, repository.list_active_slabs())
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    _display_projection(projection)


@app.command()
def reading(
    home_id: int = typer.Argument(..., help="Home the meter belongs to"),
    value: float = typer.Argument(..., help="Meter reading in kWh"),
):
    """Record a manual meter reading."""
    try:
        settings = _settings()
        recorded = submit_meter_reading(
            get_repository(settings.db_path), home_id, value, cycle_days=settings.cycle_days
        )
        console.print(
            f"[green]✓[/] Reading {recorded.value:.2f} kWh recorded "
            f"(variance {recorded.variance_percentage:+.1f}%)"
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def top(
    home_id: int = typer.Argument(..., help="Home to rank"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of devices to show"),
):
    """Rank devices by consumption in the current cycle."""
    try:
        settings = _settings()
        shares = top_consumers(
            get_repository(settings.db_path), home_id, limit=limit, cycle_days=settings.cycle_days
        )
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not shares:
        console.print("\n[dim]No consumption recorded this cycle.[/]")
        return

    table = Table(title=f"Top consumers for home {home_id}")
    table.add_column("Device")
    table.add_column("kWh", justify="right")
    table.add_column("Hours", justify="right")
    table.add_column("Share", justify="right")
    table.add_column("Est. cost", justify="right")
    for share in shares:
        table.add_row(
            share.name + (" [green]●[/]" if share.is_on else ""),
            f"{share.total_kwh:.3f}",
            f"{share.total_hours:.2f}",
            f"{share.percentage:.0f}%",
            _format_currency(share.estimated_cost),
        )
    console.print(table)


@app.command()
def history(home_id: int = typer.Argument(..., help="Home to list")):
    """List billing cycles, newest first."""
    try:
        cycles = get_repository(_settings().db_path).list_cycles(home_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    if not cycles:
        console.print("\n[dim]No billing cycles yet.[/]")
        return

    table = Table(title=f"Billing history for home {home_id}")
    table.add_column("Start")
    table.add_column("End")
    table.add_column("Units", justify="right")
    table.add_column("Estimated", justify="right")
    table.add_column("Active")
    for cycle in cycles:
        table.add_row(
            str(cycle.start_date),
            str(cycle.end_date),
            f"{cycle.total_units:.2f}",
            _format_currency(Decimal(str(cycle.estimated_bill))),
            "yes" if cycle.is_active else "",
        )
    console.print(table)


def _format_currency(amount: Decimal) -> str:
    """Format currency with symbol and thousands separators."""
    return f"₹{amount:,.2f}"


def _display_projection(projection: BillProjection) -> None:
    """Display a bill projection with its slab breakdown."""
    console.print("\n[bold]Bill Projection[/bold]")
    console.print("-" * 40)

    if not projection.has_tariff_data:
        console.print("[bold yellow]No tariff data[/] - load slabs with `energy-ledger load-slabs`")
    for diagnostic in projection.diagnostics:
        console.print(f"[dim]diagnostic: {diagnostic.value}[/]")

    console.print(f"Units: {projection.total_units:,.2f}")
    if projection.current_slab:
        console.print(f"Current slab: {projection.current_slab}")

    if projection.breakdown:
        table = Table()
        table.add_column("Slab")
        table.add_column("Units", justify="right")
        table.add_column("Rate", justify="right")
        table.add_column("Cost", justify="right")
        table.add_column("Subsidy", justify="right")
        table.add_column("Net", justify="right")
        for entry in projection.breakdown:
            table.add_row(
                entry.slab,
                f"{entry.units:,.2f}",
                _format_currency(entry.rate),
                _format_currency(entry.gross_cost),
                _format_currency(entry.subsidy),
                _format_currency(entry.net_cost),
            )
        console.print(table)

    console.print(f"Fixed charge: {_format_currency(projection.fixed_charge)}")
    console.print(f"Total subsidy: {_format_currency(projection.total_subsidy)}")
    console.print(f"[bold]Estimated bill: {_format_currency(projection.net_bill)}[/bold]")

    warning = projection.next_slab_warning
    if warning is not None:
        console.print(
            f"\n[yellow]![/] {warning.units_to_next_slab:,.2f} units until the next slab "
            f"({_format_currency(warning.current_rate)} -> {_format_currency(warning.next_slab_rate)} per unit)"
        )


if __name__ == "__main__":
    app()
