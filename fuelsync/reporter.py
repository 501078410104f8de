from __future__ import annotations

from decimal import Decimal
from typing import Dict, List, Optional

from rich import box
from rich.console import Console
from rich.table import Table

from fuelsync.domain.models import (
    Derivation,
    FuelPrice,
    FuelType,
    Reading,
    Sale,
    SalesFilter,
    SalesSummary,
    quantize_amount,
    quantize_volume,
)
from fuelsync.pipeline.abstract import Datastore


def list_sales(datastore: Datastore, filters: Optional[SalesFilter] = None) -> List[Sale]:
    """Sales matching `filters`, newest first."""
    with datastore.transaction() as session:
        return session.list_sales(filters or SalesFilter())


def summarize_sales(datastore: Datastore, filters: Optional[SalesFilter] = None) -> SalesSummary:
    """
    Aggregate sales matching `filters`.

    Volumes per fuel type come from each sale's nozzle; sales themselves do
    not store the fuel type.
    """
    filters = filters or SalesFilter()
    by_fuel_type: Dict[FuelType, Decimal] = {}
    total_volume = Decimal("0")
    total_amount = Decimal("0")

    with datastore.transaction() as session:
        sales = session.list_sales(filters)
        fuel_of: Dict[int, Optional[FuelType]] = {}
        for sale in sales:
            if sale.nozzle_id not in fuel_of:
                context = session.get_nozzle_context(sale.nozzle_id)
                fuel_of[sale.nozzle_id] = context.fuel_type if context else None
            fuel = fuel_of[sale.nozzle_id]
            if fuel is not None:
                by_fuel_type[fuel] = by_fuel_type.get(fuel, Decimal("0")) + sale.delta_volume_l
            total_volume += sale.delta_volume_l
            total_amount += sale.total_amount

    return SalesSummary(
        sale_count=len(sales),
        total_volume_l=quantize_volume(total_volume),
        total_amount=quantize_amount(total_amount),
        by_fuel_type={fuel: quantize_volume(volume) for fuel, volume in by_fuel_type.items()},
    )


def print_sales(sales: List[Sale], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not sales:
        console.print("[yellow]No sales to display.[/yellow]")
        return

    table = Table(title="Sales", box=box.ROUNDED, caption="Newest first")
    table.add_column("Sale", justify="right", style="cyan", no_wrap=True)
    table.add_column("Station", justify="right")
    table.add_column("Nozzle", justify="right")
    table.add_column("Reading", justify="right", style="magenta")
    table.add_column("Volume (L)", justify="right", style="green")
    table.add_column("Price/L", justify="right", style="yellow")
    table.add_column("Amount", justify="right", style="bold green")
    table.add_column("Created", style="dim")

    for sale in sales:
        table.add_row(
            str(sale.id),
            str(sale.station_id),
            str(sale.nozzle_id),
            str(sale.reading_id),
            f"{sale.delta_volume_l:,.3f}",
            f"{sale.price_per_litre:,.2f}",
            f"{sale.total_amount:,.2f}",
            sale.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        )
    console.print(table)


def print_summary(summary: SalesSummary, console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title="Sales Summary", box=box.ROUNDED)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", justify="right", style="bold green")
    table.add_row("Sales", f"{summary.sale_count:,}")
    table.add_row("Total volume (L)", f"{summary.total_volume_l:,.3f}")
    table.add_row("Total amount", f"{summary.total_amount:,.2f}")
    for fuel, volume in sorted(summary.by_fuel_type.items(), key=lambda item: item[0].value):
        table.add_row(f"{fuel.value} volume (L)", f"{volume:,.3f}")
    console.print(table)


def print_prices(prices: List[FuelPrice], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not prices:
        console.print("[yellow]No prices to display.[/yellow]")
        return

    table = Table(title="Current Fuel Prices", box=box.ROUNDED)
    table.add_column("Station", style="cyan")
    table.add_column("Fuel", style="magenta")
    table.add_column("Price/L", justify="right", style="bold green")
    table.add_column("Valid from", style="dim")

    for price in sorted(prices, key=lambda p: (p.station_id is not None, p.station_id or 0, p.fuel_type.value)):
        table.add_row(
            "default" if price.station_id is None else str(price.station_id),
            price.fuel_type.value,
            f"{price.price_per_litre:,.2f}",
            price.valid_from.isoformat(timespec="seconds"),
        )
    console.print(table)


def print_readings(readings: List[Reading], console: Optional[Console] = None) -> None:
    console = console or Console()
    if not readings:
        console.print("[yellow]No readings to display.[/yellow]")
        return

    table = Table(title="Nozzle Readings", box=box.ROUNDED, caption="Latest first")
    table.add_column("Reading", justify="right", style="cyan", no_wrap=True)
    table.add_column("Nozzle", justify="right")
    table.add_column("Cumulative (L)", justify="right", style="green")
    table.add_column("Date")
    table.add_column("Time")
    table.add_column("Source", style="magenta")
    table.add_column("By", style="dim")

    for reading in readings:
        table.add_row(
            str(reading.id),
            str(reading.nozzle_id),
            f"{reading.cumulative_volume:,.3f}",
            reading.reading_date.isoformat(),
            reading.reading_time.isoformat(timespec="seconds"),
            reading.source.value,
            reading.created_by or "",
        )
    console.print(table)


def print_derivation(derivation: Derivation, console: Optional[Console] = None) -> None:
    """One-line outcome of an ingest, as shown after recording a reading."""
    console = console or Console()
    reading = derivation.reading
    if derivation.sale is not None:
        sale = derivation.sale
        console.print(
            f"[green]Reading {reading.id} recorded[/green]: sale {sale.id} "
            f"{sale.delta_volume_l} L x {sale.price_per_litre} = {sale.total_amount} "
            f"({derivation.outcome.value})"
        )
    else:
        console.print(
            f"[yellow]Reading {reading.id} recorded, no sale[/yellow] ({derivation.outcome.value})"
        )


__all__ = [
    "list_sales",
    "print_derivation",
    "print_prices",
    "print_readings",
    "print_sales",
    "print_summary",
    "summarize_sales",
]
