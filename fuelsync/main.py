from __future__ import annotations

import mimetypes
import sys
from datetime import date, datetime, time
from pathlib import Path
from typing import NoReturn, Optional

import typer

from fuelsync.adapters.manual import ManualReadingAdapter
from fuelsync.adapters.ocr import OcrReadingAdapter, OcrUpload
from fuelsync.adapters.vision_client import VisionApiClient
from fuelsync.config import get_settings
from fuelsync.domain.errors import FuelSyncError
from fuelsync.domain.models import SalesFilter
from fuelsync.infrastructure import apply_schema, available_datastores, create_datastore
from fuelsync.pipeline.ingestion import ReadingIngestor
from fuelsync.pipeline.pricing import PriceResolver
from fuelsync.pipeline.readings import ReadingStore
from fuelsync.reporter import (
    list_sales,
    print_derivation,
    print_prices,
    print_readings,
    print_sales,
    print_summary,
    summarize_sales,
)
from fuelsync.utils.logging import configure_logging

app = typer.Typer(
    help=(
        "FuelSync reading ingestion and sales CLI. Commands use the PostgreSQL "
        "datastore; DATASTORE_BACKEND=memory keeps data only for the lifetime of "
        "one command and is meant for tests and seeding."
    )
)

MEMORY_BACKEND_NOTE = (
    "Note: the memory backend starts empty for every command and keeps nothing "
    "after it exits. Use it for tests and seeding only."
)


def _setup() -> None:
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=settings.log_json)


def _parse_date(value: Optional[str], option: str) -> Optional[date]:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {value!r}", param_hint=option) from None


def _parse_time(value: Optional[str], option: str) -> Optional[time]:
    if value is None:
        return None
    try:
        return time.fromisoformat(value)
    except ValueError:
        raise typer.BadParameter(f"expected HH:MM[:SS], got {value!r}", param_hint=option) from None


def _fail(exc: FuelSyncError) -> NoReturn:
    typer.echo(f"Error: {exc}", err=True)
    if get_settings().datastore_backend == "memory":
        typer.echo(MEMORY_BACKEND_NOTE, err=True)
    raise typer.Exit(code=1)


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"backend={settings.datastore_backend} (available: {', '.join(available_datastores())}) | "
        f"price_scope={settings.price_scope_policy} negative_delta={settings.negative_delta_policy} | "
        f"ocr={settings.ocr_endpoint}"
    )
    if settings.datastore_backend == "memory":
        typer.echo(MEMORY_BACKEND_NOTE)


@app.command("init-db")
def init_db() -> None:
    """
    Create the FuelSync tables in the configured PostgreSQL database.
    """
    _setup()
    apply_schema()
    typer.echo("Schema applied.")


@app.command("add-price")
def add_price(
    fuel_type: str = typer.Option(..., "--fuel-type", "-f", help="PETROL, DIESEL, CNG or EV."),
    price: str = typer.Option(..., "--price", "-p", help="Price per litre."),
    station_id: Optional[int] = typer.Option(
        None, "--station-id", "-s", help="Station the price applies to (omit for the default price)."
    ),
    valid_from: Optional[datetime] = typer.Option(
        None, "--valid-from", help="Effective timestamp (default: now)."
    ),
    actor: Optional[str] = typer.Option(None, "--actor", help="User recording the price."),
) -> None:
    """
    Append a fuel price. Earlier prices are kept; sales already derived keep their price.
    """
    _setup()
    datastore = create_datastore()
    try:
        with datastore.transaction() as session:
            row = PriceResolver().record_price(
                session,
                station_id=station_id,
                fuel_type=fuel_type,
                price_per_litre=price,
                valid_from=valid_from,
                created_by=actor,
            )
    except FuelSyncError as exc:
        _fail(exc)
    finally:
        datastore.close()
    typer.echo(
        f"Price {row.id} recorded: {row.fuel_type.value} {row.price_per_litre} "
        f"from {row.valid_from.isoformat()}"
    )


@app.command("record-reading")
def record_reading(
    station_id: int = typer.Option(..., "--station-id", "-s"),
    nozzle_id: int = typer.Option(..., "--nozzle-id", "-n"),
    volume: str = typer.Option(..., "--volume", "-v", help="Cumulative volume on the meter."),
    reading_date: Optional[str] = typer.Option(None, "--date", help="YYYY-MM-DD (default: today)."),
    reading_time: Optional[str] = typer.Option(None, "--time", help="HH:MM[:SS] (default: now)."),
    actor: Optional[str] = typer.Option(None, "--actor", help="Operator submitting the reading."),
) -> None:
    """
    Record a manual reading and derive its sale.

    Without --date/--time this is a quick volume entry, which also writes an
    activity-log entry.
    """
    _setup()
    parsed_date = _parse_date(reading_date, "--date")
    parsed_time = _parse_time(reading_time, "--time")
    datastore = create_datastore()
    adapter = ManualReadingAdapter(ReadingIngestor(datastore))
    try:
        if parsed_date is None and parsed_time is None:
            derivation = adapter.submit_volume_entry(station_id, nozzle_id, volume, actor_id=actor)
        else:
            now = adapter.ingestor.clock()
            derivation = adapter.submit_reading(
                station_id,
                nozzle_id,
                volume,
                reading_date=parsed_date or now.date(),
                reading_time=parsed_time or now.time().replace(microsecond=0),
                actor_id=actor,
            )
    except FuelSyncError as exc:
        _fail(exc)
    finally:
        datastore.close()
    print_derivation(derivation)


@app.command("upload-photo")
def upload_photo(
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    pump_sno: Optional[str] = typer.Option(None, "--pump-sno", help="Pump serial (default: read from photo)."),
    station_id: Optional[int] = typer.Option(None, "--station-id", "-s"),
    actor: Optional[str] = typer.Option(None, "--actor"),
) -> None:
    """
    Send a meter photo through the vision service and ingest every nozzle on it.
    """
    _setup()
    content_type = mimetypes.guess_type(path.name)[0] or "application/octet-stream"
    upload = OcrUpload(
        content=path.read_bytes(),
        content_type=content_type,
        filename=path.name,
        pump_sno=pump_sno,
        station_id=station_id,
        user_id=actor,
    )
    datastore = create_datastore()
    adapter = OcrReadingAdapter(ReadingIngestor(datastore), VisionApiClient())
    try:
        result = adapter.process_upload(upload)
    except FuelSyncError as exc:
        _fail(exc)
    finally:
        datastore.close()

    for item in result.results:
        if item.derivation is not None:
            print_derivation(item.derivation)
    for error in result.errors:
        typer.echo(f"Error: {error}", err=True)
    typer.echo(result.summary)
    if result.errors:
        raise typer.Exit(code=1)


@app.command()
def sales(
    station_id: Optional[int] = typer.Option(None, "--station-id", "-s"),
    pump_id: Optional[int] = typer.Option(None, "--pump-id"),
    nozzle_id: Optional[int] = typer.Option(None, "--nozzle-id", "-n"),
    start_date: Optional[str] = typer.Option(None, "--start-date", help="YYYY-MM-DD, inclusive."),
    end_date: Optional[str] = typer.Option(None, "--end-date", help="YYYY-MM-DD, inclusive."),
    limit: Optional[int] = typer.Option(50, "--limit", "-l", min=1),
    summary: bool = typer.Option(False, "--summary", help="Show totals instead of rows."),
) -> None:
    """
    List derived sales, newest first.
    """
    _setup()
    filters = SalesFilter(
        station_id=station_id,
        pump_id=pump_id,
        nozzle_id=nozzle_id,
        start_date=_parse_date(start_date, "--start-date"),
        end_date=_parse_date(end_date, "--end-date"),
        limit=None if summary else limit,
    )
    datastore = create_datastore()
    try:
        if summary:
            print_summary(summarize_sales(datastore, filters))
        else:
            print_sales(list_sales(datastore, filters))
    finally:
        datastore.close()


@app.command()
def prices(
    station_id: Optional[int] = typer.Option(
        None, "--station-id", "-s", help="Show this station's prices and the defaults."
    ),
) -> None:
    """
    Show the latest effective price per station and fuel type.
    """
    _setup()
    datastore = create_datastore()
    try:
        with datastore.transaction() as session:
            rows = PriceResolver().latest_prices(session, station_id=station_id)
    finally:
        datastore.close()
    print_prices(rows)


@app.command()
def readings(
    station_id: int = typer.Option(..., "--station-id", "-s"),
    nozzle_id: Optional[int] = typer.Option(None, "--nozzle-id", "-n"),
    limit: int = typer.Option(20, "--limit", "-l", min=1),
) -> None:
    """
    List the latest readings of a station.
    """
    _setup()
    datastore = create_datastore()
    try:
        with datastore.transaction() as session:
            rows = ReadingStore().list_readings(session, station_id, nozzle_id=nozzle_id, limit=limit)
    finally:
        datastore.close()
    print_readings(rows)


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
