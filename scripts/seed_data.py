"""
Seed script for FuelSync.

Builds a deterministic pseudo-random fleet (stations, pumps, nozzles), default
and station-specific fuel prices, and a monotonic daily reading series per
nozzle. Reference data is inserted directly; prices and readings go through
the regular pipeline so every reading after the first derives a sale.
"""

from __future__ import annotations

import random
import sys
import time
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from datetime import time as dtime
from decimal import Decimal
from typing import Dict, List, Optional

import typer

from fuelsync.domain.models import FuelType, quantize_volume
from fuelsync.infrastructure import InMemoryDatastore, PostgresDatastore
from fuelsync.infrastructure.db_factory import build_dsn, get_sync_connection
from fuelsync.pipeline.abstract import Datastore
from fuelsync.pipeline.ingestion import ReadingIngestor
from fuelsync.pipeline.pricing import PriceResolver
from fuelsync.reporter import print_summary, summarize_sales
from fuelsync.utils.logging import configure_logging

app = typer.Typer(help="Seed stations, prices and reading series into a FuelSync datastore.")

FUEL_ROTATION = [FuelType.PETROL, FuelType.DIESEL, FuelType.PETROL, FuelType.CNG]
BASE_PRICES: Dict[FuelType, Decimal] = {
    FuelType.PETROL: Decimal("102.50"),
    FuelType.DIESEL: Decimal("89.75"),
    FuelType.CNG: Decimal("76.20"),
    FuelType.EV: Decimal("18.00"),
}
READING_TIME = dtime(21, 0)


@dataclass(frozen=True)
class NozzlePlan:
    nozzle_number: int
    fuel_type: FuelType
    volumes: List[Decimal]


@dataclass(frozen=True)
class PumpPlan:
    pump_sno: str
    nozzles: List[NozzlePlan]


@dataclass(frozen=True)
class StationPlan:
    name: str
    pumps: List[PumpPlan]
    price_overrides: Dict[FuelType, Decimal] = field(default_factory=dict)


@dataclass(frozen=True)
class SeedPlan:
    start_date: date
    stations: List[StationPlan]


def build_plan(
    stations: int,
    pumps_per_station: int,
    nozzles_per_pump: int,
    days: int,
    seed: int,
    end_date: Optional[date] = None,
) -> SeedPlan:
    """Generate the whole dataset up front so the same seed always yields the same rows."""
    rng = random.Random(seed)
    end = end_date or datetime.now(UTC).date()
    start = end - timedelta(days=days - 1)

    station_plans: List[StationPlan] = []
    for s in range(1, stations + 1):
        pumps: List[PumpPlan] = []
        for p in range(1, pumps_per_station + 1):
            nozzles: List[NozzlePlan] = []
            for n in range(1, nozzles_per_pump + 1):
                volume = Decimal(str(round(rng.uniform(1_000, 50_000), 3)))
                volumes = [quantize_volume(volume)]
                for _ in range(days - 1):
                    # Roughly one day in ten the nozzle is idle.
                    increment = 0.0 if rng.random() < 0.1 else rng.uniform(50, 800)
                    volume += Decimal(str(round(increment, 3)))
                    volumes.append(quantize_volume(volume))
                nozzles.append(
                    NozzlePlan(
                        nozzle_number=n,
                        fuel_type=FUEL_ROTATION[(n - 1) % len(FUEL_ROTATION)],
                        volumes=volumes,
                    )
                )
            pumps.append(PumpPlan(pump_sno=f"SN-{s:03d}-{p:02d}", nozzles=nozzles))

        overrides: Dict[FuelType, Decimal] = {}
        if rng.random() < 0.5:
            fuel = rng.choice([FuelType.PETROL, FuelType.DIESEL])
            overrides[fuel] = BASE_PRICES[fuel] + Decimal(rng.randint(-150, 150)) / 100
        station_plans.append(StationPlan(name=f"Station {s}", pumps=pumps, price_overrides=overrides))

    return SeedPlan(start_date=start, stations=station_plans)


def _load_reference_memory(datastore: InMemoryDatastore, plan: SeedPlan) -> Dict[tuple, int]:
    """Insert stations/pumps/nozzles; returns (station_idx, pump_sno, nozzle_number) -> nozzle id."""
    ids: Dict[tuple, int] = {}
    for idx, station in enumerate(plan.stations):
        station_row = datastore.add_station(station.name)
        ids[("station", idx)] = station_row.id
        for pump in station.pumps:
            pump_row = datastore.add_pump(station_row.id, pump.pump_sno)
            for nozzle in pump.nozzles:
                nozzle_row = datastore.add_nozzle(pump_row.id, nozzle.nozzle_number, nozzle.fuel_type)
                ids[(idx, pump.pump_sno, nozzle.nozzle_number)] = nozzle_row.id
    return ids


def _load_reference_postgres(dsn: str, plan: SeedPlan) -> Dict[tuple, int]:
    ids: Dict[tuple, int] = {}
    with get_sync_connection(dsn) as conn:
        with conn.cursor() as cur:
            for idx, station in enumerate(plan.stations):
                cur.execute(
                    "INSERT INTO public.stations (name) VALUES (%s) RETURNING id", (station.name,)
                )
                station_id = cur.fetchone()[0]
                ids[("station", idx)] = station_id
                for pump in station.pumps:
                    cur.execute(
                        "INSERT INTO public.pumps (station_id, pump_sno) VALUES (%s, %s) RETURNING id",
                        (station_id, pump.pump_sno),
                    )
                    pump_id = cur.fetchone()[0]
                    for nozzle in pump.nozzles:
                        cur.execute(
                            """
                            INSERT INTO public.nozzles (pump_id, nozzle_number, fuel_type)
                            VALUES (%s, %s, %s) RETURNING id
                            """,
                            (pump_id, nozzle.nozzle_number, nozzle.fuel_type.value),
                        )
                        ids[(idx, pump.pump_sno, nozzle.nozzle_number)] = cur.fetchone()[0]
        conn.commit()
    return ids


def seed(datastore: Datastore, plan: SeedPlan, ids: Dict[tuple, int]) -> Dict[str, int]:
    """
    Record prices and replay every reading series through the ingestion pipeline.

    Returns counts of readings ingested and sales created.
    """
    prices_from = datetime.combine(plan.start_date - timedelta(days=1), dtime(0, 0), tzinfo=UTC)
    resolver = PriceResolver()
    with datastore.transaction() as session:
        for fuel, price in BASE_PRICES.items():
            resolver.record_price(session, None, fuel, price, valid_from=prices_from, created_by="seed")
        for idx, station in enumerate(plan.stations):
            for fuel, price in station.price_overrides.items():
                resolver.record_price(
                    session, ids[("station", idx)], fuel, price, valid_from=prices_from, created_by="seed"
                )

    ingestor = ReadingIngestor(datastore)
    counts = {"readings": 0, "sales": 0}
    for idx, station in enumerate(plan.stations):
        station_id = ids[("station", idx)]
        for pump in station.pumps:
            for nozzle in pump.nozzles:
                nozzle_id = ids[(idx, pump.pump_sno, nozzle.nozzle_number)]
                for day, volume in enumerate(nozzle.volumes):
                    derivation = ingestor.ingest(
                        station_id=station_id,
                        nozzle_id=nozzle_id,
                        cumulative_volume=volume,
                        reading_date=plan.start_date + timedelta(days=day),
                        reading_time=READING_TIME,
                        created_by="seed",
                    )
                    counts["readings"] += 1
                    if derivation.sale_created:
                        counts["sales"] += 1
    return counts


@app.command()
def main(
    stations: int = typer.Option(3, "--stations", min=1, help="Number of stations."),
    pumps: int = typer.Option(2, "--pumps", min=1, help="Pumps per station."),
    nozzles: int = typer.Option(2, "--nozzles", min=1, help="Nozzles per pump."),
    days: int = typer.Option(14, "--days", "-d", min=1, help="Daily readings per nozzle."),
    seed_value: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
    backend: str = typer.Option(
        "postgres", "--backend", "-b", help="Datastore to seed: postgres or memory."
    ),
    dsn: Optional[str] = typer.Option(None, "--dsn", help="Optional DSN override for Postgres."),
) -> None:
    """
    Generate a synthetic fleet and reading history and load it into a datastore.
    """
    configure_logging(level="WARNING")
    start = time.perf_counter()
    plan = build_plan(stations, pumps, nozzles, days, seed_value)
    typer.echo(
        f"Seeding {stations} stations x {pumps} pumps x {nozzles} nozzles, "
        f"{days} days from {plan.start_date} (backend={backend}, seed={seed_value})"
    )

    if backend == "memory":
        datastore: Datastore = InMemoryDatastore()
        ids = _load_reference_memory(datastore, plan)
    elif backend == "postgres":
        conn_dsn = dsn or build_dsn()
        ids = _load_reference_postgres(conn_dsn, plan)
        datastore = PostgresDatastore(dsn_override=conn_dsn)
    else:
        raise typer.BadParameter(f"unknown backend {backend!r}", param_hint="--backend")

    try:
        counts = seed(datastore, plan, ids)
        print_summary(summarize_sales(datastore))
    finally:
        datastore.close()

    duration = time.perf_counter() - start
    typer.echo(
        f"Ingested {counts['readings']:,} readings, {counts['sales']:,} sales in {duration:.2f}s."
    )


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
