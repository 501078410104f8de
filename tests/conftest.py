"""
Pytest configuration for FuelSync.

Provides fixtures for:
- Settings override for integration tests
- Database connection management and schema setup
- In-memory datastores seeded with a small station layout
- A fixed clock for deterministic dates and price lookups
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Generator

import psycopg
import pytest

from fuelsync.config import Settings, get_settings
from fuelsync.domain.models import FuelType
from fuelsync.infrastructure.db_factory import load_schema
from fuelsync.infrastructure.memory import InMemoryDatastore
from fuelsync.pipeline.ingestion import ReadingIngestor
from fuelsync.pipeline.pricing import PriceResolver

FIXED_NOW = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)

FUELSYNC_TABLES = (
    "user_activity_log",
    "sales",
    "fuel_prices",
    "nozzle_readings",
    "nozzles",
    "pumps",
    "stations",
)


class FixedClock:
    """Callable clock that tests can move forward."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def _clear_settings_cache() -> Generator[None, None, None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def memory_store(clock: FixedClock) -> InMemoryDatastore:
    """
    In-memory datastore with one station layout:

    - station 1 "Main Street": pump SN-100 with nozzle 1 (PETROL) and nozzle 2 (DIESEL)
    - station 2 "Harbour Road": pump SN-200 with nozzle 1 (PETROL)
    """
    store = InMemoryDatastore(clock=clock)
    main = store.add_station("Main Street")
    harbour = store.add_station("Harbour Road")
    pump_main = store.add_pump(main.id, "SN-100")
    pump_harbour = store.add_pump(harbour.id, "SN-200")
    store.add_nozzle(pump_main.id, 1, FuelType.PETROL)
    store.add_nozzle(pump_main.id, 2, FuelType.DIESEL)
    store.add_nozzle(pump_harbour.id, 1, FuelType.PETROL)
    return store


@pytest.fixture
def add_price(memory_store: InMemoryDatastore, clock: FixedClock) -> Callable[..., object]:
    """Record a price on the memory store, defaulting valid_from to one day before the clock."""
    resolver = PriceResolver(clock=clock)

    def _add(
        price: str,
        fuel_type: FuelType = FuelType.PETROL,
        station_id: int | None = 1,
        valid_from: datetime | None = None,
    ):
        with memory_store.transaction() as session:
            return resolver.record_price(
                session,
                station_id=station_id,
                fuel_type=fuel_type,
                price_per_litre=Decimal(price),
                valid_from=valid_from or clock() - timedelta(days=1),
            )

    return _add


@pytest.fixture
def ingestor(memory_store: InMemoryDatastore, clock: FixedClock) -> ReadingIngestor:
    return ReadingIngestor(
        memory_store,
        negative_delta_policy="flag",
        price_scope_policy="station_first",
        clock=clock,
    )


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """
    Settings fixture with test-specific overrides.

    Can be overridden via environment variables in CI or local testing.
    """
    return Settings(
        db_host=os.getenv("DB_HOST", "localhost"),
        db_port=int(os.getenv("DB_PORT", "5432")),
        db_user=os.getenv("DB_USER", "postgres"),
        db_password=os.getenv("DB_PASSWORD", "postgres"),
        db_name=os.getenv("DB_NAME", "fuelsync"),
        log_level="DEBUG",
    )


@pytest.fixture(scope="session")
def test_dsn(test_settings: Settings) -> str:
    """
    Database connection string for tests.
    """
    return (
        f"postgresql://{test_settings.db_user}:{test_settings.db_password}"
        f"@{test_settings.db_host}:{test_settings.db_port}/{test_settings.db_name}"
    )


@pytest.fixture(scope="session")
def db_connection_available(test_dsn: str) -> bool:
    """
    Check if database is reachable.

    Used to conditionally skip integration tests when DB is not available.
    """
    try:
        with psycopg.connect(test_dsn, connect_timeout=5) as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1;")
                cur.fetchone()
        return True
    except psycopg.Error:
        return False


@pytest.fixture(scope="session")
def db_connection(
    test_dsn: str, db_connection_available: bool
) -> Generator[psycopg.Connection, None, None]:
    """
    Provide a session-scoped database connection for integration tests.

    Skips tests if database is not available.
    """
    if not db_connection_available:
        pytest.skip("Database not available for integration tests")

    conn = psycopg.connect(test_dsn)
    try:
        yield conn
    finally:
        conn.close()


@pytest.fixture(scope="session")
def db_schema_initialized(db_connection: psycopg.Connection) -> bool:
    """
    Ensure the FuelSync schema exists. The packaged `fuelsync/db/init.sql` is idempotent.
    """
    with db_connection.cursor() as cur:
        cur.execute(load_schema())
    db_connection.commit()
    return True


def _truncate(conn: psycopg.Connection) -> None:
    with conn.cursor() as cur:
        cur.execute(
            f"TRUNCATE TABLE {', '.join('public.' + t for t in FUELSYNC_TABLES)} "
            "RESTART IDENTITY CASCADE;"
        )
    conn.commit()


@pytest.fixture(scope="function")
def clean_tables(db_connection: psycopg.Connection, db_schema_initialized: bool):
    """
    Truncate every FuelSync table before and after each test function.
    """
    _truncate(db_connection)
    yield
    _truncate(db_connection)


@pytest.fixture(scope="function")
def seeded_layout(db_connection: psycopg.Connection, clean_tables) -> dict:
    """
    Insert the same station layout as `memory_store` and return its ids.
    """
    with db_connection.cursor() as cur:
        cur.execute("INSERT INTO public.stations (name) VALUES ('Main Street') RETURNING id")
        main = cur.fetchone()[0]
        cur.execute("INSERT INTO public.stations (name) VALUES ('Harbour Road') RETURNING id")
        harbour = cur.fetchone()[0]
        cur.execute(
            "INSERT INTO public.pumps (station_id, pump_sno) VALUES (%s, 'SN-100') RETURNING id",
            (main,),
        )
        pump_main = cur.fetchone()[0]
        cur.execute(
            "INSERT INTO public.pumps (station_id, pump_sno) VALUES (%s, 'SN-200') RETURNING id",
            (harbour,),
        )
        pump_harbour = cur.fetchone()[0]
        ids = {"station_main": main, "station_harbour": harbour, "pump_main": pump_main}
        for key, pump_id, number, fuel in (
            ("nozzle_petrol", pump_main, 1, "PETROL"),
            ("nozzle_diesel", pump_main, 2, "DIESEL"),
            ("nozzle_harbour", pump_harbour, 1, "PETROL"),
        ):
            cur.execute(
                "INSERT INTO public.nozzles (pump_id, nozzle_number, fuel_type) "
                "VALUES (%s, %s, %s) RETURNING id",
                (pump_id, number, fuel),
            )
            ids[key] = cur.fetchone()[0]
    db_connection.commit()
    return ids
