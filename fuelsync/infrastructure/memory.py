"""
In-memory datastore for local runs, demos and unit tests.

Implements the same `Datastore` contract as the PostgreSQL backend. Tables
are plain lists of frozen models. Transactions are serialised by one
re-entrant lock and rolled back by restoring a snapshot of the tables, which
gives the same all-or-nothing behaviour the pipeline relies on.
"""

from __future__ import annotations

import copy
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Generator, List, Optional

from fuelsync.domain.models import (
    ActivityLogEntry,
    FuelPrice,
    FuelType,
    NewActivityLogEntry,
    NewFuelPrice,
    NewReading,
    NewSale,
    Nozzle,
    NozzleContext,
    Pump,
    Reading,
    Sale,
    SalesFilter,
    Station,
)
from fuelsync.pipeline.abstract import PriceScope
from fuelsync.utils.logging import get_logger

log = get_logger(__name__)

_TABLES = ("stations", "pumps", "nozzles", "readings", "prices", "sales", "activity")


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class IntegrityError(Exception):
    """Constraint violation in the in-memory tables (mirrors a database unique/FK error)."""


class _Tables:
    def __init__(self) -> None:
        self.stations: List[Station] = []
        self.pumps: List[Pump] = []
        self.nozzles: List[Nozzle] = []
        self.readings: List[Reading] = []
        self.prices: List[FuelPrice] = []
        self.sales: List[Sale] = []
        self.activity: List[ActivityLogEntry] = []
        self.sequences: Dict[str, int] = {name: 0 for name in _TABLES}

    def next_id(self, table: str) -> int:
        self.sequences[table] += 1
        return self.sequences[table]


class InMemorySession:
    """`DatastoreSession` over the in-memory tables."""

    def __init__(self, tables: _Tables, clock: Callable[[], datetime]) -> None:
        self._t = tables
        self._clock = clock

    # Reference data

    def get_nozzle_context(self, nozzle_id: int, lock: bool = False) -> Optional[NozzleContext]:
        # The datastore lock already serialises whole transactions.
        nozzle = next((n for n in self._t.nozzles if n.id == nozzle_id), None)
        if nozzle is None:
            return None
        return self._context(nozzle)

    def _context(self, nozzle: Nozzle) -> NozzleContext:
        pump = next(p for p in self._t.pumps if p.id == nozzle.pump_id)
        return NozzleContext(
            nozzle_id=nozzle.id,
            nozzle_number=nozzle.nozzle_number,
            pump_id=pump.id,
            station_id=pump.station_id,
            fuel_type=nozzle.fuel_type,
        )

    def find_pumps(self, pump_sno: str, station_id: Optional[int] = None) -> List[Pump]:
        return [
            p
            for p in self._t.pumps
            if p.pump_sno == pump_sno and (station_id is None or p.station_id == station_id)
        ]

    def list_pump_nozzles(self, pump_id: int) -> List[NozzleContext]:
        nozzles = sorted(
            (n for n in self._t.nozzles if n.pump_id == pump_id), key=lambda n: n.nozzle_number
        )
        return [self._context(n) for n in nozzles]

    # Readings

    def insert_reading(self, reading: NewReading) -> Reading:
        if not any(n.id == reading.nozzle_id for n in self._t.nozzles):
            raise IntegrityError(f"nozzle {reading.nozzle_id} does not exist")
        row = Reading(
            id=self._t.next_id("readings"),
            created_at=self._clock(),
            **reading.model_dump(),
        )
        self._t.readings.append(row)
        return row

    def get_reading(self, reading_id: int) -> Optional[Reading]:
        return next((r for r in self._t.readings if r.id == reading_id), None)

    @staticmethod
    def _reading_order(reading: Reading) -> tuple:
        return (reading.reading_date, reading.reading_time, reading.id)

    def find_prior_reading(
        self, station_id: int, nozzle_id: int, excluding_reading_id: int
    ) -> Optional[Reading]:
        candidates = [
            r
            for r in self._t.readings
            if r.station_id == station_id
            and r.nozzle_id == nozzle_id
            and r.id != excluding_reading_id
        ]
        return max(candidates, key=self._reading_order, default=None)

    def list_readings(
        self, station_id: int, nozzle_id: Optional[int] = None, limit: int = 100
    ) -> List[Reading]:
        rows = [
            r
            for r in self._t.readings
            if r.station_id == station_id and (nozzle_id is None or r.nozzle_id == nozzle_id)
        ]
        rows.sort(key=self._reading_order, reverse=True)
        return rows[:limit]

    # Prices

    @staticmethod
    def _price_order(price: FuelPrice) -> tuple:
        return (price.valid_from, price.id)

    def latest_price(
        self,
        fuel_type: FuelType,
        as_of: datetime,
        station_id: Optional[int],
        scope: PriceScope,
    ) -> Optional[FuelPrice]:
        def in_scope(price: FuelPrice) -> bool:
            if scope is PriceScope.STATION:
                return price.station_id is not None and price.station_id == station_id
            if scope is PriceScope.DEFAULT:
                return price.station_id is None
            return price.station_id is None or price.station_id == station_id

        candidates = [
            p
            for p in self._t.prices
            if p.fuel_type is fuel_type and p.valid_from <= as_of and in_scope(p)
        ]
        return max(candidates, key=self._price_order, default=None)

    def list_prices(
        self, station_id: Optional[int] = None, as_of: Optional[datetime] = None
    ) -> List[FuelPrice]:
        rows = [
            p
            for p in self._t.prices
            if (station_id is None or p.station_id is None or p.station_id == station_id)
            and (as_of is None or p.valid_from <= as_of)
        ]
        rows.sort(key=self._price_order, reverse=True)
        return rows

    def insert_price(self, price: NewFuelPrice) -> FuelPrice:
        row = FuelPrice(
            id=self._t.next_id("prices"),
            created_at=self._clock(),
            **price.model_dump(),
        )
        self._t.prices.append(row)
        return row

    # Sales

    def get_sale_for_reading(self, reading_id: int) -> Optional[Sale]:
        return next((s for s in self._t.sales if s.reading_id == reading_id), None)

    def insert_sale(self, sale: NewSale) -> Sale:
        if self.get_sale_for_reading(sale.reading_id) is not None:
            raise IntegrityError(f"sale for reading {sale.reading_id} already exists")
        if sale.delta_volume_l <= 0:
            raise IntegrityError("delta_volume_l must be positive")
        row = Sale(
            id=self._t.next_id("sales"),
            created_at=self._clock(),
            **sale.model_dump(),
        )
        self._t.sales.append(row)
        return row

    def list_sales(self, filters: SalesFilter) -> List[Sale]:
        pump_of = {n.id: n.pump_id for n in self._t.nozzles}
        rows: List[Sale] = []
        for sale in self._t.sales:
            if filters.station_id is not None and sale.station_id != filters.station_id:
                continue
            if filters.nozzle_id is not None and sale.nozzle_id != filters.nozzle_id:
                continue
            if filters.pump_id is not None and pump_of.get(sale.nozzle_id) != filters.pump_id:
                continue
            sale_date = sale.created_at.date()
            if filters.start_date is not None and sale_date < filters.start_date:
                continue
            if filters.end_date is not None and sale_date > filters.end_date:
                continue
            rows.append(sale)
        rows.sort(key=lambda s: (s.created_at, s.id), reverse=True)
        return rows[: filters.limit] if filters.limit is not None else rows

    # Activity log

    def insert_activity(self, entry: NewActivityLogEntry) -> ActivityLogEntry:
        row = ActivityLogEntry(
            id=self._t.next_id("activity"),
            created_at=self._clock(),
            **entry.model_dump(),
        )
        self._t.activity.append(row)
        return row


class InMemoryDatastore:
    """
    `Datastore` holding every table in process memory.

    Besides the session contract it offers seeding helpers for the reference
    data the pipeline only reads (stations, pumps, nozzles).
    """

    name: str = "memory"

    def __init__(self, clock: Callable[[], datetime] = _utc_now) -> None:
        self._tables = _Tables()
        self._lock = threading.RLock()
        self._clock = clock

    @contextmanager
    def transaction(self) -> Generator[InMemorySession, None, None]:
        with self._lock:
            snapshot = copy.deepcopy(self._tables)
            try:
                yield InMemorySession(self._tables, self._clock)
            except BaseException:
                self._tables = snapshot
                log.debug("In-memory transaction rolled back")
                raise

    def close(self) -> None:
        pass

    # Seeding helpers

    def add_station(self, name: str, brand: Optional[str] = None) -> Station:
        with self._lock:
            row = Station(id=self._tables.next_id("stations"), name=name, brand=brand)
            self._tables.stations.append(row)
            return row

    def add_pump(self, station_id: int, pump_sno: str, name: Optional[str] = None) -> Pump:
        with self._lock:
            if not any(s.id == station_id for s in self._tables.stations):
                raise IntegrityError(f"station {station_id} does not exist")
            if any(p.station_id == station_id and p.pump_sno == pump_sno for p in self._tables.pumps):
                raise IntegrityError(f"pump {pump_sno} already exists at station {station_id}")
            row = Pump(
                id=self._tables.next_id("pumps"), station_id=station_id, pump_sno=pump_sno, name=name
            )
            self._tables.pumps.append(row)
            return row

    def add_nozzle(self, pump_id: int, nozzle_number: int, fuel_type: FuelType | str) -> Nozzle:
        with self._lock:
            if not any(p.id == pump_id for p in self._tables.pumps):
                raise IntegrityError(f"pump {pump_id} does not exist")
            row = Nozzle(
                id=self._tables.next_id("nozzles"),
                pump_id=pump_id,
                nozzle_number=nozzle_number,
                fuel_type=FuelType(fuel_type),
            )
            self._tables.nozzles.append(row)
            return row

    # Introspection for tests and the CLI

    def table(self, name: str) -> List[Any]:
        """Return a copy of one table's rows (``readings``, ``sales``, ...)."""
        if name not in _TABLES:
            raise KeyError(f"Unknown table '{name}'. Available: {', '.join(_TABLES)}")
        with self._lock:
            return list(getattr(self._tables, name))


__all__ = ["InMemoryDatastore", "InMemorySession", "IntegrityError"]
