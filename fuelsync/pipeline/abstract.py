"""
Datastore interfaces for the FuelSync ingestion pipeline.

The pipeline never opens connections itself: a `Datastore` is injected into
each service and hands out one `DatastoreSession` per transaction. Concrete
implementations live in `fuelsync.infrastructure` (PostgreSQL and in-memory).
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import ContextManager, List, Optional, Protocol, runtime_checkable

from fuelsync.domain.models import (
    ActivityLogEntry,
    FuelPrice,
    FuelType,
    NewActivityLogEntry,
    NewFuelPrice,
    NewReading,
    NewSale,
    NozzleContext,
    Pump,
    Reading,
    Sale,
    SalesFilter,
)


class PriceScope(str, Enum):
    """Which fuel price rows a price query may consider."""

    STATION = "station"  # rows for the requested station only
    DEFAULT = "default"  # rows with station_id IS NULL only
    ANY = "any"  # both, most recent wins


@runtime_checkable
class DatastoreSession(Protocol):
    """
    Operations available inside one datastore transaction.

    Everything done through a session commits together when the enclosing
    `Datastore.transaction()` block exits cleanly and rolls back otherwise.
    """

    def get_nozzle_context(self, nozzle_id: int, lock: bool = False) -> Optional[NozzleContext]:
        """
        Join a nozzle to its pump and station.

        Parameters
        ----------
        nozzle_id : int
            Nozzle primary key.
        lock : bool
            Hold a row lock on the nozzle until the transaction ends, which
            serialises concurrent readings for the same nozzle.
        """
        ...

    def find_pumps(self, pump_sno: str, station_id: Optional[int] = None) -> List[Pump]:
        ...

    def list_pump_nozzles(self, pump_id: int) -> List[NozzleContext]:
        ...

    def insert_reading(self, reading: NewReading) -> Reading:
        ...

    def get_reading(self, reading_id: int) -> Optional[Reading]:
        ...

    def find_prior_reading(
        self, station_id: int, nozzle_id: int, excluding_reading_id: int
    ) -> Optional[Reading]:
        """
        Most recent reading for the pair by (reading_date, reading_time, id) DESC,
        ignoring `excluding_reading_id`.
        """
        ...

    def list_readings(
        self, station_id: int, nozzle_id: Optional[int] = None, limit: int = 100
    ) -> List[Reading]:
        ...

    def latest_price(
        self,
        fuel_type: FuelType,
        as_of: datetime,
        station_id: Optional[int],
        scope: PriceScope,
    ) -> Optional[FuelPrice]:
        """
        Most recent price row with valid_from <= as_of within `scope`,
        ties broken by id DESC.
        """
        ...

    def list_prices(
        self, station_id: Optional[int] = None, as_of: Optional[datetime] = None
    ) -> List[FuelPrice]:
        """Price rows ordered by valid_from DESC, id DESC."""
        ...

    def insert_price(self, price: NewFuelPrice) -> FuelPrice:
        ...

    def get_sale_for_reading(self, reading_id: int) -> Optional[Sale]:
        ...

    def insert_sale(self, sale: NewSale) -> Sale:
        ...

    def list_sales(self, filters: SalesFilter) -> List[Sale]:
        """Sales ordered by created_at DESC, id DESC."""
        ...

    def insert_activity(self, entry: NewActivityLogEntry) -> ActivityLogEntry:
        ...


@runtime_checkable
class Datastore(Protocol):
    """
    Transaction factory injected into the pipeline services.
    """

    name: str

    def transaction(self) -> ContextManager[DatastoreSession]:
        """Open a transaction and yield a session bound to it."""
        ...

    def close(self) -> None:
        ...


__all__ = ["Datastore", "DatastoreSession", "PriceScope"]
