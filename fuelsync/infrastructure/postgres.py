"""
PostgreSQL datastore for the FuelSync pipeline.

Each `transaction()` borrows one pooled connection, opens a transaction,
applies the statement timeout and yields a `PostgresSession` bound to a
`dict_row` cursor. The transaction commits when the block exits cleanly and
rolls back on any exception.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Generator, List, Optional

from psycopg import Cursor
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import ConnectionPool

from fuelsync.config import get_settings
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
from fuelsync.infrastructure.db_factory import apply_statement_timeout, get_sync_pool
from fuelsync.pipeline.abstract import PriceScope

_READING_COLUMNS = (
    "id, station_id, nozzle_id, cumulative_volume, reading_date, reading_time, "
    "source, created_by, created_at"
)
_PRICE_COLUMNS = "id, station_id, fuel_type, price_per_litre, valid_from, created_by, created_at"
_SALE_COLUMNS = (
    "s.id, s.station_id, s.nozzle_id, s.reading_id, s.delta_volume_l, "
    "s.price_per_litre, s.total_amount, s.created_at"
)
_NOZZLE_CONTEXT_SQL = """
    SELECT n.id AS nozzle_id, n.nozzle_number, n.pump_id, p.station_id, n.fuel_type
    FROM public.nozzles n
    JOIN public.pumps p ON p.id = n.pump_id
"""


class PostgresSession:
    """`DatastoreSession` over one psycopg cursor inside an open transaction."""

    def __init__(self, cursor: Cursor) -> None:
        self._cur = cursor

    def _one(self, sql: str, params: tuple | list = ()) -> Optional[dict]:
        self._cur.execute(sql, params)
        return self._cur.fetchone()

    def _all(self, sql: str, params: tuple | list = ()) -> List[dict]:
        self._cur.execute(sql, params)
        return self._cur.fetchall()

    # Reference data

    def get_nozzle_context(self, nozzle_id: int, lock: bool = False) -> Optional[NozzleContext]:
        sql = _NOZZLE_CONTEXT_SQL + " WHERE n.id = %s"
        if lock:
            sql += " FOR UPDATE OF n"
        row = self._one(sql, (nozzle_id,))
        return NozzleContext.model_validate(row) if row else None

    def find_pumps(self, pump_sno: str, station_id: Optional[int] = None) -> List[Pump]:
        sql = "SELECT id, station_id, pump_sno, name FROM public.pumps WHERE pump_sno = %s"
        params: List[Any] = [pump_sno]
        if station_id is not None:
            sql += " AND station_id = %s"
            params.append(station_id)
        sql += " ORDER BY id"
        return [Pump.model_validate(row) for row in self._all(sql, params)]

    def list_pump_nozzles(self, pump_id: int) -> List[NozzleContext]:
        sql = _NOZZLE_CONTEXT_SQL + " WHERE n.pump_id = %s ORDER BY n.nozzle_number"
        return [NozzleContext.model_validate(row) for row in self._all(sql, (pump_id,))]

    # Readings

    def insert_reading(self, reading: NewReading) -> Reading:
        row = self._one(
            f"""
            INSERT INTO public.nozzle_readings
                (station_id, nozzle_id, cumulative_volume, reading_date, reading_time,
                 source, created_by)
            VALUES (%s, %s, %s, %s, %s, %s, %s)
            RETURNING {_READING_COLUMNS}
            """,
            (
                reading.station_id,
                reading.nozzle_id,
                reading.cumulative_volume,
                reading.reading_date,
                reading.reading_time,
                reading.source.value,
                reading.created_by,
            ),
        )
        return Reading.model_validate(row)

    def get_reading(self, reading_id: int) -> Optional[Reading]:
        row = self._one(
            f"SELECT {_READING_COLUMNS} FROM public.nozzle_readings WHERE id = %s",
            (reading_id,),
        )
        return Reading.model_validate(row) if row else None

    def find_prior_reading(
        self, station_id: int, nozzle_id: int, excluding_reading_id: int
    ) -> Optional[Reading]:
        row = self._one(
            f"""
            SELECT {_READING_COLUMNS}
            FROM public.nozzle_readings
            WHERE station_id = %s AND nozzle_id = %s AND id <> %s
            ORDER BY reading_date DESC, reading_time DESC, id DESC
            LIMIT 1
            """,
            (station_id, nozzle_id, excluding_reading_id),
        )
        return Reading.model_validate(row) if row else None

    def list_readings(
        self, station_id: int, nozzle_id: Optional[int] = None, limit: int = 100
    ) -> List[Reading]:
        sql = f"SELECT {_READING_COLUMNS} FROM public.nozzle_readings WHERE station_id = %s"
        params: List[Any] = [station_id]
        if nozzle_id is not None:
            sql += " AND nozzle_id = %s"
            params.append(nozzle_id)
        sql += " ORDER BY reading_date DESC, reading_time DESC, id DESC LIMIT %s"
        params.append(limit)
        return [Reading.model_validate(row) for row in self._all(sql, params)]

    # Prices

    def latest_price(
        self,
        fuel_type: FuelType,
        as_of: datetime,
        station_id: Optional[int],
        scope: PriceScope,
    ) -> Optional[FuelPrice]:
        sql = f"SELECT {_PRICE_COLUMNS} FROM public.fuel_prices WHERE fuel_type = %s AND valid_from <= %s"
        params: List[Any] = [fuel_type.value, as_of]
        if scope is PriceScope.STATION:
            sql += " AND station_id = %s"
            params.append(station_id)
        elif scope is PriceScope.DEFAULT:
            sql += " AND station_id IS NULL"
        else:
            sql += " AND (station_id = %s OR station_id IS NULL)"
            params.append(station_id)
        sql += " ORDER BY valid_from DESC, id DESC LIMIT 1"
        row = self._one(sql, params)
        return FuelPrice.model_validate(row) if row else None

    def list_prices(
        self, station_id: Optional[int] = None, as_of: Optional[datetime] = None
    ) -> List[FuelPrice]:
        conditions: List[str] = []
        params: List[Any] = []
        if station_id is not None:
            conditions.append("(station_id = %s OR station_id IS NULL)")
            params.append(station_id)
        if as_of is not None:
            conditions.append("valid_from <= %s")
            params.append(as_of)
        where_clause = " AND ".join(conditions) if conditions else "TRUE"
        sql = (
            f"SELECT {_PRICE_COLUMNS} FROM public.fuel_prices WHERE {where_clause} "
            "ORDER BY valid_from DESC, id DESC"
        )
        return [FuelPrice.model_validate(row) for row in self._all(sql, params)]

    def insert_price(self, price: NewFuelPrice) -> FuelPrice:
        row = self._one(
            f"""
            INSERT INTO public.fuel_prices
                (station_id, fuel_type, price_per_litre, valid_from, created_by)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING {_PRICE_COLUMNS}
            """,
            (
                price.station_id,
                price.fuel_type.value,
                price.price_per_litre,
                price.valid_from,
                price.created_by,
            ),
        )
        return FuelPrice.model_validate(row)

    # Sales

    def get_sale_for_reading(self, reading_id: int) -> Optional[Sale]:
        row = self._one(
            f"SELECT {_SALE_COLUMNS} FROM public.sales s WHERE s.reading_id = %s",
            (reading_id,),
        )
        return Sale.model_validate(row) if row else None

    def insert_sale(self, sale: NewSale) -> Sale:
        row = self._one(
            f"""
            INSERT INTO public.sales AS s
                (station_id, nozzle_id, reading_id, delta_volume_l, price_per_litre, total_amount)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING {_SALE_COLUMNS}
            """,
            (
                sale.station_id,
                sale.nozzle_id,
                sale.reading_id,
                sale.delta_volume_l,
                sale.price_per_litre,
                sale.total_amount,
            ),
        )
        return Sale.model_validate(row)

    def list_sales(self, filters: SalesFilter) -> List[Sale]:
        conditions: List[str] = []
        params: List[Any] = []
        if filters.station_id is not None:
            conditions.append("s.station_id = %s")
            params.append(filters.station_id)
        if filters.nozzle_id is not None:
            conditions.append("s.nozzle_id = %s")
            params.append(filters.nozzle_id)
        if filters.pump_id is not None:
            conditions.append("n.pump_id = %s")
            params.append(filters.pump_id)
        if filters.start_date is not None:
            conditions.append("s.created_at >= %s::date")
            params.append(filters.start_date)
        if filters.end_date is not None:
            conditions.append("s.created_at < (%s::date + 1)")
            params.append(filters.end_date)

        where_clause = " AND ".join(conditions) if conditions else "TRUE"
        sql = f"""
            SELECT {_SALE_COLUMNS}
            FROM public.sales s
            JOIN public.nozzles n ON n.id = s.nozzle_id
            WHERE {where_clause}
            ORDER BY s.created_at DESC, s.id DESC
        """
        if filters.limit is not None:
            sql += " LIMIT %s"
            params.append(filters.limit)
        return [Sale.model_validate(row) for row in self._all(sql, params)]

    # Activity log

    def insert_activity(self, entry: NewActivityLogEntry) -> ActivityLogEntry:
        row = self._one(
            """
            INSERT INTO public.user_activity_log (user_id, station_id, activity_type, details)
            VALUES (%s, %s, %s, %s)
            RETURNING id, user_id, station_id, activity_type, details, created_at
            """,
            (
                entry.user_id,
                entry.station_id,
                entry.activity_type,
                Jsonb(entry.details) if entry.details is not None else None,
            ),
        )
        return ActivityLogEntry.model_validate(row)


class PostgresDatastore:
    """
    `Datastore` backed by a psycopg `ConnectionPool`.

    Parameters
    ----------
    pool : ConnectionPool | None
        Pool to borrow connections from. Defaults to the process-wide pool
        managed by `PoolManager`.
    statement_timeout_ms : int | None
        Per-statement timeout applied inside every transaction.
    """

    name: str = "postgres"

    def __init__(
        self,
        pool: Optional[ConnectionPool] = None,
        statement_timeout_ms: Optional[int] = None,
        dsn_override: Optional[str] = None,
    ) -> None:
        settings = get_settings()
        self._pool = pool
        self._dsn_override = dsn_override
        self._owns_pool = False
        self.statement_timeout_ms = (
            settings.db_statement_timeout_ms if statement_timeout_ms is None else statement_timeout_ms
        )

    def _get_pool(self) -> ConnectionPool:
        if self._pool is not None:
            return self._pool
        if self._dsn_override:
            self._pool = ConnectionPool(conninfo=self._dsn_override, min_size=1, max_size=4, open=True)
            self._owns_pool = True
        else:
            self._pool = get_sync_pool()
        return self._pool

    @contextmanager
    def transaction(self) -> Generator[PostgresSession, None, None]:
        with self._get_pool().connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=dict_row) as cur:
                    apply_statement_timeout(cur, self.statement_timeout_ms)
                    yield PostgresSession(cur)

    def close(self) -> None:
        # The shared pool belongs to PoolManager; only a pool built from dsn_override is closed here.
        if self._owns_pool and self._pool is not None:
            self._pool.close()
        self._pool = None
        self._owns_pool = False


__all__ = ["PostgresDatastore", "PostgresSession"]
