"""
Reading store: validation and persistence of cumulative nozzle readings.

Readings are immutable. Corrections are modelled as new readings, so the store
exposes inserts and queries only.
"""

from __future__ import annotations

from datetime import date, datetime, time
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Union

from fuelsync.domain.errors import ValidationError
from fuelsync.domain.models import (
    VOLUME_LIMIT,
    NewReading,
    NozzleContext,
    Reading,
    ReadingSource,
    quantize_volume,
)
from fuelsync.pipeline.abstract import DatastoreSession
from fuelsync.utils.logging import get_logger

log = get_logger(__name__)

Number = Union[Decimal, int, float, str]


def parse_volume(value: Number) -> Decimal:
    """
    Coerce a caller-supplied cumulative volume into a non-negative Decimal
    quantized to 3 decimal places and below the column limit.

    Floats go through `str()` so 1050.5 becomes Decimal("1050.5") rather than
    its binary expansion.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError(f"Cumulative volume must be a number, got {value!r}")
    try:
        volume = Decimal(str(value)) if isinstance(value, float) else Decimal(value)
    except (InvalidOperation, TypeError, ValueError):
        raise ValidationError(f"Cumulative volume must be a number, got {value!r}") from None
    if not volume.is_finite():
        raise ValidationError(f"Cumulative volume must be finite, got {value!r}")
    if volume < 0:
        raise ValidationError(f"Cumulative volume must be non-negative, got {volume}")
    if volume >= VOLUME_LIMIT or quantize_volume(volume) >= VOLUME_LIMIT:
        raise ValidationError(f"Cumulative volume must be below {VOLUME_LIMIT:f}, got {value!r}")
    return quantize_volume(volume)


def resolve_nozzle_context(
    session: DatastoreSession, nozzle_id: int, lock: bool = False
) -> NozzleContext:
    """
    Look up the station, pump and fuel type of a nozzle.

    Raises
    ------
    ValidationError
        If the nozzle does not exist.
    """
    context = session.get_nozzle_context(nozzle_id, lock=lock)
    if context is None:
        raise ValidationError(f"Nozzle {nozzle_id} not found")
    return context


class ReadingStore:
    """Validates and records readings within a caller-owned session."""

    def record_reading(
        self,
        session: DatastoreSession,
        station_id: int,
        nozzle_id: int,
        cumulative_volume: Number,
        reading_date: date,
        reading_time: time,
        source: Union[ReadingSource, str],
        created_by: Optional[str] = None,
        nozzle_context: Optional[NozzleContext] = None,
    ) -> Reading:
        """
        Validate and insert one reading.

        Parameters
        ----------
        nozzle_context : NozzleContext | None
            Context already resolved (and possibly locked) by the caller. When
            omitted the nozzle is looked up here.

        Raises
        ------
        ValidationError
            Bad volume, unknown source, unknown nozzle, or a nozzle that does
            not belong to `station_id`.
        """
        volume = parse_volume(cumulative_volume)
        try:
            reading_source = ReadingSource(source)
        except ValueError:
            raise ValidationError(f"Unknown reading source {source!r}") from None
        if isinstance(reading_date, datetime):
            reading_date = reading_date.date()
        if not isinstance(reading_date, date) or not isinstance(reading_time, time):
            raise ValidationError("Reading date and time are required")

        context = nozzle_context or resolve_nozzle_context(session, nozzle_id)
        if context.nozzle_id != nozzle_id:
            raise ValidationError(
                f"Nozzle context {context.nozzle_id} does not match nozzle {nozzle_id}"
            )
        if context.station_id != station_id:
            raise ValidationError(
                f"Nozzle {nozzle_id} belongs to station {context.station_id}, not {station_id}"
            )

        reading = session.insert_reading(
            NewReading(
                station_id=station_id,
                nozzle_id=nozzle_id,
                cumulative_volume=volume,
                reading_date=reading_date,
                reading_time=reading_time,
                source=reading_source,
                created_by=created_by,
            )
        )
        log.info(
            "[READING RECORDED]",
            extra={
                "reading_id": reading.id,
                "station_id": station_id,
                "nozzle_id": nozzle_id,
                "cumulative_volume": str(volume),
                "source": reading_source.value,
            },
        )
        return reading

    def find_prior_reading(
        self,
        session: DatastoreSession,
        station_id: int,
        nozzle_id: int,
        excluding_reading_id: int,
    ) -> Optional[Reading]:
        """Latest earlier reading for the nozzle, or None when this is its baseline."""
        return session.find_prior_reading(station_id, nozzle_id, excluding_reading_id)

    def list_readings(
        self,
        session: DatastoreSession,
        station_id: int,
        nozzle_id: Optional[int] = None,
        limit: int = 100,
    ) -> List[Reading]:
        if limit <= 0:
            raise ValidationError("Limit must be positive")
        return session.list_readings(station_id, nozzle_id=nozzle_id, limit=limit)


__all__ = ["ReadingStore", "parse_volume", "resolve_nozzle_context"]
