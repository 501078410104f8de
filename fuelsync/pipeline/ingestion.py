"""
Reading ingestion: the transactional entry point every adapter calls.

One `ingest()` call runs, inside a single datastore transaction:

1. lock the nozzle row (serialises concurrent readings for the nozzle),
2. validate and insert the reading,
3. derive the sale,
4. optionally append an activity-log entry.

If any step raises, nothing is committed.
"""

from __future__ import annotations

from datetime import date, time
from typing import Any, Callable, Dict, Optional, Union

from fuelsync.config import get_settings
from fuelsync.domain.errors import NegativeDeltaDetected
from fuelsync.domain.models import (
    Derivation,
    NewActivityLogEntry,
    ReadingSource,
    SaleOutcome,
)
from fuelsync.pipeline.abstract import Datastore, DatastoreSession
from fuelsync.pipeline.deriver import SaleDeriver
from fuelsync.pipeline.pricing import Clock, PriceResolver, utc_now
from fuelsync.pipeline.readings import Number, ReadingStore, resolve_nozzle_context
from fuelsync.utils.logging import get_logger

log = get_logger(__name__)

NEGATIVE_DELTA_POLICIES = ("flag", "reject")

ActivityBuilder = Callable[[Derivation], NewActivityLogEntry]


class ReadingIngestor:
    """
    Record a reading and derive its sale atomically.

    Parameters
    ----------
    datastore : Datastore
        Injected transaction factory.
    negative_delta_policy : str
        ``flag`` keeps the reading and reports ``negative_delta``; ``reject``
        raises `NegativeDeltaDetected` and rolls the reading back.
    price_scope_policy : str
        Passed to the default `PriceResolver`.
    """

    def __init__(
        self,
        datastore: Datastore,
        negative_delta_policy: Optional[str] = None,
        price_scope_policy: Optional[str] = None,
        clock: Clock = utc_now,
        reading_store: Optional[ReadingStore] = None,
        price_resolver: Optional[PriceResolver] = None,
        deriver: Optional[SaleDeriver] = None,
    ) -> None:
        settings = get_settings()
        self.datastore = datastore
        self.negative_delta_policy = negative_delta_policy or settings.negative_delta_policy
        if self.negative_delta_policy not in NEGATIVE_DELTA_POLICIES:
            raise ValueError(
                f"Unknown negative delta policy '{self.negative_delta_policy}'. "
                f"Available: {', '.join(NEGATIVE_DELTA_POLICIES)}"
            )
        self.clock = clock
        self.reading_store = reading_store or ReadingStore()
        self.price_resolver = price_resolver or PriceResolver(
            policy=price_scope_policy or settings.price_scope_policy, clock=clock
        )
        self.deriver = deriver or SaleDeriver(self.reading_store, self.price_resolver)

    def ingest(
        self,
        station_id: int,
        nozzle_id: int,
        cumulative_volume: Number,
        reading_date: Optional[date] = None,
        reading_time: Optional[time] = None,
        source: Union[ReadingSource, str] = ReadingSource.MANUAL,
        created_by: Optional[str] = None,
        activity: Optional[ActivityBuilder] = None,
    ) -> Derivation:
        """
        Persist one reading and its derived sale (if any) in one transaction.

        `reading_date` / `reading_time` default to the ingestor clock.

        Raises
        ------
        ValidationError
            Invalid input; nothing persisted.
        NegativeDeltaDetected
            Only under the ``reject`` policy; nothing persisted.
        """
        now = self.clock()
        reading_date = reading_date or now.date()
        reading_time = reading_time or now.time().replace(microsecond=0, tzinfo=None)

        with self.datastore.transaction() as session:
            derivation = self._ingest_in_session(
                session,
                station_id,
                nozzle_id,
                cumulative_volume,
                reading_date,
                reading_time,
                source,
                created_by,
            )
            if activity is not None:
                entry = session.insert_activity(activity(derivation))
                log.info(
                    "[ACTIVITY LOGGED]",
                    extra={"activity_id": entry.id, "activity_type": entry.activity_type},
                )
        return derivation

    def _ingest_in_session(
        self,
        session: DatastoreSession,
        station_id: int,
        nozzle_id: int,
        cumulative_volume: Number,
        reading_date: date,
        reading_time: time,
        source: Union[ReadingSource, str],
        created_by: Optional[str],
    ) -> Derivation:
        context = resolve_nozzle_context(session, nozzle_id, lock=True)
        reading = self.reading_store.record_reading(
            session,
            station_id=station_id,
            nozzle_id=nozzle_id,
            cumulative_volume=cumulative_volume,
            reading_date=reading_date,
            reading_time=reading_time,
            source=source,
            created_by=created_by,
            nozzle_context=context,
        )
        derivation = self.deriver.derive(session, reading, nozzle_context=context)

        if derivation.outcome is SaleOutcome.NEGATIVE_DELTA and self.negative_delta_policy == "reject":
            raise NegativeDeltaDetected(
                nozzle_id=nozzle_id,
                previous_volume=derivation.previous_volume,
                cumulative_volume=reading.cumulative_volume,
                delta=derivation.delta_volume,
            )
        return derivation


def activity_for(
    activity_type: str, user_id: Optional[str], extra: Optional[Dict[str, Any]] = None
) -> ActivityBuilder:
    """Build an activity-log callback recording a derivation's numbers."""

    def build(derivation: Derivation) -> NewActivityLogEntry:
        details = derivation.as_details()
        details["nozzle_id"] = derivation.reading.nozzle_id
        details["source"] = derivation.reading.source.value
        if extra:
            details.update(extra)
        return NewActivityLogEntry(
            user_id=user_id,
            station_id=derivation.reading.station_id,
            activity_type=activity_type,
            details=details,
        )

    return build


__all__ = ["NEGATIVE_DELTA_POLICIES", "ReadingIngestor", "activity_for"]
