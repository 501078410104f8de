"""
Manual entry adapters: an operator types the meter totals in.
"""

from __future__ import annotations

from datetime import date, time
from typing import Optional

from fuelsync.domain.models import Derivation, ReadingSource
from fuelsync.pipeline.ingestion import ReadingIngestor, activity_for
from fuelsync.pipeline.readings import Number
from fuelsync.utils.logging import get_logger

log = get_logger(__name__)

MANUAL_VOLUME_ACTIVITY = "manual_volume_entry"


class ManualReadingAdapter:
    def __init__(self, ingestor: ReadingIngestor) -> None:
        self.ingestor = ingestor

    def submit_reading(
        self,
        station_id: int,
        nozzle_id: int,
        cumulative_volume: Number,
        reading_date: date,
        reading_time: time,
        actor_id: Optional[str] = None,
    ) -> Derivation:
        """Manual reading form: explicit date and time."""
        derivation = self.ingestor.ingest(
            station_id=station_id,
            nozzle_id=nozzle_id,
            cumulative_volume=cumulative_volume,
            reading_date=reading_date,
            reading_time=reading_time,
            source=ReadingSource.MANUAL,
            created_by=actor_id,
        )
        log.info(
            f"[MANUAL READING] {derivation.outcome.value}",
            extra={"reading_id": derivation.reading.id, "nozzle_id": nozzle_id},
        )
        return derivation

    def submit_volume_entry(
        self,
        station_id: int,
        nozzle_id: int,
        cumulative_volume: Number,
        actor_id: Optional[str] = None,
    ) -> Derivation:
        """
        Quick volume entry stamped with the current date and time.

        The reading, its sale and an activity-log entry are written together;
        if the activity log cannot be written, neither is the reading.
        """
        derivation = self.ingestor.ingest(
            station_id=station_id,
            nozzle_id=nozzle_id,
            cumulative_volume=cumulative_volume,
            source=ReadingSource.MANUAL,
            created_by=actor_id,
            activity=activity_for(MANUAL_VOLUME_ACTIVITY, actor_id),
        )
        log.info(
            f"[MANUAL VOLUME] {derivation.outcome.value}",
            extra={"reading_id": derivation.reading.id, "nozzle_id": nozzle_id},
        )
        return derivation


__all__ = ["MANUAL_VOLUME_ACTIVITY", "ManualReadingAdapter"]
