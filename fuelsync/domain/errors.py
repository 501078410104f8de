"""Exception hierarchy for the reading ingestion pipeline."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from fuelsync.domain.models import FuelType


class FuelSyncError(Exception):
    """Base class for all pipeline errors."""


class ValidationError(FuelSyncError):
    """Malformed input or a nozzle/station mismatch. Nothing is persisted."""


class PriceNotFound(FuelSyncError):
    """No fuel price row is effective for the requested station and fuel type."""

    def __init__(self, station_id: Optional[int], fuel_type: FuelType, as_of: datetime) -> None:
        self.station_id = station_id
        self.fuel_type = fuel_type
        self.as_of = as_of
        super().__init__(
            f"No {fuel_type.value} price effective at {as_of.isoformat()} "
            f"for station {station_id}"
        )


class NegativeDeltaDetected(FuelSyncError):
    """A reading went below the previous cumulative volume of its nozzle."""

    def __init__(
        self,
        nozzle_id: int,
        previous_volume: Decimal,
        cumulative_volume: Decimal,
        delta: Decimal,
    ) -> None:
        self.nozzle_id = nozzle_id
        self.previous_volume = previous_volume
        self.cumulative_volume = cumulative_volume
        self.delta = delta
        super().__init__(
            f"Nozzle {nozzle_id} reading {cumulative_volume} is below the previous "
            f"reading {previous_volume} (delta {delta})"
        )


class OcrServiceError(FuelSyncError):
    """The vision service failed or did not finish within the polling budget."""


__all__ = [
    "FuelSyncError",
    "NegativeDeltaDetected",
    "OcrServiceError",
    "PriceNotFound",
    "ValidationError",
]
