"""
Domain models for FuelSync.

Defines the row schemas aligned with `fuelsync/db/init.sql` (readings, fuel prices,
sales, activity log and the station/pump/nozzle reference data) plus the
value objects the ingestion pipeline passes around. All models are frozen:
readings, prices and sales are append-only facts.
"""
from __future__ import annotations

from datetime import date, datetime, time
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

VOLUME_QUANTUM = Decimal("0.001")
AMOUNT_QUANTUM = Decimal("0.01")
PRICE_QUANTUM = Decimal("0.0001")

# Exclusive upper bounds of the NUMERIC(14, 3), NUMERIC(12, 4) and NUMERIC(14, 2) columns.
VOLUME_LIMIT = Decimal("1e11")
PRICE_LIMIT = Decimal("1e8")
AMOUNT_LIMIT = Decimal("1e12")

_FROZEN = {
    "frozen": True,
    "populate_by_name": True,
    "arbitrary_types_allowed": False,
}


def quantize_volume(value: Decimal) -> Decimal:
    """Round a volume to 3 decimal places, half-up."""
    return value.quantize(VOLUME_QUANTUM, rounding=ROUND_HALF_UP)


def quantize_amount(value: Decimal) -> Decimal:
    """Round a monetary amount to 2 decimal places, half-up."""
    return value.quantize(AMOUNT_QUANTUM, rounding=ROUND_HALF_UP)


class FuelType(str, Enum):
    PETROL = "PETROL"
    DIESEL = "DIESEL"
    CNG = "CNG"
    EV = "EV"


class ReadingSource(str, Enum):
    OCR = "ocr"
    MANUAL = "manual"


class SaleOutcome(str, Enum):
    """
    Result label of one derivation attempt.

    Only CREATED and EXISTING carry a sale.
    """

    CREATED = "created"
    EXISTING = "existing"
    BASELINE = "baseline"
    ZERO_DELTA = "zero_delta"
    NEGATIVE_DELTA = "negative_delta"
    PRICE_NOT_FOUND = "price_not_found"


class Station(BaseModel):
    id: int
    name: str
    brand: Optional[str] = None

    model_config = _FROZEN


class Pump(BaseModel):
    id: int
    station_id: int
    pump_sno: str = Field(..., description="Pump serial number printed on the meter.")
    name: Optional[str] = None

    model_config = _FROZEN


class Nozzle(BaseModel):
    id: int
    pump_id: int
    nozzle_number: int
    fuel_type: FuelType

    model_config = _FROZEN


class NozzleContext(BaseModel):
    """
    A nozzle joined to its pump and station.

    This is the only trusted source for which station a nozzle belongs to and
    which fuel it dispenses.
    """

    nozzle_id: int
    nozzle_number: int
    pump_id: int
    station_id: int
    fuel_type: FuelType

    model_config = _FROZEN


class Reading(BaseModel):
    """
    Representation of a single row in the `nozzle_readings` table.
    """

    id: int = Field(..., description="Primary key (BIGSERIAL).")
    station_id: int
    nozzle_id: int
    cumulative_volume: Decimal = Field(..., description="Running total on the nozzle meter.")
    reading_date: date
    reading_time: time
    source: ReadingSource
    created_by: Optional[str] = Field(None, description="Actor that submitted the reading.")
    created_at: datetime

    model_config = _FROZEN


class NewReading(BaseModel):
    """Validated reading payload, before the datastore assigns id/created_at."""

    station_id: int
    nozzle_id: int
    cumulative_volume: Decimal
    reading_date: date
    reading_time: time
    source: ReadingSource
    created_by: Optional[str] = None

    model_config = _FROZEN


class FuelPrice(BaseModel):
    """
    Representation of a single row in the `fuel_prices` table.

    `station_id=None` marks a default price that applies to every station.
    """

    id: int
    station_id: Optional[int] = None
    fuel_type: FuelType
    price_per_litre: Decimal
    valid_from: datetime
    created_by: Optional[str] = None
    created_at: datetime

    model_config = _FROZEN


class NewFuelPrice(BaseModel):
    station_id: Optional[int] = None
    fuel_type: FuelType
    price_per_litre: Decimal
    valid_from: datetime
    created_by: Optional[str] = None

    model_config = _FROZEN


class Sale(BaseModel):
    """
    Representation of a single row in the `sales` table.

    `price_per_litre` is a snapshot taken at derivation time; later price rows
    never touch an existing sale.
    """

    id: int
    station_id: int
    nozzle_id: int
    reading_id: int
    delta_volume_l: Decimal
    price_per_litre: Decimal
    total_amount: Decimal
    created_at: datetime

    model_config = _FROZEN


class NewSale(BaseModel):
    station_id: int
    nozzle_id: int
    reading_id: int
    delta_volume_l: Decimal
    price_per_litre: Decimal
    total_amount: Decimal

    model_config = _FROZEN


class ActivityLogEntry(BaseModel):
    """Row of the `user_activity_log` table."""

    id: int
    user_id: Optional[str] = None
    station_id: Optional[int] = None
    activity_type: str
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = _FROZEN


class NewActivityLogEntry(BaseModel):
    user_id: Optional[str] = None
    station_id: Optional[int] = None
    activity_type: str
    details: Optional[Dict[str, Any]] = None

    model_config = _FROZEN


class Derivation(BaseModel):
    """
    Outcome of deriving a sale from one reading.
    """

    reading: Reading
    outcome: SaleOutcome
    sale: Optional[Sale] = None
    previous_volume: Optional[Decimal] = None
    delta_volume: Optional[Decimal] = None
    price_per_litre: Optional[Decimal] = None

    model_config = _FROZEN

    @property
    def sale_created(self) -> bool:
        return self.outcome is SaleOutcome.CREATED

    def as_details(self) -> Dict[str, Any]:
        """Flatten to a JSON-friendly dict for activity logs and CLI output."""
        return {
            "reading_id": self.reading.id,
            "sale_id": self.sale.id if self.sale else None,
            "outcome": self.outcome.value,
            "previous_volume": _str_or_none(self.previous_volume),
            "cumulative_volume": str(self.reading.cumulative_volume),
            "delta_volume_l": _str_or_none(self.delta_volume),
            "price_per_litre": _str_or_none(self.price_per_litre),
            "total_amount": str(self.sale.total_amount) if self.sale else None,
        }


class SalesFilter(BaseModel):
    """Filters accepted by the sales listing, mirroring the sales page filter bar."""

    station_id: Optional[int] = None
    pump_id: Optional[int] = None
    nozzle_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    limit: Optional[int] = None

    model_config = _FROZEN


class SalesSummary(BaseModel):
    sale_count: int
    total_volume_l: Decimal
    total_amount: Decimal
    by_fuel_type: Dict[FuelType, Decimal] = Field(default_factory=dict)

    model_config = _FROZEN


def _str_or_none(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


__all__ = [
    "AMOUNT_LIMIT",
    "AMOUNT_QUANTUM",
    "PRICE_LIMIT",
    "PRICE_QUANTUM",
    "VOLUME_LIMIT",
    "VOLUME_QUANTUM",
    "ActivityLogEntry",
    "Derivation",
    "FuelPrice",
    "FuelType",
    "NewActivityLogEntry",
    "NewFuelPrice",
    "NewReading",
    "NewSale",
    "Nozzle",
    "NozzleContext",
    "Pump",
    "Reading",
    "ReadingSource",
    "Sale",
    "SaleOutcome",
    "SalesFilter",
    "SalesSummary",
    "Station",
    "quantize_amount",
    "quantize_volume",
]
