"""
Price resolution over the append-only fuel price history.

Two scope policies are supported:

- ``station_first``: the latest station-specific price wins; the latest
  default (station-agnostic) price applies only when the station has none.
- ``latest_any``: the single most recent row wins regardless of scope.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Callable, Dict, List, Optional, Tuple, Union

from fuelsync.domain.errors import PriceNotFound, ValidationError
from fuelsync.domain.models import PRICE_LIMIT, PRICE_QUANTUM, FuelPrice, FuelType, NewFuelPrice
from fuelsync.pipeline.abstract import DatastoreSession, PriceScope
from fuelsync.utils.logging import get_logger

log = get_logger(__name__)

PRICE_SCOPE_POLICIES = ("station_first", "latest_any")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_aware(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_fuel_type(fuel_type: Union[FuelType, str]) -> FuelType:
    try:
        return FuelType(fuel_type.upper() if isinstance(fuel_type, str) else fuel_type)
    except ValueError:
        raise ValidationError(f"Unknown fuel type {fuel_type!r}") from None


class PriceResolver:
    """
    Resolve the price per litre effective for a station and fuel type.
    """

    def __init__(self, policy: str = "station_first", clock: Clock = utc_now) -> None:
        if policy not in PRICE_SCOPE_POLICIES:
            raise ValueError(
                f"Unknown price scope policy '{policy}'. "
                f"Available: {', '.join(PRICE_SCOPE_POLICIES)}"
            )
        self.policy = policy
        self._clock = clock

    def find_price(
        self,
        session: DatastoreSession,
        station_id: Optional[int],
        fuel_type: FuelType,
        as_of: datetime,
    ) -> Optional[FuelPrice]:
        as_of = ensure_aware(as_of)
        if self.policy == "latest_any":
            return session.latest_price(fuel_type, as_of, station_id, PriceScope.ANY)

        if station_id is not None:
            price = session.latest_price(fuel_type, as_of, station_id, PriceScope.STATION)
            if price is not None:
                return price
        return session.latest_price(fuel_type, as_of, station_id, PriceScope.DEFAULT)

    def resolve_price(
        self,
        session: DatastoreSession,
        station_id: Optional[int],
        fuel_type: Union[FuelType, str],
        as_of: Optional[datetime] = None,
    ) -> Decimal:
        """
        Return the price per litre effective at `as_of` (defaults to now).

        Raises
        ------
        PriceNotFound
            If no price row for the fuel type is effective at `as_of`.
        """
        fuel = _parse_fuel_type(fuel_type)
        effective = ensure_aware(as_of) if as_of is not None else self._clock()
        price = self.find_price(session, station_id, fuel, effective)
        if price is None:
            raise PriceNotFound(station_id, fuel, effective)
        log.debug(
            "Resolved price",
            extra={
                "station_id": station_id,
                "fuel_type": fuel.value,
                "price_id": price.id,
                "price_per_litre": str(price.price_per_litre),
                "scope": "default" if price.station_id is None else "station",
            },
        )
        return price.price_per_litre

    def record_price(
        self,
        session: DatastoreSession,
        station_id: Optional[int],
        fuel_type: Union[FuelType, str],
        price_per_litre: Union[Decimal, int, float, str],
        valid_from: Optional[datetime] = None,
        created_by: Optional[str] = None,
    ) -> FuelPrice:
        """
        Append a price row. Existing rows are never modified; a new price is a
        new row with a later `valid_from`.
        """
        fuel = _parse_fuel_type(fuel_type)
        try:
            price = (
                Decimal(str(price_per_litre))
                if isinstance(price_per_litre, float)
                else Decimal(price_per_litre)
            )
        except (InvalidOperation, TypeError, ValueError):
            raise ValidationError(f"Price must be a number, got {price_per_litre!r}") from None
        if not price.is_finite() or price <= 0:
            raise ValidationError(f"Price per litre must be positive, got {price_per_litre!r}")
        if price >= PRICE_LIMIT:
            raise ValidationError(
                f"Price per litre must be below {PRICE_LIMIT:f}, got {price_per_litre!r}"
            )
        if price != price.quantize(PRICE_QUANTUM):
            raise ValidationError(
                f"Price per litre allows at most 4 decimal places, got {price_per_litre!r}"
            )

        row = session.insert_price(
            NewFuelPrice(
                station_id=station_id,
                fuel_type=fuel,
                price_per_litre=price,
                valid_from=ensure_aware(valid_from) if valid_from else self._clock(),
                created_by=created_by,
            )
        )
        log.info(
            "[PRICE RECORDED]",
            extra={
                "price_id": row.id,
                "station_id": station_id,
                "fuel_type": fuel.value,
                "price_per_litre": str(price),
                "valid_from": row.valid_from.isoformat(),
            },
        )
        return row

    def latest_prices(
        self, session: DatastoreSession, station_id: Optional[int] = None
    ) -> List[FuelPrice]:
        """
        Latest effective price per (station_id, fuel_type).

        With a station id, that station's rows and the default rows are listed.
        """
        rows = session.list_prices(station_id=station_id, as_of=self._clock())
        latest: Dict[Tuple[Optional[int], FuelType], FuelPrice] = {}
        for row in rows:
            latest.setdefault((row.station_id, row.fuel_type), row)
        return list(latest.values())


__all__ = ["PRICE_SCOPE_POLICIES", "PriceResolver", "ensure_aware", "utc_now"]
