"""
Delta & sale derivation: the one algorithm every entry adapter shares.

Given a persisted reading, compare it with the nozzle's previous reading,
price the dispensed delta and persist a sale linked to the reading. Every
non-sale result is an explicit `SaleOutcome` rather than an exception:

- ``baseline``        first reading of the nozzle
- ``zero_delta``      counter did not move
- ``negative_delta``  counter went backwards (reset, correction, bad OCR)
- ``price_not_found`` no effective price for the nozzle's fuel type
- ``existing``        the reading already has its sale
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional

from fuelsync.domain.errors import PriceNotFound, ValidationError
from fuelsync.domain.models import (
    AMOUNT_LIMIT,
    Derivation,
    NewSale,
    NozzleContext,
    Reading,
    Sale,
    SaleOutcome,
    quantize_amount,
    quantize_volume,
)
from fuelsync.pipeline.abstract import DatastoreSession
from fuelsync.pipeline.pricing import PriceResolver
from fuelsync.pipeline.readings import ReadingStore, resolve_nozzle_context
from fuelsync.utils.logging import get_logger

log = get_logger(__name__)


def compute_delta(cumulative_volume: Decimal, previous_volume: Decimal) -> Decimal:
    """Dispensed volume between two counter values, 3 dp half-up."""
    return quantize_volume(cumulative_volume - previous_volume)


def compute_total(delta_volume: Decimal, price_per_litre: Decimal) -> Decimal:
    """
    Sale amount, 2 dp half-up.

    Raises ValidationError when the amount does not fit the sales column, which
    rolls back the reading with it.
    """
    total = quantize_amount(delta_volume * price_per_litre)
    if total >= AMOUNT_LIMIT:
        raise ValidationError(
            f"Sale amount {total} for {delta_volume} L at {price_per_litre} is out of range"
        )
    return total


class SaleDeriver:
    """
    Derive at most one sale per reading.

    The deriver works inside the caller's session so that the reading insert,
    the prior-reading lookup and the sale insert share one transaction.
    """

    def __init__(
        self,
        reading_store: Optional[ReadingStore] = None,
        price_resolver: Optional[PriceResolver] = None,
    ) -> None:
        self.reading_store = reading_store or ReadingStore()
        self.price_resolver = price_resolver or PriceResolver()

    def derive_sale(self, session: DatastoreSession, reading: Reading) -> Optional[Sale]:
        """Derive the sale for `reading`, or None when no sale applies."""
        return self.derive(session, reading).sale

    def derive(
        self,
        session: DatastoreSession,
        reading: Reading,
        nozzle_context: Optional[NozzleContext] = None,
    ) -> Derivation:
        """
        Run the derivation for a persisted reading and report its outcome.

        Raises
        ------
        ValidationError
            If the reading's nozzle does not exist.
        """
        context = nozzle_context or resolve_nozzle_context(session, reading.nozzle_id)

        existing = session.get_sale_for_reading(reading.id)
        if existing is not None:
            log.info(
                "[SALE EXISTS]",
                extra={"reading_id": reading.id, "sale_id": existing.id},
            )
            return Derivation(
                reading=reading,
                outcome=SaleOutcome.EXISTING,
                sale=existing,
                delta_volume=existing.delta_volume_l,
                price_per_litre=existing.price_per_litre,
            )

        prior = self.reading_store.find_prior_reading(
            session, reading.station_id, reading.nozzle_id, excluding_reading_id=reading.id
        )
        if prior is None:
            return self._skip(reading, SaleOutcome.BASELINE)

        previous_volume = prior.cumulative_volume
        delta = compute_delta(reading.cumulative_volume, previous_volume)
        if delta == 0:
            return self._skip(reading, SaleOutcome.ZERO_DELTA, previous_volume, delta)
        if delta < 0:
            log.warning(
                "[NEGATIVE DELTA] Counter went backwards; no sale derived",
                extra={
                    "reading_id": reading.id,
                    "prior_reading_id": prior.id,
                    "nozzle_id": reading.nozzle_id,
                    "previous_volume": str(previous_volume),
                    "cumulative_volume": str(reading.cumulative_volume),
                    "delta_volume_l": str(delta),
                },
            )
            return self._skip(reading, SaleOutcome.NEGATIVE_DELTA, previous_volume, delta)

        try:
            price = self.price_resolver.resolve_price(
                session, reading.station_id, context.fuel_type
            )
        except PriceNotFound as exc:
            log.warning(
                f"[PRICE NOT FOUND] {exc}",
                extra={
                    "reading_id": reading.id,
                    "station_id": reading.station_id,
                    "fuel_type": context.fuel_type.value,
                },
            )
            return self._skip(reading, SaleOutcome.PRICE_NOT_FOUND, previous_volume, delta)

        sale = session.insert_sale(
            NewSale(
                station_id=reading.station_id,
                nozzle_id=reading.nozzle_id,
                reading_id=reading.id,
                delta_volume_l=delta,
                price_per_litre=price,
                total_amount=compute_total(delta, price),
            )
        )
        log.info(
            "[SALE CREATED]",
            extra={
                "reading_id": reading.id,
                "sale_id": sale.id,
                "nozzle_id": reading.nozzle_id,
                "delta_volume_l": str(sale.delta_volume_l),
                "price_per_litre": str(sale.price_per_litre),
                "total_amount": str(sale.total_amount),
            },
        )
        return Derivation(
            reading=reading,
            outcome=SaleOutcome.CREATED,
            sale=sale,
            previous_volume=previous_volume,
            delta_volume=delta,
            price_per_litre=price,
        )

    @staticmethod
    def _skip(
        reading: Reading,
        outcome: SaleOutcome,
        previous_volume: Optional[Decimal] = None,
        delta: Optional[Decimal] = None,
    ) -> Derivation:
        log.info(
            f"[SALE SKIPPED] {outcome.value}",
            extra={"reading_id": reading.id, "nozzle_id": reading.nozzle_id},
        )
        return Derivation(
            reading=reading,
            outcome=outcome,
            previous_volume=previous_volume,
            delta_volume=delta,
        )


__all__ = ["SaleDeriver", "compute_delta", "compute_total"]
