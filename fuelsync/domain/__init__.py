"""
Domain package for FuelSync.

Exports the core domain models and errors used across the pipeline, the
datastores and the entry adapters. Keep this package focused on data
definitions and validation concerns.
"""

from fuelsync.domain.errors import (
    FuelSyncError,
    NegativeDeltaDetected,
    OcrServiceError,
    PriceNotFound,
    ValidationError,
)
from fuelsync.domain.models import (
    ActivityLogEntry,
    Derivation,
    FuelPrice,
    FuelType,
    NozzleContext,
    Pump,
    Reading,
    ReadingSource,
    Sale,
    SaleOutcome,
    SalesFilter,
    SalesSummary,
)

__all__ = [
    "ActivityLogEntry",
    "Derivation",
    "FuelPrice",
    "FuelSyncError",
    "FuelType",
    "NegativeDeltaDetected",
    "NozzleContext",
    "OcrServiceError",
    "PriceNotFound",
    "Pump",
    "Reading",
    "ReadingSource",
    "Sale",
    "SaleOutcome",
    "SalesFilter",
    "SalesSummary",
    "ValidationError",
]
