"""
FuelSync - reading ingestion and sale derivation for fuel stations.

Nozzle meters report a cumulative volume. This package records those
readings from any entry point and turns each one into at most one sale:

- OCR photo uploads (pump serial plus one reading per nozzle)
- Manual reading forms
- Manual quick volume entries (with an activity-log entry)

Sales are the volume dispensed since the previous reading of the same
nozzle, priced at the fuel price effective when the sale is derived.
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from fuelsync.config import Settings, get_settings
from fuelsync.domain.errors import (
    FuelSyncError,
    NegativeDeltaDetected,
    OcrServiceError,
    PriceNotFound,
    ValidationError,
)
from fuelsync.domain.models import Derivation, SaleOutcome
from fuelsync.infrastructure import available_datastores, create_datastore
from fuelsync.pipeline import PriceResolver, ReadingIngestor, SaleDeriver
from fuelsync.utils.logging import configure_logging, get_logger

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Datastores
    "available_datastores",
    "create_datastore",
    # Pipeline
    "Derivation",
    "PriceResolver",
    "ReadingIngestor",
    "SaleDeriver",
    "SaleOutcome",
    # Errors
    "FuelSyncError",
    "NegativeDeltaDetected",
    "OcrServiceError",
    "PriceNotFound",
    "ValidationError",
    # Logging
    "configure_logging",
    "get_logger",
]
