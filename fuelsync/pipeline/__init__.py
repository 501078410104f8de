"""
Pipeline package for FuelSync.

Re-exports the datastore interfaces and the services of the reading
ingestion pipeline so downstream code can import from `fuelsync.pipeline`.
"""

from fuelsync.pipeline.abstract import Datastore, DatastoreSession, PriceScope
from fuelsync.pipeline.deriver import SaleDeriver, compute_delta, compute_total
from fuelsync.pipeline.ingestion import ReadingIngestor, activity_for
from fuelsync.pipeline.pricing import PriceResolver
from fuelsync.pipeline.readings import ReadingStore, parse_volume, resolve_nozzle_context

__all__ = [
    # Interfaces
    "Datastore",
    "DatastoreSession",
    "PriceScope",
    # Services
    "PriceResolver",
    "ReadingIngestor",
    "ReadingStore",
    "SaleDeriver",
    # Helpers
    "activity_for",
    "compute_delta",
    "compute_total",
    "parse_volume",
    "resolve_nozzle_context",
]
