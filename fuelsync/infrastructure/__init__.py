"""
Infrastructure package for FuelSync.

Centralizes datastore concerns (PostgreSQL connection factory and pooling,
the PostgreSQL and in-memory `Datastore` implementations). Keep this layer
focused on I/O and resource management, decoupled from pipeline logic.
"""

from typing import Callable, Dict, List, Optional

from fuelsync.config import get_settings
from fuelsync.infrastructure.db_factory import (
    apply_schema,
    build_dsn,
    get_sync_connection,
    get_sync_pool,
    load_schema,
)
from fuelsync.infrastructure.memory import InMemoryDatastore
from fuelsync.infrastructure.postgres import PostgresDatastore
from fuelsync.pipeline.abstract import Datastore


def _datastore_factories() -> Dict[str, Callable[[], Datastore]]:
    """Registry of available datastore backends."""
    return {
        "memory": lambda: InMemoryDatastore(),
        "postgres": lambda: PostgresDatastore(),
    }


def available_datastores() -> List[str]:
    """List available datastore backend names."""
    return sorted(_datastore_factories().keys())


def create_datastore(backend: Optional[str] = None) -> Datastore:
    """Build the datastore named by `backend` (defaults to DATASTORE_BACKEND)."""
    name = backend or get_settings().datastore_backend
    factories = _datastore_factories()
    if name not in factories:
        raise ValueError(f"Unknown datastore '{name}'. Available: {', '.join(factories)}")
    return factories[name]()


__all__ = [
    "InMemoryDatastore",
    "PostgresDatastore",
    "apply_schema",
    "available_datastores",
    "build_dsn",
    "create_datastore",
    "get_sync_connection",
    "get_sync_pool",
    "load_schema",
]
