"""Document persistence backends."""

from pipeline_guard.storage.persistence import (
    FilePersistence,
    InMemoryPersistence,
    Persistence,
)

__all__ = [
    "FilePersistence",
    "InMemoryPersistence",
    "Persistence",
]
