"""Document storage and repositories."""

from routineplanner.storage.document_store import (
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStore,
    InMemoryDocumentStore,
    PreconditionFailedError,
    StoreError,
)
from routineplanner.storage.repositories import InstanceRepository, ScheduleRepository

__all__ = [
    # Store contract
    "DocumentStore",
    "InMemoryDocumentStore",
    # Store errors
    "StoreError",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "PreconditionFailedError",
    # Repositories
    "InstanceRepository",
    "ScheduleRepository",
]
