"""Document store contract with optimistic, conditional writes.

Documents are plain dicts addressed by (collection, document ID). Callers
choose document IDs, so a deterministic ID turns a duplicate create into a
storage-level collision instead of a race past an existence check.
Updates and deletes take an ``expected`` mapping of field values that must
still hold at write time.
"""

import copy
import logging
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from datetime import date
from typing import Any, Optional

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Base class for storage failures."""


class DocumentExistsError(StoreError):
    """A create collided with an existing document ID."""

    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} already exists")
        self.collection = collection
        self.doc_id = doc_id


class DocumentNotFoundError(StoreError):
    def __init__(self, collection: str, doc_id: str) -> None:
        super().__init__(f"{collection}/{doc_id} does not exist")
        self.collection = collection
        self.doc_id = doc_id


class PreconditionFailedError(StoreError):
    """An expected field value no longer matched at write time."""

    def __init__(self, collection: str, doc_id: str, field_name: str, expected, actual) -> None:
        super().__init__(
            f"{collection}/{doc_id}: expected {field_name}={expected!r}, found {actual!r}"
        )
        self.collection = collection
        self.doc_id = doc_id
        self.field_name = field_name
        self.expected = expected
        self.actual = actual


class DocumentStore(ABC):
    """Storage contract used by the repositories."""

    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        """Fetch a document, or None if it does not exist."""
        pass

    @abstractmethod
    def create(self, collection: str, doc_id: str, data: dict) -> None:
        """Create a document.

        Raises:
            DocumentExistsError: If the ID is already taken.
        """
        pass

    @abstractmethod
    def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict,
        expected: Optional[dict] = None,
    ) -> dict:
        """Merge ``changes`` into a document if ``expected`` still holds.

        Returns:
            The updated document.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            PreconditionFailedError: If any expected field differs.
        """
        pass

    @abstractmethod
    def delete(self, collection: str, doc_id: str, expected: Optional[dict] = None) -> None:
        """Delete a document if ``expected`` still holds.

        Raises:
            DocumentNotFoundError: If the document does not exist.
            PreconditionFailedError: If any expected field differs.
        """
        pass

    @abstractmethod
    def query(
        self,
        collection: str,
        filters: Optional[dict] = None,
        date_field: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[dict]:
        """Documents matching equality filters and an inclusive date range.

        Date fields are stored as ISO strings, which sort chronologically.
        Results are ordered by ``date_field`` when given, else by ID.
        """
        pass


class InMemoryDocumentStore(DocumentStore):
    """Thread-safe in-memory store.

    Every operation runs under one lock, so each conditional write checks
    and applies atomically. Documents are deep-copied in and out.
    """

    def __init__(self):
        self._collections: dict[str, dict[str, dict]] = defaultdict(dict)
        self._lock = threading.RLock()

    def get(self, collection: str, doc_id: str) -> Optional[dict]:
        with self._lock:
            doc = self._collections[collection].get(doc_id)
            return copy.deepcopy(doc) if doc is not None else None

    def create(self, collection: str, doc_id: str, data: dict) -> None:
        with self._lock:
            docs = self._collections[collection]
            if doc_id in docs:
                raise DocumentExistsError(collection, doc_id)
            docs[doc_id] = copy.deepcopy(data)
        logger.debug("Created %s/%s", collection, doc_id)

    def update(
        self,
        collection: str,
        doc_id: str,
        changes: dict,
        expected: Optional[dict] = None,
    ) -> dict:
        with self._lock:
            doc = self._require(collection, doc_id)
            self._check_expected(collection, doc_id, doc, expected)
            doc.update(copy.deepcopy(changes))
            return copy.deepcopy(doc)

    def delete(self, collection: str, doc_id: str, expected: Optional[dict] = None) -> None:
        with self._lock:
            doc = self._require(collection, doc_id)
            self._check_expected(collection, doc_id, doc, expected)
            del self._collections[collection][doc_id]
        logger.debug("Deleted %s/%s", collection, doc_id)

    def query(
        self,
        collection: str,
        filters: Optional[dict] = None,
        date_field: Optional[str] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[dict]:
        filters = filters or {}
        start_key = start.isoformat() if start else None
        end_key = end.isoformat() if end else None

        with self._lock:
            matches = []
            for doc_id, doc in self._collections[collection].items():
                if any(doc.get(k) != v for k, v in filters.items()):
                    continue
                if date_field is not None:
                    value = doc.get(date_field)
                    if value is None:
                        continue
                    if start_key and value < start_key:
                        continue
                    if end_key and value > end_key:
                        continue
                matches.append((doc_id, copy.deepcopy(doc)))

        if date_field is not None:
            matches.sort(key=lambda item: (item[1][date_field], item[0]))
        else:
            matches.sort(key=lambda item: item[0])
        return [doc for _, doc in matches]

    def _require(self, collection: str, doc_id: str) -> dict:
        doc = self._collections[collection].get(doc_id)
        if doc is None:
            raise DocumentNotFoundError(collection, doc_id)
        return doc

    @staticmethod
    def _check_expected(
        collection: str, doc_id: str, doc: dict, expected: Optional[dict[str, Any]]
    ) -> None:
        for field_name, value in (expected or {}).items():
            actual = doc.get(field_name)
            if actual != value:
                raise PreconditionFailedError(collection, doc_id, field_name, value, actual)
