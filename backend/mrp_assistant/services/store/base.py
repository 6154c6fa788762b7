"""
Document store abstraction consumed by the query layer.

The store primitive is deliberately narrow: equality, range and "in"-list
filters, one ordering field, a numeric limit, exact counts, lookups by id
and a conditional update. Anything richer is evaluated in memory by the
query executor.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

# Hard cap imposed by the store on "in" filters.
MAX_IN_VALUES = 10

SUPPORTED_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "array-contains")
RANGE_OPERATORS = ("<", "<=", ">", ">=")


class StoreError(Exception):
    """Raised when the underlying store rejects or fails a request."""


class ConflictError(StoreError):
    """Raised when a conditional update's precondition no longer holds."""

    def __init__(self, collection: str, document_id: str, message: Optional[str] = None):
        super().__init__(message or f"Document {collection}/{document_id} was modified concurrently")
        self.collection = collection
        self.document_id = document_id


@dataclass(frozen=True)
class StoreFilter:
    """One predicate evaluable by the store (or, after demotion, in memory)."""
    field: str
    op: str
    value: Any

    def __post_init__(self):
        if self.op not in SUPPORTED_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")
        if self.op == "in":
            if not isinstance(self.value, (list, tuple)):
                raise ValueError("'in' filter requires a list of values")
            if len(self.value) > MAX_IN_VALUES:
                raise ValueError(f"'in' filter accepts at most {MAX_IN_VALUES} values")

    @property
    def is_range(self) -> bool:
        return self.op in RANGE_OPERATORS


@dataclass(frozen=True)
class OrderBy:
    field: str
    descending: bool = False


@dataclass
class StoreQuery:
    """A concrete store request: filters AND-ed, optional ordering, limit."""
    collection: str
    filters: List[StoreFilter] = field(default_factory=list)
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None


class DocumentStore(ABC):
    """
    Async document store interface.

    Documents are plain dicts carrying their id under ``"id"``.
    """

    @abstractmethod
    async def fetch(self, query: StoreQuery) -> List[Dict[str, Any]]:
        """Return documents matching all filters, ordered and limited as requested."""

    @abstractmethod
    async def count(self, collection: str, filters: Sequence[StoreFilter] = ()) -> int:
        """Return the exact number of documents matching all filters."""

    @abstractmethod
    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        """Return one document by id, or None if it does not exist."""

    async def get_many(self, collection: str, document_ids: Sequence[str]) -> List[Dict[str, Any]]:
        """
        Return documents for the given ids in chunks of MAX_IN_VALUES.

        Missing ids are silently absent from the result.
        """
        unique_ids = list(dict.fromkeys(i for i in document_ids if i))
        documents: List[Dict[str, Any]] = []
        for start in range(0, len(unique_ids), MAX_IN_VALUES):
            chunk = unique_ids[start:start + MAX_IN_VALUES]
            documents.extend(
                await self.fetch(StoreQuery(collection=collection, filters=[StoreFilter("id", "in", chunk)]))
            )
        return documents

    @abstractmethod
    async def update(
        self,
        collection: str,
        document_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Apply ``changes`` to one document.

        Args:
            expected: field values that must still hold for the update to apply

        Raises:
            ConflictError: if any ``expected`` value no longer matches
            StoreError: if the document does not exist or the write fails
        """
