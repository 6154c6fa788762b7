"""
Display-name resolution for foreign-key ids in query results.

A NameResolver lives for exactly one tool call. It gathers every id of a
kind across the whole result set and asks the directory once per kind for
the ids it has not seen yet. Lookup failures are logged and the raw id is
used as the display name, so a flaky directory never fails the tool call.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

from mrp_assistant.core.logging import get_logger
from mrp_assistant.services.store.base import DocumentStore

logger = get_logger(__name__)


class NameDirectory(ABC):
    """Batched id -> display name lookup for one kind of entity."""

    @abstractmethod
    async def resolve_names(self, kind: str, ids: Sequence[str]) -> Dict[str, str]:
        """Return display names for the ids it knows; unknown ids may be omitted."""


class StoreNameDirectory(NameDirectory):
    """
    NameDirectory backed by the document store.

    kinds:
        users: users.displayName, falling back to email
        materials: inventory.name
    """

    KIND_SOURCES = {
        "users": ("users", ("displayName", "email")),
        "materials": ("inventory", ("name",)),
    }

    def __init__(self, store: DocumentStore):
        self.store = store

    async def resolve_names(self, kind: str, ids: Sequence[str]) -> Dict[str, str]:
        if kind not in self.KIND_SOURCES:
            raise ValueError(f"Unknown name kind '{kind}'")
        collection, name_fields = self.KIND_SOURCES[kind]
        documents = await self.store.get_many(collection, ids)
        names = {}
        for document in documents:
            label = next((document.get(f) for f in name_fields if document.get(f)), None)
            if label:
                names[str(document["id"])] = str(label)
        return names


class NameResolver:
    """Call-scoped resolver with a per-kind cache."""

    def __init__(self, directory: NameDirectory, log: Optional[Any] = None):
        self.directory = directory
        self.log = log or logger
        self._cache: Dict[str, Dict[str, str]] = {}
        self.lookups = 0

    async def resolve(self, kind: str, ids: Iterable[Any]) -> Dict[str, str]:
        """
        Resolve ids of one kind; every requested id is present in the result.

        Ids the directory does not know (or cannot be reached for) map to
        themselves.
        """
        wanted = list(dict.fromkeys(str(i) for i in ids if i not in (None, "")))
        cache = self._cache.setdefault(kind, {})
        missing = [i for i in wanted if i not in cache]
        if missing:
            self.lookups += 1
            try:
                found = await self.directory.resolve_names(kind, missing)
            except Exception as exc:
                self.log.warning(
                    "name_resolution_failed",
                    kind=kind,
                    ids=len(missing),
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                found = {}
            for i in missing:
                cache[i] = found.get(i) or i
        return {i: cache[i] for i in wanted}

    async def annotate(self, records: List[Dict[str, Any]], name_fields: Mapping[str, str]) -> List[Dict[str, Any]]:
        """
        Add ``<field>Name`` next to every foreign-key field listed in ``name_fields``.

        Args:
            records: result records (modified in place and returned)
            name_fields: foreign-key field -> directory kind
        """
        if not records or not name_fields:
            return records

        ids_by_kind: Dict[str, List[Any]] = {}
        for field, kind in name_fields.items():
            ids_by_kind.setdefault(kind, []).extend(r.get(field) for r in records)

        names_by_kind = {kind: await self.resolve(kind, ids) for kind, ids in ids_by_kind.items()}

        for record in records:
            for field, kind in name_fields.items():
                value = record.get(field)
                if value not in (None, ""):
                    record[f"{field}Name"] = names_by_kind[kind].get(str(value), str(value))
        return records
