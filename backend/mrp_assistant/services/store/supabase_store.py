"""
Supabase-backed document store.

Each logical collection maps to one table whose columns carry the document
fields (camelCase column names are used as-is). supabase-py is synchronous,
so every request runs in a worker thread to keep the event loop free while
several tool calls of the same round are in flight.
"""
import asyncio
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

from supabase import Client

from mrp_assistant.core.logging import get_logger
from mrp_assistant.core.tracing import get_tracer
from mrp_assistant.services.store.base import (
    ConflictError,
    DocumentStore,
    StoreError,
    StoreFilter,
    StoreQuery,
)

logger = get_logger(__name__)

_OPERATOR_METHODS = {
    "==": "eq",
    "!=": "neq",
    "<": "lt",
    "<=": "lte",
    ">": "gt",
    ">=": "gte",
    "in": "in_",
}


def apply_filter(request: Any, store_filter: StoreFilter) -> Any:
    """Chain one StoreFilter onto a postgrest request builder."""
    if store_filter.op == "array-contains":
        return request.contains(store_filter.field, [store_filter.value])
    method = getattr(request, _OPERATOR_METHODS[store_filter.op])
    value = list(store_filter.value) if store_filter.op == "in" else store_filter.value
    return method(store_filter.field, value)


class SupabaseDocumentStore(DocumentStore):
    """DocumentStore over a supabase-py client."""

    def __init__(self, client: Client, table_names: Optional[Mapping[str, str]] = None):
        self.client = client
        self.table_names = dict(table_names or {})

    def _table(self, collection: str):
        return self.client.table(self.table_names.get(collection, collection))

    async def _run(self, operation: str, collection: str, build) -> Any:
        tracer = get_tracer()
        start = time.time()
        with tracer.start_as_current_span("store.query") as span:
            span.set_attribute("store.operation", operation)
            span.set_attribute("store.collection", collection)
            try:
                return await asyncio.to_thread(lambda: build().execute())
            except Exception as exc:
                logger.warning(
                    "store_request_failed",
                    operation=operation,
                    collection=collection,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                raise StoreError(f"{operation} on {collection} failed: {exc}") from exc
            finally:
                logger.debug(
                    "store_request_completed",
                    operation=operation,
                    collection=collection,
                    latency_ms=int((time.time() - start) * 1000),
                )

    async def fetch(self, query: StoreQuery) -> List[Dict[str, Any]]:
        def build():
            request = self._table(query.collection).select("*")
            for store_filter in query.filters:
                request = apply_filter(request, store_filter)
            if query.order_by is not None:
                request = request.order(query.order_by.field, desc=query.order_by.descending)
            if query.limit is not None:
                request = request.limit(query.limit)
            return request

        response = await self._run("fetch", query.collection, build)
        return list(response.data or [])

    async def count(self, collection: str, filters: Sequence[StoreFilter] = ()) -> int:
        def build():
            request = self._table(collection).select("id", count="exact")
            for store_filter in filters:
                request = apply_filter(request, store_filter)
            return request

        response = await self._run("count", collection, build)
        return int(response.count or 0)

    async def get(self, collection: str, document_id: str) -> Optional[Dict[str, Any]]:
        response = await self._run(
            "get",
            collection,
            lambda: self._table(collection).select("*").eq("id", document_id).limit(1),
        )
        rows = response.data or []
        return rows[0] if rows else None

    async def update(
        self,
        collection: str,
        document_id: str,
        changes: Dict[str, Any],
        expected: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        def build():
            request = self._table(collection).update(changes).eq("id", document_id)
            for field_name, value in (expected or {}).items():
                request = request.is_(field_name, "null") if value is None else request.eq(field_name, value)
            return request

        response = await self._run("update", collection, build)
        rows = response.data or []
        if rows:
            return rows[0]

        # Nothing matched: distinguish a missing document from a lost race.
        if await self.get(collection, document_id) is None:
            raise StoreError(f"Document {collection}/{document_id} not found")
        raise ConflictError(collection, document_id)
