"""
Runs a QueryRequest against the document store and applies the in-memory
half of the plan (client filters, client ordering, truncation).
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from mrp_assistant.core.logging import get_logger
from mrp_assistant.services.query.translator import QueryRequest
from mrp_assistant.services.store.base import DocumentStore, OrderBy
from mrp_assistant.services.store.timestamps import to_datetime

logger = get_logger(__name__)


@dataclass
class ExecutedQuery:
    items: List[Dict[str, Any]]
    fetched: int
    matched: int
    limit: int

    @property
    def truncated(self) -> bool:
        return self.matched > len(self.items)


def _sort_key(order: OrderBy, timestamp_fields) -> Any:
    def key(record: Dict[str, Any]):
        value = record.get(order.field)
        if order.field in timestamp_fields:
            value = to_datetime(value)
        if value is None:
            # Missing values sort last in both directions.
            return (1, 0, "")
        if isinstance(value, bool):
            return (0, 1, int(value))
        if isinstance(value, (int, float)):
            return (0, 1, value)
        if isinstance(value, datetime):
            return (0, 1, value.timestamp())
        return (0, 2, str(value).casefold())
    return key


def apply_client_order(records: List[Dict[str, Any]], order: OrderBy, timestamp_fields) -> List[Dict[str, Any]]:
    key = _sort_key(order, timestamp_fields)
    present = [r for r in records if key(r)[0] == 0]
    missing = [r for r in records if key(r)[0] == 1]
    return sorted(present, key=key, reverse=order.descending) + missing


async def execute_query(store: DocumentStore, request: QueryRequest, log: Optional[Any] = None) -> ExecutedQuery:
    """
    Fetch, decode, filter, sort and truncate.

    Args:
        store: document store
        request: translated query plan
        log: bound logger to use (defaults to the module logger)

    Returns:
        ExecutedQuery with decoded records, at most ``request.limit`` of them
    """
    log = log or logger
    collection = request.collection
    documents = await store.fetch(request.to_store_query())
    records = [collection.record.from_document(doc) for doc in documents]

    if request.client_filters:
        records = [r for r in records if all(p.matches(r) for p in request.client_filters)]
    if request.client_order is not None:
        records = apply_client_order(records, request.client_order, collection.timestamp_fields)

    matched = len(records)
    log.debug(
        "query_executed",
        fetched=len(documents),
        matched=matched,
        **request.describe(),
    )
    if request.needs_client_pass and len(documents) >= request.fetch_limit:
        log.info(
            "query_overfetch_cap_reached",
            collection=collection.name,
            fetch_limit=request.fetch_limit,
        )
    return ExecutedQuery(
        items=records[:request.limit],
        fetched=len(documents),
        matched=matched,
        limit=request.limit,
    )
