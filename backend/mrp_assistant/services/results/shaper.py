"""
Result shaping for data handed back to the reasoning engine.

Two contracts live here:
- heavy nested arrays are replaced by ``<field>Count`` summaries unless the
  caller explicitly asked for details, which bounds the payload size
- every query-shaped result carries ``count`` and ``isEmpty``, plus a
  ``warning`` when nothing matched, so the engine cannot mistake an empty
  result for missing data it may fill in itself
"""
import json
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional

from pydantic import BaseModel, Field, model_validator

from mrp_assistant.services.store.timestamps import to_iso

EMPTY_RESULT_WARNING = (
    "No records matched this query in '{collection}'. "
    "Do not invent or estimate data; tell the user that nothing was found."
)


class QueryResult(BaseModel):
    """Uniform envelope for query-shaped tool results."""

    items: List[Dict[str, Any]] = Field(default_factory=list)
    count: int = 0
    isEmpty: bool = True
    warning: Optional[str] = None
    limitApplied: int = 0

    @model_validator(mode="after")
    def _check_empty_contract(self) -> "QueryResult":
        if self.isEmpty != (self.count == 0):
            raise ValueError("isEmpty must equal (count == 0)")
        if self.isEmpty and not self.warning:
            raise ValueError("empty results must carry a warning")
        return self


def strip_heavy_fields(
    record: Dict[str, Any],
    heavy_fields: Iterable[str],
    include_details: bool = False,
) -> Dict[str, Any]:
    """
    Replace heavy nested fields with ``<field>Count``.

    A field absent from the record still gets a zero count, so the engine can
    tell "no materials" from "materials not reported".
    """
    if include_details:
        return record
    shaped = dict(record)
    for name in heavy_fields:
        value = shaped.pop(name, None)
        shaped[f"{name}Count"] = len(value) if isinstance(value, (list, tuple, dict)) else 0
    return shaped


def build_query_result(
    items: List[Dict[str, Any]],
    collection: str,
    limit: int,
    heavy_fields: Iterable[str] = (),
    include_details: bool = False,
) -> QueryResult:
    shaped = [strip_heavy_fields(item, heavy_fields, include_details) for item in items]
    count = len(shaped)
    return QueryResult(
        items=shaped,
        count=count,
        isEmpty=count == 0,
        warning=EMPTY_RESULT_WARNING.format(collection=collection) if count == 0 else None,
        limitApplied=limit,
    )


def empty_warning(collection: str) -> str:
    return EMPTY_RESULT_WARNING.format(collection=collection)


def _json_default(value: Any) -> Any:
    if isinstance(value, (datetime, date)):
        return to_iso(value)
    if isinstance(value, (set, frozenset, tuple)):
        return list(value)
    if isinstance(value, BaseModel):
        return value.model_dump()
    decoded = to_iso(value)
    return decoded if decoded is not None else str(value)


def to_json(payload: Any) -> str:
    """Serialize a tool payload for the conversation history."""
    return json.dumps(payload, ensure_ascii=False, default=_json_default)
