"""
Query translator: turns a tool's loosely-typed filtering intent into a
concrete QueryRequest.

Partitioning policy (shared by every query tool):
1. Identifying filters are ranked PRIMARY_CODE > SECONDARY_CODE >
   FOREIGN_KEY > FREE_TEXT. The highest-ranked non-text filter becomes the
   only store equality filter; ties keep declaration order. All other
   identifying filters are re-applied in memory.
2. Status and type values always pass through the synonym table. Without
   an identifying store filter, the first enum "in" filter of at most
   MAX_IN_VALUES values is sent to the store; otherwise, and for every
   negated enum filter, it is evaluated in memory.
3. The first timestamp range with usable bounds goes to the store when it
   is the only store predicate, or when the collection declares a
   composite index for (equality field, range field). Otherwise it is
   demoted.
4. Ordering is server-side only when the chosen store filters and indexes
   allow it; otherwise records are sorted after fetching.
5. Any in-memory filter or sort raises the fetch limit to OVERFETCH_CAP;
   results are truncated to the requested limit afterwards.
"""
from dataclasses import dataclass, field
from datetime import datetime, time, timezone
from enum import IntEnum
from typing import Any, Iterable, List, Optional, Sequence, Tuple

from mrp_assistant.services.query.collections import CollectionConfig
from mrp_assistant.services.query.enums import EnumNormalizer, get_enum_normalizer
from mrp_assistant.services.query.text_match import record_matches
from mrp_assistant.services.store.base import (
    MAX_IN_VALUES,
    OrderBy,
    StoreFilter,
    StoreQuery,
)
from mrp_assistant.services.store.timestamps import to_datetime

DEFAULT_LIMIT = 100
MAX_LIMIT = 500
OVERFETCH_CAP = 500

_CLIENT_OPERATORS = ("==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains")


class FilterPriority(IntEnum):
    """Selectivity rank of an identifying filter; lower sorts first."""
    PRIMARY_CODE = 0
    SECONDARY_CODE = 1
    FOREIGN_KEY = 2
    FREE_TEXT = 3


@dataclass(frozen=True)
class Identifying:
    field: str
    value: Any
    priority: FilterPriority


@dataclass(frozen=True)
class TextSearch:
    query: str
    fields: Tuple[str, ...]


@dataclass(frozen=True)
class DateRange:
    """
    Bounds on one timestamp field; either side may be open.

    Bounds are inclusive unless marked strict. A date-only inclusive upper
    bound covers the whole day, and so does a date-only strict lower bound.
    """
    field: str
    start: Any = None
    end: Any = None
    strict_start: bool = False
    strict_end: bool = False


@dataclass(frozen=True)
class EnumFilter:
    """Membership test on an enumerated field; values are normalized at translation."""
    field: str
    values: Tuple[Any, ...]
    negated: bool = False


@dataclass
class QueryIntent:
    """What a tool handler wants, before any store constraints are applied."""
    collection: CollectionConfig
    identifying: List[Identifying] = field(default_factory=list)
    text: List[TextSearch] = field(default_factory=list)
    enums: List[EnumFilter] = field(default_factory=list)
    ranges: List[DateRange] = field(default_factory=list)
    extra: List["ClientPredicate"] = field(default_factory=list)
    order_by: Optional[OrderBy] = None
    limit: Optional[int] = None

    def identify(self, field_name: str, value: Any, priority: FilterPriority) -> "QueryIntent":
        if value not in (None, ""):
            self.identifying.append(Identifying(field_name, value, priority))
        return self

    def search(self, query: Optional[str], *fields: str) -> "QueryIntent":
        if query and query.strip():
            self.text.append(TextSearch(query, tuple(fields)))
        return self

    def within(
        self,
        field_name: str,
        start: Any = None,
        end: Any = None,
        strict_start: bool = False,
        strict_end: bool = False,
    ) -> "QueryIntent":
        if start not in (None, "") or end not in (None, ""):
            self.ranges.append(DateRange(field_name, start or None, end or None, strict_start, strict_end))
        return self

    def enum(self, field_name: str, values: Optional[Sequence[Any]]) -> "QueryIntent":
        values = [v for v in values or () if v not in (None, "")]
        if values:
            self.enums.append(EnumFilter(field_name, tuple(values)))
        return self

    def exclude(self, field_name: str, values: Optional[Sequence[Any]]) -> "QueryIntent":
        values = [v for v in values or () if v not in (None, "")]
        if values:
            self.enums.append(EnumFilter(field_name, tuple(values), negated=True))
        return self

    def add_filters(self, filters: Iterable[Any]) -> "QueryIntent":
        """
        Fold generic {field, operator, value} filters into the intent.

        Filters on enumerated fields become enum filters (normalized like
        any status argument). Other equality filters become FOREIGN_KEY
        identifying filters, range filters on timestamp fields become date
        ranges (grouped per field, strictness kept), and everything else is
        evaluated in memory.
        """
        bounds = {}
        for item in filters:
            op = item.operator
            values = item.value if isinstance(item.value, (list, tuple)) else [item.value]
            if item.field in self.collection.enum_fields and op in ("==", "in"):
                self.enum(item.field, values)
            elif item.field in self.collection.enum_fields and op in ("!=", "not-in"):
                self.exclude(item.field, values)
            elif op == "==":
                self.identify(item.field, item.value, FilterPriority.FOREIGN_KEY)
            elif op in (">=", ">") and item.field in self.collection.timestamp_fields:
                bounds.setdefault(item.field, {})["start"] = (item.value, op == ">")
            elif op in ("<=", "<") and item.field in self.collection.timestamp_fields:
                bounds.setdefault(item.field, {})["end"] = (item.value, op == "<")
            else:
                self.extra.append(FieldPredicate(item.field, op, item.value, self.collection.timestamp_fields))
        for field_name, sides in bounds.items():
            start, strict_start = sides.get("start", (None, False))
            end, strict_end = sides.get("end", (None, False))
            self.within(field_name, start, end, strict_start, strict_end)
        return self


class ClientPredicate:
    """A predicate evaluated over already-fetched records."""

    def matches(self, record: dict) -> bool:
        raise NotImplementedError

    def describe(self) -> str:
        raise NotImplementedError


def _comparable(field_name: str, value: Any, timestamp_fields: Sequence[str]) -> Any:
    if field_name in timestamp_fields:
        return to_datetime(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return value
    return value


@dataclass(frozen=True)
class FieldPredicate(ClientPredicate):
    """In-memory counterpart of a store filter, without the store's limits."""
    field: str
    op: str
    value: Any
    timestamp_fields: Tuple[str, ...] = ()

    def __post_init__(self):
        if self.op not in _CLIENT_OPERATORS:
            raise ValueError(f"Unsupported filter operator: {self.op}")

    def matches(self, record: dict) -> bool:
        actual = record.get(self.field)
        if self.op == "==":
            return actual == self.value or (actual is not None and str(actual) == str(self.value))
        if self.op == "!=":
            return actual != self.value
        if self.op == "in":
            return actual in list(self.value or [])
        if self.op == "not-in":
            return actual not in list(self.value or [])
        if self.op == "array-contains":
            return isinstance(actual, list) and self.value in actual
        if actual is None:
            return False
        left = _comparable(self.field, actual, self.timestamp_fields)
        right = _comparable(self.field, self.value, self.timestamp_fields)
        try:
            if self.op == "<":
                return left < right
            if self.op == "<=":
                return left <= right
            if self.op == ">":
                return left > right
            return left >= right
        except TypeError:
            return False

    def describe(self) -> str:
        return f"{self.field} {self.op} {self.value!r}"


@dataclass(frozen=True)
class TextPredicate(ClientPredicate):
    query: str
    fields: Tuple[str, ...]

    def matches(self, record: dict) -> bool:
        return record_matches(self.query, record, self.fields)

    def describe(self) -> str:
        return f"text({'|'.join(self.fields)}) ~ {self.query!r}"


@dataclass
class QueryRequest:
    collection: CollectionConfig
    server_filters: List[StoreFilter] = field(default_factory=list)
    client_filters: List[ClientPredicate] = field(default_factory=list)
    order_by: Optional[OrderBy] = None
    client_order: Optional[OrderBy] = None
    limit: int = DEFAULT_LIMIT
    fetch_limit: int = DEFAULT_LIMIT

    @property
    def needs_client_pass(self) -> bool:
        return bool(self.client_filters) or self.client_order is not None

    def to_store_query(self) -> StoreQuery:
        return StoreQuery(
            collection=self.collection.store_name,
            filters=list(self.server_filters),
            order_by=self.order_by,
            limit=self.fetch_limit,
        )

    def describe(self) -> dict:
        """Loggable summary of the plan (no record data)."""
        return {
            "collection": self.collection.name,
            "server_filters": [f"{f.field} {f.op} {f.value!r}" for f in self.server_filters],
            "client_filters": [p.describe() for p in self.client_filters],
            "order_by": self.order_by.field if self.order_by else None,
            "client_order": self.client_order.field if self.client_order else None,
            "limit": self.limit,
            "fetch_limit": self.fetch_limit,
        }


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None or limit <= 0:
        return DEFAULT_LIMIT
    return min(int(limit), MAX_LIMIT)


def _range_bound(value: Any, end_of_day: bool) -> Optional[datetime]:
    """Decode a range bound; a date-only value can stand for the end of that day."""
    decoded = to_datetime(value)
    if decoded is None:
        return None
    if end_of_day and isinstance(value, str) and len(value.strip()) == 10:
        decoded = datetime.combine(decoded.date(), time.max, tzinfo=timezone.utc)
    return decoded


def _range_filters(date_range: DateRange) -> List[Tuple[str, str, datetime]]:
    bounds = []
    # "<= day" and "> day" both sit at the end of the day; ">= day" and "< day" at its start.
    start = _range_bound(date_range.start, end_of_day=date_range.strict_start)
    end = _range_bound(date_range.end, end_of_day=not date_range.strict_end)
    if start is not None:
        bounds.append((date_range.field, ">" if date_range.strict_start else ">=", start))
    if end is not None:
        bounds.append((date_range.field, "<" if date_range.strict_end else "<=", end))
    return bounds


class QueryTranslator:
    """Builds QueryRequests from QueryIntents under the shared partitioning policy."""

    def __init__(self, normalizer: Optional[EnumNormalizer] = None):
        self.normalizer = normalizer or get_enum_normalizer()

    def normalize_enum(self, collection: CollectionConfig, field_name: str, values: Sequence[str]) -> List[str]:
        return self.normalizer.normalize_many(f"{collection.name}.{field_name}", values)

    def translate(self, intent: QueryIntent) -> QueryRequest:
        collection = intent.collection
        ts_fields = collection.timestamp_fields
        request = QueryRequest(collection=collection, limit=clamp_limit(intent.limit))
        server = request.server_filters
        client = request.client_filters

        # 1. identifying filters; sorted() is stable so ties keep declaration order
        ranked = sorted(intent.identifying, key=lambda f: f.priority)
        for candidate in ranked:
            if not server and candidate.priority != FilterPriority.FREE_TEXT:
                server.append(StoreFilter(candidate.field, "==", candidate.value))
            else:
                client.append(FieldPredicate(candidate.field, "==", candidate.value, ts_fields))

        # 2. enum membership; negated filters are always local
        for enum_filter in intent.enums:
            values = self.normalize_enum(collection, enum_filter.field, enum_filter.values)
            if enum_filter.negated:
                client.append(FieldPredicate(enum_filter.field, "not-in", values, ts_fields))
            elif not server and len(values) <= MAX_IN_VALUES:
                if len(values) == 1:
                    server.append(StoreFilter(enum_filter.field, "==", values[0]))
                else:
                    server.append(StoreFilter(enum_filter.field, "in", values))
            else:
                client.append(FieldPredicate(enum_filter.field, "in", values, ts_fields))

        # 3. ranges: only the first range with usable bounds is a store candidate
        server_range_field = None
        candidate_seen = False
        for date_range in intent.ranges:
            bounds = _range_filters(date_range)
            if not bounds:
                continue
            eligible = not candidate_seen and self._range_allowed(collection, server, date_range.field)
            candidate_seen = True
            for field_name, op, value in bounds:
                if eligible:
                    server.append(StoreFilter(field_name, op, value.isoformat()))
                else:
                    client.append(FieldPredicate(field_name, op, value, ts_fields))
            if eligible:
                server_range_field = date_range.field

        # 4. free text and generic leftovers are always local
        for search in intent.text:
            client.append(TextPredicate(search.query, search.fields))
        client.extend(intent.extra)

        # 5. ordering
        order = intent.order_by or collection.default_order
        if order is not None:
            if self._order_allowed(collection, server, server_range_field, order):
                request.order_by = order
            else:
                request.client_order = order

        request.fetch_limit = OVERFETCH_CAP if request.needs_client_pass else request.limit
        return request

    @staticmethod
    def _range_allowed(collection: CollectionConfig, server: List[StoreFilter], range_field: str) -> bool:
        if not server:
            return True
        equality = [f for f in server if not f.is_range]
        if len(equality) != 1 or len(equality) != len(server):
            return False
        return collection.has_index(equality[0].field, range_field)

    @staticmethod
    def _order_allowed(
        collection: CollectionConfig,
        server: List[StoreFilter],
        range_field: Optional[str],
        order: OrderBy,
    ) -> bool:
        if not server:
            return True
        # A store range must be ordered on its own field first.
        if range_field is not None and range_field != order.field:
            return False
        equality = [f for f in server if not f.is_range]
        if not equality:
            return True
        return len(equality) == 1 and collection.has_index(equality[0].field, order.field)

