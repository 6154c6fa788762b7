"""
Aggregations over fetched records.

Semantics:
- sum / average: non-numeric or missing values count as 0; average of zero
  records is 0
- min / max: non-numeric values are ignored; None when nothing numeric remains
- group_by: {key: {"count", "items"}}, missing keys grouped under "undefined"
- count: number of records
Numeric results are rounded to 2 decimal places.
"""
from typing import Any, Dict, Iterable, List, Optional

AGGREGATE_OPERATIONS = ("count", "sum", "average", "min", "max", "group_by")
MISSING_GROUP_KEY = "undefined"


def to_number(value: Any) -> Optional[float]:
    """Return a float for numbers and numeric strings, else None."""
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", ".").strip())
        except ValueError:
            return None
    return None


def _round(value: float) -> float:
    return round(value, 2)


def sum_values(records: Iterable[Dict[str, Any]], field: str) -> float:
    return _round(sum(to_number(r.get(field)) or 0.0 for r in records))


def average_values(records: Iterable[Dict[str, Any]], field: str) -> float:
    values = [to_number(r.get(field)) or 0.0 for r in records]
    if not values:
        return 0
    return _round(sum(values) / len(values))


def min_value(records: Iterable[Dict[str, Any]], field: str) -> Optional[float]:
    numbers = [n for n in (to_number(r.get(field)) for r in records) if n is not None]
    return _round(min(numbers)) if numbers else None


def max_value(records: Iterable[Dict[str, Any]], field: str) -> Optional[float]:
    numbers = [n for n in (to_number(r.get(field)) for r in records) if n is not None]
    return _round(max(numbers)) if numbers else None


def group_records(records: Iterable[Dict[str, Any]], field: str) -> Dict[str, Dict[str, Any]]:
    groups: Dict[str, Dict[str, Any]] = {}
    for record in records:
        raw = record.get(field)
        key = MISSING_GROUP_KEY if raw is None or raw == "" else str(raw)
        group = groups.setdefault(key, {"count": 0, "items": []})
        group["count"] += 1
        group["items"].append(record)
    return groups


def aggregate(
    records: List[Dict[str, Any]],
    operation: str,
    field: Optional[str] = None,
    group_by: Optional[str] = None,
) -> Any:
    """
    Apply one aggregate operation.

    Raises:
        ValueError: for unknown operations or a missing field where one is required
    """
    if operation == "count":
        return len(records)
    if operation == "group_by":
        key_field = group_by or field
        if not key_field:
            raise ValueError("group_by requires 'groupBy' or 'field'")
        return group_records(records, key_field)
    if operation not in AGGREGATE_OPERATIONS:
        raise ValueError(f"Unknown aggregate operation '{operation}'. Use one of: {', '.join(AGGREGATE_OPERATIONS)}")
    if not field:
        raise ValueError(f"Operation '{operation}' requires 'field'")
    if operation == "sum":
        return sum_values(records, field)
    if operation == "average":
        return average_values(records, field)
    if operation == "min":
        return min_value(records, field)
    return max_value(records, field)
