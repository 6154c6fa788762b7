"""
Free-text matching used for client-side name/description filters.

Both the query and the candidate text go through the same normalization:
- case and diacritics folded
- decimal commas between digits become dots ("0,5 kg" == "0.5kg")
- a number followed by a unit token is glued together and the unit alias
  unified ("300 gr", "300 g", "300gram" all become "300g")
- other punctuation becomes whitespace
A multi-word query matches only if every word is a substring of the
candidate.
"""
import re
from typing import Any, Iterable, List

from mrp_assistant.services.query.enums import fold

UNIT_ALIASES = {
    "g": ("g", "gr", "gram", "grams", "gramy", "gramow"),
    "kg": ("kg", "kilo", "kilogram", "kilograms", "kilogramy", "kilogramow"),
    "mg": ("mg", "miligram", "milligram", "milligrams"),
    "ml": ("ml", "mililitr", "milliliter", "millilitre", "milliliters"),
    "l": ("l", "litr", "litra", "litry", "litrow", "liter", "liters", "litre", "litres"),
    "szt": ("szt", "sztuk", "sztuki", "sztuka", "pcs", "pc", "piece", "pieces"),
}

_ALIAS_TO_UNIT = {alias: unit for unit, aliases in UNIT_ALIASES.items() for alias in aliases}
# Longest aliases first so "kg" is not read as "k" + "g" and "gram" wins over "g".
_UNIT_PATTERN = "|".join(sorted(_ALIAS_TO_UNIT, key=len, reverse=True))
_NUMBER_UNIT = re.compile(rf"(\d)\s*({_UNIT_PATTERN})(?![a-z])")
_DECIMAL_COMMA = re.compile(r"(?<=\d),(?=\d)")
_STRAY_DOT = re.compile(r"(?<!\d)\.|\.(?!\d)")
_NON_ALNUM = re.compile(r"[^\w\s.]|_")
_WHITESPACE = re.compile(r"\s+")


def normalize_text(value: Any) -> str:
    """Normalize a query or candidate string for matching."""
    if value is None:
        return ""
    text = fold(str(value))
    text = _DECIMAL_COMMA.sub(".", text)
    text = _NON_ALNUM.sub(" ", text)
    text = _STRAY_DOT.sub(" ", text)
    text = _NUMBER_UNIT.sub(lambda m: m.group(1) + _ALIAS_TO_UNIT[m.group(2)], text)
    return _WHITESPACE.sub(" ", text).strip()


def query_terms(query: str) -> List[str]:
    """Split a normalized query into the words that must all match."""
    return [term for term in normalize_text(query).split(" ") if term]


def text_matches(query: str, *candidates: Any) -> bool:
    """
    Return True if every word of ``query`` occurs in the candidate texts.

    Candidates are joined before matching, so words may be spread across
    fields (e.g. product name and MO number). An empty query matches
    everything.
    """
    terms = query_terms(query)
    if not terms:
        return True
    haystack = " ".join(normalize_text(c) for c in candidates if c is not None)
    return all(term in haystack for term in terms)


def record_matches(query: str, record: dict, fields: Iterable[str]) -> bool:
    """text_matches over the named fields of a record."""
    return text_matches(query, *(record.get(f) for f in fields))
