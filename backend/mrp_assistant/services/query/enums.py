"""
Enum normalization for status/type filters.

The reasoning engine passes status words in whatever language and casing the
user used ("planned", "ZAKOŃCZONE", "in progress"). Stored documents carry
one canonical spelling per value. The synonym table (JSON, keyed by
"<collection>.<field>") maps folded spellings to the canonical value;
anything unmapped passes through unchanged.
"""
import json
import os
import re
import unicodedata
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from mrp_assistant.core.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ENUM_SYNONYM_PATH = Path(__file__).parent.parent.parent / "data" / "enum_synonyms.json"

_WHITESPACE = re.compile(r"\s+")
# Letters NFKD does not decompose.
_MANUAL_FOLDS = str.maketrans({"ł": "l", "Ł": "l", "ø": "o", "đ": "d", "ß": "ss"})


def fold(value: str) -> str:
    """
    Fold a token for comparison: casefold, strip diacritics, collapse whitespace.

    "ZAKOŃCZONE", "Zakończone" and "zakonczone" all fold to "zakonczone".
    """
    text = value.translate(_MANUAL_FOLDS).casefold()
    text = unicodedata.normalize("NFKD", text)
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.replace("_", " ").replace("-", " ")
    return _WHITESPACE.sub(" ", text).strip()


class EnumNormalizer:
    """Synonym-table backed normalizer for enumerated field values."""

    def __init__(self, synonym_path: Optional[Path] = None):
        self.synonym_path = synonym_path or DEFAULT_ENUM_SYNONYM_PATH
        self.tables: Dict[str, Dict[str, str]] = {}
        self._is_initialized = False

    def initialize(self) -> bool:
        """
        Load the synonym table from JSON.

        Returns:
            True if the table was loaded, False if it is missing or invalid
            (normalization then degrades to passthrough)
        """
        if self._is_initialized:
            return bool(self.tables)

        self._is_initialized = True
        try:
            with open(self.synonym_path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except FileNotFoundError:
            logger.warning(
                "enum_synonyms_not_found",
                path=str(self.synonym_path),
                message="Enum normalization will pass values through unchanged",
            )
            return False
        except json.JSONDecodeError as e:
            logger.error(
                "enum_synonyms_json_error",
                path=str(self.synonym_path),
                error=str(e),
            )
            return False

        if not isinstance(raw, dict):
            logger.error("enum_synonyms_invalid", message="Synonym table must be a JSON object")
            return False

        self.tables = {key: self._build_lookup(entries) for key, entries in raw.items() if isinstance(entries, dict)}
        logger.info(
            "enum_synonyms_loaded",
            fields=len(self.tables),
            entries=sum(len(t) for t in self.tables.values()),
        )
        return True

    @staticmethod
    def _build_lookup(entries: Dict[str, List[str]]) -> Dict[str, str]:
        lookup: Dict[str, str] = {}
        for canonical, synonyms in entries.items():
            lookup[fold(canonical)] = canonical
            for synonym in synonyms or []:
                if isinstance(synonym, str):
                    # First declaration wins when two canonicals claim a synonym.
                    lookup.setdefault(fold(synonym), canonical)
        return lookup

    def normalize(self, field_key: str, value: str) -> str:
        """
        Map one user-supplied token to its canonical stored value.

        Args:
            field_key: "<collection>.<field>", e.g. "production_tasks.status"
            value: raw token from the tool call

        Returns:
            The canonical value, or ``value`` unchanged when unmapped
        """
        if not self._is_initialized:
            self.initialize()
        if not isinstance(value, str):
            return value
        return self.tables.get(field_key, {}).get(fold(value), value)

    def normalize_many(self, field_key: str, values: Iterable[str]) -> List[str]:
        """Normalize a list of tokens, dropping duplicates while keeping order."""
        return list(dict.fromkeys(self.normalize(field_key, v) for v in values))

    def canonical_values(self, field_key: str) -> List[str]:
        if not self._is_initialized:
            self.initialize()
        return sorted(set(self.tables.get(field_key, {}).values()))


_enum_normalizer: Optional[EnumNormalizer] = None


def get_enum_normalizer() -> EnumNormalizer:
    """
    Get the global enum normalizer.

    ENUM_SYNONYM_DICT_PATH overrides the packaged synonym table.
    """
    global _enum_normalizer
    if _enum_normalizer is None:
        override = os.getenv("ENUM_SYNONYM_DICT_PATH")
        _enum_normalizer = EnumNormalizer(Path(override) if override else None)
        _enum_normalizer.initialize()
    return _enum_normalizer
