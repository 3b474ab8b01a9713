"""Chassis -> sales reference lookup."""

import logging
from collections import UserDict
from typing import Any, Iterable, Mapping, Optional

from .records import RecordView, is_blank

logger = logging.getLogger(__name__)


def normalize_chassis(value: Any) -> Optional[str]:
    """Stringify and trim a chassis value. Returns None for missing/blank values."""
    if is_blank(value):
        return None
    key = str(value).strip()
    return key or None


class ReferenceIndex(UserDict):
    """Normalized chassis -> reference row.

    Keys are stored as given (trimmed, not case-folded). ``find`` tries the
    exact key first and then a case-insensitive match, so "ab1" in a survey
    still reaches the "AB1" sale while "AB1"/"ab1" pairs in the reference
    stay distinct. Every write path (``update``, ``setdefault``, the
    constructor) goes through ``__setitem__``, keeping the folded map in step.
    """

    def __init__(self, *args, **kwargs):
        self._folded: dict[str, str] = {}
        super().__init__(*args, **kwargs)

    def __setitem__(self, key: str, record: Mapping[str, Any]) -> None:
        self.data[key] = record
        self._folded[key.casefold()] = key

    def __delitem__(self, key: str) -> None:
        del self.data[key]
        folded = key.casefold()
        if self._folded.get(folded) == key:
            del self._folded[folded]
            for other in reversed(self.data):
                if other.casefold() == folded:
                    self._folded[folded] = other
                    break

    def find(self, chassis: Any) -> Optional[Mapping[str, Any]]:
        key = normalize_chassis(chassis)
        if key is None:
            return None
        if key in self.data:
            return self.data[key]
        folded = self._folded.get(key.casefold())
        return self.data[folded] if folded is not None else None


def build_reference_index(
    records: Iterable[Mapping[str, Any]],
    chassis_field: str = "CHASSI",
) -> ReferenceIndex:
    """Map normalized chassis to its reference row.

    Rows without a chassis are skipped. Duplicate chassis: the later row
    replaces the earlier one (last write wins, no warning).
    """
    index = ReferenceIndex()
    skipped = 0
    for record in records:
        key = normalize_chassis(RecordView(record).get(chassis_field))
        if key is None:
            skipped += 1
            continue
        index[key] = record

    logger.info(f"Reference index built: {len(index)} chassis ({skipped} rows without chassis)")
    return index


def lookup(index: Mapping[str, Mapping[str, Any]], chassis: Any) -> Optional[Mapping[str, Any]]:
    """Find the reference row for ``chassis`` in any chassis mapping."""
    if isinstance(index, ReferenceIndex):
        return index.find(chassis)
    key = normalize_chassis(chassis)
    if key is None:
        return None
    return index.get(key)
