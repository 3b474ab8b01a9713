"""Case/whitespace-insensitive field access over loosely-typed spreadsheet rows.

Rows come from spreadsheets with no guaranteed column casing, so every field
lookup normalizes the *field name* (``strip().lower()``). Values are returned
verbatim.

Collision rule: when two columns normalize to the same name (e.g. ``Chassi``
and ``CHASSI`` in one row), the first column in the row's own key order wins.
Source spreadsheets are not expected to produce such rows.
"""

import logging
import math
from datetime import date, datetime
from typing import Any, Mapping

logger = logging.getLogger(__name__)

MISSING_VALUE = "N/A"
DATE_FORMAT = "%d/%m/%Y"


def normalize_key(name: str) -> str:
    return str(name).strip().lower()


class RecordView:
    """Read-only view with a normalized-key index built once per record."""

    __slots__ = ("record", "_index")

    def __init__(self, record: Mapping[str, Any]):
        self.record = record
        self._index: dict[str, str] = {}
        for key in record:
            self._index.setdefault(normalize_key(key), key)

    def __contains__(self, name: str) -> bool:
        return normalize_key(name) in self._index

    def get(self, name: str, default: Any = None) -> Any:
        key = self._index.get(normalize_key(name))
        if key is None:
            return default
        return self.record[key]


def get_property(record: Mapping[str, Any], name: str, default: Any = None) -> Any:
    """One-off lookup; prefer RecordView when reading several fields of a row."""
    if isinstance(record, RecordView):
        return record.get(name, default)
    return RecordView(record).get(name, default)


def safe_to_string(
    value: Any,
    missing: str = MISSING_VALUE,
    date_format: str = DATE_FORMAT,
) -> str:
    """Stringify a cell value for presentation; None becomes ``missing``."""
    if value is None:
        return missing
    if isinstance(value, (datetime, date)):
        return value.strftime(date_format)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def coerce_number(value: Any, default: float = 0) -> float:
    """Numeric coercion for percentage-like cells ("90", 90, "90%", "87,5")."""
    if value is None:
        return default
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return default
        return value

    text = str(value).strip()
    if not text:
        return default
    if text.endswith("%"):
        text = text[:-1].strip()
    if "," in text and "." not in text:
        text = text.replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        logger.warning(f"Could not coerce {value!r} to a number, using {default}")
        return default
    return int(number) if number.is_integer() else number


def is_blank(value: Any) -> bool:
    """True for None, empty strings and whitespace-only strings."""
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    return False


def row_to_jsonable(record: Mapping[str, Any]) -> dict:
    """Copy a row into JSON-serializable form (dates as ISO strings)."""
    out = {}
    for key, value in record.items():
        if isinstance(value, (datetime, date)):
            out[str(key)] = value.isoformat()
        else:
            out[str(key)] = value
    return out

