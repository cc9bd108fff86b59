import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

# English only; numerals 1-12 are handled separately.
MONTH_ALIASES: Dict[str, int] = {
    "jan": 0,
    "january": 0,
    "feb": 1,
    "february": 1,
    "mar": 2,
    "march": 2,
    "apr": 3,
    "april": 3,
    "may": 4,
    "jun": 5,
    "june": 5,
    "jul": 6,
    "july": 6,
    "aug": 7,
    "august": 7,
    "sep": 8,
    "sept": 8,
    "september": 8,
    "oct": 9,
    "october": 9,
    "nov": 10,
    "november": 10,
    "dec": 11,
    "december": 11,
}

_TOKEN_SPLIT = re.compile(r"[\s\-_/]+")


def _numeral(text: str) -> Optional[int]:
    try:
        number = float(text)
    except ValueError:
        return None
    if number.is_integer() and 1 <= number <= 12:
        return int(number) - 1
    return None


def resolve_month_index(value: Any) -> Optional[int]:
    """Map "Jan", "September", "Sept.", "Jan 2024", "3" and the like to a 0-11 index."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)

    text = str(value).strip().lower()
    if text.endswith("."):
        text = text[:-1]
    if not text:
        return None

    if text in MONTH_ALIASES:
        return MONTH_ALIASES[text]

    first_token = _TOKEN_SPLIT.split(text)[0]
    if first_token in MONTH_ALIASES:
        return MONTH_ALIASES[first_token]

    return _numeral(text)


def sort_rows_by_chronological_month(rows: Sequence[Mapping[str, Any]], x_key: str) -> List[Mapping[str, Any]]:
    """Reorder rows into calendar order, but only when every x value is a month."""
    if not rows:
        return list(rows)

    indexes = []
    for row in rows:
        index = resolve_month_index(row.get(x_key))
        if index is None:
            return list(rows)
        indexes.append(index)

    order = sorted(range(len(rows)), key=lambda position: indexes[position])
    return [rows[position] for position in order]


__all__ = ["MONTH_ALIASES", "resolve_month_index", "sort_rows_by_chronological_month"]
