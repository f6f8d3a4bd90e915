"""ISBN shape checks and normalization to ISBN-13."""

from __future__ import annotations

import re

_SEPARATORS = re.compile(r"[-\s]")
_ISBN13 = re.compile(r"^\d{13}$")
_ISBN10 = re.compile(r"^\d{9}[\dX]$")

QUOTE_CHARS = "\"'"


def clean_isbn(value: str | None) -> str:
    """Trim, drop surrounding quotes and remove '-'/whitespace separators."""
    if not value:
        return ""
    cleaned = value.strip().strip(QUOTE_CHARS).strip()
    return _SEPARATORS.sub("", cleaned).upper()


def is_plausible_isbn(value: str | None) -> bool:
    """True when the cleaned value has an ISBN-10 or ISBN-13 shape."""
    cleaned = clean_isbn(value)
    return bool(_ISBN13.match(cleaned) or _ISBN10.match(cleaned))


def isbn13_check_digit(first_twelve: str) -> str:
    total = sum(int(d) * (1 if i % 2 == 0 else 3) for i, d in enumerate(first_twelve))
    return str((10 - total % 10) % 10)


def isbn10_to_isbn13(isbn10: str) -> str:
    """Prefix with 978 and recompute the check digit; the ISBN-10 check is dropped."""
    body = "978" + isbn10[:9]
    return body + isbn13_check_digit(body)


def normalize_isbn(value: str | None) -> str | None:
    """Return the ISBN-13 form of ``value`` or None when it is not ISBN shaped."""
    cleaned = clean_isbn(value)
    if _ISBN13.match(cleaned):
        return cleaned
    if _ISBN10.match(cleaned):
        return isbn10_to_isbn13(cleaned)
    return None
