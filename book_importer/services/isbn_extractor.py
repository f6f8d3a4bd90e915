"""Turn uploaded CSV bytes into an ordered, deduplicated stream of ISBN-13 candidates."""

from __future__ import annotations

import csv
import io
import logging
from typing import BinaryIO, Iterator

from book_importer.core.errors import ImportValidationError
from book_importer.utils.isbn import is_plausible_isbn, normalize_isbn

logger = logging.getLogger(__name__)

HEADER_MARKER = "isbn"


def _find_isbn_column(row: list[str]) -> int | None:
    for index, value in enumerate(row):
        if HEADER_MARKER in value.lower():
            return index
    return None


def _pick_value(row: list[str], isbn_column: int | None) -> str:
    if isbn_column is not None:
        return row[isbn_column] if isbn_column < len(row) else ""
    return next((value for value in row if is_plausible_isbn(value)), "")


def iter_isbn_candidates(stream: BinaryIO, max_count: int | None = None) -> Iterator[str]:
    """Yield unique ISBN-13 candidates in first-seen order.

    The first non-blank row is treated as a header when one of its cells
    mentions "isbn" (that column is then read on every row) or when none of its
    cells looks like an ISBN. Rows without an ISBN-shaped value are skipped
    silently; they never become candidates. Output depends only on the input
    bytes, so re-reading the same file reproduces the same sequence.

    Args:
        stream: Binary file-like object positioned at the start of the CSV.
        max_count: Stop after this many unique candidates.
    """
    if max_count is not None and max_count <= 0:
        return

    text = io.TextIOWrapper(stream, encoding="utf-8-sig", errors="replace", newline="")
    seen: set[str] = set()
    isbn_column: int | None = None
    header_checked = False
    try:
        reader = csv.reader(text)
        for row in reader:
            cells = [value.strip() for value in row]
            if not any(cells):
                continue

            if not header_checked:
                header_checked = True
                isbn_column = _find_isbn_column(cells)
                if isbn_column is not None or not any(is_plausible_isbn(v) for v in cells):
                    continue

            isbn = normalize_isbn(_pick_value(cells, isbn_column))
            if isbn is None or isbn in seen:
                continue

            seen.add(isbn)
            yield isbn

            if max_count is not None and len(seen) >= max_count:
                logger.info(f"Stopped reading CSV after {max_count} ISBN candidates")
                return
    except csv.Error as e:
        raise ImportValidationError(f"CSV parsing error: {e}") from e
    finally:
        # Leave the caller's stream open
        text.detach()


def extract_isbns(stream: BinaryIO, max_count: int | None = None) -> list[str]:
    """Materialize the candidate sequence and log how many were found."""
    isbns = list(iter_isbn_candidates(stream, max_count))
    logger.info(f"Parsed {len(isbns)} ISBN candidates from CSV")
    return isbns
