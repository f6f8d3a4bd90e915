"""Subscription quota check consulted once per submission."""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy.orm import Session

from book_importer.services.catalog import count_books

logger = logging.getLogger(__name__)

UNLIMITED = -1


class QuotaChecker(Protocol):
    def can_accommodate(self, library_id: str, additional_count: int) -> bool:
        ...


class CatalogQuotaChecker:
    """Compares the library's current book count against a flat maximum."""

    def __init__(self, db: Session, max_books: int = UNLIMITED) -> None:
        self.db = db
        self.max_books = max_books

    def can_accommodate(self, library_id: str, additional_count: int) -> bool:
        if self.max_books == UNLIMITED:
            return True
        current = count_books(self.db, library_id)
        available = self.max_books - current
        if additional_count > available:
            logger.warning(
                f"Book import quota check failed for library {library_id}: "
                f"requested {additional_count}, available {available} "
                f"(current {current}, max {self.max_books})"
            )
            return False
        return True
