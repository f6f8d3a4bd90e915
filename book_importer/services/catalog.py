"""Idempotent catalog upserts keyed by (library, ISBN)."""

from __future__ import annotations

import logging
from typing import Callable, Protocol

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from book_importer.db.models.book import Book
from book_importer.services.metadata_lookup import BookMetadata

logger = logging.getLogger(__name__)


class CatalogUpsert(Protocol):
    def upsert(self, metadata: BookMetadata, library_id: str, actor: str) -> bool:
        """Create or update the single catalog entry for the ISBN; False on failure."""
        ...


def _apply(book: Book, metadata: BookMetadata, actor: str) -> None:
    book.title = metadata.title.strip()
    book.authors = list(metadata.authors)
    book.publisher = metadata.publisher
    book.published_date = metadata.published_date
    book.synopsis = metadata.synopsis
    book.updated_by = actor


class SqlCatalogUpsert:
    """Writes books with a short-lived session per call.

    Upserts for one chunk run on a thread pool, and a Session must not be
    shared across threads.
    """

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self.session_factory = session_factory

    def _upsert_once(self, db: Session, metadata: BookMetadata, library_id: str, actor: str) -> str:
        book = db.scalars(
            select(Book).where(Book.library_id == library_id, Book.isbn == metadata.isbn)
        ).first()
        if book is None:
            book = Book(library_id=library_id, isbn=metadata.isbn, created_by=actor)
            db.add(book)
            action = "created"
        else:
            action = "updated"
        _apply(book, metadata, actor)
        db.commit()
        return action

    def upsert(self, metadata: BookMetadata, library_id: str, actor: str) -> bool:
        db = self.session_factory()
        try:
            try:
                action = self._upsert_once(db, metadata, library_id, actor)
            except IntegrityError:
                # Another import inserted the same (library, isbn) first
                db.rollback()
                action = self._upsert_once(db, metadata, library_id, actor)
            logger.debug(f"Book {metadata.isbn} {action} in library {library_id}")
            return True
        except SQLAlchemyError:
            db.rollback()
            raise
        finally:
            db.close()


def count_books(db: Session, library_id: str) -> int:
    return db.scalar(select(func.count(Book.id)).where(Book.library_id == library_id)) or 0
