"""Bulk ISBN metadata lookup against an ISBNdb-style HTTP API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Protocol, Sequence

import httpx

from book_importer.core.config import Settings, get_settings
from book_importer.utils.isbn import normalize_isbn

logger = logging.getLogger(__name__)

DEFAULT_BATCH_LIMIT = 1000


@dataclass(frozen=True)
class BookMetadata:
    isbn: str
    title: str
    authors: list[str] = field(default_factory=list)
    publisher: str | None = None
    published_date: str | None = None
    synopsis: str | None = None


class MetadataLookup(Protocol):
    batch_limit: int

    def lookup_batch(self, isbns: Sequence[str]) -> Mapping[str, BookMetadata | None]:
        """Return an entry for every requested ISBN; None when nothing was found."""
        ...


def _to_metadata(isbn: str, payload: dict[str, Any]) -> BookMetadata | None:
    title = payload.get("title_long") or payload.get("title")
    if not isinstance(title, str) or not title.strip():
        return None
    authors = payload.get("authors") or []
    if not isinstance(authors, list):
        authors = [authors]
    return BookMetadata(
        isbn=isbn,
        title=title.strip(),
        authors=[str(a).strip() for a in authors if str(a).strip()],
        publisher=payload.get("publisher"),
        published_date=str(payload["date_published"]) if payload.get("date_published") else None,
        synopsis=payload.get("synopsis") or payload.get("overview"),
    )


class IsbndbLookupClient:
    """POSTs up to ``batch_limit`` ISBNs per call to ``/books``.

    A transport or decoding failure is reported as "absent" for the whole
    batch rather than raised; callers count those ISBNs as failed.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        batch_limit: int = DEFAULT_BATCH_LIMIT,
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.batch_limit = batch_limit
        headers = {"User-Agent": "Book-Importer/1.0", "Accept": "application/json"}
        if api_key:
            headers["Authorization"] = api_key
        self._client = client or httpx.Client(
            base_url=base_url, timeout=timeout, headers=headers
        )

    def close(self) -> None:
        self._client.close()

    def lookup_batch(self, isbns: Sequence[str]) -> dict[str, BookMetadata | None]:
        if len(isbns) > self.batch_limit:
            raise ValueError(
                f"Lookup batch of {len(isbns)} exceeds the service limit of {self.batch_limit}"
            )
        result: dict[str, BookMetadata | None] = {isbn: None for isbn in isbns}
        if not isbns:
            return result

        try:
            response = self._client.post("/books", data={"isbns": ",".join(isbns)})
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.error(f"Bulk ISBN lookup failed for {len(isbns)} ISBNs: {e}", exc_info=True)
            return result

        books = (body.get("data") or []) if isinstance(body, dict) else None
        if not isinstance(books, list):
            logger.error(
                f"Bulk ISBN lookup returned an unexpected body for {len(isbns)} ISBNs; "
                "treating all as not found"
            )
            return result

        for book in books:
            if not isinstance(book, dict):
                continue
            raw = book.get("isbn13") or book.get("isbn10") or book.get("isbn")
            isbn = normalize_isbn(str(raw)) if raw else None
            if isbn in result:
                result[isbn] = _to_metadata(isbn, book)

        found = sum(1 for value in result.values() if value is not None)
        logger.info(f"Bulk ISBN lookup completed: {len(isbns)} requested, {found} found")
        return result


def get_metadata_lookup(settings: Settings | None = None) -> IsbndbLookupClient:
    settings = settings or get_settings()
    return IsbndbLookupClient(
        settings.lookup_base_url,
        settings.lookup_api_key,
        batch_limit=settings.lookup_batch_limit,
        timeout=settings.lookup_timeout_seconds,
    )
