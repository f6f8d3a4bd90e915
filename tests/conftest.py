import io
import os
import tempfile
import threading

# Settings are read at import time; point them at throwaway resources first.
os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ.setdefault("UPLOADS_DIR", tempfile.mkdtemp(prefix="book-importer-tests-"))
os.environ.setdefault("BLOB_BACKEND", "local")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from book_importer.core.config import get_settings
from book_importer.core.errors import BlobNotFoundError, BlobStorageError
from book_importer.db import models  # noqa: F401
from book_importer.db.base import Base
from book_importer.db.models.import_job import ImportJob, ImportStatus
from book_importer.services.import_processor import ImportProcessor
from book_importer.services.job_store import ImportJobStore
from book_importer.services.metadata_lookup import BookMetadata
from book_importer.utils.batching import chunk_count


def make_isbns(count, start=0):
    """Distinct 13-digit ISBN candidates."""
    return [f"9780000{i:06d}" for i in range(start, start + count)]


def csv_bytes(isbns, header="isbn"):
    lines = [header] if header else []
    lines.extend(isbns)
    return ("\n".join(lines) + "\n").encode("utf-8")


class InMemoryBlobStore:
    def __init__(self, fail_upload=False):
        self.blobs = {}
        self.deleted = []
        self.fail_upload = fail_upload

    def upload(self, data, path_hint):
        if self.fail_upload:
            raise BlobStorageError("blob store unavailable")
        locator = f"memory/{path_hint}"
        self.blobs[locator] = bytes(data)
        return locator

    def download(self, locator):
        if locator not in self.blobs:
            raise BlobNotFoundError(f"Blob not found: {locator}")
        return io.BytesIO(self.blobs[locator])

    def delete(self, locator):
        self.deleted.append(locator)
        self.blobs.pop(locator, None)


class StubLookup:
    """Deterministic lookup: every ISBN is found unless listed in ``missing``."""

    def __init__(self, missing=(), batch_limit=1000, fail_on_call=None):
        self.missing = set(missing)
        self.batch_limit = batch_limit
        self.fail_on_call = fail_on_call
        self.calls = []

    def lookup_batch(self, isbns):
        if len(isbns) > self.batch_limit:
            raise ValueError(f"batch of {len(isbns)} exceeds {self.batch_limit}")
        self.calls.append(list(isbns))
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise RuntimeError("lookup service unavailable")
        return {
            isbn: None if isbn in self.missing else BookMetadata(isbn=isbn, title=f"Book {isbn}")
            for isbn in isbns
        }


class DictCatalog:
    def __init__(self, rejected=(), broken=()):
        self.rejected = set(rejected)
        self.broken = set(broken)
        self.books = {}
        self.upserts = []
        self._lock = threading.Lock()

    def upsert(self, metadata, library_id, actor):
        with self._lock:
            self.upserts.append(metadata.isbn)
        if metadata.isbn in self.broken:
            raise RuntimeError(f"catalog write failed for {metadata.isbn}")
        if metadata.isbn in self.rejected:
            return False
        with self._lock:
            self.books[(library_id, metadata.isbn)] = metadata
        return True


class StubQuota:
    def __init__(self, allowed=True):
        self.allowed = allowed
        self.requests = []

    def can_accommodate(self, library_id, additional_count):
        self.requests.append((library_id, additional_count))
        return self.allowed


class RecordingNotifier:
    def __init__(self, fail=False):
        self.fail = fail
        self.summaries = []

    def notify_completion(self, summary):
        if self.fail:
            raise RuntimeError("notification queue unavailable")
        self.summaries.append(summary)


@pytest.fixture()
def engine():
    eng = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=eng)
    yield eng
    Base.metadata.drop_all(bind=eng)
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture()
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def store(db_session):
    return ImportJobStore(db_session)


@pytest.fixture()
def blob_store():
    return InMemoryBlobStore()


@pytest.fixture()
def notifier():
    return RecordingNotifier()


@pytest.fixture()
def settings():
    return get_settings().model_copy(update={"import_chunk_size": 50})


@pytest.fixture()
def create_job(store, blob_store):
    """Store a CSV and its pending job the way a submission would."""

    def factory(isbns, chunk_size=50, library_id="lib-1"):
        locator = blob_store.upload(csv_bytes(isbns), f"{library_id}/books.csv")
        job = ImportJob(
            library_id=library_id,
            requested_by="user-1",
            requested_by_name="Ada Reader",
            source_file_name="books.csv",
            source_blob_locator=locator,
            total_isbn_count=len(isbns),
            chunk_size=chunk_size,
            total_chunks=chunk_count(len(isbns), chunk_size),
            failed_isbns=[],
            status=ImportStatus.PENDING.value,
        )
        return store.create(job)

    return factory


@pytest.fixture()
def make_processor(store, blob_store, notifier):
    def factory(lookup=None, catalog=None, **kwargs):
        return ImportProcessor(
            store,
            blob_store,
            lookup or StubLookup(),
            catalog or DictCatalog(),
            notifier,
            **kwargs,
        )

    return factory
