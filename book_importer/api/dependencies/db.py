"""Database session and job store dependencies."""

from collections.abc import Generator

from fastapi import Depends
from sqlalchemy.orm import Session

from book_importer.db.session import get_db
from book_importer.services.job_store import ImportJobStore


def get_session() -> Generator[Session, None, None]:
    """FastAPI dependency that yields a managed SQLAlchemy session."""
    yield from get_db()


def get_job_store(db: Session = Depends(get_session)) -> ImportJobStore:
    """Job store bound to the request's session."""
    return ImportJobStore(db)
