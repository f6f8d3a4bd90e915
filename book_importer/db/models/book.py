"""SQLAlchemy model for catalog books created by imports."""

from sqlalchemy import JSON, Column, Integer, String, Text, UniqueConstraint
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from book_importer.db.base import Base


class Book(Base):
    __tablename__ = "books"

    id = Column(Integer, primary_key=True)
    library_id = Column(String(64), nullable=False, index=True)
    isbn = Column(String(13), nullable=False)
    title = Column(String(512), nullable=False)
    authors = Column(JSON, nullable=False, default=list)
    publisher = Column(String(255))
    published_date = Column(String(32))
    synopsis = Column(Text)
    created_by = Column(String(255))
    updated_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (UniqueConstraint("library_id", "isbn", name="uq_books_library_isbn"),)
