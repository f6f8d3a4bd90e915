"""Database models package."""
from book_importer.db.models.book import Book
from book_importer.db.models.import_job import ImportJob, ImportStatus

__all__ = ["Book", "ImportJob", "ImportStatus"]
