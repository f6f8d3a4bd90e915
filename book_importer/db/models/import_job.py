"""Durable record of a bulk ISBN import and its checkpointed progress."""

import enum
import uuid

from sqlalchemy import JSON, Boolean, Column, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from book_importer.db.base import Base


class ImportStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({ImportStatus.COMPLETED.value, ImportStatus.FAILED.value})


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    library_id = Column(String(64), nullable=False, index=True)
    requested_by = Column(String(64), nullable=False)
    requested_by_name = Column(String(255))
    source_file_name = Column(String(256), nullable=False)
    source_blob_locator = Column(Text, nullable=False)

    total_isbn_count = Column(Integer, nullable=False, default=0)
    chunk_size = Column(Integer, nullable=False)
    total_chunks = Column(Integer, nullable=False, default=0)
    processed_chunks = Column(Integer, nullable=False, default=0)
    current_position = Column(Integer, nullable=False, default=0)
    success_count = Column(Integer, nullable=False, default=0)
    failed_count = Column(Integer, nullable=False, default=0)
    failed_isbns = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=list)

    status = Column(
        String(32), nullable=False, default=ImportStatus.PENDING.value, index=True
    )
    error_message = Column(Text)
    notification_sent = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    processing_started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    # Optimistic concurrency: UPDATEs carry "WHERE version = <read version>"
    version = Column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def progress_percent(self) -> float:
        if not self.total_isbn_count:
            return 0.0
        done = (self.success_count or 0) + (self.failed_count or 0)
        return round(done / self.total_isbn_count * 100, 2)
