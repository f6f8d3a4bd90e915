"""Import job status payloads."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ImportJobStatus(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    library_id: str
    requested_by: str
    requested_by_name: str | None = None
    source_file_name: str
    status: str = Field(..., description="pending|processing|completed|failed")
    total_isbn_count: int
    total_chunks: int
    processed_chunks: int
    success_count: int
    failed_count: int
    failed_isbns: list[str] = Field(default_factory=list)
    progress_percent: float = Field(..., description="0-100, two decimals")
    is_terminal: bool
    error_message: str | None = None
    message: str | None = Field(None, description="Latest progress note from the worker")
    created_at: datetime | None = None
    processing_started_at: datetime | None = None
    completed_at: datetime | None = None
