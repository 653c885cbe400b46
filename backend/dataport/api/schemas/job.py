"""Import job payloads: upload handshake, progress and sync results."""

from datetime import datetime

from pydantic import BaseModel, Field


class RowErrorRead(BaseModel):
    row: int = Field(..., description="CSV line number (header is line 1); 0 for job-level")
    error: str


class JobStatus(BaseModel):
    id: str
    type: str = Field("import_products", description="Job kind")
    status: str = Field(..., description="pending|processing|completed|failed")
    file_name: str
    progress: int = Field(0, description="0-100, rows consumed over total rows")
    message: str | None = None
    total_rows: int | None = None
    last_processed_row: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    error_rows: int = 0
    error_message: str | None = None
    error_details: list[RowErrorRead] = Field(default_factory=list)
    created_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class ImportResult(BaseModel):
    """Outcome of a synchronous import."""

    job_id: str
    status: str
    total_rows: int
    inserted_rows: int
    updated_rows: int
    error_rows: int
    errors: list[RowErrorRead] = Field(
        default_factory=list, description="First errors only; see the job for more"
    )


class InitUploadRequest(BaseModel):
    file_name: str
    file_size: int = Field(..., ge=0, description="Declared size in bytes")


class InitUploadResponse(BaseModel):
    job_id: str
    upload_token: str
    upload_url: str
    max_bytes: int
