"""Per-client column mapping payloads."""

from datetime import datetime

from pydantic import BaseModel, Field


class ColumnMappingRead(BaseModel):
    client_id: int
    sample_headers: list[str] = Field(default_factory=list)
    column_mappings: dict[str, int | None] = Field(default_factory=dict)
    total_columns: int = 0
    is_configured: bool = False
    sample_file_name: str | None = None
    configured_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ColumnMappingSave(BaseModel):
    headers: list[str]
    mappings: dict[str, int | None] = Field(
        ..., description="Product field -> 0-based column index (null = unmapped)"
    )
    sample_file_name: str | None = None


class DetectedColumns(BaseModel):
    file_name: str
    encoding: str
    headers: list[str]
    total_columns: int
    truncated: bool = Field(False, description="More columns exist than were returned")
