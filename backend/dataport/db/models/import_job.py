"""One row per uploaded CSV: status, checkpoint and counters of an import."""

import uuid

from sqlalchemy import BigInteger, Column, ForeignKey, Integer, String, Text
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from dataport.db.base import Base, JSONType

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED})


class ImportJob(Base):
    __tablename__ = "import_jobs"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    file_name = Column(String(255), nullable=False)
    file_size = Column(BigInteger)
    encoding = Column(String(32))
    status = Column(String(32), nullable=False, default=STATUS_PENDING, index=True)

    # total_rows stays NULL until the file has been tokenized once
    total_rows = Column(Integer)
    # Count of data rows consumed so far; row N (1-based) is next when this is N-1
    last_processed_row = Column(Integer, nullable=False, default=0)
    inserted_rows = Column(Integer, nullable=False, default=0)
    updated_rows = Column(Integer, nullable=False, default=0)
    error_rows = Column(Integer, nullable=False, default=0)
    error_details = Column(JSONType)
    error_message = Column(Text)

    blob_ref = Column(Text)
    upload_token = Column(String(64))
    imported_by = Column(String(255))

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    processing_started_at = Column(DateTime(timezone=True))
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
