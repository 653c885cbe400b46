"""Per-client CSV column layout configured by an administrator."""

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String
from sqlalchemy.sql import func
from sqlalchemy.types import DateTime

from dataport.db.base import Base, JSONType


class ColumnMapping(Base):
    __tablename__ = "client_column_mappings"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, unique=True)
    sample_headers = Column(JSONType, nullable=False, default=list)
    # field name -> column index (or None for "not mapped")
    column_mappings = Column(JSONType, nullable=False, default=dict)
    total_columns = Column(Integer, nullable=False, default=0)
    is_configured = Column(Boolean, nullable=False, default=False)
    sample_file_name = Column(String(255))
    configured_by = Column(String(255))
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
