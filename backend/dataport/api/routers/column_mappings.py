"""Administrator endpoints for per-client CSV column mappings."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dataport.api.dependencies.context import get_operator_email, get_session
from dataport.api.schemas.column_mapping import (
    ColumnMappingRead,
    ColumnMappingSave,
    DetectedColumns,
)
from dataport.db.models.client import Client
from dataport.services.column_mapping import get_column_mapping, save_column_mapping
from dataport.services.csv_tokenizer import read_header
from dataport.services.encoding import decode_bytes, detect_encoding
from dataport.services.errors import CsvFormatError, MappingValidationError

logger = logging.getLogger(__name__)

router = APIRouter()

# Header detection only needs the start of the file
DETECT_READ_BYTES = 64 * 1024
DETECT_MAX_COLUMNS = 100


def _require_client(db: Session, client_id: int) -> Client:
    client = db.get(Client, client_id)
    if client is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    return client


@router.get(
    "/{client_id}/column-mapping",
    summary="Fetch a client's column mapping",
    response_model=ColumnMappingRead,
)
async def read_column_mapping(
    client_id: int,
    db: Session = Depends(get_session),
) -> ColumnMappingRead:
    """Return the saved mapping, or an unconfigured placeholder."""
    _require_client(db, client_id)
    mapping = get_column_mapping(db, client_id)
    if mapping is None:
        return ColumnMappingRead(client_id=client_id)
    return ColumnMappingRead.model_validate(mapping)


@router.post(
    "/{client_id}/column-mapping",
    summary="Save a client's column mapping",
    response_model=ColumnMappingRead,
)
async def write_column_mapping(
    client_id: int,
    payload: ColumnMappingSave,
    db: Session = Depends(get_session),
    operator: str | None = Depends(get_operator_email),
) -> ColumnMappingRead:
    _require_client(db, client_id)
    try:
        mapping = save_column_mapping(
            db,
            client_id,
            payload.headers,
            payload.mappings,
            sample_file_name=payload.sample_file_name,
            configured_by=operator,
        )
        db.commit()
        db.refresh(mapping)
    except MappingValidationError as e:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Database error saving column mapping for client {client_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save column mapping",
        ) from e
    return ColumnMappingRead.model_validate(mapping)


@router.post(
    "/detect-columns",
    summary="Read the header row of a sample CSV",
    response_model=DetectedColumns,
)
async def detect_columns(file: UploadFile = File(...)) -> DetectedColumns:
    """Detect encoding and headers from the first 64KB of a sample file."""
    if not file.filename or not file.filename.lower().endswith(".csv"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only CSV uploads are supported",
        )
    head = await file.read(DETECT_READ_BYTES)
    if not head.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="CSV file is empty")

    encoding = detect_encoding(head)
    try:
        headers, total_columns = read_header(
            decode_bytes(head, encoding), max_columns=DETECT_MAX_COLUMNS
        )
    except CsvFormatError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    return DetectedColumns(
        file_name=file.filename,
        encoding=encoding,
        headers=headers,
        total_columns=total_columns,
        truncated=total_columns > len(headers),
    )
