"""Resolve which CSV column feeds which product field.

A client's administrator can save an explicit field -> column index table.
Without one, headers are matched against the names our clients' inventory
systems export.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from types import MappingProxyType
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from dataport.db.models.column_mapping import ColumnMapping
from dataport.services.errors import ColumnMappingError, MappingValidationError

logger = logging.getLogger(__name__)

PRODUCT_CODE = "product_code"
JAN_CODE = "jan_code"

# Fields a saved mapping must point at
REQUIRED_MAPPING_FIELDS = (PRODUCT_CODE, JAN_CODE)

PRODUCT_FIELDS = (
    "product_code",
    "product_name",
    "jan_code",
    "supplier_code",
    "supplier_name",
    "stock_quantity",
    "allocated_quantity",
    "free_stock_quantity",
    "defective_stock_quantity",
    "shortage_quantity",
    "order_remaining_quantity",
    "optimal_stock_quantity",
    "order_point",
    "lot_size",
    "cost_price",
    "selling_price",
    "stock_value",
    "display_price",
    "product_category",
    "product_tag",
    "handling_category",
)

DEFAULT_COLUMN_MAP: Mapping[str, str] = MappingProxyType(
    {
        "商品コード": "product_code",
        "商品名": "product_name",
        "仕入先コード": "supplier_code",
        "仕入先名": "supplier_name",
        "在庫数": "stock_quantity",
        "引当数": "allocated_quantity",
        "フリー在庫数": "free_stock_quantity",
        "不良在庫数": "defective_stock_quantity",
        "欠品数": "shortage_quantity",
        "発注残数": "order_remaining_quantity",
        "商品区分": "product_category",
        "商品タグ": "product_tag",
        "取扱区分": "handling_category",
        "適正在庫数": "optimal_stock_quantity",
        "発注点": "order_point",
        "ロット": "lot_size",
        "原価": "cost_price",
        "売価": "selling_price",
        "在庫金額": "stock_value",
        "表示価格": "display_price",
        "ＪＡＮコード": "jan_code",
        "JANコード": "jan_code",
        # Aliases seen in marketplace exports
        "SKU": "product_code",
        "b品番": "product_code",
        "b商品名": "product_name",
        "GTIN": "jan_code",
        "上代税込": "selling_price",
        "原価税込": "cost_price",
    }
)


def _indices_from_saved(
    headers: list[str], mappings: Mapping[str, Any]
) -> dict[str, int]:
    indices: dict[str, int] = {}
    for field_name, col_index in mappings.items():
        # JSON may hand back bools or floats; only real ints are indices
        if isinstance(col_index, bool) or not isinstance(col_index, int):
            continue
        if 0 <= col_index < len(headers):
            indices[field_name] = col_index
        else:
            logger.warning(
                f"Ignoring mapping {field_name} -> {col_index}: file has {len(headers)} columns"
            )
    return indices


def _indices_from_headers(headers: list[str]) -> dict[str, int]:
    indices: dict[str, int] = {}
    for index, header in enumerate(headers):
        field_name = DEFAULT_COLUMN_MAP.get(header.strip())
        if field_name and field_name not in indices:
            indices[field_name] = index
    return indices


def resolve_column_indices(
    headers: list[str], saved_mapping: ColumnMapping | None = None
) -> dict[str, int]:
    """Build the field -> column index table for one file.

    Raises:
        ColumnMappingError: no column resolves to the product code.
    """
    if saved_mapping is not None and saved_mapping.is_configured:
        indices = _indices_from_saved(headers, saved_mapping.column_mappings or {})
    else:
        indices = _indices_from_headers(headers)

    if PRODUCT_CODE not in indices:
        raise ColumnMappingError(
            "Product code column not found: configure the column mapping or "
            "add a 商品コード header"
        )
    return indices


def validate_mapping(headers: list[str], mappings: Mapping[str, Any]) -> dict[str, int | None]:
    """Check a mapping an administrator wants to save and return it cleaned.

    Raises:
        MappingValidationError: unknown field, bad index, or a required field
            left unmapped.
    """
    cleaned: dict[str, int | None] = {}
    for field_name, col_index in mappings.items():
        if field_name not in PRODUCT_FIELDS:
            raise MappingValidationError(f"Unknown field: {field_name}")
        if col_index is None:
            cleaned[field_name] = None
            continue
        if isinstance(col_index, bool) or not isinstance(col_index, int):
            raise MappingValidationError(f"Column index for {field_name} must be an integer")
        if not 0 <= col_index < len(headers):
            raise MappingValidationError(
                f"Column index {col_index} for {field_name} is outside 0..{len(headers) - 1}"
            )
        cleaned[field_name] = col_index

    missing = [f for f in REQUIRED_MAPPING_FIELDS if cleaned.get(f) is None]
    if missing:
        raise MappingValidationError(f"Required field(s) not mapped: {', '.join(missing)}")
    return cleaned


def get_column_mapping(db: Session, client_id: int) -> ColumnMapping | None:
    return db.scalar(select(ColumnMapping).where(ColumnMapping.client_id == client_id))


def save_column_mapping(
    db: Session,
    client_id: int,
    headers: list[str],
    mappings: Mapping[str, Any],
    *,
    sample_file_name: str | None = None,
    configured_by: str | None = None,
) -> ColumnMapping:
    """Validate and upsert a client's mapping, marking it configured."""
    cleaned = validate_mapping(headers, mappings)
    mapping = get_column_mapping(db, client_id)
    if mapping is None:
        mapping = ColumnMapping(client_id=client_id)
        db.add(mapping)
    mapping.sample_headers = list(headers)
    mapping.column_mappings = cleaned
    mapping.total_columns = len(headers)
    mapping.is_configured = True
    mapping.sample_file_name = sample_file_name
    mapping.configured_by = configured_by
    db.flush()
    logger.info(f"Saved column mapping for client {client_id} ({len(cleaned)} fields)")
    return mapping
