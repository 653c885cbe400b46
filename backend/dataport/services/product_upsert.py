"""Bulk keyed upsert of normalized product rows.

Each batch is classified against the rows already stored for the client
(one read), then written with a single ``INSERT ... ON CONFLICT DO UPDATE``
per sub-batch. When the bulk statement fails the batch is replayed row by
row so one bad record cannot sink the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import cast, func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dataport.db.models.product import PRICE_FIELDS, QUANTITY_FIELDS, Product
from dataport.services.errors import RowError
from dataport.services.row_normalizer import ProductDraft

logger = logging.getLogger(__name__)

# Keeps one statement well under PostgreSQL's 65535 bind parameter limit
BULK_STATEMENT_ROWS = 500

CONFLICT_KEY = ("client_id", "product_code")

NUMERIC_FIELDS = frozenset(QUANTITY_FIELDS + PRICE_FIELDS)

_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


@dataclass
class UpsertOutcome:
    inserted: int = 0
    updated: int = 0
    failed: int = 0
    errors: list[RowError] = field(default_factory=list)


def fetch_existing_codes(db: Session, client_id: int, codes: set[str]) -> set[str]:
    if not codes:
        return set()
    stmt = select(Product.product_code).where(
        Product.client_id == client_id,
        Product.product_code.in_(codes),
    )
    return set(db.scalars(stmt).all())


def classify(
    drafts: list[ProductDraft], existing_codes: set[str]
) -> tuple[int, int, dict[str, ProductDraft]]:
    """Count inserts/updates per row and keep the last draft per code.

    A code repeated within the batch is an insert the first time and an
    update afterwards; the values written are those of the last occurrence.
    """
    seen = set(existing_codes)
    latest: dict[str, ProductDraft] = {}
    inserted = updated = 0
    for draft in drafts:
        if draft.product_code in seen:
            updated += 1
        else:
            inserted += 1
            seen.add(draft.product_code)
        latest[draft.product_code] = draft
    return inserted, updated, latest


def _row_values(draft: ProductDraft) -> dict[str, Any]:
    values = draft.to_values()
    values["is_active"] = True
    return values


def _excluded_value(stmt, name: str):
    value = stmt.excluded[name]
    if name in NUMERIC_FIELDS:
        return cast(value, Product.__table__.c[name].type)
    return value


def _bulk_upsert(db: Session, rows: list[dict[str, Any]]) -> None:
    dialect = db.get_bind().dialect.name
    insert = _DIALECT_INSERTS.get(dialect)
    if insert is None:
        raise NotImplementedError(f"No bulk upsert for dialect {dialect}")

    for start in range(0, len(rows), BULK_STATEMENT_ROWS):
        stmt = insert(Product).values(rows[start : start + BULK_STATEMENT_ROWS])
        mutable = {
            name: _excluded_value(stmt, name) for name in rows[0] if name not in CONFLICT_KEY
        }
        mutable["updated_at"] = func.now()
        db.execute(
            stmt.on_conflict_do_update(index_elements=list(CONFLICT_KEY), set_=mutable)
        )


def _upsert_one(db: Session, draft: ProductDraft) -> bool:
    """Write a single row through the ORM; True when it was an insert."""
    values = _row_values(draft)
    product = db.scalar(
        select(Product).where(
            Product.client_id == draft.client_id,
            Product.product_code == draft.product_code,
        )
    )
    if product is None:
        db.add(Product(**values))
        db.flush()
        return True
    for name, value in values.items():
        setattr(product, name, value)
    db.flush()
    return False


def _upsert_row_by_row(db: Session, drafts: list[ProductDraft]) -> UpsertOutcome:
    outcome = UpsertOutcome()
    try:
        with db.begin_nested():
            for draft in drafts:
                try:
                    with db.begin_nested():
                        if _upsert_one(db, draft):
                            outcome.inserted += 1
                        else:
                            outcome.updated += 1
                except SQLAlchemyError as e:
                    logger.warning(
                        f"Row {draft.row_number} ({draft.product_code}) failed to upsert: {e}"
                    )
                    outcome.failed += 1
                    outcome.errors.append(RowError(draft.row_number, f"Upsert failed: {e}"))
    except SQLAlchemyError as e:
        logger.error(f"Row-by-row fallback failed for batch: {e}", exc_info=True)
        return UpsertOutcome(
            failed=len(drafts),
            errors=[RowError(drafts[0].row_number, f"Batch error: {e}")],
        )
    return outcome


def upsert_products(drafts: list[ProductDraft], db: Session) -> UpsertOutcome:
    """Insert or update a batch of drafts for one client.

    Raises:
        SQLAlchemyError: the classification read failed; nothing was written.
    """
    if not drafts:
        return UpsertOutcome()

    client_id = drafts[0].client_id
    codes = {draft.product_code for draft in drafts}
    try:
        existing = fetch_existing_codes(db, client_id, codes)
    except SQLAlchemyError as e:
        logger.error(f"Database error fetching existing products: {e}", exc_info=True)
        raise

    inserted, updated, latest = classify(drafts, existing)
    rows = [_row_values(draft) for draft in latest.values()]
    try:
        with db.begin_nested():
            _bulk_upsert(db, rows)
        return UpsertOutcome(inserted=inserted, updated=updated)
    except (SQLAlchemyError, NotImplementedError) as e:
        logger.warning(
            f"Bulk upsert of {len(rows)} products failed, falling back to row-by-row: {e}"
        )

    return _upsert_row_by_row(db, drafts)
