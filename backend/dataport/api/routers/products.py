"""Read-only product listing for the calling client."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from dataport.api.dependencies.context import get_client_id, get_session
from dataport.api.schemas.product import ProductListResponse, ProductRead
from dataport.db.models.product import Product

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get(
    "/",
    summary="List products with filters and pagination",
    response_model=ProductListResponse,
)
async def list_products(
    code: str | None = Query(None, description="Filter by product code (partial match)"),
    name: str | None = Query(None, description="Filter by product name (partial match)"),
    jan: str | None = Query(None, description="Filter by JAN code (exact match)"),
    active: bool | None = Query(None, description="Filter by active status"),
    page: int = Query(1, ge=1, description="Page number (1-indexed)"),
    page_size: int = Query(50, ge=1, le=500, description="Items per page"),
    db: Session = Depends(get_session),
    client_id: int = Depends(get_client_id),
) -> ProductListResponse:
    """Return one page of the client's products, ordered by product code.

    Filters are combined with AND logic.
    """
    try:
        conditions = [Product.client_id == client_id]
        if code:
            conditions.append(func.lower(Product.product_code).contains(code.lower()))
        if name:
            conditions.append(Product.product_name.ilike(f"%{name}%"))
        if jan:
            conditions.append(Product.jan_code == jan)
        if active is not None:
            conditions.append(Product.is_active == active)

        total = db.scalar(select(func.count(Product.id)).where(*conditions)) or 0

        offset = (page - 1) * page_size
        query = (
            select(Product)
            .where(*conditions)
            .order_by(Product.product_code.asc())
            .offset(offset)
            .limit(page_size)
        )
        products = db.scalars(query).all()

        return ProductListResponse(
            items=[ProductRead.model_validate(p) for p in products],
            total=total,
            page=page,
            page_size=page_size,
        )
    except SQLAlchemyError as e:
        logger.error(f"Database error listing products: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve products",
        ) from e
