"""Pydantic models describing Product payloads."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel


class ProductRead(BaseModel):
    id: int
    product_code: str
    product_name: str
    jan_code: str | None = None
    supplier_code: str | None = None
    supplier_name: str | None = None
    stock_quantity: int = 0
    allocated_quantity: int = 0
    free_stock_quantity: int = 0
    defective_stock_quantity: int = 0
    shortage_quantity: int = 0
    order_remaining_quantity: int = 0
    optimal_stock_quantity: int = 0
    order_point: int = 0
    lot_size: int = 0
    cost_price: Decimal = Decimal("0")
    selling_price: Decimal = Decimal("0")
    stock_value: Decimal = Decimal("0")
    display_price: str | None = None
    product_category: str | None = None
    product_tag: str | None = None
    handling_category: str | None = None
    is_active: bool = True
    import_job_id: str | None = None
    imported_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ProductListResponse(BaseModel):
    items: list[ProductRead]
    total: int
    page: int
    page_size: int
