"""SQLAlchemy model for client product master records."""

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.types import DateTime

from dataport.db.base import Base

# Columns an import overwrites on conflict (everything but the key and id)
QUANTITY_FIELDS = (
    "stock_quantity",
    "allocated_quantity",
    "free_stock_quantity",
    "defective_stock_quantity",
    "shortage_quantity",
    "order_remaining_quantity",
    "optimal_stock_quantity",
    "order_point",
    "lot_size",
)
PRICE_FIELDS = ("cost_price", "selling_price", "stock_value")
OPTIONAL_TEXT_FIELDS = (
    "jan_code",
    "supplier_code",
    "supplier_name",
    "display_price",
    "product_category",
    "product_tag",
    "handling_category",
)


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    client_id = Column(Integer, ForeignKey("clients.id"), nullable=False, index=True)
    product_code = Column(String(128), nullable=False)
    product_name = Column(String(512), nullable=False)
    jan_code = Column(String(64), index=True)
    supplier_code = Column(String(128))
    supplier_name = Column(String(255))

    stock_quantity = Column(Integer, nullable=False, default=0)
    allocated_quantity = Column(Integer, nullable=False, default=0)
    free_stock_quantity = Column(Integer, nullable=False, default=0)
    defective_stock_quantity = Column(Integer, nullable=False, default=0)
    shortage_quantity = Column(Integer, nullable=False, default=0)
    order_remaining_quantity = Column(Integer, nullable=False, default=0)
    optimal_stock_quantity = Column(Integer, nullable=False, default=0)
    order_point = Column(Integer, nullable=False, default=0)
    lot_size = Column(Integer, nullable=False, default=0)

    cost_price = Column(Numeric(14, 2), nullable=False, default=0)
    selling_price = Column(Numeric(14, 2), nullable=False, default=0)
    stock_value = Column(Numeric(16, 2), nullable=False, default=0)

    display_price = Column(String(64))
    product_category = Column(String(128))
    product_tag = Column(String(255))
    handling_category = Column(String(128))

    is_active = Column(Boolean, nullable=False, default=True)
    import_job_id = Column(String(36), ForeignKey("import_jobs.id"), index=True)
    imported_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        UniqueConstraint("client_id", "product_code", name="uq_products_client_code"),
    )
