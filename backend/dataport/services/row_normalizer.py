"""Turn a raw CSV row into a typed product record."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import Decimal, InvalidOperation

from dataport.db.models.product import OPTIONAL_TEXT_FIELDS, PRICE_FIELDS, QUANTITY_FIELDS
from dataport.services.errors import RowValidationError

ZERO = Decimal("0")
CENTS = Decimal("0.01")

# Column ranges: INTEGER quantities, NUMERIC(14, 2) prices
MAX_QUANTITY = 2**31 - 1
MAX_PRICE = Decimal("1e12")


@dataclass
class ProductDraft:
    client_id: int
    product_code: str
    product_name: str
    import_job_id: str | None
    row_number: int
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
    cost_price: Decimal = ZERO
    selling_price: Decimal = ZERO
    stock_value: Decimal = ZERO
    display_price: str | None = None
    product_category: str | None = None
    product_tag: str | None = None
    handling_category: str | None = None

    def to_values(self) -> dict:
        """Column values for the products table (row number dropped)."""
        values = asdict(self)
        values.pop("row_number")
        return values


def cell(row: list[str], indices: dict[str, int], field: str) -> str:
    index = indices.get(field)
    if index is None or index >= len(row):
        return ""
    return row[index].strip()


def parse_decimal(value: str) -> Decimal:
    """Lenient number parsing: separators stripped, junk becomes zero."""
    if not value:
        return ZERO
    cleaned = value.replace(",", "").replace("，", "").replace("¥", "").replace("￥", "")
    try:
        number = Decimal(cleaned)
    except InvalidOperation:
        return ZERO
    if not number.is_finite():
        return ZERO
    return number


def parse_int(value: str) -> int:
    """Whole quantity; values outside the column range read as zero."""
    number = parse_decimal(value)
    # Compare before int(): 1e999999999 is a valid Decimal but a huge int
    if abs(number) > MAX_QUANTITY:
        return 0
    return int(number)


def parse_price(value: str) -> Decimal:
    number = parse_decimal(value)
    if abs(number) >= MAX_PRICE:
        return ZERO
    return number.quantize(CENTS)


def normalize_row(
    row: list[str],
    indices: dict[str, int],
    client_id: int,
    job_id: str | None,
    row_number: int,
) -> ProductDraft:
    """Build a ProductDraft; an empty product code rejects the row."""
    product_code = cell(row, indices, "product_code")
    if not product_code:
        raise RowValidationError("product code is empty")

    draft = ProductDraft(
        client_id=client_id,
        product_code=product_code,
        product_name=cell(row, indices, "product_name") or product_code,
        import_job_id=job_id,
        row_number=row_number,
    )
    for field in OPTIONAL_TEXT_FIELDS:
        setattr(draft, field, cell(row, indices, field) or None)
    for field in QUANTITY_FIELDS:
        setattr(draft, field, parse_int(cell(row, indices, field)))
    for field in PRICE_FIELDS:
        setattr(draft, field, parse_price(cell(row, indices, field)))
    return draft
