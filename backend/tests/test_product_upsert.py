"""Keyed product upserts: classification, bulk path and row-by-row fallback."""

from decimal import Decimal

from sqlalchemy import event, select
from sqlalchemy.exc import OperationalError

from dataport.db.models.product import Product
from dataport.services import product_upsert
from dataport.services.product_upsert import classify, upsert_products
from dataport.services.row_normalizer import ProductDraft


def draft(code: str, row: int, client_id: int = 1, **fields) -> ProductDraft:
    return ProductDraft(
        client_id=client_id,
        product_code=code,
        product_name=fields.pop("product_name", f"Item {code}"),
        import_job_id=None,
        row_number=row,
        **fields,
    )


def stored(db_session, client_id: int = 1) -> dict[str, Product]:
    products = db_session.scalars(select(Product).where(Product.client_id == client_id)).all()
    return {p.product_code: p for p in products}


def test_classify_counts_repeats_within_batch():
    drafts = [draft("A", 2), draft("B", 3), draft("A", 4), draft("C", 5)]
    inserted, updated, latest = classify(drafts, existing_codes={"C"})
    assert (inserted, updated) == (2, 2)
    assert latest["A"].row_number == 4


def test_insert_then_update(db_session, client_record):
    outcome = upsert_products([draft("A", 2, stock_quantity=5)], db_session)
    db_session.commit()
    assert (outcome.inserted, outcome.updated, outcome.failed) == (1, 0, 0)

    outcome = upsert_products(
        [draft("A", 2, stock_quantity=9, cost_price=Decimal("1.50")), draft("B", 3)], db_session
    )
    db_session.commit()
    assert (outcome.inserted, outcome.updated) == (1, 1)

    products = stored(db_session)
    assert products["A"].stock_quantity == 9
    assert products["A"].cost_price == Decimal("1.50")
    assert products["B"].is_active is True


def test_last_duplicate_wins(db_session, client_record):
    outcome = upsert_products(
        [draft("A", 2, stock_quantity=10), draft("A", 3, stock_quantity=20)], db_session
    )
    db_session.commit()
    assert (outcome.inserted, outcome.updated) == (1, 1)
    assert stored(db_session)["A"].stock_quantity == 20


def test_codes_are_scoped_per_client(db_session, client_record):
    upsert_products([draft("A", 2, client_id=1)], db_session)
    outcome = upsert_products([draft("A", 2, client_id=2)], db_session)
    db_session.commit()
    assert outcome.inserted == 1
    assert len(stored(db_session, 1)) == len(stored(db_session, 2)) == 1


def test_bulk_update_casts_numeric_columns(engine, db_session, client_record):
    statements = []

    @event.listens_for(engine, "before_cursor_execute")
    def capture(conn, cursor, statement, parameters, context, executemany):
        statements.append(statement)

    try:
        upsert_products([draft("A", 2, stock_quantity=4, cost_price=Decimal("2.25"))], db_session)
        db_session.commit()
    finally:
        event.remove(engine, "before_cursor_execute", capture)

    upsert = next(s for s in statements if "ON CONFLICT" in s)
    assert "CAST(excluded.stock_quantity AS INTEGER)" in upsert
    assert "CAST(excluded.cost_price AS NUMERIC(14, 2))" in upsert
    assert "CAST(excluded.product_name" not in upsert
    product = stored(db_session)["A"]
    assert product.stock_quantity == 4
    assert product.cost_price == Decimal("2.25")


def test_bulk_failure_falls_back_to_row_by_row(db_session, client_record, monkeypatch):
    def broken_bulk(db, rows):
        raise OperationalError("INSERT ...", {}, Exception("statement too large"))

    monkeypatch.setattr(product_upsert, "_bulk_upsert", broken_bulk)
    upsert_products([draft("A", 2)], db_session)
    db_session.commit()

    outcome = upsert_products(
        [draft("A", 2, stock_quantity=3), draft("B", 3), draft("B", 4, stock_quantity=7)],
        db_session,
    )
    db_session.commit()
    assert (outcome.inserted, outcome.updated, outcome.failed) == (1, 2, 0)
    products = stored(db_session)
    assert products["A"].stock_quantity == 3
    assert products["B"].stock_quantity == 7


def test_row_failure_in_fallback_is_isolated(db_session, client_record, monkeypatch):
    def broken_bulk(db, rows):
        raise OperationalError("INSERT ...", {}, Exception("boom"))

    real_upsert_one = product_upsert._upsert_one

    def flaky_upsert_one(db, item):
        if item.product_code == "BAD":
            raise OperationalError("UPDATE ...", {}, Exception("value too long"))
        return real_upsert_one(db, item)

    monkeypatch.setattr(product_upsert, "_bulk_upsert", broken_bulk)
    monkeypatch.setattr(product_upsert, "_upsert_one", flaky_upsert_one)

    outcome = upsert_products([draft("A", 2), draft("BAD", 3), draft("C", 4)], db_session)
    db_session.commit()

    assert (outcome.inserted, outcome.updated, outcome.failed) == (2, 0, 1)
    assert [e.row for e in outcome.errors] == [3]
    assert set(stored(db_session)) == {"A", "C"}


def test_empty_batch_is_a_no_op(db_session):
    outcome = upsert_products([], db_session)
    assert (outcome.inserted, outcome.updated, outcome.failed, outcome.errors) == (0, 0, 0, [])
