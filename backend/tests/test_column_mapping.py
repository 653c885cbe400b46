"""Column resolution from saved mappings and the default header dictionary."""

import pytest

from dataport.db.models.column_mapping import ColumnMapping
from dataport.services.column_mapping import (
    DEFAULT_COLUMN_MAP,
    get_column_mapping,
    resolve_column_indices,
    save_column_mapping,
    validate_mapping,
)
from dataport.services.errors import ColumnMappingError, MappingValidationError


def test_header_dictionary_resolution():
    assert resolve_column_indices(["ＪＡＮコード", "商品コード"]) == {
        "jan_code": 0,
        "product_code": 1,
    }


def test_headers_are_trimmed_and_unknown_ones_ignored():
    indices = resolve_column_indices([" 商品コード ", "備考", "在庫数"])
    assert indices == {"product_code": 0, "stock_quantity": 2}


def test_first_matching_column_wins():
    indices = resolve_column_indices(["SKU", "商品コード"])
    assert indices["product_code"] == 0


def test_missing_product_code_is_fatal():
    with pytest.raises(ColumnMappingError):
        resolve_column_indices(["商品名", "在庫数"])


def test_header_dictionary_is_read_only():
    with pytest.raises(TypeError):
        DEFAULT_COLUMN_MAP["品番"] = "product_code"


def test_configured_mapping_overrides_headers():
    saved = ColumnMapping(
        client_id=1,
        is_configured=True,
        column_mappings={"product_code": 2, "jan_code": 0, "product_name": None, "lot_size": 9},
    )
    indices = resolve_column_indices(["a", "b", "c"], saved)
    # Unmapped and out-of-range entries are dropped
    assert indices == {"product_code": 2, "jan_code": 0}


def test_unconfigured_mapping_falls_back_to_headers():
    saved = ColumnMapping(client_id=1, is_configured=False, column_mappings={"product_code": 1})
    assert resolve_column_indices(["商品コード", "x"], saved) == {"product_code": 0}


def test_validate_mapping_requires_code_and_jan():
    with pytest.raises(MappingValidationError, match="jan_code"):
        validate_mapping(["a", "b"], {"product_code": 0, "jan_code": None})


@pytest.mark.parametrize(
    "mappings",
    [
        {"product_code": 0, "jan_code": 1, "colour": 0},
        {"product_code": 0, "jan_code": 5},
        {"product_code": "0", "jan_code": 1},
        {"product_code": True, "jan_code": 1},
    ],
)
def test_validate_mapping_rejects_bad_entries(mappings):
    with pytest.raises(MappingValidationError):
        validate_mapping(["a", "b"], mappings)


def test_save_and_update_column_mapping(db_session, client_record):
    save_column_mapping(
        db_session,
        1,
        ["JAN", "CODE"],
        {"product_code": 1, "jan_code": 0},
        sample_file_name="sample.csv",
        configured_by="admin@acme.example",
    )
    db_session.commit()

    save_column_mapping(
        db_session, 1, ["JAN", "CODE", "NAME"], {"product_code": 1, "jan_code": 0, "product_name": 2}
    )
    db_session.commit()

    mapping = get_column_mapping(db_session, 1)
    assert mapping.is_configured is True
    assert mapping.total_columns == 3
    assert mapping.sample_headers == ["JAN", "CODE", "NAME"]
    assert mapping.column_mappings["product_name"] == 2
    assert db_session.query(ColumnMapping).count() == 1
