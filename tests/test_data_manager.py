"""Unit tests documenting the expected behavior of the persistence layer."""

from __future__ import annotations

import configparser
import json
from datetime import timedelta
from decimal import Decimal
from pathlib import Path

import openpyxl
import pytest

from pos_store import data_manager
from pos_store.constants import (
    MAX_ACTIVITY_LOG_LIMIT,
    STORAGE_PREFIX,
    MovementType,
    PaymentMethod,
    StorageKey,
)
from pos_store.models import (
    BusinessSettings,
    CashMovement,
    Customer,
    LineItem,
    Product,
    ProductVariant,
    SequenceConfig,
    Transaction,
    ZReport,
)


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


def test_find_config_file_respects_explicit_path(config_file: Path):
    """Supplying an explicit path should be treated as the winning answer."""

    assert data_manager.find_config_file(config_file) == config_file


def test_find_config_file_discovers_in_parent_directory(tmp_path, monkeypatch):
    """Auto-discovery should walk up from the working directory."""

    config_file = tmp_path / "config.ini"
    config_file.write_text("[System]\nDataFile=store.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == bundle.workbook_path.resolve()
    assert settings.store_name == "Test Shop"
    assert settings.sync_timeout == timedelta(seconds=5)
    assert settings.bcrypt_rounds == 4


def test_parse_settings_requires_data_file(tmp_path):
    """A missing [System] DataFile should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Sync]\nIntervalSeconds=30")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_uses_defaults_for_optional_sections(tmp_path):
    """Only DataFile is mandatory; everything else falls back to defaults."""

    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=store.xlsx")
    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.max_failed_attempts == 5
    assert settings.lockout_duration == timedelta(minutes=15)
    assert settings.skew_guard == timedelta(seconds=10)
    assert settings.activity_log_limit == 500


def test_parse_settings_clamps_out_of_range_log_limit(tmp_path):
    parser = configparser.ConfigParser()
    parser.read_string("[System]\nDataFile=store.xlsx\n[Security]\nActivityLogLimit=5000")

    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.activity_log_limit == MAX_ACTIVITY_LOG_LIMIT


# ---------------------------------------------------------------------------
# Value obfuscation
# ---------------------------------------------------------------------------


def test_encode_value_is_prefixed_and_reversible():
    """Stored values carry the prefix and decode back to the same JSON."""

    value = {"name": "Café ñandú", "items": [1, 2.5, None, True]}
    encoded = data_manager.encode_value(value)

    assert encoded.startswith(STORAGE_PREFIX)
    assert "Caf" not in encoded
    assert data_manager.decode_value(encoded) == value


def test_decode_value_accepts_plain_json():
    """Values written before obfuscation was introduced are plain JSON."""

    assert data_manager.decode_value('[{"id": "1"}]') == [{"id": "1"}]


@pytest.mark.parametrize("raw", [STORAGE_PREFIX + "!!not-base64!!", "{broken json", None, ""])
def test_decode_value_returns_fallback_for_corrupt_input(raw):
    """Corrupt or missing values never raise."""

    assert data_manager.decode_value(raw, fallback=[]) == []


def test_safe_load_returns_fallback_for_missing_key(storage):
    assert data_manager.safe_load(storage, "products", fallback=[]) == []


def test_safe_save_many_reports_quota_failure(caplog):
    """A full backend logs an error and reports failure instead of raising."""

    store = data_manager.MemoryStore(quota=50)
    ok = data_manager.safe_save_many(store, {"products": [{"id": str(i)} for i in range(50)]})

    assert ok is False
    assert store.get("products") is None
    assert "full" in caplog.text


def test_safe_save_many_writes_every_key(storage):
    assert data_manager.safe_save_many(storage, {"a": [1], "b": {"x": 2}}) is True
    assert data_manager.safe_load(storage, "a") == [1]
    assert data_manager.safe_load(storage, "b") == {"x": 2}


# ---------------------------------------------------------------------------
# Workbook store
# ---------------------------------------------------------------------------


def test_create_storage_workbook_has_only_storage_sheet():
    workbook = data_manager.create_storage_workbook()

    assert workbook.sheetnames == [data_manager.STORAGE_SHEET]
    header = [cell.value for cell in workbook[data_manager.STORAGE_SHEET][1]]
    assert header == list(data_manager.STORAGE_COLUMNS)


def test_open_workbook_missing_file_raises(tmp_path):
    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_workbook_store_persists_across_instances(config_factory):
    """Values written through one store instance are read back by a new one."""

    bundle = config_factory()
    store = data_manager.WorkbookStore(bundle.workbook_path)
    data_manager.safe_save_many(store, {"categories": ["Drinks", "Snacks"]})

    reopened = data_manager.WorkbookStore(bundle.workbook_path)

    assert data_manager.safe_load(reopened, "categories") == ["Drinks", "Snacks"]


def test_workbook_store_splits_long_values_into_chunks(config_factory, monkeypatch):
    """Values longer than a cell span several numbered rows."""

    monkeypatch.setattr(data_manager, "CELL_CHUNK_SIZE", 16)
    bundle = config_factory()
    store = data_manager.WorkbookStore(bundle.workbook_path)
    value = "x" * 40
    store.set_many({"notes": value})

    sheet = openpyxl.load_workbook(bundle.workbook_path)[data_manager.STORAGE_SHEET]
    rows = [row for row in sheet.iter_rows(min_row=2, values_only=True) if row[0] == "notes"]
    assert [row[1] for row in rows] == [0, 1, 2]
    assert data_manager.WorkbookStore(bundle.workbook_path).get("notes") == value


def test_workbook_store_remove_drops_rows(config_factory):
    bundle = config_factory()
    store = data_manager.WorkbookStore(bundle.workbook_path)
    store.set_many({"a": "1", "b": "2"})

    store.remove("a")

    reopened = data_manager.WorkbookStore(bundle.workbook_path)
    assert reopened.get("a") is None
    assert reopened.get("b") == "2"


# ---------------------------------------------------------------------------
# Record codec
# ---------------------------------------------------------------------------


def test_serialize_record_uses_camel_case_and_omits_none():
    product = Product(id="1000", name="Latte", price=Decimal("3.50"), stock=4, tax_rate=Decimal("16"))

    payload = data_manager.serialize_record(product)

    assert payload["id"] == "1000"
    assert payload["price"] == 3.5
    assert payload["taxRate"] == 16
    assert payload["isActive"] is True
    assert "cost" not in payload
    assert "description" not in payload


def test_product_with_variants_round_trips():
    product = Product(
        id="1001",
        name="T-shirt",
        price=Decimal("12.99"),
        stock=5,
        has_variants=True,
        variants=(
            ProductVariant(id="v1", name="S", stock=2),
            ProductVariant(id="v2", name="M", stock=3),
        ),
    )

    wire = json.loads(json.dumps(data_manager.serialize_record(product)))
    restored = data_manager.deserialize_record(Product, wire)

    assert restored == product
    assert restored.variant_stock == 5


def test_cash_movement_uses_z_report_wire_name():
    movement = CashMovement(
        id="c1",
        type=MovementType.CLOSE,
        amount=Decimal("90"),
        is_z_cut=True,
        z_report=ZReport(expected_cash=Decimal("100"), declared_cash=Decimal("90"), difference=Decimal("-10")),
    )

    payload = data_manager.serialize_record(movement)

    assert payload["zReportData"]["difference"] == -10
    assert data_manager.deserialize_record(CashMovement, payload).z_report.declared_cash == Decimal("90")


def test_unknown_keys_survive_a_round_trip():
    """Keys written by other clients are carried through unchanged."""

    raw = {"id": "7", "total": 10, "items": [], "printedBy": "kiosk-2", "loyalty": {"points": 3}}

    sale = data_manager.deserialize_record(Transaction, raw)
    payload = data_manager.serialize_record(sale)

    assert sale.extra["printedBy"] == "kiosk-2"
    assert payload["printedBy"] == "kiosk-2"
    assert payload["loyalty"] == {"points": 3}


def test_unknown_enum_value_is_kept_as_text():
    sale = data_manager.deserialize_record(Transaction, {"id": "8", "paymentMethod": "voucher"})

    assert sale.payment_method == "voucher"
    assert data_manager.serialize_record(sale)["paymentMethod"] == "voucher"


def test_known_enum_values_are_decoded():
    sale = data_manager.deserialize_record(
        Transaction,
        {"id": "9", "paymentMethod": "card", "items": [{"id": "1000", "quantity": "2", "price": "1.5"}]},
    )

    assert sale.payment_method is PaymentMethod.CARD
    assert sale.items == (LineItem(id="1000", quantity=2, price=Decimal("1.5")),)


def test_deserialize_collection_skips_unreadable_entries(caplog):
    raw = [{"id": "1", "name": "ok"}, "garbage", {"name": "no id"}, {"id": "2", "price": "abc"}]

    products = data_manager.deserialize_collection(StorageKey.PRODUCTS, raw)

    assert [product.id for product in products] == ["1"]
    assert "Skipping unreadable products entry" in caplog.text


@pytest.mark.parametrize("quantity", [float("inf"), "Infinity", "NaN"])
def test_non_finite_quantity_is_unreadable(quantity):
    with pytest.raises(ValueError, match="Not an integer"):
        data_manager.deserialize_record(LineItem, {"id": "1000", "quantity": quantity})


@pytest.mark.parametrize("limit", ["NaN", "Infinity", "-inf", float("inf")])
def test_non_finite_amount_is_unreadable(limit):
    with pytest.raises(ValueError, match="finite"):
        data_manager.deserialize_record(Customer, {"id": "1", "creditLimit": limit})


def test_deserialize_collection_reads_categories_as_strings():
    assert data_manager.deserialize_collection(StorageKey.CATEGORIES, ["A", None, 3]) == ["A", "3"]


def test_deserialize_settings_merges_over_defaults():
    settings = data_manager.deserialize_settings({"name": "Corner Shop", "sequences": {"ticketStart": 500}})

    assert settings.name == "Corner Shop"
    assert settings.currency == BusinessSettings().currency
    assert settings.sequences == SequenceConfig(ticket_start=500)
    assert settings.security_config.auto_lock_minutes == 5


def test_deserialize_settings_falls_back_on_garbage():
    assert data_manager.deserialize_settings("nope") == BusinessSettings()
