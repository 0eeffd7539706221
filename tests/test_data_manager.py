"""Unit tests documenting the expected behavior of the data access layer."""

from __future__ import annotations

import configparser
from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path

import openpyxl
from openpyxl.workbook import Workbook as OpenpyxlWorkbook
import pytest

from pos_core import constants, data_manager


def _product(product_id: str = "P1", *, code: str = "001", unit=constants.UnitType.PIECE) -> data_manager.ProductRow:
    return data_manager.ProductRow(
        product_id=product_id,
        code=code,
        name="Leche Entera",
        description="1 litro",
        price=Decimal("65.00"),
        stock=Decimal("12"),
        min_stock=Decimal("5"),
        category="Lácteos",
        unit=unit,
        is_active=True,
        created_at="2024-05-01T12:00:00+00:00",
        updated_at="2024-05-01T12:00:00+00:00",
    )


def _sale(sale_id: str = "S1") -> data_manager.SaleRecord:
    product = _product(unit=constants.UnitType.WEIGHT)
    item = data_manager.SaleItem(
        item_id="P1-1",
        product_id=product.product_id,
        product=product,
        quantity=Decimal("1"),
        weight=Decimal("1.5"),
        unit_price=product.price,
        subtotal=Decimal("97.50"),
    )
    return data_manager.SaleRecord(
        sale_id=sale_id,
        items=(item,),
        subtotal=Decimal("97.50"),
        tax=Decimal("17.55"),
        total=Decimal("115.05"),
        payment_method=constants.PaymentMethod.CREDIT,
        amount_paid=Decimal("115.05"),
        change=Decimal("0"),
        cashier_id="CAJA-01",
        cashier_name="María",
        timestamp=datetime(2024, 5, 1, 15, 30, tzinfo=UTC),
        customer_info=data_manager.CustomerInfo("C1", "Ana Pérez", "ana@example.com", "001-0000001-1"),
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
    config_file.write_text("[System]\nDataFile=pos_data.xlsx")
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert data_manager.find_config_file() == config_file


def test_find_config_file_raises_when_missing(tmp_path, monkeypatch):
    """Absent configuration should surface a clear FileNotFoundError."""

    monkeypatch.chdir(tmp_path)
    with pytest.raises(FileNotFoundError):
        data_manager.find_config_file()


def test_read_config_keeps_option_case(config_file: Path):
    """read_config should return a parser that preserves CamelCase keys."""

    parser = data_manager.read_config(config_file)
    assert parser.get("System", "StoreName") == "Colmado de Prueba"
    assert "DefaultCashier" in parser.options("Defaults")


def test_read_config_missing_file_raises(tmp_path):
    """Missing files should propagate a FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.read_config(tmp_path / "not_there.ini")


def test_parse_settings_resolves_relative_paths(config_factory):
    """Relative DataFile entries should be anchored to the config location."""

    bundle = config_factory(make_relative=True)
    parser = data_manager.read_config(bundle.config_path)
    settings = data_manager.parse_settings(parser, base_path=bundle.config_path.parent)

    assert settings.data_file == (bundle.config_path.parent / bundle.workbook_path.name).resolve()
    assert settings.default_cashier_id == "CAJA-01"
    assert settings.tax_rate == Decimal("0.18")
    assert settings.password_rounds == 4


def test_parse_settings_applies_defaults_for_optional_sections(tmp_path):
    """Business and Security sections are optional."""

    parser = configparser.ConfigParser()
    parser.optionxform = str
    parser.read_string(
        "[System]\nDataFile=pos.xlsx\nStoreName=Tienda\nSchemaVersion=1.0.0\n"
        "[Defaults]\nDefaultCashier=CAJA-02\n"
    )
    settings = data_manager.parse_settings(parser, base_path=tmp_path)

    assert settings.currency == constants.DEFAULT_CURRENCY
    assert settings.tax_rate == constants.DEFAULT_TAX_RATE
    assert settings.timezone == constants.DEFAULT_TIMEZONE
    assert settings.max_password_attempts == constants.DEFAULT_MAX_PASSWORD_ATTEMPTS
    assert settings.business == data_manager.BusinessInfo()


def test_parse_settings_requires_expected_sections(tmp_path):
    """Missing keys should result in a descriptive KeyError."""

    parser = configparser.ConfigParser()
    parser.read_string("[Other]\nvalue=1")
    with pytest.raises(KeyError):
        data_manager.parse_settings(parser, base_path=tmp_path)


def test_parse_settings_rejects_negative_tax_rate(tmp_path):
    """A negative TaxRate is a configuration error."""

    parser = configparser.ConfigParser()
    parser.optionxform = str
    parser.read_string(
        "[System]\nDataFile=pos.xlsx\nStoreName=Tienda\nSchemaVersion=1.0.0\nTaxRate=-0.1\n"
        "[Defaults]\nDefaultCashier=CAJA-02\n"
    )
    with pytest.raises(ValueError):
        data_manager.parse_settings(parser, base_path=tmp_path)


# ---------------------------------------------------------------------------
# Workbook lifecycle
# ---------------------------------------------------------------------------


def test_open_workbook_returns_openpyxl_instance(master_workbook_path):
    """open_workbook should hand back a loaded Workbook object."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert isinstance(workbook, OpenpyxlWorkbook)
    assert set(workbook.sheetnames) == {member.value for member in constants.SheetName}


def test_open_workbook_missing_file_raises(tmp_path):
    """Opening a missing workbook should raise FileNotFoundError."""

    with pytest.raises(FileNotFoundError):
        data_manager.open_workbook(tmp_path / "missing.xlsx")


def test_new_workbook_is_seeded_with_default_categories(master_workbook_path):
    """The bootstrap workbook ships the default category list."""

    workbook = data_manager.open_workbook(master_workbook_path)
    assert list(data_manager.iter_categories(workbook)) == list(constants.DEFAULT_CATEGORIES)


def test_saved_rows_survive_reload(master_workbook_path):
    """Products and sales written through the DAL should read back equal."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, _product())
    data_manager.append_sale(workbook, _sale(), business_day="2024-05-01")
    data_manager.save_workbook(workbook, master_workbook_path)

    reloaded = data_manager.refresh_workbook(master_workbook_path)
    [product] = list(data_manager.iter_products(reloaded))
    [sale] = list(data_manager.iter_sales(reloaded))

    assert product == _product()
    assert sale == _sale()
    assert sale.items[0].effective_quantity == Decimal("1.5")
    assert reloaded[constants.SheetName.SALES.value]["C2"].value == "2024-05-01"


def test_money_cells_keep_every_digit(master_workbook_path):
    """Decimals beyond 16 significant digits are written as exact text."""

    long_total = Decimal("17.98506292522481478")
    sale = replace(_sale(), subtotal=Decimal("15.241578750190521"), total=long_total, amount_paid=long_total)
    product = replace(_product(), price=Decimal("12.3456789"), stock=Decimal("98.76543211000000001"))

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, product)
    data_manager.append_sale(workbook, sale, business_day="2024-05-01")
    data_manager.save_workbook(workbook, master_workbook_path)

    reloaded = data_manager.refresh_workbook(master_workbook_path)
    assert list(data_manager.iter_products(reloaded)) == [product]
    assert list(data_manager.iter_sales(reloaded)) == [sale]
    assert reloaded[constants.SheetName.SALES.value]["G2"].value == "17.98506292522481478"


def test_user_rows_and_sale_removal(master_workbook_path):
    """Users append, update and delete by id; sales can be removed by id."""

    workbook = data_manager.open_workbook(master_workbook_path)
    seeded = list(data_manager.iter_users(workbook))
    user = data_manager.UserRow(
        "U1", "pedro", "Pedro", constants.UserRole.ADMIN, "", "hash", True, "2024-05-01T12:00:00+00:00"
    )
    data_manager.append_user(workbook, user)
    data_manager.update_user(workbook, "U1", field_values={"IsActive": False, "Role": constants.UserRole.CASHIER})

    assert list(data_manager.iter_users(workbook)) == [
        *seeded,
        replace(user, is_active=False, role=constants.UserRole.CASHIER),
    ]
    data_manager.delete_user(workbook, "U1")
    assert list(data_manager.iter_users(workbook)) == seeded

    data_manager.append_sale(workbook, _sale("S1"), business_day="2024-05-01")
    data_manager.append_sale(workbook, _sale("S2"), business_day="2024-05-01")
    data_manager.delete_sale(workbook, "S1")
    assert [sale.sale_id for sale in data_manager.iter_sales(workbook)] == ["S2"]
    with pytest.raises(KeyError):
        data_manager.delete_sale(workbook, "S1")


def test_iter_products_skips_blank_rows(master_workbook_path):
    """Blank rows left behind by manual edits are ignored."""

    workbook = data_manager.open_workbook(master_workbook_path)
    sheet = workbook[constants.SheetName.PRODUCTS.value]
    sheet.append([None] * 12)
    data_manager.append_product(workbook, _product())

    assert [row.product_id for row in data_manager.iter_products(workbook)] == ["P1"]


def test_deserialize_product_coerces_numeric_codes():
    """Codes Excel stored as numbers still come back as strings."""

    raw = ["P9", 1234, "Pan", None, 25, 10, 2, "Panadería", "piece", True, "", ""]
    product = data_manager.deserialize_product(raw)

    assert product.code == "1234"
    assert product.price == Decimal("25")
    assert product.description == ""


def test_deserialize_sale_rejects_corrupt_json():
    """Malformed item JSON should raise ValueError rather than crash later."""

    raw = data_manager.serialize_sale(_sale(), business_day="2024-05-01")
    raw[-1] = "{not json"
    with pytest.raises(ValueError):
        data_manager.deserialize_sale(raw)


# ---------------------------------------------------------------------------
# Row updates
# ---------------------------------------------------------------------------


def test_update_product_writes_selected_columns(master_workbook_path):
    """update_product should change only the named columns."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, _product())
    data_manager.update_product(workbook, "P1", field_values={"Stock": Decimal("3"), "Unit": constants.UnitType.BULK})

    [product] = list(data_manager.iter_products(workbook))
    assert product.stock == Decimal("3")
    assert product.unit is constants.UnitType.BULK
    assert product.name == "Leche Entera"


def test_update_product_unknown_row_raises(master_workbook_path):
    """Updating a product that does not exist should raise KeyError."""

    workbook = data_manager.open_workbook(master_workbook_path)
    with pytest.raises(KeyError):
        data_manager.update_product(workbook, "NOPE", field_values={"Stock": 1})


def test_update_product_unknown_column_raises(master_workbook_path):
    """Unknown column names should raise KeyError."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, _product())
    with pytest.raises(KeyError):
        data_manager.update_product(workbook, "P1", field_values={"Colour": "red"})


def test_replace_daily_sales_upserts_by_date(master_workbook_path):
    """A second write for the same date replaces the row instead of appending."""

    workbook = data_manager.open_workbook(master_workbook_path)
    first = data_manager.DailySalesRow(
        "2024-05-01", ("S1",), 1, Decimal("10"), Decimal("10"), Decimal("0"), Decimal("0")
    )
    second = data_manager.DailySalesRow(
        "2024-05-01", ("S1", "S2"), 2, Decimal("25"), Decimal("10"), Decimal("15"), Decimal("0")
    )

    data_manager.replace_daily_sales(workbook, first)
    data_manager.replace_daily_sales(workbook, second)

    assert list(data_manager.iter_daily_sales(workbook)) == [second]


def test_delete_customer_removes_row(master_workbook_path):
    """delete_customer physically removes the row."""

    workbook = data_manager.open_workbook(master_workbook_path)
    for customer_id in ("C1", "C2"):
        data_manager.append_customer(
            workbook,
            data_manager.CustomerRow(
                customer_id, "Nombre", f"{customer_id}@example.com", "809", customer_id,
                None, "hash", "", 0, Decimal("0"),
            ),
        )

    data_manager.delete_customer(workbook, "C1")

    assert [row.customer_id for row in data_manager.iter_customers(workbook)] == ["C2"]
    with pytest.raises(KeyError):
        data_manager.delete_customer(workbook, "C1")


def test_locate_row_returns_excel_index(master_workbook_path):
    """locate_row reports 1-based row numbers including the header."""

    workbook = data_manager.open_workbook(master_workbook_path)
    data_manager.append_product(workbook, _product("P1"))
    data_manager.append_product(workbook, _product("P2", code="002"))

    assert data_manager.locate_row(workbook, constants.SheetName.PRODUCTS.value, "ProductID", "P2") == 3
    assert data_manager.locate_row(workbook, constants.SheetName.PRODUCTS.value, "ProductID", "P3") is None
    with pytest.raises(KeyError):
        data_manager.locate_row(workbook, constants.SheetName.PRODUCTS.value, "Missing", "P1")


def test_workbook_created_by_openpyxl_has_bold_headers(master_workbook_path):
    """Header cells are bold so the sheet is readable in Excel."""

    workbook = openpyxl.load_workbook(master_workbook_path)
    assert workbook[constants.SheetName.SALES.value]["A1"].font.bold
