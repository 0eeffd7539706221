"""Data access layer for the point-of-sale workbook.

This module provides low-level helpers that read from and write to the
``pos_data.xlsx`` workbook. Business rules belong elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening and persisting the Excel file.
3. Sheet operations: loading structured records and appending, updating, or
   removing individual rows.

Sale line items and customer snapshots are nested structures, so they are
stored as JSON text inside a single cell of the ``Sales`` sheet.
"""


from __future__ import annotations

import configparser
import json
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    DEFAULT_CURRENCY,
    DEFAULT_LOCKOUT_SECONDS,
    DEFAULT_LOW_STOCK_THRESHOLD,
    DEFAULT_MAX_PASSWORD_ATTEMPTS,
    DEFAULT_PASSWORD_ROUNDS,
    DEFAULT_TAX_RATE,
    DEFAULT_TIMEZONE,
    PaymentMethod,
    SheetName,
    UnitType,
    UserRole,
)


CONFIG_FILE_NAME = "config.ini"
PRODUCTS_SHEET = SheetName.PRODUCTS.value
CATEGORIES_SHEET = SheetName.CATEGORIES.value
CUSTOMERS_SHEET = SheetName.CUSTOMERS.value
USERS_SHEET = SheetName.USERS.value
SALES_SHEET = SheetName.SALES.value
DAILY_SALES_SHEET = SheetName.DAILY_SALES.value


@dataclass(frozen=True)
class BusinessInfo:
    """Store details printed on receipts and reports."""

    address: str = ""
    phone: str = ""
    tax_id: str = ""
    email: str = ""


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    store_name: str
    schema_version: str
    default_cashier_id: str
    currency: str = DEFAULT_CURRENCY
    tax_rate: Decimal = DEFAULT_TAX_RATE
    timezone: str = DEFAULT_TIMEZONE
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    business: BusinessInfo = field(default_factory=BusinessInfo)
    password_rounds: int = DEFAULT_PASSWORD_ROUNDS
    max_password_attempts: int = DEFAULT_MAX_PASSWORD_ATTEMPTS
    lockout_seconds: int = DEFAULT_LOCKOUT_SECONDS


@dataclass(frozen=True)
class ProductRow:
    """In-memory view of a row from the ``Products`` sheet."""

    product_id: str
    code: str
    name: str
    description: str
    price: Decimal
    stock: Decimal
    min_stock: Decimal
    category: str
    unit: UnitType
    is_active: bool
    created_at: str
    updated_at: str


@dataclass(frozen=True)
class CustomerRow:
    """In-memory view of a row from the ``Customers`` sheet."""

    customer_id: str
    name: str
    email: str
    phone: str
    id_card: str
    address: Optional[str]
    password_hash: str
    created_at: str
    total_purchases: int
    total_spent: Decimal


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    user_id: str
    username: str
    name: str
    role: UserRole
    email: str
    password_hash: str
    is_active: bool
    created_at: str


@dataclass(frozen=True)
class CustomerInfo:
    """Customer snapshot embedded in a sale at checkout time."""

    customer_id: str
    name: str
    email: str
    id_card: str


@dataclass(frozen=True)
class SaleItem:
    """A priced cart line carrying a snapshot of its product."""

    item_id: str
    product_id: str
    product: ProductRow
    quantity: Decimal
    weight: Optional[Decimal]
    unit_price: Decimal
    subtotal: Decimal

    @property
    def effective_quantity(self) -> Decimal:
        if self.product.unit.is_weighed and self.weight is not None:
            return self.weight
        return self.quantity


@dataclass(frozen=True)
class SaleRecord:
    """In-memory view of a row from the append-only ``Sales`` sheet."""

    sale_id: str
    items: Tuple[SaleItem, ...]
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_method: PaymentMethod
    amount_paid: Decimal
    change: Decimal
    cashier_id: str
    cashier_name: str
    timestamp: datetime
    customer_info: Optional[CustomerInfo] = None


@dataclass(frozen=True)
class DailySalesRow:
    """In-memory view of a row from the ``DailySales`` sheet."""

    date: str
    sale_ids: Tuple[str, ...]
    total_sales: int
    total_amount: Decimal
    cash_sales: Decimal
    card_sales: Decimal
    credit_sales: Decimal


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory contains ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Parser holding the raw configuration. Missing
            sections are reported later by :func:`parse_settings`.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.optionxform = str  # keep CamelCase option names
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` and ``[Defaults]`` carry the mandatory entries. ``[Business]``
    and ``[Security]`` are optional and fall back to the package defaults.
    Relative ``DataFile`` entries are anchored to ``base_path`` (or the
    current working directory) and resolved.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to anchor a relative
            ``DataFile``.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If a required section or option is missing.
        ValueError: If a numeric option cannot be parsed.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        store_name = parser.get("System", "StoreName")
        schema_version = parser.get("System", "SchemaVersion")
        default_cashier = parser.get("Defaults", "DefaultCashier")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw)
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    tax_rate = Decimal(parser.get("System", "TaxRate", fallback=str(DEFAULT_TAX_RATE)))
    if tax_rate < Decimal("0"):
        raise ValueError(f"TaxRate must be zero or positive, got {tax_rate}")

    business = BusinessInfo(
        address=parser.get("Business", "Address", fallback=""),
        phone=parser.get("Business", "Phone", fallback=""),
        tax_id=parser.get("Business", "TaxId", fallback=""),
        email=parser.get("Business", "Email", fallback=""),
    )

    return ConfigSettings(
        data_file=data_file_path,
        store_name=store_name,
        schema_version=schema_version,
        default_cashier_id=default_cashier,
        currency=parser.get("System", "Currency", fallback=DEFAULT_CURRENCY),
        tax_rate=tax_rate,
        timezone=parser.get("System", "Timezone", fallback=DEFAULT_TIMEZONE),
        low_stock_threshold=parser.getint(
            "System", "LowStockThreshold", fallback=DEFAULT_LOW_STOCK_THRESHOLD),
        business=business,
        password_rounds=parser.getint(
            "Security", "PasswordRounds", fallback=DEFAULT_PASSWORD_ROUNDS),
        max_password_attempts=parser.getint(
            "Security", "MaxPasswordAttempts", fallback=DEFAULT_MAX_PASSWORD_ATTEMPTS),
        lockout_seconds=parser.getint(
            "Security", "LockoutSeconds", fallback=DEFAULT_LOCKOUT_SECONDS),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the point-of-sale workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to ``destination``, creating parent folders."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_sheet(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_products(workbook: Workbook) -> Iterable[ProductRow]:
    """Iterate over product records stored on the ``Products`` worksheet."""

    for raw in _iter_sheet(workbook, PRODUCTS_SHEET):
        yield deserialize_product(raw)


def iter_categories(workbook: Workbook) -> Iterable[str]:
    """Iterate over the category names stored on the ``Categories`` worksheet."""

    for raw in _iter_sheet(workbook, CATEGORIES_SHEET):
        yield str(raw[0])


def iter_customers(workbook: Workbook) -> Iterable[CustomerRow]:
    """Iterate over the ``Customers`` worksheet and yield typed records."""

    for raw in _iter_sheet(workbook, CUSTOMERS_SHEET):
        yield deserialize_customer(raw)


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Iterate over the till users registered on the ``Users`` worksheet."""

    for raw in _iter_sheet(workbook, USERS_SHEET):
        yield deserialize_user(raw)


def iter_sales(workbook: Workbook) -> Iterable[SaleRecord]:
    """Stream sale records from the ``Sales`` worksheet in append order.

    Each row is rebuilt into a :class:`SaleRecord`, including its line items
    and optional customer snapshot decoded from their JSON cells.
    """

    for raw in _iter_sheet(workbook, SALES_SHEET):
        yield deserialize_sale(raw)


def iter_daily_sales(workbook: Workbook) -> Iterable[DailySalesRow]:
    """Iterate over the per-day aggregates on the ``DailySales`` worksheet."""

    for raw in _iter_sheet(workbook, DAILY_SALES_SHEET):
        yield deserialize_daily_sales(raw)


def append_product(workbook: Workbook, record: ProductRow) -> None:
    """Append a product record to the ``Products`` worksheet."""

    workbook[PRODUCTS_SHEET].append(serialize_product(record))


def append_category(workbook: Workbook, category: str) -> None:
    """Append a category name to the ``Categories`` worksheet."""

    workbook[CATEGORIES_SHEET].append([category])


def append_customer(workbook: Workbook, record: CustomerRow) -> None:
    """Append a customer record to the ``Customers`` worksheet."""

    workbook[CUSTOMERS_SHEET].append(serialize_customer(record))


def append_user(workbook: Workbook, record: UserRow) -> None:
    """Append a till user to the ``Users`` worksheet."""

    workbook[USERS_SHEET].append(serialize_user(record))


def append_sale(workbook: Workbook, record: SaleRecord, *, business_day: str) -> None:
    """Append a sale to the ``Sales`` worksheet.

    ``business_day`` is stored next to the timestamp so the sheet can be
    filtered by day in Excel without re-deriving the local calendar date.
    """

    workbook[SALES_SHEET].append(serialize_sale(record, business_day=business_day))


def append_daily_sales(workbook: Workbook, record: DailySalesRow) -> None:
    """Append a new day bucket to the ``DailySales`` worksheet."""

    workbook[DAILY_SALES_SHEET].append(serialize_daily_sales(record))


def update_product(workbook: Workbook, product_id: str, *, field_values: Dict[str, Any]) -> None:
    """Update selected columns for an existing product.

    Raises:
        KeyError: If the product or any referenced column cannot be found.
    """

    _update_row(workbook, PRODUCTS_SHEET, "ProductID", product_id, field_values, label="Product")


def update_customer(workbook: Workbook, customer_id: str, *, field_values: Dict[str, Any]) -> None:
    """Update selected columns for an existing customer.

    Raises:
        KeyError: If the customer or any referenced column cannot be found.
    """

    _update_row(workbook, CUSTOMERS_SHEET, "CustomerID", customer_id, field_values, label="Customer")


def update_user(workbook: Workbook, user_id: str, *, field_values: Dict[str, Any]) -> None:
    """Update selected columns for an existing till user.

    Raises:
        KeyError: If the user or any referenced column cannot be found.
    """

    _update_row(workbook, USERS_SHEET, "UserID", user_id, field_values, label="User")


def replace_daily_sales(workbook: Workbook, record: DailySalesRow) -> None:
    """Overwrite the aggregate row for ``record.date``, appending when absent."""

    row_index = locate_row(workbook, DAILY_SALES_SHEET, "Date", record.date)
    if row_index is None:
        append_daily_sales(workbook, record)
        return

    sheet = workbook[DAILY_SALES_SHEET]
    for column, value in enumerate(serialize_daily_sales(record), start=1):
        sheet.cell(row=row_index, column=column, value=value)


def delete_customer(workbook: Workbook, customer_id: str) -> None:
    """Physically remove a customer row from the ``Customers`` worksheet.

    Raises:
        KeyError: If the customer cannot be found.
    """

    row_index = locate_row(workbook, CUSTOMERS_SHEET, "CustomerID", customer_id)
    if row_index is None:
        raise KeyError(f"Customer not found: {customer_id}")
    workbook[CUSTOMERS_SHEET].delete_rows(row_index)


def delete_user(workbook: Workbook, user_id: str) -> None:
    """Physically remove a till user row from the ``Users`` worksheet.

    Raises:
        KeyError: If the user cannot be found.
    """

    row_index = locate_row(workbook, USERS_SHEET, "UserID", user_id)
    if row_index is None:
        raise KeyError(f"User not found: {user_id}")
    workbook[USERS_SHEET].delete_rows(row_index)


def delete_sale(workbook: Workbook, sale_id: str) -> None:
    """Remove a sale row; only used to undo a sale whose recording failed.

    Raises:
        KeyError: If the sale cannot be found.
    """

    row_index = locate_row(workbook, SALES_SHEET, "SaleID", sale_id)
    if row_index is None:
        raise KeyError(f"Sale not found: {sale_id}")
    workbook[SALES_SHEET].delete_rows(row_index)


def _header_map(sheet) -> Dict[Any, int]:
    return {cell.value: idx + 1 for idx, cell in enumerate(sheet[1])}


def _update_row(
    workbook: Workbook,
    sheet_name: str,
    key_column: str,
    key_value: str,
    field_values: Dict[str, Any],
    *,
    label: str,
) -> None:
    row_index = locate_row(workbook, sheet_name, key_column, key_value)
    if row_index is None:
        raise KeyError(f"{label} not found: {key_value}")

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)

    for column_name, value in field_values.items():
        if column_name not in header_map:
            raise KeyError(f"Unknown {label.lower()} field: {column_name}")
        sheet.cell(row=row_index, column=header_map[column_name], value=_to_cell(value))


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Args:
        workbook (Workbook): Workbook providing access to ``sheet_name``.
        sheet_name (str): Name of the worksheet to search.
        key_column (str): Header title of the column holding the lookup key.
        key_value (str): Value to match within the key column.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_map = _header_map(sheet)
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        cell_value = row[key_col_index - 1]
        if cell_value is not None and str(cell_value) == key_value:
            return row_idx

    return None


def _to_cell(value: Any) -> Any:
    if isinstance(value, (UnitType, PaymentMethod, UserRole)):
        return value.value
    if isinstance(value, Decimal):
        return _decimal_text(value)
    return value


def _decimal_text(value: Decimal) -> str:
    # openpyxl saves numeric cells with 16 significant digits; text keeps
    # every digit of the Decimal.
    return str(value)


def _to_decimal(raw: object, default: str = "0") -> Decimal:
    return Decimal(str(raw)) if raw is not None else Decimal(default)


def _to_optional_str(raw: object) -> Optional[str]:
    return str(raw) if raw is not None else None


def serialize_product(record: ProductRow) -> List[object]:
    """Convert a product dataclass into the worksheet column ordering."""

    return [
        record.product_id,
        record.code,
        record.name,
        record.description,
        _decimal_text(record.price),
        _decimal_text(record.stock),
        _decimal_text(record.min_stock),
        record.category,
        record.unit.value,
        record.is_active,
        record.created_at,
        record.updated_at,
    ]


def serialize_customer(record: CustomerRow) -> List[object]:
    """Convert a customer dataclass into the worksheet column ordering."""

    return [
        record.customer_id,
        record.name,
        record.email,
        record.phone,
        record.id_card,
        record.address,
        record.password_hash,
        record.created_at,
        record.total_purchases,
        _decimal_text(record.total_spent),
    ]


def serialize_user(record: UserRow) -> List[object]:
    """Convert a till user into the ``Users`` column ordering."""

    return [
        record.user_id,
        record.username,
        record.name,
        record.role.value,
        record.email,
        record.password_hash,
        record.is_active,
        record.created_at,
    ]


def serialize_sale(record: SaleRecord, *, business_day: str) -> List[object]:
    """Convert a sale into the ``Sales`` column order with JSON-encoded parts."""

    customer_json = (
        json.dumps(customer_info_to_dict(record.customer_info), ensure_ascii=False)
        if record.customer_info is not None
        else None
    )
    items_json = json.dumps([sale_item_to_dict(item) for item in record.items], ensure_ascii=False)
    return [
        record.sale_id,
        record.timestamp.isoformat(),
        business_day,
        record.payment_method.value,
        _decimal_text(record.subtotal),
        _decimal_text(record.tax),
        _decimal_text(record.total),
        _decimal_text(record.amount_paid),
        _decimal_text(record.change),
        record.cashier_id,
        record.cashier_name,
        customer_json,
        items_json,
    ]


def serialize_daily_sales(record: DailySalesRow) -> List[object]:
    """Convert a day aggregate into the ``DailySales`` column ordering."""

    return [
        record.date,
        json.dumps(list(record.sale_ids)),
        record.total_sales,
        _decimal_text(record.total_amount),
        _decimal_text(record.cash_sales),
        _decimal_text(record.card_sales),
        _decimal_text(record.credit_sales),
    ]


def product_to_dict(record: ProductRow) -> Dict[str, Any]:
    """Encode a product snapshot for the JSON ``Items`` cell."""

    return {
        "product_id": record.product_id,
        "code": record.code,
        "name": record.name,
        "description": record.description,
        "price": str(record.price),
        "stock": str(record.stock),
        "min_stock": str(record.min_stock),
        "category": record.category,
        "unit": record.unit.value,
        "is_active": record.is_active,
        "created_at": record.created_at,
        "updated_at": record.updated_at,
    }


def product_from_dict(payload: Dict[str, Any]) -> ProductRow:
    return ProductRow(
        product_id=payload["product_id"],
        code=payload["code"],
        name=payload["name"],
        description=payload.get("description", ""),
        price=Decimal(payload["price"]),
        stock=Decimal(payload["stock"]),
        min_stock=Decimal(payload["min_stock"]),
        category=payload.get("category", ""),
        unit=UnitType(payload["unit"]),
        is_active=bool(payload["is_active"]),
        created_at=payload.get("created_at", ""),
        updated_at=payload.get("updated_at", ""),
    )


def sale_item_to_dict(item: SaleItem) -> Dict[str, Any]:
    return {
        "item_id": item.item_id,
        "product_id": item.product_id,
        "product": product_to_dict(item.product),
        "quantity": str(item.quantity),
        "weight": str(item.weight) if item.weight is not None else None,
        "unit_price": str(item.unit_price),
        "subtotal": str(item.subtotal),
    }


def sale_item_from_dict(payload: Dict[str, Any]) -> SaleItem:
    weight = payload.get("weight")
    return SaleItem(
        item_id=payload["item_id"],
        product_id=payload["product_id"],
        product=product_from_dict(payload["product"]),
        quantity=Decimal(payload["quantity"]),
        weight=Decimal(weight) if weight is not None else None,
        unit_price=Decimal(payload["unit_price"]),
        subtotal=Decimal(payload["subtotal"]),
    )


def customer_info_to_dict(info: CustomerInfo) -> Dict[str, Any]:
    return {
        "customer_id": info.customer_id,
        "name": info.name,
        "email": info.email,
        "id_card": info.id_card,
    }


def customer_info_from_dict(payload: Dict[str, Any]) -> CustomerInfo:
    return CustomerInfo(
        customer_id=payload["customer_id"],
        name=payload["name"],
        email=payload["email"],
        id_card=payload["id_card"],
    )


def deserialize_product(raw_row: Sequence[object]) -> ProductRow:
    """Convert a raw worksheet row into a strongly typed product record.

    Numeric cells become :class:`~decimal.Decimal` and identifier cells are
    coerced to ``str`` so that Excel's habit of turning ``"001"`` style codes
    into numbers does not leak into lookups.
    """

    (
        product_id,
        code,
        name,
        description,
        price_raw,
        stock_raw,
        min_stock_raw,
        category,
        unit,
        is_active,
        created_at,
        updated_at,
    ) = raw_row[:12]

    return ProductRow(
        product_id=str(product_id),
        code=str(code) if code is not None else "",
        name=str(name) if name is not None else "",
        description=str(description) if description is not None else "",
        price=_to_decimal(price_raw, "0.00"),
        stock=_to_decimal(stock_raw),
        min_stock=_to_decimal(min_stock_raw),
        category=str(category) if category is not None else "",
        unit=UnitType(str(unit)) if unit is not None else UnitType.PIECE,
        is_active=bool(is_active),
        created_at=str(created_at) if created_at is not None else "",
        updated_at=str(updated_at) if updated_at is not None else "",
    )


def deserialize_customer(raw_row: Sequence[object]) -> CustomerRow:
    """Convert a raw worksheet row into a strongly typed customer record."""

    (
        customer_id,
        name,
        email,
        phone,
        id_card,
        address,
        password_hash,
        created_at,
        total_purchases,
        total_spent,
    ) = raw_row[:10]

    return CustomerRow(
        customer_id=str(customer_id),
        name=str(name) if name is not None else "",
        email=str(email) if email is not None else "",
        phone=str(phone) if phone is not None else "",
        id_card=str(id_card) if id_card is not None else "",
        address=_to_optional_str(address),
        password_hash=str(password_hash) if password_hash is not None else "",
        created_at=str(created_at) if created_at is not None else "",
        total_purchases=int(total_purchases or 0),
        total_spent=_to_decimal(total_spent, "0.00"),
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw worksheet row into a :class:`UserRow`."""

    (
        user_id,
        username,
        name,
        role,
        email,
        password_hash,
        is_active,
        created_at,
    ) = raw_row[:8]

    return UserRow(
        user_id=str(user_id),
        username=str(username) if username is not None else "",
        name=str(name) if name is not None else "",
        role=UserRole(str(role)) if role is not None else UserRole.CASHIER,
        email=str(email) if email is not None else "",
        password_hash=str(password_hash) if password_hash is not None else "",
        is_active=bool(is_active),
        created_at=str(created_at) if created_at is not None else "",
    )


def deserialize_sale(raw_row: Sequence[object]) -> SaleRecord:
    """Convert a raw ``Sales`` row back into an immutable :class:`SaleRecord`.

    Raises:
        ValueError: If the timestamp, payment method, or JSON cells are
            malformed.
    """

    (
        sale_id,
        timestamp_iso,
        _business_day,
        payment_method,
        subtotal,
        tax,
        total,
        amount_paid,
        change,
        cashier_id,
        cashier_name,
        customer_json,
        items_json,
    ) = raw_row[:13]

    try:
        items_payload = json.loads(str(items_json)) if items_json else []
        customer_payload = json.loads(str(customer_json)) if customer_json else None
    except json.JSONDecodeError as exc:
        log.error("Corrupt JSON in sale row '%s': %s", sale_id, exc)
        raise ValueError(f"Corrupt sale row: {sale_id}") from exc

    return SaleRecord(
        sale_id=str(sale_id),
        items=tuple(sale_item_from_dict(entry) for entry in items_payload),
        subtotal=_to_decimal(subtotal, "0.00"),
        tax=_to_decimal(tax, "0.00"),
        total=_to_decimal(total, "0.00"),
        payment_method=PaymentMethod(str(payment_method)),
        amount_paid=_to_decimal(amount_paid, "0.00"),
        change=_to_decimal(change, "0.00"),
        cashier_id=str(cashier_id) if cashier_id is not None else "",
        cashier_name=str(cashier_name) if cashier_name is not None else "",
        timestamp=datetime.fromisoformat(str(timestamp_iso)),
        customer_info=(
            customer_info_from_dict(customer_payload) if customer_payload is not None else None
        ),
    )


def deserialize_daily_sales(raw_row: Sequence[object]) -> DailySalesRow:
    """Convert a raw ``DailySales`` row into a :class:`DailySalesRow`."""

    (
        date,
        sale_ids_json,
        total_sales,
        total_amount,
        cash_sales,
        card_sales,
        credit_sales,
    ) = raw_row[:7]

    sale_ids = json.loads(str(sale_ids_json)) if sale_ids_json else []
    return DailySalesRow(
        date=str(date),
        sale_ids=tuple(str(sale_id) for sale_id in sale_ids),
        total_sales=int(total_sales or 0),
        total_amount=_to_decimal(total_amount, "0.00"),
        cash_sales=_to_decimal(cash_sales, "0.00"),
        card_sales=_to_decimal(card_sales, "0.00"),
        credit_sales=_to_decimal(credit_sales, "0.00"),
    )
