"""Product catalog for the point-of-sale workbook.

Products are never physically removed: deleting one flips ``IsActive`` so
that sales keep resolving the snapshot they captured. Stock is adjusted with
signed deltas through :func:`update_stock`, which applies them verbatim; the
floor check lives with the sale line builder, which runs before any stock
mutation.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any, Dict, List, Optional

from . import data_manager, log
from .constants import UnitType
from .core_logic import (
    BusinessRuleViolation,
    MissingReferenceError,
    RuntimeContext,
    _get_cache_bucket,
    _invalidate_cache,
    generate_id,
    require_nonnegative_money,
    resolve_timestamp,
)


# Maps keyword arguments accepted by ``update_product`` to sheet columns.
_PRODUCT_COLUMNS: Dict[str, str] = {
    "code": "Code",
    "name": "Name",
    "description": "Description",
    "price": "Price",
    "stock": "Stock",
    "min_stock": "MinStock",
    "category": "Category",
    "unit": "Unit",
    "is_active": "IsActive",
}


def _ensure_products_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the product cache bucket on demand.

    The bucket holds ``all`` products, the ``active`` subset, a ``by_id``
    mapping and a ``by_code`` mapping restricted to active products.
    """

    bucket = _get_cache_bucket(context, "products")
    if "all" not in bucket:
        all_products = list(data_manager.iter_products(context.workbook))
        active = [product for product in all_products if product.is_active]
        bucket["all"] = all_products
        bucket["active"] = active
        bucket["by_id"] = {product.product_id: product for product in all_products}
        bucket["by_code"] = {product.code: product for product in active}
        log.debug(
            "Populated products cache with %d entries (%d active)",
            len(all_products),
            len(active),
        )
    return bucket


def list_products(context: RuntimeContext, *, include_inactive: bool = False) -> List[data_manager.ProductRow]:
    """Return catalog products in sheet order, active ones only by default."""
    cache = _ensure_products_cache(context)
    source = cache["all"] if include_inactive else cache["active"]
    return list(source)


def get_product_by_id(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Resolve a product by identifier, whether or not it is still active.

    Raises:
        MissingReferenceError: If ``product_id`` is absent from the catalog.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_id"][product_id]
    except KeyError as exc:
        log.warning("Product lookup failed for id '%s'", product_id)
        raise MissingReferenceError(f"Unknown product id: {product_id}") from exc


def get_product_by_code(context: RuntimeContext, code: str) -> data_manager.ProductRow:
    """Resolve an active product by its scanned or typed code.

    The match is exact; soft-deleted products never match.

    Raises:
        MissingReferenceError: If no active product carries ``code``.
    """
    cache = _ensure_products_cache(context)
    try:
        return cache["by_code"][code]
    except KeyError as exc:
        log.warning("Product lookup failed for code '%s'", code)
        raise MissingReferenceError(f"Unknown product code: {code}") from exc


def search_products(context: RuntimeContext, query: str) -> List[data_manager.ProductRow]:
    """Case-insensitive substring search over active products.

    Name, description and code are searched. An empty query matches every
    active product.
    """
    needle = query.strip().lower()
    return [
        product
        for product in _ensure_products_cache(context)["active"]
        if needle in product.name.lower()
        or needle in product.description.lower()
        or needle in product.code.lower()
    ]


def list_low_stock_products(context: RuntimeContext) -> List[data_manager.ProductRow]:
    """Return active products whose stock is at or below their minimum."""
    return [
        product
        for product in _ensure_products_cache(context)["active"]
        if product.stock <= product.min_stock
    ]


def _require_unique_code(context: RuntimeContext, code: str, *, exclude_id: Optional[str] = None) -> None:
    existing = _ensure_products_cache(context)["by_code"].get(code)
    if existing is not None and existing.product_id != exclude_id:
        log.warning("Product code '%s' already used by '%s'", code, existing.product_id)
        raise BusinessRuleViolation(f"Product code '{code}' is already in use")


def add_product(
    context: RuntimeContext,
    *,
    code: str,
    name: str,
    price: Decimal,
    stock: Decimal = Decimal("0"),
    min_stock: Optional[Decimal] = None,
    category: str = "",
    unit: UnitType = UnitType.PIECE,
    description: str = "",
) -> data_manager.ProductRow:
    """Register a new active product in the catalog.

    ``min_stock`` defaults to the configured low-stock threshold. The code
    must not collide with another active product.

    Raises:
        BusinessRuleViolation: If ``code`` is blank or already in use.
        ValueError: If price, stock or minimum stock is negative.
    """
    if not code.strip():
        raise BusinessRuleViolation("Product code must not be blank")
    require_nonnegative_money(price)
    if stock < Decimal("0"):
        raise ValueError("Initial stock must be zero or positive")
    if min_stock is None:
        min_stock = Decimal(context.settings.low_stock_threshold)
    if min_stock < Decimal("0"):
        raise ValueError("Minimum stock must be zero or positive")

    with context.lock:
        _require_unique_code(context, code)
        created = resolve_timestamp(None)
        product = data_manager.ProductRow(
            product_id=generate_id("P", when=created),
            code=code,
            name=name,
            description=description,
            price=price,
            stock=stock,
            min_stock=min_stock,
            category=category,
            unit=unit,
            is_active=True,
            created_at=created.isoformat(),
            updated_at=created.isoformat(),
        )
        data_manager.append_product(context.workbook, product)
        _invalidate_cache(context, "products")
    log.info("Added product '%s' (%s) with code '%s'", product.product_id, name, code)
    return product


def update_product(context: RuntimeContext, product_id: str, **changes: Any) -> data_manager.ProductRow:
    """Apply field changes to an existing product and return the new row.

    Accepted keywords are the :class:`~pos_core.data_manager.ProductRow`
    fields listed in ``_PRODUCT_COLUMNS``.

    Raises:
        MissingReferenceError: If the product is unknown.
        BusinessRuleViolation: If the new code collides with another product.
        KeyError: If an unsupported field is supplied.
    """
    unknown = set(changes) - set(_PRODUCT_COLUMNS)
    if unknown:
        raise KeyError(f"Unknown product field(s): {', '.join(sorted(unknown))}")
    if "price" in changes:
        require_nonnegative_money(changes["price"])
    if "unit" in changes:
        changes["unit"] = UnitType(changes["unit"])

    with context.lock:
        current = get_product_by_id(context, product_id)
        if "code" in changes and changes["code"] != current.code:
            _require_unique_code(context, changes["code"], exclude_id=product_id)
        updated_at = resolve_timestamp(None).isoformat()
        field_values = {_PRODUCT_COLUMNS[name]: value for name, value in changes.items()}
        field_values["UpdatedAt"] = updated_at
        data_manager.update_product(context.workbook, product_id, field_values=field_values)
        _invalidate_cache(context, "products")
    log.info("Updated product '%s' fields: %s", product_id, ", ".join(sorted(changes)))
    return replace(current, updated_at=updated_at, **changes)


def delete_product(context: RuntimeContext, product_id: str) -> data_manager.ProductRow:
    """Soft-delete a product so it disappears from every active-product query.

    Raises:
        MissingReferenceError: If the product is unknown.
    """
    product = update_product(context, product_id, is_active=False)
    log.info("Deactivated product '%s'", product_id)
    return product


def update_stock(context: RuntimeContext, product_id: str, delta: Decimal) -> data_manager.ProductRow:
    """Apply a signed stock delta and return the updated product.

    The resulting stock is written as-is, even when negative.

    Raises:
        MissingReferenceError: If the product is unknown.
    """
    with context.lock:
        product = get_product_by_id(context, product_id)
        new_stock = product.stock + delta
        updated_at = resolve_timestamp(None).isoformat()
        data_manager.update_product(
            context.workbook,
            product_id,
            field_values={"Stock": new_stock, "UpdatedAt": updated_at},
        )
        _invalidate_cache(context, "products")
    log.info("Adjusted stock of '%s' by %s (now %s)", product_id, delta, new_stock)
    return replace(product, stock=new_stock, updated_at=updated_at)


def list_categories(context: RuntimeContext) -> List[str]:
    """Return the configured product categories in sheet order."""
    bucket = _get_cache_bucket(context, "categories")
    if "all" not in bucket:
        bucket["all"] = list(data_manager.iter_categories(context.workbook))
    return list(bucket["all"])


def add_category(context: RuntimeContext, category: str) -> bool:
    """Register a category; returns ``False`` when it already exists."""
    category = category.strip()
    if not category:
        raise BusinessRuleViolation("Category name must not be blank")
    with context.lock:
        if category in list_categories(context):
            return False
        data_manager.append_category(context.workbook, category)
        _invalidate_cache(context, "categories")
    log.info("Added category '%s'", category)
    return True
