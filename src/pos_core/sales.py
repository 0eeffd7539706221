"""Sales transaction engine.

The flow mirrors the till: cart lines are priced by :func:`build_sale_item`
(which checks stock but never touches it), the cart is totalled by the pure
:func:`calculate_totals`, and :func:`process_sale` turns the cart into an
immutable :class:`~pos_core.data_manager.SaleRecord`. Processing validates
everything up front and only then, under the context lock, decrements stock,
appends the sale to the ``Sales`` sheet and folds it into its day's
aggregate. A rejected sale leaves the workbook untouched.

Daily aggregates are always re-derived from the day's full sale list by
:func:`summarize_sales`; counters are never patched in place.

:func:`checkout` wraps the processor with the steps that sit around it: the
registered cashier and the credit password gate before, and the customer
purchase counters after.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from . import customers, data_manager, inventory, log, users
from .constants import DEFAULT_TAX_RATE, PaymentMethod
from .core_logic import (
    BusinessRuleViolation,
    CreditAuthorizationError,
    EmptyCartError,
    InsufficientPaymentError,
    InsufficientStockError,
    MissingCustomerError,
    MissingReferenceError,
    RuntimeContext,
    _get_cache_bucket,
    _invalidate_cache,
    business_day_for,
    generate_id,
    require_positive_quantity,
    resolve_timestamp,
)


ZERO = Decimal("0")


@dataclass(frozen=True)
class SaleTotals:
    """Cart totals before and after tax."""

    subtotal: Decimal
    tax: Decimal
    total: Decimal


@dataclass(frozen=True)
class DailySales:
    """Rollup of every sale whose business day is ``date``."""

    date: str
    sales: Tuple[data_manager.SaleRecord, ...]
    total_sales: int
    total_amount: Decimal
    cash_sales: Decimal
    card_sales: Decimal
    credit_sales: Decimal


@dataclass(frozen=True)
class CheckoutCommand:
    """Cashier intent for settling a cart."""

    items: Tuple[data_manager.SaleItem, ...]
    payment_method: PaymentMethod
    amount_paid: Decimal
    cashier_id: str
    customer_id: Optional[str] = None
    customer_password: Optional[str] = None
    timestamp: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Cart lines
# ---------------------------------------------------------------------------


def build_sale_item(
    context: RuntimeContext,
    product_id: str,
    quantity: Decimal,
    weight: Optional[Decimal] = None,
) -> data_manager.SaleItem:
    """Price a cart line for ``product_id`` without mutating the catalog.

    Weighed products (``weight`` and ``bulk`` units) are priced by ``weight``
    when it is supplied; everything else is priced by ``quantity``. The line
    keeps a snapshot of the product, so later price changes do not affect it.

    Raises:
        MissingReferenceError: If the product is unknown.
        BusinessRuleViolation: If the product is inactive.
        ValueError: If the effective quantity is not positive.
        InsufficientStockError: If the effective quantity exceeds stock.
    """
    product = inventory.get_product_by_id(context, product_id)
    if not product.is_active:
        log.warning("Attempted to sell inactive product '%s'", product_id)
        raise BusinessRuleViolation(f"Product '{product_id}' is inactive")

    effective_quantity = weight if product.unit.is_weighed and weight is not None else quantity
    require_positive_quantity(effective_quantity)
    if effective_quantity > product.stock:
        log.warning(
            "Insufficient stock for '%s': requested %s, available %s",
            product_id,
            effective_quantity,
            product.stock,
        )
        raise InsufficientStockError(product_id, effective_quantity, product.stock)

    return data_manager.SaleItem(
        item_id=generate_id(f"{product_id}-"),
        product_id=product_id,
        product=product,
        quantity=quantity,
        weight=weight,
        unit_price=product.price,
        subtotal=product.price * effective_quantity,
    )


def merge_into_cart(
    context: RuntimeContext,
    cart: Sequence[data_manager.SaleItem],
    product_id: str,
    quantity: Decimal,
    weight: Optional[Decimal] = None,
) -> List[data_manager.SaleItem]:
    """Add a product to ``cart`` keeping at most one line per product.

    When the product is already in the cart its line is rebuilt in place
    with the summed quantity (and summed weight for weighed products), so the
    stock check covers the combined amount. The input cart is not modified.
    """
    updated = list(cart)
    for index, line in enumerate(updated):
        if line.product_id != product_id:
            continue
        merged_weight = weight
        if line.weight is not None:
            merged_weight = line.weight + weight if weight is not None else line.weight
        updated[index] = build_sale_item(
            context,
            product_id,
            line.quantity + quantity,
            merged_weight,
        )
        return updated

    updated.append(build_sale_item(context, product_id, quantity, weight))
    return updated


def change_line_quantity(
    context: RuntimeContext,
    cart: Sequence[data_manager.SaleItem],
    item_id: str,
    quantity: Decimal,
) -> List[data_manager.SaleItem]:
    """Rebuild one cart line with a new quantity; zero or less removes it."""
    if quantity <= ZERO:
        return remove_from_cart(cart, item_id)
    return [
        build_sale_item(context, line.product_id, quantity, line.weight)
        if line.item_id == item_id
        else line
        for line in cart
    ]


def remove_from_cart(
    cart: Sequence[data_manager.SaleItem], item_id: str
) -> List[data_manager.SaleItem]:
    return [line for line in cart if line.item_id != item_id]


def calculate_totals(
    items: Iterable[data_manager.SaleItem],
    tax_rate: Decimal = DEFAULT_TAX_RATE,
) -> SaleTotals:
    """Sum line subtotals and apply a flat tax rate."""
    subtotal = sum((item.subtotal for item in items), ZERO)
    tax = subtotal * tax_rate
    return SaleTotals(subtotal=subtotal, tax=tax, total=subtotal + tax)


# ---------------------------------------------------------------------------
# Transaction processor
# ---------------------------------------------------------------------------


def validate_payment(
    context: RuntimeContext,
    items: Sequence[data_manager.SaleItem],
    payment_method: PaymentMethod,
    amount_paid: Decimal,
    customer_info: Optional[data_manager.CustomerInfo],
) -> SaleTotals:
    """Run the checkout preconditions in order and return the cart totals.

    Raises:
        EmptyCartError: If ``items`` is empty.
        InsufficientPaymentError: If a cash payment does not cover the total.
        MissingCustomerError: If a credit sale has no customer.
    """
    if not items:
        log.warning("Checkout attempted with an empty cart")
        raise EmptyCartError("The cart is empty")

    totals = calculate_totals(items, context.settings.tax_rate)

    if payment_method is PaymentMethod.CASH and amount_paid < totals.total:
        log.warning("Cash tendered %s is below total %s", amount_paid, totals.total)
        raise InsufficientPaymentError(amount_paid, totals.total)

    if payment_method is PaymentMethod.CREDIT and customer_info is None:
        log.warning("Credit sale attempted without a customer")
        raise MissingCustomerError("Customer information is required for credit sales")

    return totals


def _verify_stock(context: RuntimeContext, items: Sequence[data_manager.SaleItem]) -> None:
    """Check current stock covers the whole cart before anything is written."""
    demand: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    for item in items:
        demand[item.product_id] += item.effective_quantity

    for product_id, requested in demand.items():
        product = inventory.get_product_by_id(context, product_id)
        if requested > product.stock:
            log.warning(
                "Stock for '%s' changed since the cart was built: requested %s, available %s",
                product_id,
                requested,
                product.stock,
            )
            raise InsufficientStockError(product_id, requested, product.stock)


def _roll_back(
    context: RuntimeContext,
    originals: Sequence[data_manager.ProductRow],
    sale_id: Optional[str],
) -> None:
    """Undo the writes of a sale that failed part way through recording.

    Stock and ``UpdatedAt`` are restored from the rows captured before each
    decrement, latest first, so a product listed twice ends up at its
    original value.
    """
    for product in reversed(originals):
        data_manager.update_product(
            context.workbook,
            product.product_id,
            field_values={"Stock": product.stock, "UpdatedAt": product.updated_at},
        )
    if sale_id is not None:
        data_manager.delete_sale(context.workbook, sale_id)
    _invalidate_cache(context, "products", "sales", "daily_sales")


def process_sale(
    context: RuntimeContext,
    items: Sequence[data_manager.SaleItem],
    payment_method: Union[PaymentMethod, str],
    amount_paid: Decimal,
    cashier_id: str,
    cashier_name: str,
    customer_info: Optional[data_manager.CustomerInfo] = None,
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.SaleRecord:
    """Validate, record and return a sale.

    Preconditions are checked in order (empty cart, cash shortfall, missing
    credit customer) and then the stock of every product is checked against
    the cart's combined demand. Only after all of them pass are the stock
    decrements, the sale row and the daily aggregate written. If one of those
    writes fails, the ones already made are undone before the error
    propagates. The credit password is not checked here; see
    :func:`checkout`.

    Args:
        context (RuntimeContext): Runtime context holding the workbook.
        items (Sequence[SaleItem]): Cart lines built by
            :func:`build_sale_item`.
        payment_method (PaymentMethod | str): ``cash``, ``card`` or
            ``credit``.
        amount_paid (Decimal): Money tendered. Only cash produces change.
        cashier_id (str): Identifier of the cashier ringing the sale.
        cashier_name (str): Display name of the cashier.
        customer_info (CustomerInfo | None): Customer snapshot; required for
            credit sales.
        timestamp (datetime | None): Sale time, defaulting to now (UTC).

    Returns:
        SaleRecord: The persisted, immutable sale.

    Raises:
        EmptyCartError: If ``items`` is empty.
        InsufficientPaymentError: If a cash payment does not cover the total.
        MissingCustomerError: If a credit sale has no customer.
        MissingReferenceError: If a line references an unknown product.
        InsufficientStockError: If stock no longer covers the cart.
    """
    payment_method = PaymentMethod(payment_method)
    items = tuple(items)
    totals = validate_payment(context, items, payment_method, amount_paid, customer_info)

    with context.lock:
        _verify_stock(context, items)

        moment = resolve_timestamp(timestamp)
        change = amount_paid - totals.total if payment_method is PaymentMethod.CASH else ZERO
        sale = data_manager.SaleRecord(
            sale_id=generate_id("S", when=moment),
            items=items,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            payment_method=payment_method,
            amount_paid=amount_paid,
            change=change,
            cashier_id=cashier_id,
            cashier_name=cashier_name,
            timestamp=moment,
            customer_info=customer_info,
        )

        originals: List[data_manager.ProductRow] = []
        appended = False
        try:
            for item in items:
                original = inventory.get_product_by_id(context, item.product_id)
                inventory.update_stock(context, item.product_id, -item.effective_quantity)
                originals.append(original)
            data_manager.append_sale(
                context.workbook,
                sale,
                business_day=business_day_for(context, moment),
            )
            appended = True
            _invalidate_cache(context, "sales")
            fold_sale(context, sale)
        except Exception:
            log.error("Recording sale '%s' failed; rolling back", sale.sale_id)
            _roll_back(context, originals, sale.sale_id if appended else None)
            raise

    log.info(
        "Recorded %s sale '%s' with %d line(s) (total=%s, change=%s)",
        payment_method.value,
        sale.sale_id,
        len(items),
        sale.total,
        sale.change,
    )
    return sale


def checkout(context: RuntimeContext, command: CheckoutCommand) -> data_manager.SaleRecord:
    """Settle a cart end to end.

    Resolves the active cashier from the user registry and the customer (when
    one is given), enforces the credit password gate for credit sales,
    processes the sale, and finally counts the purchase against the customer.
    The sale records the cashier's registered name. Card and credit sales are
    recorded as paid in full.

    Raises:
        InactiveUserError: If the cashier has been deactivated.
        CreditAuthorizationError: If the credit password does not verify.
        MissingReferenceError: If the cashier or customer is unknown.
        BusinessRuleViolation: For any failure raised by
            :func:`process_sale`.
    """
    payment_method = PaymentMethod(command.payment_method)
    cashier = users.require_active_cashier(context, command.cashier_id)
    customer = None
    customer_info = None
    if command.customer_id:
        customer = customers.get_customer_by_id(context, command.customer_id)
        customer_info = customers.customer_snapshot(customer)

    totals = validate_payment(
        context, command.items, payment_method, command.amount_paid, customer_info
    )

    if payment_method is PaymentMethod.CREDIT:
        if not customers.validate_customer_password(
            context, customer.customer_id, command.customer_password or ""
        ):
            raise CreditAuthorizationError(
                f"Credit sale not authorized for customer '{customer.customer_id}'"
            )

    amount_paid = command.amount_paid if payment_method is PaymentMethod.CASH else totals.total
    sale = process_sale(
        context,
        command.items,
        payment_method,
        amount_paid,
        cashier.user_id,
        cashier.name,
        customer_info,
        timestamp=command.timestamp,
    )

    if customer is not None:
        customers.update_customer_purchase(context, customer.customer_id, sale.total)
    return sale


# ---------------------------------------------------------------------------
# Sales log
# ---------------------------------------------------------------------------


def _ensure_sales_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "sales")
    if "all" not in bucket:
        all_sales = list(data_manager.iter_sales(context.workbook))
        bucket["all"] = all_sales
        bucket["by_id"] = {sale.sale_id: sale for sale in all_sales}
        log.debug("Populated sales cache with %d entries", len(all_sales))
    return bucket


def get_all_sales(context: RuntimeContext) -> List[data_manager.SaleRecord]:
    """Return the append-only sales log in recording order."""
    return list(_ensure_sales_cache(context)["all"])


def get_sale(context: RuntimeContext, sale_id: str) -> data_manager.SaleRecord:
    """Resolve a sale by identifier, e.g. to reprint its receipt.

    Raises:
        MissingReferenceError: If the sale is unknown.
    """
    try:
        return _ensure_sales_cache(context)["by_id"][sale_id]
    except KeyError as exc:
        log.warning("Sale lookup failed for id '%s'", sale_id)
        raise MissingReferenceError(f"Unknown sale id: {sale_id}") from exc


# ---------------------------------------------------------------------------
# Daily aggregates
# ---------------------------------------------------------------------------


def summarize_sales(day: str, sales: Iterable[data_manager.SaleRecord]) -> DailySales:
    """Fold a day's sales into a :class:`DailySales` from scratch."""
    sales = tuple(sales)
    by_method: Dict[PaymentMethod, Decimal] = defaultdict(lambda: ZERO)
    for sale in sales:
        by_method[sale.payment_method] += sale.total
    return DailySales(
        date=day,
        sales=sales,
        total_sales=len(sales),
        total_amount=sum((sale.total for sale in sales), ZERO),
        cash_sales=by_method[PaymentMethod.CASH],
        card_sales=by_method[PaymentMethod.CARD],
        credit_sales=by_method[PaymentMethod.CREDIT],
    )


def _day_key(day: Union[date, str]) -> str:
    return day.isoformat() if isinstance(day, date) else day


def _ensure_daily_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "daily_sales")
    if "by_date" not in bucket:
        rows = list(data_manager.iter_daily_sales(context.workbook))
        bucket["by_date"] = {row.date: row for row in rows}
        log.debug("Populated daily sales cache with %d days", len(rows))
    return bucket


def _hydrate(context: RuntimeContext, row: data_manager.DailySalesRow) -> DailySales:
    sales_by_id = _ensure_sales_cache(context)["by_id"]
    missing = [sale_id for sale_id in row.sale_ids if sale_id not in sales_by_id]
    if missing:
        log.error("Daily aggregate %s references unknown sales: %s", row.date, ", ".join(missing))
        raise MissingReferenceError(f"Daily aggregate {row.date} references unknown sales")
    return DailySales(
        date=row.date,
        sales=tuple(sales_by_id[sale_id] for sale_id in row.sale_ids),
        total_sales=row.total_sales,
        total_amount=row.total_amount,
        cash_sales=row.cash_sales,
        card_sales=row.card_sales,
        credit_sales=row.credit_sales,
    )


def get_daily_sales(context: RuntimeContext, day: Union[date, str]) -> DailySales:
    """Return the aggregate for ``day``, or an unsaved zero aggregate."""
    key = _day_key(day)
    row = _ensure_daily_cache(context)["by_date"].get(key)
    if row is None:
        return summarize_sales(key, ())
    return _hydrate(context, row)


def get_todays_sales(context: RuntimeContext) -> DailySales:
    """Return the aggregate for the current business day."""
    return get_daily_sales(context, business_day_for(context, resolve_timestamp(None)))


def list_daily_sales(context: RuntimeContext) -> List[DailySales]:
    """Return every stored day aggregate, oldest first."""
    rows = _ensure_daily_cache(context)["by_date"]
    return [_hydrate(context, rows[key]) for key in sorted(rows)]


def fold_sale(context: RuntimeContext, sale: data_manager.SaleRecord) -> DailySales:
    """Add a logged sale to its business day and recompute that day.

    The sale must already be in the sales log. Folding a sale that is already
    part of its day is a no-op.

    Raises:
        MissingReferenceError: If ``sale`` is not in the sales log.
    """
    key = business_day_for(context, sale.timestamp)
    with context.lock:
        get_sale(context, sale.sale_id)
        current = get_daily_sales(context, key)
        if any(existing.sale_id == sale.sale_id for existing in current.sales):
            log.debug("Sale '%s' already folded into %s", sale.sale_id, key)
            return current

        aggregate = summarize_sales(key, current.sales + (sale,))
        data_manager.replace_daily_sales(
            context.workbook,
            data_manager.DailySalesRow(
                date=key,
                sale_ids=tuple(entry.sale_id for entry in aggregate.sales),
                total_sales=aggregate.total_sales,
                total_amount=aggregate.total_amount,
                cash_sales=aggregate.cash_sales,
                card_sales=aggregate.card_sales,
                credit_sales=aggregate.credit_sales,
            ),
        )
        _invalidate_cache(context, "daily_sales")
    log.debug("Folded sale '%s' into %s (%d sales)", sale.sale_id, key, aggregate.total_sales)
    return aggregate
