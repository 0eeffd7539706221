"""Reporting queries over the sales log.

Reports read sales only. Customer figures come from the snapshot each sale
carries, falling back on the ledger for contact details, so customers that
were deleted after buying still show up under the name they bought with.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Union

from . import customers, data_manager, log
from .constants import PaymentMethod
from .core_logic import RuntimeContext, business_day_for
from .sales import ZERO, get_all_sales


@dataclass(frozen=True)
class ProductSalesStats:
    """Units and revenue one product brought in over a set of sales."""

    product: data_manager.ProductRow
    total_quantity: Decimal
    total_revenue: Decimal
    sales_count: int


@dataclass
class CustomerConsumption:
    """Purchases attributed to one customer over a set of sales."""

    customer: data_manager.CustomerInfo
    phone: str = ""
    in_ledger: bool = True
    total_amount: Decimal = ZERO
    credit_amount: Decimal = ZERO
    sales_count: int = 0
    credit_sales_count: int = 0
    sales: List[data_manager.SaleRecord] = field(default_factory=list)


@dataclass(frozen=True)
class PeriodStats:
    """Sales count, revenue and average ticket for a month or week."""

    period: str
    total: Decimal
    count: int

    @property
    def average(self) -> Decimal:
        return self.total / self.count if self.count else ZERO


def _as_date(value: Union[date, str]) -> date:
    return value if isinstance(value, date) else date.fromisoformat(value)


def sales_between(
    context: RuntimeContext,
    start: Union[date, str],
    end: Union[date, str],
) -> List[data_manager.SaleRecord]:
    """Return sales whose business day falls within ``start``..``end`` inclusive."""
    first, last = _as_date(start), _as_date(end)
    if first > last:
        raise ValueError(f"Report range starts after it ends: {first} > {last}")
    return [
        sale
        for sale in get_all_sales(context)
        if first <= date.fromisoformat(business_day_for(context, sale.timestamp)) <= last
    ]


def top_products(sales: Iterable[data_manager.SaleRecord], *, limit: int = 10) -> List[ProductSalesStats]:
    """Rank products by revenue across ``sales``.

    Quantities are effective quantities, so weighed products contribute
    their weight. The product shown is the snapshot from its first sale.
    """
    snapshots: Dict[str, data_manager.ProductRow] = {}
    quantity: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    revenue: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    lines: Dict[str, int] = defaultdict(int)

    for sale in sales:
        for item in sale.items:
            snapshots.setdefault(item.product_id, item.product)
            quantity[item.product_id] += item.effective_quantity
            revenue[item.product_id] += item.subtotal
            lines[item.product_id] += 1

    ranked = sorted(snapshots, key=lambda product_id: revenue[product_id], reverse=True)
    return [
        ProductSalesStats(
            product=snapshots[product_id],
            total_quantity=quantity[product_id],
            total_revenue=revenue[product_id],
            sales_count=lines[product_id],
        )
        for product_id in ranked[:limit]
    ]


def customer_consumption(
    context: RuntimeContext,
    sales: Iterable[data_manager.SaleRecord],
) -> List[CustomerConsumption]:
    """Group ``sales`` by customer, largest credit exposure first.

    Sales without a customer are skipped. Customers no longer in the ledger
    are reported from the snapshot stored on their sales with
    ``in_ledger=False``.
    """
    ledger = {customer.customer_id: customer for customer in customers.list_customers(context)}
    consumption: Dict[str, CustomerConsumption] = {}

    for sale in sales:
        info = sale.customer_info
        if info is None:
            continue
        entry = consumption.get(info.customer_id)
        if entry is None:
            known = ledger.get(info.customer_id)
            if known is not None:
                entry = CustomerConsumption(customer=customers.customer_snapshot(known), phone=known.phone)
            else:
                log.debug("Customer '%s' resolved from sale snapshot", info.customer_id)
                entry = CustomerConsumption(customer=info, in_ledger=False)
            consumption[info.customer_id] = entry

        entry.total_amount += sale.total
        entry.sales_count += 1
        entry.sales.append(sale)
        if sale.payment_method is PaymentMethod.CREDIT:
            entry.credit_amount += sale.total
            entry.credit_sales_count += 1

    return sorted(consumption.values(), key=lambda entry: entry.credit_amount, reverse=True)


def monthly_stats(
    context: RuntimeContext,
    sales: Iterable[data_manager.SaleRecord],
    *,
    limit: int = 6,
) -> List[PeriodStats]:
    """Totals per ``YYYY-MM`` business month, most recent first."""
    totals: Dict[str, Decimal] = defaultdict(lambda: ZERO)
    counts: Dict[str, int] = defaultdict(int)
    for sale in sales:
        month = business_day_for(context, sale.timestamp)[:7]
        totals[month] += sale.total
        counts[month] += 1
    return [
        PeriodStats(period=month, total=totals[month], count=counts[month])
        for month in sorted(totals, reverse=True)[:limit]
    ]


def week_start(day: date) -> date:
    """Return the Sunday that opens the week containing ``day``."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def weekly_stats(
    context: RuntimeContext,
    sales: Iterable[data_manager.SaleRecord],
    *,
    limit: int = 8,
) -> List[PeriodStats]:
    """Totals per Sunday-to-Saturday week, most recent first.

    Each period is labelled ``<sunday> - <saturday>`` in ISO dates.
    """
    totals: Dict[date, Decimal] = defaultdict(lambda: ZERO)
    counts: Dict[date, int] = defaultdict(int)
    for sale in sales:
        start = week_start(date.fromisoformat(business_day_for(context, sale.timestamp)))
        totals[start] += sale.total
        counts[start] += 1
    return [
        PeriodStats(
            period=f"{start.isoformat()} - {(start + timedelta(days=6)).isoformat()}",
            total=totals[start],
            count=counts[start],
        )
        for start in sorted(totals, reverse=True)[:limit]
    ]


def payment_breakdown(sales: Sequence[data_manager.SaleRecord]) -> Dict[PaymentMethod, Decimal]:
    """Sum sale totals per payment method; every method is present."""
    breakdown = {method: ZERO for method in PaymentMethod}
    for sale in sales:
        breakdown[sale.payment_method] += sale.total
    return breakdown


def format_currency(amount: Decimal, currency: Optional[str] = None) -> str:
    """Render an amount with two decimals and thousands separators."""
    quantized = amount.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    text = f"{quantized:,.2f}"
    return f"{currency} {text}" if currency else text
