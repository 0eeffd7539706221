"""Integration tests describing end-to-end point-of-sale workflows.

These scenarios exercise the data access layer, the business modules and the
reports together, persisting to a real workbook between steps the way the
running application does.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

from pos_core import core_logic, customers, inventory, reports, sales
from pos_core.constants import PaymentMethod, UnitType


OPENING = datetime(2024, 5, 1, 13, 0, tzinfo=UTC)


def test_store_day_lifecycle(runtime_context):
    """Stock the shelves, ring up a day of sales, and report on it."""

    context = runtime_context

    soda = inventory.add_product(context, code="001", name="Refresco", price=Decimal("25.00"), stock=Decimal("24"), category="Bebidas")
    rice = inventory.add_product(
        context,
        code="002",
        name="Arroz Selecto",
        price=Decimal("45.00"),
        stock=Decimal("50"),
        category="Granos",
        unit=UnitType.BULK,
    )
    ana = customers.add_customer(
        context,
        name="Ana Pérez",
        email="ana@example.com",
        phone="809-555-0001",
        id_card="001-0000001-1",
        password="clave",
    )

    # Persist and reload so later steps read what was written to disk.
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)

    cart = sales.merge_into_cart(context, [], soda.product_id, Decimal("2"))
    cart = sales.merge_into_cart(context, cart, rice.product_id, Decimal("1"), Decimal("2.5"))
    cash_sale = sales.checkout(
        context,
        sales.CheckoutCommand(
            items=tuple(cart),
            payment_method=PaymentMethod.CASH,
            amount_paid=Decimal("200.00"),
            cashier_id="CAJA-01",
            timestamp=OPENING,
        ),
    )
    # (50.00 + 112.50) * 1.18 = 191.75
    assert cash_sale.total == Decimal("191.75")
    assert cash_sale.change == Decimal("8.25")

    credit_cart = sales.merge_into_cart(context, [], soda.product_id, Decimal("1"))
    credit_sale = sales.checkout(
        context,
        sales.CheckoutCommand(
            items=tuple(credit_cart),
            payment_method=PaymentMethod.CREDIT,
            amount_paid=Decimal("0"),
            cashier_id="CAJA-01",
            customer_id=ana.customer_id,
            customer_password="clave",
            timestamp=OPENING + timedelta(hours=2),
        ),
    )

    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)

    assert inventory.get_product_by_id(context, soda.product_id).stock == Decimal("21")
    assert inventory.get_product_by_id(context, rice.product_id).stock == Decimal("47.5")

    daily = sales.get_daily_sales(context, "2024-05-01")
    assert daily.total_sales == 2
    assert daily.cash_sales == Decimal("191.75")
    assert daily.credit_sales == Decimal("29.50")
    assert daily.total_amount == Decimal("221.25")
    assert [sale.sale_id for sale in daily.sales] == [cash_sale.sale_id, credit_sale.sale_id]

    ana_row = customers.get_customer_by_id(context, ana.customer_id)
    assert (ana_row.total_purchases, ana_row.total_spent) == (1, Decimal("29.50"))

    # Deleting the customer keeps their sales in the credit report.
    customers.delete_customer(context, ana.customer_id)
    core_logic.persist_context(context)
    context = core_logic.refresh_context(context)

    period = reports.sales_between(context, "2024-05-01", "2024-05-01")
    [entry] = reports.customer_consumption(context, period)
    assert entry.customer.name == "Ana Pérez"
    assert not entry.in_ledger
    assert entry.credit_amount == Decimal("29.50")

    top = reports.top_products(period)
    assert top[0].product.code == "002"
    assert top[1].total_quantity == Decimal("3")


def test_unsaved_changes_are_discarded_by_refresh(runtime_context):
    """refresh_context drops anything that was not persisted."""

    inventory.add_product(runtime_context, code="009", name="Galletas", price=Decimal("20"), stock=Decimal("5"))
    reloaded = core_logic.refresh_context(runtime_context)

    assert inventory.list_products(reloaded) == []
