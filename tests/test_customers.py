"""Tests for the customer ledger and the credit password gate."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest

from pos_core import core_logic, customers


def test_add_customer_hashes_password_and_zeroes_counters(runtime_context):
    """Passwords are never stored in clear text."""

    customer = customers.add_customer(
        runtime_context,
        name="Ana Pérez",
        email="ana@example.com",
        phone="809-555-0001",
        id_card="001-0000001-1",
        password="secreto",
    )

    assert customer.customer_id.startswith("C")
    assert customer.password_hash.startswith("$2")
    assert "secreto" not in customer.password_hash
    assert customer.total_purchases == 0
    assert customer.total_spent == Decimal("0")
    assert customers.get_customer_by_id(runtime_context, customer.customer_id) == customer


def test_add_customer_rejects_duplicate_email_case_insensitive(customer_factory, runtime_context):
    """Email uniqueness ignores case."""

    existing = customer_factory()
    with pytest.raises(core_logic.DuplicateCustomerError):
        customers.add_customer(
            runtime_context,
            name="Otra",
            email=existing.email.upper(),
            phone="809-000-0000",
            id_card="999-9999999-9",
            password="x",
        )


def test_add_customer_rejects_duplicate_id_card(customer_factory, runtime_context):
    """ID cards identify a single customer."""

    existing = customer_factory()
    with pytest.raises(core_logic.DuplicateCustomerError):
        customers.add_customer(
            runtime_context,
            name="Otra",
            email="otra@example.com",
            phone="809-000-0000",
            id_card=existing.id_card,
            password="x",
        )


def test_add_customer_requires_password(runtime_context):
    """A credit password is mandatory."""

    with pytest.raises(core_logic.BusinessRuleViolation):
        customers.add_customer(
            runtime_context,
            name="Sin Clave",
            email="sin@example.com",
            phone="809",
            id_card="1",
            password="",
        )


def test_search_customers_matches_contact_fields(customer_factory, runtime_context):
    """Search covers name, email, phone and ID card."""

    ana = customer_factory(name="Ana Pérez")
    luis = customer_factory(name="Luis Gómez")

    assert customers.search_customers(runtime_context, "luis") == [luis]
    assert customers.search_customers(runtime_context, ana.phone) == [ana]
    assert customers.search_customers(runtime_context, ana.id_card) == [ana]
    assert customers.search_customers(runtime_context, "  ") == [ana, luis]


def test_update_customer_rehashes_password(customer_factory, runtime_context):
    """Changing the password replaces the stored hash."""

    customer = customer_factory(password="viejo")
    updated = customers.update_customer(runtime_context, customer.customer_id, phone="829-111-2222", password="nuevo")

    assert updated.phone == "829-111-2222"
    assert customers.get_customer_by_id(runtime_context, customer.customer_id) == updated
    assert customers.validate_customer_password(runtime_context, customer.customer_id, "nuevo")
    assert not customers.validate_customer_password(runtime_context, customer.customer_id, "viejo")


def test_update_customer_rejects_taking_another_email(customer_factory, runtime_context):
    """Edits cannot collide with another customer's email."""

    first = customer_factory()
    second = customer_factory()
    with pytest.raises(core_logic.DuplicateCustomerError):
        customers.update_customer(runtime_context, second.customer_id, email=first.email)


def test_delete_customer_removes_from_ledger(customer_factory, runtime_context):
    """Deleted customers cannot be resolved any longer."""

    customer = customer_factory()
    customers.delete_customer(runtime_context, customer.customer_id)

    with pytest.raises(core_logic.MissingReferenceError):
        customers.get_customer_by_id(runtime_context, customer.customer_id)
    with pytest.raises(core_logic.MissingReferenceError):
        customers.delete_customer(runtime_context, customer.customer_id)


def test_update_customer_purchase_accumulates(customer_factory, runtime_context):
    """Each purchase increments the count and adds the amount spent."""

    customer = customer_factory()
    customers.update_customer_purchase(runtime_context, customer.customer_id, Decimal("59.00"))
    updated = customers.update_customer_purchase(runtime_context, customer.customer_id, Decimal("11.80"))

    assert updated.total_purchases == 2
    assert updated.total_spent == Decimal("70.80")
    assert customers.get_customer_by_id(runtime_context, customer.customer_id).total_spent == Decimal("70.80")


def test_update_customer_purchase_unknown_customer_raises(runtime_context):
    """Purchases cannot be recorded against unknown customers."""

    with pytest.raises(core_logic.MissingReferenceError):
        customers.update_customer_purchase(runtime_context, "C-NOPE", Decimal("1"))


# ---------------------------------------------------------------------------
# Password gate
# ---------------------------------------------------------------------------


def test_validate_customer_password_unknown_customer_is_false(runtime_context):
    """Unknown customers simply fail validation."""

    assert customers.validate_customer_password(runtime_context, "C-NOPE", "x") is False


def test_validate_customer_password_locks_out_after_repeated_failures(customer_factory, runtime_context, set_fixed_datetime):
    """After MaxPasswordAttempts failures even the right password is refused."""

    customer = customer_factory(password="correcta")
    start = set_fixed_datetime(datetime(2024, 5, 1, 12, 0, tzinfo=UTC))

    for _ in range(runtime_context.settings.max_password_attempts):
        assert not customers.validate_customer_password(runtime_context, customer.customer_id, "mala")

    assert customers.is_locked_out(runtime_context, customer.customer_id)
    assert not customers.validate_customer_password(runtime_context, customer.customer_id, "correcta")

    set_fixed_datetime(start + timedelta(seconds=runtime_context.settings.lockout_seconds + 1))
    assert not customers.is_locked_out(runtime_context, customer.customer_id)
    assert customers.validate_customer_password(runtime_context, customer.customer_id, "correcta")


def test_successful_password_clears_failures(customer_factory, runtime_context):
    """A correct password resets the failure count."""

    customer = customer_factory(password="correcta")
    customers.validate_customer_password(runtime_context, customer.customer_id, "mala")
    assert customers.validate_customer_password(runtime_context, customer.customer_id, "correcta")
    assert customer.customer_id not in runtime_context._password_failures


def test_customer_snapshot_keeps_identity_fields(customer_factory):
    """Snapshots carry what reports need after the customer is deleted."""

    customer = customer_factory(name="Ana Pérez")
    snapshot = customers.customer_snapshot(customer)

    assert (snapshot.customer_id, snapshot.name, snapshot.email, snapshot.id_card) == (
        customer.customer_id,
        "Ana Pérez",
        customer.email,
        customer.id_card,
    )
