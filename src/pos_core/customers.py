"""Customer ledger and credit authorization gate.

Customers are unique by email (case-insensitive) and by ID card. Deleting a
customer removes the row outright; sales keep the
:class:`~pos_core.data_manager.CustomerInfo` snapshot captured at checkout,
so reports over past sales still resolve the customer.

Credit passwords are stored as bcrypt hashes. Failed verifications are
counted per customer and, once ``MaxPasswordAttempts`` failures accumulate
inside ``LockoutSeconds``, the gate refuses every attempt until the window
passes.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

import bcrypt

from . import data_manager, log
from .core_logic import (
    BusinessRuleViolation,
    DuplicateCustomerError,
    MissingReferenceError,
    RuntimeContext,
    _get_cache_bucket,
    _invalidate_cache,
    generate_id,
    require_nonnegative_money,
    resolve_timestamp,
)


_CUSTOMER_COLUMNS: Dict[str, str] = {
    "name": "Name",
    "email": "Email",
    "phone": "Phone",
    "id_card": "IDCard",
    "address": "Address",
}


def _ensure_customers_cache(context: RuntimeContext) -> Dict[str, Any]:
    bucket = _get_cache_bucket(context, "customers")
    if "all" not in bucket:
        all_customers = list(data_manager.iter_customers(context.workbook))
        bucket["all"] = all_customers
        bucket["by_id"] = {customer.customer_id: customer for customer in all_customers}
        log.debug("Populated customers cache with %d entries", len(all_customers))
    return bucket


def hash_password(context: RuntimeContext, password: str) -> str:
    """Hash a credit password with bcrypt using the configured cost factor."""
    salt = bcrypt.gensalt(rounds=context.settings.password_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def list_customers(context: RuntimeContext) -> List[data_manager.CustomerRow]:
    """Return every registered customer in sheet order."""
    return list(_ensure_customers_cache(context)["all"])


def get_customer_by_id(context: RuntimeContext, customer_id: str) -> data_manager.CustomerRow:
    """Resolve a customer by identifier.

    Raises:
        MissingReferenceError: If the customer is not in the ledger.
    """
    try:
        return _ensure_customers_cache(context)["by_id"][customer_id]
    except KeyError as exc:
        log.warning("Customer lookup failed for id '%s'", customer_id)
        raise MissingReferenceError(f"Unknown customer id: {customer_id}") from exc


def search_customers(context: RuntimeContext, query: str) -> List[data_manager.CustomerRow]:
    """Search customers by name, email, phone or ID card.

    Name and email match case-insensitively. A blank query returns everyone.
    """
    term = query.strip().lower()
    customers = list_customers(context)
    if not term:
        return customers
    return [
        customer
        for customer in customers
        if term in customer.name.lower()
        or term in customer.email.lower()
        or term in customer.phone
        or term in customer.id_card
    ]


def _require_unique(
    context: RuntimeContext,
    *,
    email: Optional[str],
    id_card: Optional[str],
    exclude_id: Optional[str] = None,
) -> None:
    for customer in list_customers(context):
        if customer.customer_id == exclude_id:
            continue
        if email is not None and customer.email.lower() == email.lower():
            log.warning("Customer email '%s' already registered to '%s'", email, customer.customer_id)
            raise DuplicateCustomerError("A customer with this email or ID card already exists")
        if id_card is not None and customer.id_card == id_card:
            log.warning("Customer ID card '%s' already registered to '%s'", id_card, customer.customer_id)
            raise DuplicateCustomerError("A customer with this email or ID card already exists")


def add_customer(
    context: RuntimeContext,
    *,
    name: str,
    email: str,
    phone: str,
    id_card: str,
    password: str,
    address: Optional[str] = None,
) -> data_manager.CustomerRow:
    """Register a customer with zeroed purchase counters.

    Raises:
        DuplicateCustomerError: If the email or ID card is already registered.
        BusinessRuleViolation: If the credit password is blank.
    """
    if not password:
        raise BusinessRuleViolation("Customer password must not be blank")

    with context.lock:
        _require_unique(context, email=email, id_card=id_card)
        created = resolve_timestamp(None)
        customer = data_manager.CustomerRow(
            customer_id=generate_id("C", when=created),
            name=name,
            email=email,
            phone=phone,
            id_card=id_card,
            address=address,
            password_hash=hash_password(context, password),
            created_at=created.isoformat(),
            total_purchases=0,
            total_spent=Decimal("0.00"),
        )
        data_manager.append_customer(context.workbook, customer)
        _invalidate_cache(context, "customers")
    log.info("Added customer '%s' (%s)", customer.customer_id, name)
    return customer


def update_customer(context: RuntimeContext, customer_id: str, **changes: Any) -> data_manager.CustomerRow:
    """Apply field changes to a customer; ``password`` is re-hashed.

    Raises:
        MissingReferenceError: If the customer is unknown.
        DuplicateCustomerError: If the new email or ID card belongs to
            another customer.
        KeyError: If an unsupported field is supplied.
    """
    password = changes.pop("password", None)
    unknown = set(changes) - set(_CUSTOMER_COLUMNS)
    if unknown:
        raise KeyError(f"Unknown customer field(s): {', '.join(sorted(unknown))}")

    with context.lock:
        current = get_customer_by_id(context, customer_id)
        _require_unique(
            context,
            email=changes.get("email"),
            id_card=changes.get("id_card"),
            exclude_id=customer_id,
        )
        field_values = {_CUSTOMER_COLUMNS[name]: value for name, value in changes.items()}
        if password:
            changes["password_hash"] = hash_password(context, password)
            field_values["PasswordHash"] = changes["password_hash"]
        if field_values:
            data_manager.update_customer(context.workbook, customer_id, field_values=field_values)
            _invalidate_cache(context, "customers")
    log.info("Updated customer '%s'", customer_id)
    return replace(current, **changes)


def delete_customer(context: RuntimeContext, customer_id: str) -> None:
    """Remove a customer from the ledger.

    Raises:
        MissingReferenceError: If the customer is unknown.
    """
    with context.lock:
        get_customer_by_id(context, customer_id)
        data_manager.delete_customer(context.workbook, customer_id)
        _invalidate_cache(context, "customers")
        context._password_failures.pop(customer_id, None)
    log.info("Deleted customer '%s'", customer_id)


def update_customer_purchase(context: RuntimeContext, customer_id: str, amount: Decimal) -> data_manager.CustomerRow:
    """Count one completed purchase of ``amount`` against a customer.

    Raises:
        MissingReferenceError: If the customer is unknown.
        ValueError: If ``amount`` is negative.
    """
    require_nonnegative_money(amount)
    with context.lock:
        customer = get_customer_by_id(context, customer_id)
        updated = replace(
            customer,
            total_purchases=customer.total_purchases + 1,
            total_spent=customer.total_spent + amount,
        )
        data_manager.update_customer(
            context.workbook,
            customer_id,
            field_values={
                "TotalPurchases": updated.total_purchases,
                "TotalSpent": updated.total_spent,
            },
        )
        _invalidate_cache(context, "customers")
    log.info(
        "Recorded purchase of %s for customer '%s' (%d purchases)",
        amount,
        customer_id,
        updated.total_purchases,
    )
    return updated


def customer_snapshot(customer: data_manager.CustomerRow) -> data_manager.CustomerInfo:
    """Capture the customer fields a sale keeps after the customer is gone."""
    return data_manager.CustomerInfo(
        customer_id=customer.customer_id,
        name=customer.name,
        email=customer.email,
        id_card=customer.id_card,
    )


def is_locked_out(context: RuntimeContext, customer_id: str) -> bool:
    """Return whether the customer has exhausted their password attempts."""
    now = resolve_timestamp(None)
    window_start = now - timedelta(seconds=context.settings.lockout_seconds)
    recent = [
        moment
        for moment in context._password_failures.get(customer_id, [])
        if moment > window_start
    ]
    context._password_failures[customer_id] = recent
    return len(recent) >= context.settings.max_password_attempts


def validate_customer_password(context: RuntimeContext, customer_id: str, password: str) -> bool:
    """Check a credit password against the customer's stored hash.

    Unknown customers, locked-out customers and wrong passwords all yield
    ``False``; only the last one counts as a failed attempt.
    """
    with context.lock:
        try:
            customer = get_customer_by_id(context, customer_id)
        except MissingReferenceError:
            return False

        if is_locked_out(context, customer_id):
            log.warning("Password check refused for locked-out customer '%s'", customer_id)
            return False

        if customer.password_hash and bcrypt.checkpw(
            password.encode("utf-8"), customer.password_hash.encode("utf-8")
        ):
            context._password_failures.pop(customer_id, None)
            return True

        context._password_failures.setdefault(customer_id, []).append(resolve_timestamp(None))
        log.warning("Invalid credit password for customer '%s'", customer_id)
        return False
