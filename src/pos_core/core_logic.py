"""Shared runtime for the point-of-sale business modules.

Every business function receives a :class:`RuntimeContext` explicitly. The
context is built once at start-up by :func:`load_runtime_context` and passed
by reference, so there is no hidden global state: the catalog, the customer
ledger, the sales log and the daily aggregates all live in the workbook held
by the context, behind its cache buckets and its lock.

This module also owns the error taxonomy raised by the business layer and
the small helpers shared by all of it (identifier generation, business-day
keying, numeric guards).
"""

from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION


BusinessDayFn = Callable[[datetime], date]


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced product, customer, user, or sale is unknown."""


class InsufficientStockError(BusinessRuleViolation):
    """Raised when a requested quantity exceeds the stock on hand."""

    def __init__(self, product_id: str, requested: Decimal, available: Decimal) -> None:
        super().__init__(
            f"Insufficient stock for product '{product_id}': "
            f"requested {requested}, available {available}"
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class InsufficientPaymentError(BusinessRuleViolation):
    """Raised when cash tendered does not cover the sale total."""

    def __init__(self, amount_paid: Decimal, total: Decimal) -> None:
        super().__init__(f"Amount paid {amount_paid} is below the sale total {total}")
        self.amount_paid = amount_paid
        self.total = total


class MissingCustomerError(BusinessRuleViolation):
    """Raised when a credit sale is attempted without a customer."""


class EmptyCartError(BusinessRuleViolation):
    """Raised when checkout is attempted with no items."""


class DuplicateCustomerError(BusinessRuleViolation):
    """Raised when a customer email or ID card is already registered."""


class CreditAuthorizationError(BusinessRuleViolation):
    """Raised when a credit sale is not authorized by the customer password."""


class DuplicateUserError(BusinessRuleViolation):
    """Raised when a username or user identifier is already registered."""


class InactiveUserError(BusinessRuleViolation):
    """Raised when a deactivated user is asked to ring up a sale."""


class LastAdminError(BusinessRuleViolation):
    """Raised when an operation would leave the till without an active admin."""


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration, workbook and shared state used by the BLL.

    ``business_day`` maps a sale timestamp to the calendar date its daily
    aggregate is keyed by. When omitted the configured timezone is used.
    """

    settings: data_manager.ConfigSettings
    workbook: Workbook
    business_day: Optional[BusinessDayFn] = None
    lock: Any = field(default_factory=threading.RLock, repr=False, compare=False)
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)
    _password_failures: Dict[str, List[datetime]] = field(default_factory=dict, repr=False, compare=False)


def make_business_day(timezone_name: str) -> BusinessDayFn:
    """Build a business-day function for a fixed IANA timezone.

    Naive timestamps are treated as UTC before conversion.
    """

    zone = ZoneInfo(timezone_name)

    def _business_day(moment: datetime) -> date:
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=UTC)
        return moment.astimezone(zone).date()

    return _business_day


def business_day_for(context: RuntimeContext, moment: datetime) -> str:
    """Return the ``YYYY-MM-DD`` key of the business day containing ``moment``."""

    resolver = context.business_day or make_business_day(context.settings.timezone)
    return resolver(moment).isoformat()


def resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` unchanged, or the current UTC time when ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name.

    Buckets are keyed by domain area (products, customers, sales, ...) and
    hold derived collections so repeated queries do not rescan the workbook.
    """

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored so callers can request targeted invalidation
    without checking what has been loaded.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def load_runtime_context(
    config_path: Optional[Path] = None,
    *,
    business_day: Optional[BusinessDayFn] = None,
) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Resolves ``config.ini``, parses it into settings, and opens the workbook
    it points to. The resulting :class:`RuntimeContext` bundles the immutable
    settings with the mutable workbook handle, an empty cache store, and the
    business-day function derived from the configured timezone unless one is
    injected.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the cwd.
        business_day (Callable | None): Optional business-day function, mainly
            used by tests to pin the date boundary.

    Returns:
        RuntimeContext: Fully populated context ready for the business modules.

    Raises:
        FileNotFoundError: If the configuration file or workbook is missing.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(
        settings=settings,
        workbook=workbook,
        business_day=business_day or make_business_day(settings.timezone),
    )


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def persist_context(context: RuntimeContext) -> None:
    """Persist in-memory workbook changes to the configured data file."""
    with context.lock:
        data_manager.save_workbook(
            context.workbook,
            destination=context.settings.data_file,
        )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    A new :class:`RuntimeContext` is returned with a freshly opened workbook,
    an empty cache, and the same settings and business-day function.

    Raises:
        FileNotFoundError: If the backing workbook cannot be reloaded.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(
        settings=context.settings,
        workbook=workbook,
        business_day=context.business_day,
    )


def generate_id(prefix: str, *, when: Optional[datetime] = None) -> str:
    """Generate a sortable, collision-free identifier.

    The identifier is ``{prefix}{YYYYMMDDHHMMSSffffff}-{random}``: the
    timestamp keeps identifiers chronologically sortable and the random UUID
    fragment keeps two identifiers minted in the same microsecond distinct.
    """
    when = when or resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}-{uuid.uuid4().hex[:8]}"


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero or negative.
    """
    if quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def require_nonnegative_money(amount: Decimal) -> None:
    """Validate that a monetary value is nonnegative.

    Raises:
        ValueError: If ``amount`` is less than zero.
    """
    if amount < Decimal("0"):
        log.error("Monetary value validation failed: %s", amount)
        raise ValueError("Amount must be zero or positive")
