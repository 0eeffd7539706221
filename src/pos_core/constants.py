"""Enumerations and defaults shared across the point-of-sale modules.

The data access layer, the business modules, and the CLI all key off these
values, so sheet names and enum spellings live in exactly one place.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum


# Workbook layout version the code knows how to read and write.
EXPECTED_SCHEMA_VERSION = "1.0.0"

DEFAULT_TAX_RATE = Decimal("0.18")
DEFAULT_CURRENCY = "DOP"
DEFAULT_TIMEZONE = "America/Santo_Domingo"
DEFAULT_LOW_STOCK_THRESHOLD = 10

DEFAULT_PASSWORD_ROUNDS = 12
DEFAULT_MAX_PASSWORD_ATTEMPTS = 5
DEFAULT_LOCKOUT_SECONDS = 300

DEFAULT_CASHIER_NAME = "Cajero Principal"

DEFAULT_CATEGORIES = (
    "Bebidas",
    "Panadería",
    "Granos",
    "Lácteos",
    "Carnes",
    "Verduras",
    "Otros",
)


class PaymentMethod(str, Enum):
    """Enumerate the ways a sale can be settled."""

    CASH = "cash"
    CARD = "card"
    CREDIT = "credit"


class UnitType(str, Enum):
    """Enumerate how a product is measured when sold."""

    PIECE = "piece"
    WEIGHT = "weight"
    BULK = "bulk"

    @property
    def is_weighed(self) -> bool:
        return self in (UnitType.WEIGHT, UnitType.BULK)


class UserRole(str, Enum):
    """Enumerate the roles a till user can hold."""

    ADMIN = "admin"
    CASHIER = "cashier"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    PRODUCTS = "Products"
    CATEGORIES = "Categories"
    CUSTOMERS = "Customers"
    USERS = "Users"
    SALES = "Sales"
    DAILY_SALES = "DailySales"


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "DEFAULT_TAX_RATE",
    "DEFAULT_CURRENCY",
    "DEFAULT_TIMEZONE",
    "DEFAULT_LOW_STOCK_THRESHOLD",
    "DEFAULT_PASSWORD_ROUNDS",
    "DEFAULT_MAX_PASSWORD_ATTEMPTS",
    "DEFAULT_LOCKOUT_SECONDS",
    "DEFAULT_CASHIER_NAME",
    "DEFAULT_CATEGORIES",
    "PaymentMethod",
    "UnitType",
    "UserRole",
    "SheetName",
]
