"""Utility for initializing the point-of-sale workbook.

The module doubles as a console script (``pos-setup``) and as a library used
by tests or other tooling, so the bootstrap logic stays the same regardless
of the execution path.
"""

from __future__ import annotations

import argparse
from datetime import UTC, datetime
from pathlib import Path
from typing import Iterable, Mapping, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font

from . import data_manager, log
from .constants import DEFAULT_CASHIER_NAME, DEFAULT_CATEGORIES, SheetName, UserRole

SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    SheetName.PRODUCTS.value: [
        "ProductID",
        "Code",
        "Name",
        "Description",
        "Price",
        "Stock",
        "MinStock",
        "Category",
        "Unit",
        "IsActive",
        "CreatedAt",
        "UpdatedAt",
    ],
    SheetName.CATEGORIES.value: [
        "Category",
    ],
    SheetName.CUSTOMERS.value: [
        "CustomerID",
        "Name",
        "Email",
        "Phone",
        "IDCard",
        "Address",
        "PasswordHash",
        "CreatedAt",
        "TotalPurchases",
        "TotalSpent",
    ],
    SheetName.USERS.value: [
        "UserID",
        "Username",
        "Name",
        "Role",
        "Email",
        "PasswordHash",
        "IsActive",
        "CreatedAt",
    ],
    SheetName.SALES.value: [
        "SaleID",
        "Timestamp",
        "BusinessDay",
        "PaymentMethod",
        "Subtotal",
        "Tax",
        "Total",
        "AmountPaid",
        "Change",
        "CashierID",
        "CashierName",
        "CustomerInfo",
        "Items",
    ],
    SheetName.DAILY_SALES.value: [
        "Date",
        "SaleIDs",
        "TotalSales",
        "TotalAmount",
        "CashSales",
        "CardSales",
        "CreditSales",
    ],
}

CONFIG_FILE = "config.ini"


def create_master_workbook(
    destination: Path,
    *,
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    categories: Iterable[str] = DEFAULT_CATEGORIES,
    cashiers: Iterable[Tuple[str, str]] = (),
    overwrite: bool = False,
) -> Path:
    """Create the point-of-sale workbook at ``destination``.

    Every sheet gets a bold header row and the ``Categories`` sheet is seeded
    with ``categories``. Each ``(user_id, name)`` pair in ``cashiers`` becomes
    an active cashier on the ``Users`` sheet. When ``overwrite`` is ``False``
    (the default) an existing file is left alone and ``FileExistsError`` is
    raised.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing workbook: {destination}"
        )

    destination.parent.mkdir(parents=True, exist_ok=True)

    workbook = openpyxl.Workbook()

    # Remove the default sheet openpyxl generates so we can create ours.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)

    for sheet_name, columns in sheet_columns.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    if SheetName.CATEGORIES.value in workbook.sheetnames:
        category_sheet = workbook[SheetName.CATEGORIES.value]
        for category in categories:
            category_sheet.append([category])

    created_at = datetime.now(UTC).isoformat()
    for user_id, name in cashiers:
        data_manager.append_user(
            workbook,
            data_manager.UserRow(
                user_id=user_id,
                username=user_id,
                name=name,
                role=UserRole.CASHIER,
                email="",
                password_hash="",
                is_active=True,
                created_at=created_at,
            ),
        )

    workbook.save(destination)
    log.info("Created workbook '%s'", destination)
    return destination


def run_from_config(config_path: Path, *, overwrite: bool = False) -> Path:
    """Create the workbook named by ``DataFile`` and register ``DefaultCashier``."""

    config_path = config_path.expanduser().resolve()
    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.parent)
    return create_master_workbook(
        settings.data_file,
        cashiers=((settings.default_cashier_id, DEFAULT_CASHIER_NAME),),
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(
        prog="pos-setup",
        description="Initialize the point-of-sale workbook",
    )
    parser.add_argument(
        "--config",
        default=CONFIG_FILE,
        help="Path to configuration file (default: config.ini)",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Overwrite the target workbook if it already exists.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the ``pos-setup`` script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, overwrite=args.force)
    except (FileNotFoundError, KeyError, ValueError) as exc:
        print(f"[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except OSError as exc:
        print(f"[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"Created workbook: {output_path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
