"""Command-line entry points for the point-of-sale toolkit.

All orchestration in this module is limited to argparse wiring, translating
command-line arguments into calls on the business modules, and printing
their results. Keeping the CLI thin means the parser configuration can be
reused by tests, scripts, or any other front-end.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from datetime import date
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Mapping, MutableMapping, Optional, Sequence, Tuple

from . import core_logic, customers, data_manager, inventory, log, reports, sales, users
from .constants import PaymentMethod, UnitType, UserRole


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="pos-cli",
        description="Command-line tools for the Point of Sale workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def _simple_spec(
    name: str,
    help_text: str,
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int],
    arguments: Callable[[argparse.ArgumentParser], None] = lambda parser: None,
    *,
    mutates: bool,
) -> CommandSpec:
    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=execute, mutates=mutates)


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as sales and catalog edits."""
    specs = {
        "add-product": register_add_product_command(subparsers),
        "update-product": register_update_product_command(subparsers),
        "delete-product": register_delete_product_command(subparsers),
        "adjust-stock": register_adjust_stock_command(subparsers),
        "add-category": register_add_category_command(subparsers),
        "add-customer": register_add_customer_command(subparsers),
        "delete-customer": register_delete_customer_command(subparsers),
        "add-user": register_add_user_command(subparsers),
        "set-user-status": register_set_user_status_command(subparsers),
        "sale": register_sale_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as listings and reports."""
    specs = {
        "products": register_products_command(subparsers),
        "low-stock": register_low_stock_command(subparsers),
        "customers": register_customers_command(subparsers),
        "users": register_users_command(subparsers),
        "daily": register_daily_command(subparsers),
        "sales": register_sales_command(subparsers),
        "top-products": register_top_products_command(subparsers),
        "customer-report": register_customer_report_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_add_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-product``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--code", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--price", required=True)
        parser.add_argument("--stock", default="0")
        parser.add_argument("--min-stock", default=None)
        parser.add_argument("--category", default="")
        parser.add_argument("--description", default="")
        parser.add_argument(
            "--unit",
            choices=[member.value for member in UnitType],
            default=UnitType.PIECE.value,
        )

    return _simple_spec("add-product", "Register a new product in the catalog.", run_add_product, arguments, mutates=True)


def register_update_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``update-product``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--code", default=None)
        parser.add_argument("--name", default=None)
        parser.add_argument("--price", default=None)
        parser.add_argument("--min-stock", default=None)
        parser.add_argument("--category", default=None)
        parser.add_argument("--description", default=None)
        parser.add_argument("--unit", choices=[member.value for member in UnitType], default=None)

    return _simple_spec("update-product", "Edit an existing product.", run_update_product, arguments, mutates=True)


def register_delete_product_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-product``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)

    return _simple_spec("delete-product", "Deactivate a product.", run_delete_product, arguments, mutates=True)


def register_adjust_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``adjust-stock``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--product-id", required=True)
        parser.add_argument("--delta", required=True, help="Signed stock change, e.g. 12 or -3.5.")

    return _simple_spec("adjust-stock", "Apply a signed stock adjustment.", run_adjust_stock, arguments, mutates=True)


def register_add_category_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-category``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)

    return _simple_spec("add-category", "Register a product category.", run_add_category, arguments, mutates=True)


def register_add_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-customer``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--name", required=True)
        parser.add_argument("--email", required=True)
        parser.add_argument("--phone", required=True)
        parser.add_argument("--id-card", required=True)
        parser.add_argument("--password", required=True, help="Credit authorization password.")
        parser.add_argument("--address", default=None)

    return _simple_spec("add-customer", "Register a customer.", run_add_customer, arguments, mutates=True)


def register_delete_customer_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``delete-customer``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--customer-id", required=True)

    return _simple_spec("delete-customer", "Remove a customer from the ledger.", run_delete_customer, arguments, mutates=True)


def register_add_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-user``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--username", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument(
            "--role",
            choices=[member.value for member in UserRole],
            default=UserRole.CASHIER.value,
        )
        parser.add_argument("--email", default="")
        parser.add_argument("--password", default=None)
        parser.add_argument("--user-id", default=None, help="Explicit identifier, e.g. CAJA-02.")

    return _simple_spec("add-user", "Register a till user.", run_add_user, arguments, mutates=True)


def register_set_user_status_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``set-user-status``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--user-id", required=True)
        state = parser.add_mutually_exclusive_group(required=True)
        state.add_argument("--activate", dest="active", action="store_true")
        state.add_argument("--deactivate", dest="active", action="store_false")

    return _simple_spec(
        "set-user-status", "Activate or deactivate a till user.", run_set_user_status, arguments, mutates=True
    )


def register_sale_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sale``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            required=True,
            help="Cart line as CODE:QUANTITY[:WEIGHT]; repeat for more lines.",
        )
        parser.add_argument(
            "--payment-method",
            choices=[member.value for member in PaymentMethod],
            required=True,
        )
        parser.add_argument("--amount-paid", default="0")
        parser.add_argument("--cashier-id", default=None, help="Registered user ringing the sale (default: DefaultCashier).")
        parser.add_argument("--customer-id", default=None)
        parser.add_argument("--customer-password", default=None)

    return _simple_spec("sale", "Ring up and settle a sale.", run_sale, arguments, mutates=True)


def register_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``products``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default=None)
        parser.add_argument("--include-inactive", action="store_true")

    return _simple_spec("products", "List catalog products.", run_products_report, arguments, mutates=False)


def register_low_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``low-stock``."""
    return _simple_spec("low-stock", "List products at or below minimum stock.", run_low_stock_report, mutates=False)


def register_customers_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customers``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--search", default="")

    return _simple_spec("customers", "List customers.", run_customers_report, arguments, mutates=False)


def register_users_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``users``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--include-inactive", action="store_true")

    return _simple_spec("users", "List till users.", run_users_report, arguments, mutates=False)


def register_daily_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``daily``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        parser.add_argument("--date", default=None, help="Business day as YYYY-MM-DD (default: today).")

    return _simple_spec("daily", "Display the daily sales aggregate.", run_daily_report, arguments, mutates=False)


def _add_range_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--start", required=True, help="First business day, YYYY-MM-DD.")
    parser.add_argument("--end", required=True, help="Last business day, YYYY-MM-DD.")


def register_sales_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``sales``."""
    return _simple_spec("sales", "List sales in a date range.", run_sales_report, _add_range_arguments, mutates=False)


def register_top_products_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``top-products``."""

    def arguments(parser: argparse.ArgumentParser) -> None:
        _add_range_arguments(parser)
        parser.add_argument("--limit", type=int, default=10)

    return _simple_spec("top-products", "Rank products by revenue.", run_top_products_report, arguments, mutates=False)


def register_customer_report_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``customer-report``."""
    return _simple_spec(
        "customer-report",
        "Display per-customer consumption and credit.",
        run_customer_report,
        _add_range_arguments,
        mutates=False,
    )


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    target = Path(config_path) if config_path is not None else Path.cwd() / "config.ini"
    return core_logic.load_runtime_context(target)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def parse_decimal(raw: str, *, label: str) -> Decimal:
    """Parse a decimal argument, naming the offending option on failure."""
    try:
        return Decimal(raw)
    except InvalidOperation as exc:
        raise ValueError(f"Invalid {label}: {raw!r}") from exc


def parse_item_spec(raw: str) -> Tuple[str, Decimal, Optional[Decimal]]:
    """Split a ``CODE:QUANTITY[:WEIGHT]`` cart line."""
    parts = raw.split(":")
    if len(parts) not in (2, 3) or not parts[0]:
        raise ValueError(f"Invalid item {raw!r}; expected CODE:QUANTITY[:WEIGHT]")
    weight = parse_decimal(parts[2], label="weight") if len(parts) == 3 else None
    return parts[0], parse_decimal(parts[1], label="quantity"), weight


def translate_add_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into add-product keyword arguments."""
    return {
        "code": args.code,
        "name": args.name,
        "price": parse_decimal(args.price, label="price"),
        "stock": parse_decimal(args.stock, label="stock"),
        "min_stock": parse_decimal(args.min_stock, label="min stock") if args.min_stock is not None else None,
        "category": args.category,
        "unit": UnitType(args.unit),
        "description": args.description,
    }


def translate_update_product(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into update-product changes, skipping unset options."""
    changes: Dict[str, Any] = {}
    for name in ("code", "name", "category", "description"):
        value = getattr(args, name)
        if value is not None:
            changes[name] = value
    if args.price is not None:
        changes["price"] = parse_decimal(args.price, label="price")
    if args.min_stock is not None:
        changes["min_stock"] = parse_decimal(args.min_stock, label="min stock")
    if args.unit is not None:
        changes["unit"] = UnitType(args.unit)
    return changes


def translate_add_customer(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into add-customer keyword arguments."""
    return {
        "name": args.name,
        "email": args.email,
        "phone": args.phone,
        "id_card": args.id_card,
        "password": args.password,
        "address": args.address,
    }


def translate_add_user(args: argparse.Namespace) -> Mapping[str, Any]:
    """Translate CLI args into add-user keyword arguments."""
    return {
        "username": args.username,
        "name": args.name,
        "role": UserRole(args.role),
        "email": args.email,
        "password": args.password,
        "user_id": args.user_id,
    }


def translate_sale(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
) -> sales.CheckoutCommand:
    """Build the cart and translate CLI args into a checkout command."""
    cart: List[data_manager.SaleItem] = []
    for raw in args.items:
        code, quantity, weight = parse_item_spec(raw)
        product = inventory.get_product_by_code(context, code)
        cart = sales.merge_into_cart(context, cart, product.product_id, quantity, weight)

    return sales.CheckoutCommand(
        items=tuple(cart),
        payment_method=PaymentMethod(args.payment_method),
        amount_paid=parse_decimal(args.amount_paid, label="amount paid"),
        cashier_id=args.cashier_id or context.settings.default_cashier_id,
        customer_id=args.customer_id,
        customer_password=args.customer_password,
    )


def _money(context: core_logic.RuntimeContext, amount: Decimal) -> str:
    return reports.format_currency(amount, context.settings.currency)


def run_add_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-product workflow."""
    product = inventory.add_product(context, **translate_add_product(args))
    print(f"Added product {product.product_id} ({product.code})")
    return 0


def run_update_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the update-product workflow."""
    changes = translate_update_product(args)
    if not changes:
        log.warning("update-product called without any field to change")
        return 1
    inventory.update_product(context, args.product_id, **changes)
    return 0


def run_delete_product(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the soft-delete workflow for a product."""
    inventory.delete_product(context, args.product_id)
    return 0


def run_adjust_stock(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute a manual stock adjustment."""
    product = inventory.update_stock(context, args.product_id, parse_decimal(args.delta, label="delta"))
    print(f"{product.code} stock: {product.stock}")
    return 0


def run_add_category(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-category workflow."""
    if not inventory.add_category(context, args.name):
        print(f"Category already exists: {args.name}")
    return 0


def run_add_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-customer workflow."""
    customer = customers.add_customer(context, **translate_add_customer(args))
    print(f"Added customer {customer.customer_id} ({customer.name})")
    return 0


def run_delete_customer(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the delete-customer workflow."""
    customers.delete_customer(context, args.customer_id)
    return 0


def run_add_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-user workflow."""
    user = users.add_user(context, **translate_add_user(args))
    print(f"Added {user.role.value} {user.user_id} ({user.name})")
    return 0


def run_set_user_status(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the activate/deactivate workflow for a user."""
    users.set_user_active(context, args.user_id, args.active)
    return 0


def run_sale(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the checkout workflow and print a short summary."""
    sale = sales.checkout(context, translate_sale(context, args))
    print(f"Sale {sale.sale_id}")
    for item in sale.items:
        print(f"  {item.product.name:<30} {item.effective_quantity:>8} x {item.unit_price:>10} = {_money(context, item.subtotal)}")
    print(f"  Subtotal: {_money(context, sale.subtotal)}")
    print(f"  Tax:      {_money(context, sale.tax)}")
    print(f"  Total:    {_money(context, sale.total)}")
    if sale.payment_method is PaymentMethod.CASH:
        print(f"  Change:   {_money(context, sale.change)}")
    return 0


def run_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List products, optionally filtered by a search term."""
    if args.search:
        products = inventory.search_products(context, args.search)
    else:
        products = inventory.list_products(context, include_inactive=args.include_inactive)
    for product in products:
        flag = "" if product.is_active else " [inactive]"
        print(f"{product.code:<10} {product.name:<30} {_money(context, product.price):>14} stock={product.stock}{flag}")
    return 0


def run_low_stock_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List products that need restocking."""
    for product in inventory.list_low_stock_products(context):
        print(f"{product.code:<10} {product.name:<30} stock={product.stock} min={product.min_stock}")
    return 0


def run_customers_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List customers, optionally filtered by a search term."""
    for customer in customers.search_customers(context, args.search):
        print(
            f"{customer.customer_id:<32} {customer.name:<25} {customer.email:<30} "
            f"purchases={customer.total_purchases} spent={_money(context, customer.total_spent)}"
        )
    return 0


def run_users_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List till users."""
    for user in users.list_users(context, include_inactive=args.include_inactive):
        flag = "" if user.is_active else " [inactive]"
        print(f"{user.user_id:<32} {user.username:<15} {user.name:<25} {user.role.value}{flag}")
    return 0


def run_daily_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Display one day's aggregate."""
    if args.date:
        daily = sales.get_daily_sales(context, date.fromisoformat(args.date))
    else:
        daily = sales.get_todays_sales(context)
    print(f"Date:   {daily.date}")
    print(f"Sales:  {daily.total_sales}")
    print(f"Total:  {_money(context, daily.total_amount)}")
    print(f"Cash:   {_money(context, daily.cash_sales)}")
    print(f"Card:   {_money(context, daily.card_sales)}")
    print(f"Credit: {_money(context, daily.credit_sales)}")
    return 0


def run_sales_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """List sales in a business-day range."""
    for sale in reports.sales_between(context, args.start, args.end):
        customer = sale.customer_info.name if sale.customer_info else "-"
        print(
            f"{sale.sale_id:<36} {sale.timestamp.isoformat():<32} {sale.payment_method.value:<7} "
            f"{_money(context, sale.total):>14} {customer}"
        )
    return 0


def run_top_products_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Rank products by revenue over a business-day range."""
    ranked = reports.top_products(reports.sales_between(context, args.start, args.end), limit=args.limit)
    for stats in ranked:
        print(
            f"{stats.product.code:<10} {stats.product.name:<30} qty={stats.total_quantity} "
            f"revenue={_money(context, stats.total_revenue)}"
        )
    return 0


def run_customer_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Display per-customer consumption over a business-day range."""
    period_sales = reports.sales_between(context, args.start, args.end)
    for entry in reports.customer_consumption(context, period_sales):
        flag = "" if entry.in_ledger else " [deleted]"
        print(
            f"{entry.customer.name:<25} {entry.customer.id_card:<15} sales={entry.sales_count} "
            f"total={_money(context, entry.total_amount)} credit={_money(context, entry.credit_amount)}{flag}"
        )
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
