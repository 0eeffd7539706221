"""Shared pytest fixtures and utilities for point-of-sale tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterator
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from pos_core import cli, constants, core_logic, customers, data_manager, inventory  # noqa: E402
from pos_core.setup_workbook import create_master_workbook  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_CASHIER_ID = "CAJA-01"
DEFAULT_CASHIER_NAME = "María"
TEST_TIMEZONE = "America/Santo_Domingo"
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "StoreName = {store_name}\n"
    "SchemaVersion = {schema_version}\n"
    "TaxRate = {tax_rate}\n"
    "Timezone = {timezone}\n\n"
    "[Defaults]\n"
    "DefaultCashier = {default_cashier_id}\n\n"
    "[Security]\n"
    "PasswordRounds = 4\n"
    "MaxPasswordAttempts = {max_password_attempts}\n"
    "LockoutSeconds = 300\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    default_cashier_id: str
    schema_version: str
    store_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized workbook in a temp folder.

    The workbook registers ``CAJA-01`` as an active cashier, matching the
    ``DefaultCashier`` written by ``config_factory``.
    """

    def _create_workbook(
        *,
        subdir: str | None = None,
        filename: str = "pos_data.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(
            workbook_path,
            cashiers=((DEFAULT_CASHIER_ID, DEFAULT_CASHIER_NAME),),
            overwrite=True,
        )
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        store_name: str = "Colmado de Prueba",
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        default_cashier_id: str = DEFAULT_CASHIER_ID,
        tax_rate: str = "0.18",
        max_password_attempts: int = 3,
    ) -> ConfigBundle:
        bundle_id = uuid.uuid4().hex
        bundle_dir = tmp_path / f"bundle_{bundle_id}"
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=f"bundle_{bundle_id}")
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                store_name=store_name,
                schema_version=schema_version,
                tax_rate=tax_rate,
                timezone=TEST_TIMEZONE,
                default_cashier_id=default_cashier_id,
                max_password_attempts=max_password_attempts,
            ),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            default_cashier_id=default_cashier_id,
            schema_version=schema_version,
            store_name=store_name,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


@pytest.fixture
def product_factory(runtime_context: core_logic.RuntimeContext) -> Callable[..., data_manager.ProductRow]:
    """Register products against ``runtime_context`` with sensible defaults."""

    def _add(
        code: str = "001",
        *,
        name: str | None = None,
        price: str = "10.00",
        stock: str = "20",
        min_stock: str = "5",
        unit: constants.UnitType = constants.UnitType.PIECE,
        category: str = "Otros",
    ) -> data_manager.ProductRow:
        return inventory.add_product(
            runtime_context,
            code=code,
            name=name or f"Producto {code}",
            price=Decimal(price),
            stock=Decimal(stock),
            min_stock=Decimal(min_stock),
            category=category,
            unit=unit,
        )

    return _add


@pytest.fixture
def customer_factory(runtime_context: core_logic.RuntimeContext) -> Callable[..., data_manager.CustomerRow]:
    """Register customers against ``runtime_context`` with unique contact data."""

    counter = {"next": 1}

    def _add(*, name: str = "Ana Pérez", password: str = "secreto") -> data_manager.CustomerRow:
        index = counter["next"]
        counter["next"] += 1
        return customers.add_customer(
            runtime_context,
            name=name,
            email=f"cliente{index}@example.com",
            phone=f"809-555-{index:04d}",
            id_card=f"001-{index:07d}-1",
            password=password,
        )

    return _add


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="pos-cli", description="POS CLI")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


@pytest.fixture
def command_spec_iterable() -> list[cli.CommandSpec]:
    """Provide a list of command specs for indexing tests."""

    def _make_spec(name: str) -> cli.CommandSpec:
        return cli.CommandSpec(
            name,
            f"{name} help",
            lambda subparsers: subparsers.add_parser(name),
            lambda *_: 0,
        )

    return [_make_spec("alpha"), _make_spec("beta"), _make_spec("gamma")]


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "pos_data.xlsx",
        store_name="Colmado de Prueba",
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        default_cashier_id=DEFAULT_CASHIER_ID,
        timezone=TEST_TIMEZONE,
        password_rounds=4,
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def set_fixed_datetime(monkeypatch: pytest.MonkeyPatch) -> Callable[[datetime], datetime]:
    """Patch ``core_logic.datetime`` to return a predetermined moment."""

    def _apply(moment: datetime) -> datetime:
        class _FixedDateTime:
            @staticmethod
            def now(tz=None):
                assert tz is UTC
                return moment

        monkeypatch.setattr(core_logic, "datetime", _FixedDateTime)
        return moment

    return _apply
