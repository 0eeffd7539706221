"""Tests for the workbook bootstrap script."""

from __future__ import annotations

import openpyxl
import pytest

from pos_core import constants, data_manager, setup_workbook


def test_create_master_workbook_writes_every_sheet(tmp_path):
    """Every sheet gets its header row in column order."""

    destination = setup_workbook.create_master_workbook(tmp_path / "nested" / "pos.xlsx")
    workbook = openpyxl.load_workbook(destination)

    for sheet_name, columns in setup_workbook.SHEET_COLUMNS.items():
        header = [cell.value for cell in workbook[sheet_name][1]]
        assert header == list(columns)


def test_create_master_workbook_refuses_to_overwrite(tmp_path):
    """Existing workbooks are left alone unless overwrite is requested."""

    destination = setup_workbook.create_master_workbook(tmp_path / "pos.xlsx", categories=["Solo"])
    with pytest.raises(FileExistsError):
        setup_workbook.create_master_workbook(destination)

    setup_workbook.create_master_workbook(destination, overwrite=True)
    categories = [row[0] for row in openpyxl.load_workbook(destination)["Categories"].iter_rows(min_row=2, values_only=True)]
    assert categories == list(constants.DEFAULT_CATEGORIES)


def test_main_creates_workbook_from_config(config_factory, capsys):
    """main() reads DataFile from the config and reports the outcome."""

    bundle = config_factory()
    bundle.workbook_path.unlink()

    assert setup_workbook.main(["--config", str(bundle.config_path)]) == 0
    assert bundle.workbook_path.exists()
    assert "Created workbook" in capsys.readouterr().out
    [cashier] = data_manager.iter_users(openpyxl.load_workbook(bundle.workbook_path))
    assert (cashier.user_id, cashier.role, cashier.is_active) == (bundle.default_cashier_id, constants.UserRole.CASHIER, True)

    assert setup_workbook.main(["--config", str(bundle.config_path)]) == 1
    assert "--force" in capsys.readouterr().out
    assert setup_workbook.main(["--config", str(bundle.config_path), "--force"]) == 0


def test_main_reports_missing_config(tmp_path, capsys):
    """A missing configuration file is reported with a non-zero exit code."""

    assert setup_workbook.main(["--config", str(tmp_path / "missing.ini")]) == 1
    assert "[ERROR]" in capsys.readouterr().out
