"""Utility for initializing the mall inventory master workbook.

The module doubles as a script (``python -m mall_inventory.setup_excel``) and
as a library used by tests or other tooling. Shared helpers keep the workbook
bootstrap logic consistent regardless of the execution path.
"""

from __future__ import annotations

import argparse
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import Iterable, Mapping, Sequence
import sys

import openpyxl
from openpyxl.styles import Font

from . import data_manager

# Column layout of every sheet managed by the data access layer.
SHEET_COLUMNS: Mapping[str, Sequence[str]] = {
    data_manager.INVENTORY_SHEET: [
        "ItemName",
        "Quantity",
        "Unit",
    ],
    data_manager.TRANSACTION_LOG_SHEET: [
        "TransactionID",
        "Timestamp",
        "OperationKind",
        "ItemName",
        "Quantity",
        "Unit",
        "Location",
        "PersonName",
        "Notes",
        "FileURL",
    ],
    data_manager.USERS_SHEET: [
        "Email",
        "Name",
        "Role",
        "PasswordHash",
    ],
}

CONFIG_FILE = data_manager.CONFIG_FILE_NAME


@dataclass(frozen=True)
class SetupSettings:
    """Type-safe representation of configuration values used during setup."""

    data_file: Path


def load_settings(config_path: Path) -> SetupSettings:
    """Read ``config.ini`` and produce :class:`SetupSettings`.

    Relative paths inside the config file are resolved against the config
    file's directory.
    """

    parser = data_manager.read_config(config_path)
    settings = data_manager.parse_settings(parser, base_path=config_path.expanduser().resolve().parent)
    return SetupSettings(data_file=settings.data_file)


def create_master_workbook(
    destination: Path,
    *,
    opening_stock: Iterable[data_manager.InventoryRow] = (),
    sheet_columns: Mapping[str, Sequence[str]] = SHEET_COLUMNS,
    overwrite: bool = False,
) -> Path:
    """Create the master workbook at ``destination``.

    ``opening_stock`` rows are written to the inventory sheet so a fresh
    installation can start issuing immediately. When ``overwrite`` is
    ``False`` (the default) this function raises ``FileExistsError`` if the
    target already exists.
    """

    destination = destination.expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(
            f"Refusing to overwrite existing master workbook: {destination}"
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

    for row in opening_stock:
        data_manager.append_inventory_item(workbook, row)

    workbook.save(destination)
    return destination


def parse_stock_entry(raw: str) -> data_manager.InventoryRow:
    """Parse ``NAME=QTY:UNIT`` into an opening stock row."""

    try:
        name, rest = raw.rsplit("=", 1)
        quantity, unit = rest.split(":", 1)
        return data_manager.InventoryRow(item_name=name.strip(), quantity=Decimal(quantity.strip()), unit=unit.strip())
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Expected NAME=QTY:UNIT, got '{raw}'") from exc
    except ArithmeticError as exc:
        raise argparse.ArgumentTypeError(f"Invalid quantity in '{raw}'") from exc


def run_from_config(
    config_path: Path,
    *,
    opening_stock: Iterable[data_manager.InventoryRow] = (),
    overwrite: bool = False,
) -> Path:
    """Create the workbook configured in ``config_path``."""

    settings = load_settings(config_path)
    return create_master_workbook(
        settings.data_file,
        opening_stock=opening_stock,
        overwrite=overwrite,
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    """Parse CLI arguments for the setup script."""

    parser = argparse.ArgumentParser(description="Initialize the mall inventory data file")
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
    parser.add_argument(
        "--stock",
        action="append",
        default=[],
        type=parse_stock_entry,
        metavar="NAME=QTY:UNIT",
        help="Opening stock entry; may be repeated.",
    )
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for the setup script."""

    args = parse_args(argv)
    config_path = Path(args.config).expanduser().resolve()

    print("--- Mall Inventory Setup Script ---")
    print(f"Using configuration: {config_path}")

    try:
        output_path = run_from_config(config_path, opening_stock=args.stock, overwrite=args.force)
    except FileNotFoundError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except KeyError as exc:
        print(f"\n[ERROR] {exc}")
        return 1
    except FileExistsError as exc:
        print(f"\n[ERROR] {exc}")
        print("Run with --force to overwrite the existing file if appropriate.")
        return 1
    except (PermissionError, OSError) as exc:
        print(f"\n[ERROR] Unable to write workbook: {exc}")
        return 1

    print(f"\n[SUCCESS] Created master workbook at '{output_path}'.")
    return 0


if __name__ == "__main__":  # pragma: no cover - exercised via manual runs
    sys.exit(main())
