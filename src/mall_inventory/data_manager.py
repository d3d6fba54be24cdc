"""Data access layer for the mall inventory.

This module provides low-level helpers that read from and write to the
master workbook. Business logic belongs elsewhere.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured records and appending or updating
   individual rows of the ``Inventory``, ``TransactionLog`` and ``Users``
   sheets.
"""


from __future__ import annotations

import configparser
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, Optional, Sequence

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import SheetName


CONFIG_FILE_NAME = "config.ini"
INVENTORY_SHEET = SheetName.INVENTORY.value
TRANSACTION_LOG_SHEET = SheetName.TRANSACTION_LOG.value
USERS_SHEET = SheetName.USERS.value

DEFAULT_ATTACHMENT_DIR = "attachments"
DEFAULT_REPORT_DIR = "reports"


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    mall_name: str
    schema_version: str
    attachment_dir: Path
    report_dir: Path


@dataclass(frozen=True)
class InventoryRow:
    """In-memory view of a row from the ``Inventory`` sheet."""

    item_name: str
    quantity: Decimal
    unit: str


@dataclass(frozen=True)
class TransactionRow:
    """In-memory view of a row from the ``TransactionLog`` sheet."""

    transaction_id: str
    date: datetime
    operation_kind: str
    item_name: str
    quantity: Decimal
    unit: str
    location: str
    person_name: str
    notes: str
    file_url: str


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the ``Users`` sheet."""

    email: str
    name: str
    role: str
    password_hash: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the data layer behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the
    current working directory toward the filesystem root looking for a file
    named ``CONFIG_FILE_NAME``; the first match wins.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If no parent directory holds ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute.

    Returns:
        configparser.ConfigParser: Parser containing the raw configuration.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser()
    parser.read(config_path)
    return parser


def _anchor_path(raw: str, base_path: Path) -> Path:
    path = Path(raw).expanduser()
    if not path.is_absolute():
        path = (base_path / path).resolve()
    return path


def parse_settings(parser: configparser.ConfigParser, *, base_path: Optional[Path] = None) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    ``[System]`` entries are mandatory. The ``[Storage]`` and ``[Reports]``
    directories are optional and default to ``attachments`` and ``reports``.
    Relative paths are anchored to ``base_path`` (or the working directory).

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative paths.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If one of the required sections or options is missing.
    """

    try:
        data_file_raw = parser.get("System", "DataFile")
        mall_name = parser.get("System", "MallName")
        schema_version = parser.get("System", "SchemaVersion")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    if base_path is None:
        base_path = Path.cwd()

    attachment_raw = parser.get("Storage", "AttachmentDir", fallback=DEFAULT_ATTACHMENT_DIR)
    report_raw = parser.get("Reports", "OutputDir", fallback=DEFAULT_REPORT_DIR)

    return ConfigSettings(
        data_file=_anchor_path(data_file_raw, base_path),
        mall_name=mall_name,
        schema_version=schema_version,
        attachment_dir=_anchor_path(attachment_raw, base_path),
        report_dir=_anchor_path(report_raw, base_path),
    )


def open_workbook(data_file: Path) -> Workbook:
    """Open the master Excel workbook and return a live ``openpyxl`` workbook.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    wb = openpyxl.load_workbook(data_file)
    return wb


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand."""

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def _iter_rows(workbook: Workbook, sheet_name: str) -> Iterable[Sequence[object]]:
    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, values_only=True):
        # skip fully empty rows
        if any(cell is not None for cell in raw):
            yield raw


def iter_inventory(workbook: Workbook) -> Iterable[InventoryRow]:
    """Iterate over the ``Inventory`` worksheet and yield typed records.

    Args:
        workbook (Workbook): Workbook containing the ``Inventory`` sheet.

    Yields:
        InventoryRow: One structured row for each meaningful record.
    """

    for raw in _iter_rows(workbook, INVENTORY_SHEET):
        yield deserialize_inventory(raw)


def iter_transactions(workbook: Workbook) -> Iterable[TransactionRow]:
    """Stream transaction records from the ``TransactionLog`` worksheet.

    Rows come back in sheet order, which is the order they were appended.
    Numeric columns become :class:`~decimal.Decimal` instances and timestamps
    become timezone-aware datetimes.
    """

    for raw in _iter_rows(workbook, TRANSACTION_LOG_SHEET):
        yield deserialize_transaction(raw)


def iter_users(workbook: Workbook) -> Iterable[UserRow]:
    """Iterate over the ``Users`` worksheet and yield typed records."""

    for raw in _iter_rows(workbook, USERS_SHEET):
        yield deserialize_user(raw)


def append_inventory_item(workbook: Workbook, record: InventoryRow) -> None:
    """Append a new catalog entry to the ``Inventory`` worksheet."""

    sheet = workbook[INVENTORY_SHEET]
    sheet.append(serialize_inventory(record))


def append_transaction(workbook: Workbook, record: TransactionRow) -> None:
    """Append a transaction record to the ``TransactionLog`` worksheet.

    Quantities remain :class:`~decimal.Decimal` instances after serialization
    so Excel keeps their precision when the workbook is saved.
    """

    sheet = workbook[TRANSACTION_LOG_SHEET]
    sheet.append(serialize_transaction(record))


def append_user(workbook: Workbook, record: UserRow) -> None:
    """Append a user record to the ``Users`` worksheet."""

    sheet = workbook[USERS_SHEET]
    sheet.append(serialize_user(record))


def update_inventory_item(workbook: Workbook, item_name: str, *, field_values: dict[str, Any]) -> None:
    """Update selected columns for an existing inventory item.

    The row is located by an exact ``ItemName`` match; only the requested
    columns are written.

    Args:
        workbook (Workbook): Workbook containing the inventory sheet.
        item_name (str): Case-sensitive item name used to locate the row.
        field_values (dict[str, Any]): Mapping of column names to replacement
            values.

    Raises:
        KeyError: If the item or any referenced column cannot be found.
    """

    row_index = locate_row(workbook, INVENTORY_SHEET, "ItemName", item_name)
    if row_index is None:
        raise KeyError(f"Inventory item not found: {item_name}")

    sheet = workbook[INVENTORY_SHEET]
    headers = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(headers)}

    for field, value in field_values.items():
        if field not in header_map:
            raise KeyError(f"Unknown inventory field: {field}")
        col = header_map[field]
        sheet.cell(row=row_index, column=col, value=value)
    log.debug("Updated inventory item '%s' fields %s", item_name, sorted(field_values))


def locate_row(workbook: Workbook, sheet_name: str, key_column: str, key_value: str) -> Optional[int]:
    """Find a row by matching a key value within the specified worksheet.

    Returns:
        int | None: 1-based Excel row index when a match is found, otherwise
            ``None``.

    Raises:
        KeyError: If ``key_column`` is not present in the worksheet header.
    """

    sheet = workbook[sheet_name]
    header_cells = list(sheet[1])
    header_map = {cell.value: idx + 1 for idx, cell in enumerate(header_cells)}
    if key_column not in header_map:
        raise KeyError(f"Unknown column: {key_column}")

    key_col_index = header_map[key_column]

    for row_idx, row in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        # Numeric item names come back from Excel as numbers.
        if _text(row[key_col_index - 1]) == key_value:
            return row_idx

    return None


def serialize_inventory(record: InventoryRow) -> list[object]:
    """Arrange an inventory record as ``[ItemName, Quantity, Unit]``."""

    return [record.item_name, record.quantity, record.unit]


def serialize_transaction(record: TransactionRow) -> list[object]:
    """Convert a transaction dataclass into the transaction log column order."""

    return [
        record.transaction_id,
        record.date.isoformat(),
        record.operation_kind,
        record.item_name,
        record.quantity,
        record.unit,
        record.location,
        record.person_name,
        record.notes,
        record.file_url,
    ]


def serialize_user(record: UserRow) -> list[object]:
    """Arrange a user record as ``[Email, Name, Role, PasswordHash]``."""

    return [record.email, record.name, record.role, record.password_hash]


def _text(value: object) -> str:
    return str(value) if value is not None else ""


def _decimal(value: object) -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal("0")


def parse_timestamp(value: object) -> datetime:
    """Normalize a timestamp cell into a timezone-aware datetime.

    Excel hands back either ISO strings (as written by this module) or native
    datetimes when an operator typed the value by hand. Naive values are
    interpreted as UTC.
    """

    if isinstance(value, datetime):
        moment = value
    else:
        moment = datetime.fromisoformat(str(value))
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=UTC)
    return moment


def deserialize_inventory(raw_row: Sequence[object]) -> InventoryRow:
    """Convert a raw worksheet row into a typed inventory record.

    Item names are coerced to ``str`` so that numeric-looking names typed in
    Excel keep matching the text entered by operators.
    """

    item_name, quantity_raw, unit = raw_row[:3]
    return InventoryRow(
        item_name=_text(item_name),
        quantity=_decimal(quantity_raw),
        unit=_text(unit),
    )


def deserialize_transaction(raw_row: Sequence[object]) -> TransactionRow:
    """Convert a raw worksheet row into a strongly typed transaction record.

    Optional text columns default to empty strings so downstream reporting
    code never has to guard against ``None``.
    """

    (
        transaction_id,
        timestamp_raw,
        operation_kind,
        item_name,
        quantity_raw,
        unit,
        location,
        person_name,
        notes,
        file_url,
    ) = raw_row[:10]

    return TransactionRow(
        transaction_id=_text(transaction_id),
        date=parse_timestamp(timestamp_raw),
        operation_kind=_text(operation_kind),
        item_name=_text(item_name),
        quantity=_decimal(quantity_raw),
        unit=_text(unit),
        location=_text(location),
        person_name=_text(person_name),
        notes=_text(notes),
        file_url=_text(file_url),
    )


def deserialize_user(raw_row: Sequence[object]) -> UserRow:
    """Convert a raw worksheet row into a typed user record."""

    email, name, role, password_hash = raw_row[:4]
    return UserRow(
        email=_text(email),
        name=_text(name),
        role=_text(role),
        password_hash=_text(password_hash),
    )
