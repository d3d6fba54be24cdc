"""Shape filtered transactions into exportable rows and report sections.

Nothing in this module touches the filesystem: it produces plain rows for
the CSV export and :class:`ReportDocument` structures that a renderer lays
out as PDF. Dates are written day/month/year, the way the reports have
always been printed for the mall.
"""

from __future__ import annotations

import csv
import io
import re
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from .core_logic import format_quantity
from .data_manager import TransactionRow
from .reporting import FloorSummary, ReportFilter, compute_stats, describe_filter, summarize_floors, transactions_at


CSV_HEADERS: Tuple[str, ...] = (
    "Date",
    "Type",
    "Item Name",
    "Quantity",
    "Unit",
    "Location",
    "Person",
    "Notes",
    "File URL",
)

TRANSACTION_TABLE_HEADERS: Tuple[str, ...] = ("Date", "Type", "Item", "Qty", "Unit", "Location", "Person", "Notes")
FLOOR_ITEM_HEADERS: Tuple[str, ...] = ("Item", "Issued", "Received", "Persons Involved")
LOCATION_ITEM_HEADERS: Tuple[str, ...] = ("Item Name", "Total Issued", "Total Received", "Unit", "Persons")
LOCATION_TRANSACTION_HEADERS: Tuple[str, ...] = ("Date", "Type", "Item", "Qty", "Person", "Notes")

DEFAULT_USER_NAME = "Admin"
REPORT_SUBTITLE = "Inventory Management Report"
LOCATION_REPORT_SUBTITLE = "Detailed Location Report"


@dataclass(frozen=True)
class TableSection:
    title: str
    head: Tuple[str, ...]
    body: Tuple[Tuple[str, ...], ...]


@dataclass(frozen=True)
class LocationSection:
    """One location block: summary line, item table and optional transactions."""

    location: str
    summary_line: str
    items: TableSection
    transactions: Optional[TableSection] = None


@dataclass(frozen=True)
class ReportDocument:
    """Everything a renderer needs to lay out one PDF report."""

    title: str
    subtitle: str
    header_lines: Tuple[str, ...]
    summary_lines: Tuple[str, ...]
    transactions: Optional[TableSection]
    locations_title: str
    locations: Tuple[LocationSection, ...]
    footer: str
    file_name: str


def format_report_date(moment: datetime) -> str:
    """``d/m/yyyy`` in the timestamp's own timezone."""

    return f"{moment.day}/{moment.month}/{moment.year}"


def format_report_timestamp(moment: datetime) -> str:
    """``d/m/yyyy, h:mm:ss am`` as printed in report headers."""

    hour = moment.hour % 12 or 12
    meridiem = "am" if moment.hour < 12 else "pm"
    return f"{format_report_date(moment)}, {hour}:{moment.minute:02d}:{moment.second:02d} {meridiem}"


def _file_date(generated_at: datetime) -> str:
    if generated_at.tzinfo is not None:
        generated_at = generated_at.astimezone(UTC)
    return generated_at.date().isoformat()


def csv_file_name(generated_at: datetime) -> str:
    return f"report_{_file_date(generated_at)}.csv"


def full_report_file_name(generated_at: datetime) -> str:
    return f"satyam_mall_report_{_file_date(generated_at)}.pdf"


def location_report_file_name(location: str, generated_at: datetime) -> str:
    slug = re.sub(r"\s+", "_", location)
    return f"{slug}_report_{_file_date(generated_at)}.pdf"


def _csv_cell(value: str, quoting: int = csv.QUOTE_MINIMAL) -> str:
    # A lone empty field would otherwise be written as "".
    if not value:
        return ""
    buffer = io.StringIO()
    csv.writer(buffer, quoting=quoting).writerow([value])
    return buffer.getvalue().removesuffix("\r\n")


def _quoted(value: str) -> str:
    return _csv_cell(value, csv.QUOTE_ALL)


def build_csv_rows(filtered: Sequence[TransactionRow]) -> List[List[str]]:
    """One row per transaction in :data:`CSV_HEADERS` order.

    Every cell is already a valid CSV field. Item name, person and notes are
    wrapped in double quotes when present; other text columns are quoted only
    when they contain a delimiter, a quote or a line break.
    """

    return [
        [
            format_report_date(t.date),
            t.operation_kind,
            _quoted(t.item_name),
            format_quantity(t.quantity),
            _csv_cell(t.unit),
            _csv_cell(t.location),
            _quoted(t.person_name),
            _quoted(t.notes),
            _csv_cell(t.file_url),
        ]
        for t in filtered
    ]


def _amount(quantity: Decimal, unit: str) -> str:
    return f"{format_quantity(quantity)} {unit}" if quantity > 0 else "-"


def _floor_summary_line(floor: FloorSummary) -> str:
    return (
        f"Issued: {floor.issued_count} txn ({format_quantity(floor.issued_qty)} units)  |  "
        f"Received: {floor.received_count} txn ({format_quantity(floor.received_qty)} units)  |  "
        f"Last: {format_report_date(floor.last_activity)}"
    )


def _floor_item_table(floor: FloorSummary) -> TableSection:
    body = tuple(
        (
            name,
            _amount(item.issued_qty, item.unit),
            _amount(item.received_qty, item.unit),
            ", ".join(item.persons),
        )
        for name, item in floor.items.items()
    )
    return TableSection(title=floor.location, head=FLOOR_ITEM_HEADERS, body=body)


def build_transaction_table(filtered: Sequence[TransactionRow]) -> TableSection:
    body = tuple(
        (
            format_report_date(t.date),
            t.operation_kind,
            t.item_name,
            format_quantity(t.quantity),
            t.unit,
            t.location,
            t.person_name,
            t.notes,
        )
        for t in filtered
    )
    return TableSection(title="Transaction Details", head=TRANSACTION_TABLE_HEADERS, body=body)


def build_full_report(
    filtered: Sequence[TransactionRow],
    *,
    report_filter: ReportFilter,
    mall_name: str,
    generated_at: datetime,
    user_name: str = DEFAULT_USER_NAME,
) -> ReportDocument:
    """Header, full transaction table and one block per location."""

    stats = compute_stats(filtered)
    floors = summarize_floors(filtered)
    summary_lines = (
        f"Total Records: {stats.total_records}",
        f"Issued: {stats.issued_count} ({format_quantity(stats.issued_qty)} units)",
        f"Received: {stats.received_count} ({format_quantity(stats.received_qty)} units)",
        f"Items: {stats.unique_items}  |  Locations: {stats.unique_locations}",
    )
    locations = tuple(
        LocationSection(
            location=floor.location,
            summary_line=_floor_summary_line(floor),
            items=_floor_item_table(floor),
        )
        for floor in floors
    )
    return ReportDocument(
        title=mall_name,
        subtitle=REPORT_SUBTITLE,
        header_lines=(
            f"Generated: {format_report_timestamp(generated_at)}  |  By: {user_name}",
            describe_filter(report_filter),
        ),
        summary_lines=summary_lines,
        transactions=build_transaction_table(filtered),
        locations_title="Floor-wise / Location Summary",
        locations=locations,
        footer=f"{mall_name} Inventory System  |  Report by: {user_name}",
        file_name=full_report_file_name(generated_at),
    )


def build_location_report(
    floor: FloorSummary,
    filtered: Sequence[TransactionRow],
    *,
    mall_name: str,
    generated_at: datetime,
    user_name: str = DEFAULT_USER_NAME,
) -> ReportDocument:
    """Detail report for one location: stats, item breakdown and its transactions."""

    item_rows = tuple(
        (
            name,
            _amount(item.issued_qty, item.unit),
            _amount(item.received_qty, item.unit),
            item.unit,
            ", ".join(item.persons),
        )
        for name, item in floor.items.items()
    )
    transaction_rows = tuple(
        (
            format_report_date(t.date),
            t.operation_kind,
            t.item_name,
            f"{format_quantity(t.quantity)} {t.unit}".rstrip(),
            t.person_name,
            t.notes or "-",
        )
        for t in transactions_at(filtered, floor.location)
    )
    section = LocationSection(
        location=floor.location,
        summary_line=_floor_summary_line(floor),
        items=TableSection(title="Item-wise Breakdown", head=LOCATION_ITEM_HEADERS, body=item_rows),
        transactions=TableSection(title="All Transactions", head=LOCATION_TRANSACTION_HEADERS, body=transaction_rows),
    )
    return ReportDocument(
        title=floor.location,
        subtitle=LOCATION_REPORT_SUBTITLE,
        header_lines=(f"Generated: {format_report_timestamp(generated_at)}  |  By: {user_name}",),
        summary_lines=(
            f"Total Issued: {floor.issued_count} transactions ({format_quantity(floor.issued_qty)} units)",
            f"Total Received: {floor.received_count} transactions ({format_quantity(floor.received_qty)} units)",
            f"Last Activity: {format_report_date(floor.last_activity)}",
        ),
        transactions=None,
        locations_title="",
        locations=(section,),
        footer=f"{mall_name}  |  {floor.location} Report  |  By: {user_name}",
        file_name=location_report_file_name(floor.location, generated_at),
    )
