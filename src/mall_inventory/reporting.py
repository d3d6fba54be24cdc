"""Filtering and aggregation of the transaction log for reports.

Everything here is a pure function of its arguments: the same transactions
and filter always produce the same rows, statistics and floor summaries in
the same order. Callers recompute whenever the filter changes.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from . import log
from .constants import ALL, DEFAULT_UNIT, OperationKind
from .data_manager import TransactionRow


@dataclass(frozen=True)
class ReportFilter:
    """Filter parameters; ``All`` passes every kind or location through."""

    operation_kind: str = ALL
    location: str = ALL
    start_date: Optional[date] = None
    end_date: Optional[date] = None


@dataclass(frozen=True)
class ReportStats:
    """Counts and quantity sums over a filtered transaction set."""

    total_records: int
    issued_count: int
    received_count: int
    issued_qty: Decimal
    received_qty: Decimal
    unique_items: int
    unique_locations: int


@dataclass(frozen=True)
class ItemBreakdown:
    """Per item totals at one location."""

    issued_qty: Decimal
    received_qty: Decimal
    unit: str
    persons: Tuple[str, ...]


@dataclass(frozen=True)
class FloorSummary:
    """Aggregate of the filtered transactions at one location."""

    location: str
    issued_count: int
    received_count: int
    issued_qty: Decimal
    received_qty: Decimal
    last_activity: datetime
    items: Dict[str, ItemBreakdown]

    @property
    def total_count(self) -> int:
        return self.issued_count + self.received_count


def _day_start(day: date, moment: datetime) -> datetime:
    return datetime.combine(day, time.min, tzinfo=moment.tzinfo)


def matches_filter(transaction: TransactionRow, report_filter: ReportFilter) -> bool:
    """Return whether one transaction passes ``report_filter``.

    The start date is inclusive from midnight. The end date is inclusive
    through the whole day: the transaction must be earlier than midnight of
    the following day. Day boundaries use the transaction's own timezone.
    """

    if report_filter.operation_kind != ALL and transaction.operation_kind != report_filter.operation_kind:
        return False
    if report_filter.location != ALL and transaction.location != report_filter.location:
        return False
    if report_filter.start_date is not None:
        if transaction.date < _day_start(report_filter.start_date, transaction.date):
            return False
    if report_filter.end_date is not None:
        next_day = report_filter.end_date + timedelta(days=1)
        if not transaction.date < _day_start(next_day, transaction.date):
            return False
    return True


def filter_transactions(
    transactions: Iterable[TransactionRow],
    report_filter: ReportFilter,
) -> List[TransactionRow]:
    """Narrow the log to ``report_filter`` and order it most recent first.

    Transactions with the same date keep their input order.
    """

    selected = [transaction for transaction in transactions if matches_filter(transaction, report_filter)]
    # sorted() stays stable with reverse=True
    return sorted(selected, key=lambda transaction: transaction.date, reverse=True)


def list_locations(transactions: Iterable[TransactionRow]) -> List[str]:
    """Distinct locations present in the log, sorted for filter choices."""

    return sorted({transaction.location for transaction in transactions})


def describe_filter(report_filter: ReportFilter) -> str:
    """One-line description of the active filter for report headers."""

    text = f"Filter: {report_filter.operation_kind}"
    if report_filter.location != ALL:
        text += f" | Location: {report_filter.location}"
    if report_filter.start_date is not None:
        text += f" | From: {report_filter.start_date.isoformat()}"
    if report_filter.end_date is not None:
        text += f" | To: {report_filter.end_date.isoformat()}"
    return text


def compute_stats(filtered: Sequence[TransactionRow]) -> ReportStats:
    """Fold the filtered set into global counts and sums."""

    issued = [t for t in filtered if t.operation_kind == OperationKind.ISSUE.value]
    received = [t for t in filtered if t.operation_kind == OperationKind.RECEIVE.value]
    return ReportStats(
        total_records=len(filtered),
        issued_count=len(issued),
        received_count=len(received),
        issued_qty=sum((t.quantity for t in issued), Decimal("0")),
        received_qty=sum((t.quantity for t in received), Decimal("0")),
        unique_items=len({t.item_name for t in filtered}),
        unique_locations=len({t.location for t in filtered}),
    )


@dataclass
class _ItemAccumulator:
    unit: str
    issued_qty: Decimal = Decimal("0")
    received_qty: Decimal = Decimal("0")
    persons: Dict[str, None] = field(default_factory=dict)

    def freeze(self) -> ItemBreakdown:
        return ItemBreakdown(
            issued_qty=self.issued_qty,
            received_qty=self.received_qty,
            unit=self.unit,
            persons=tuple(self.persons),
        )


@dataclass
class _FloorAccumulator:
    location: str
    last_activity: datetime
    issued_count: int = 0
    received_count: int = 0
    issued_qty: Decimal = Decimal("0")
    received_qty: Decimal = Decimal("0")
    items: Dict[str, _ItemAccumulator] = field(default_factory=dict)

    def add(self, transaction: TransactionRow) -> None:
        is_issue = transaction.operation_kind == OperationKind.ISSUE.value
        if is_issue:
            self.issued_count += 1
            self.issued_qty += transaction.quantity
        else:
            self.received_count += 1
            self.received_qty += transaction.quantity

        item = self.items.get(transaction.item_name)
        if item is None:
            item = _ItemAccumulator(unit=transaction.unit or DEFAULT_UNIT)
            self.items[transaction.item_name] = item
        elif transaction.unit and transaction.unit != item.unit:
            # First unit seen for this item at this location wins.
            log.debug(
                "Ignoring unit '%s' for '%s' at '%s'; keeping '%s'",
                transaction.unit,
                transaction.item_name,
                self.location,
                item.unit,
            )
        if is_issue:
            item.issued_qty += transaction.quantity
        else:
            item.received_qty += transaction.quantity
        item.persons.setdefault(transaction.person_name, None)

        if transaction.date > self.last_activity:
            self.last_activity = transaction.date

    def freeze(self) -> FloorSummary:
        return FloorSummary(
            location=self.location,
            issued_count=self.issued_count,
            received_count=self.received_count,
            issued_qty=self.issued_qty,
            received_qty=self.received_qty,
            last_activity=self.last_activity,
            items={name: item.freeze() for name, item in self.items.items()},
        )


def summarize_floors(filtered: Sequence[TransactionRow]) -> List[FloorSummary]:
    """Group the filtered set by location.

    Locations are ordered by their number of transactions, busiest first;
    locations with equal counts keep the order in which they first appear in
    ``filtered``.
    """

    floors: Dict[str, _FloorAccumulator] = {}
    for transaction in filtered:
        floor = floors.get(transaction.location)
        if floor is None:
            floor = _FloorAccumulator(location=transaction.location, last_activity=transaction.date)
            floors[transaction.location] = floor
        floor.add(transaction)

    summaries = [floor.freeze() for floor in floors.values()]
    return sorted(summaries, key=lambda summary: summary.total_count, reverse=True)


def transactions_at(filtered: Sequence[TransactionRow], location: str) -> List[TransactionRow]:
    """The filtered transactions recorded at ``location``, order preserved."""

    return [transaction for transaction in filtered if transaction.location == location]
