"""Multi-item issue/receive submission.

A batch is validated as a whole and then submitted one line item at a time:
each request is awaited before the next one starts, so at most one request is
ever in flight and progress is reported in order. A failing item does not
stop the batch; the outcome lists what was recorded and what was not so the
caller can resubmit the failures.

:class:`SubmissionForm` keeps the editable state of one issue or receive
form (line items, shared fields, attachment) and applies the outcome of each
batch to it.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass, replace
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Callable, List, Mapping, Optional, Protocol, Sequence, Tuple

from . import data_manager, log
from .constants import OperationKind
from .core_logic import BusinessRuleViolation, SubmissionFailed, SubmissionInProgress, UploadFailed
from .validation import parse_quantity, require_common_fields, sync_issue_units, validate_line_items


UPLOAD_FAILED_MESSAGE = "File upload failed. Transaction will continue without file."
ALL_FAILED_MESSAGE = "Failed to record transactions. Check connection."


@dataclass(frozen=True)
class LineItem:
    """One row of the item list as typed by the operator."""

    key: int
    item_name: str = ""
    quantity: str = ""
    unit: str = ""

    def is_blank(self) -> bool:
        return not (self.item_name or self.quantity or self.unit)


class LineItemArena:
    """Allocates line item keys for a single form.

    Keys increase monotonically and are never reused within the form, so a
    key identifies one line item even when two rows share an item name.
    """

    def __init__(self) -> None:
        self._keys = itertools.count(1)

    def allocate(self, item_name: str = "", quantity: str = "", unit: str = "") -> LineItem:
        return LineItem(key=next(self._keys), item_name=item_name, quantity=quantity, unit=unit)


@dataclass(frozen=True)
class CommonFields:
    """Fields shared by every item of a batch."""

    location: str = ""
    person_name: str = ""
    notes: str = ""


@dataclass(frozen=True)
class TransactionRequest:
    """Immutable request sent to the transaction sink for one line item."""

    operation_kind: OperationKind
    item_name: str
    quantity: Decimal
    unit: str
    location: str
    person_name: str
    notes: str
    file_url: str

    @classmethod
    def from_line_item(
        cls,
        operation_kind: OperationKind,
        item: LineItem,
        common: CommonFields,
        *,
        file_url: str = "",
    ) -> "TransactionRequest":
        return cls(
            operation_kind=operation_kind,
            item_name=item.item_name,
            quantity=parse_quantity(item.item_name, item.quantity),
            unit=item.unit,
            location=common.location,
            person_name=common.person_name,
            notes=common.notes,
            file_url=file_url,
        )


@dataclass(frozen=True)
class UploadResult:
    """Answer of an attachment store for one upload."""

    success: bool
    file_url: str = ""
    error: str = ""


class TransactionSink(Protocol):
    """Records one transaction request; returns ``False`` when it could not."""

    async def submit_transaction_record(self, request: TransactionRequest) -> bool: ...


class AttachmentStore(Protocol):
    """Stores an invoice or photo and returns where it can be found."""

    async def upload_attachment(self, path: Path, name_hint: str) -> UploadResult: ...


class SubmissionStatus(str, Enum):
    """Overall result of a batch."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class BatchProgress:
    """Progress signal emitted after each item's outcome is known."""

    current: int
    total: int

    @property
    def fraction(self) -> float:
        return self.current / self.total if self.total else 1.0


@dataclass(frozen=True)
class BatchOutcome:
    """Result of one batch, in input order."""

    status: SubmissionStatus
    succeeded: Tuple[LineItem, ...]
    failed: Tuple[LineItem, ...]
    warnings: Tuple[str, ...]
    message: str
    file_url: str = ""

    @property
    def any_succeeded(self) -> bool:
        return bool(self.succeeded)


ProgressCallback = Callable[[BatchProgress], None]
SuccessCallback = Callable[[BatchOutcome], None]


async def upload_attachment_once(
    store: AttachmentStore,
    attachment: Path,
    name_hint: str,
) -> Tuple[str, Optional[str]]:
    """Upload ``attachment`` and return ``(file_url, warning)``.

    A failed upload never aborts the batch: it yields an empty URL and a
    warning for the operator.
    """

    try:
        result = await store.upload_attachment(attachment, name_hint)
    except UploadFailed as exc:
        log.warning("Attachment upload raised for '%s': %s", attachment, exc)
        return "", str(exc) or UPLOAD_FAILED_MESSAGE

    if result.success and result.file_url:
        log.info("Uploaded attachment '%s' to %s", attachment, result.file_url)
        return result.file_url, None

    log.warning("Attachment upload failed for '%s': %s", attachment, result.error or "no URL returned")
    return "", result.error or UPLOAD_FAILED_MESSAGE


def _outcome_message(status: SubmissionStatus, succeeded: Sequence[LineItem], failed: Sequence[LineItem]) -> str:
    if status is SubmissionStatus.SUCCESS:
        return f"All {len(succeeded)} item(s) recorded successfully!"
    if status is SubmissionStatus.PARTIAL:
        names = ", ".join(item.item_name for item in failed)
        return f"{len(succeeded)} item(s) saved, but failed: {names}"
    return ALL_FAILED_MESSAGE


async def submit_batch(
    operation_kind: OperationKind,
    items: Sequence[LineItem],
    common: CommonFields,
    *,
    sink: TransactionSink,
    attachment: Optional[Path] = None,
    store: Optional[AttachmentStore] = None,
    on_progress: Optional[ProgressCallback] = None,
) -> BatchOutcome:
    """Submit already validated line items one by one.

    Receive batches with an attachment upload it once before the first item;
    the resulting URL is attached to the first request only. Each item is
    awaited to completion before the next starts and ``on_progress`` is
    called once per item after its outcome is known.

    Args:
        operation_kind (OperationKind): Issue or receive.
        items (Sequence[LineItem]): Validated items in submission order.
        common (CommonFields): Location, person and notes shared by the batch.
        sink (TransactionSink): Collaborator recording each request.
        attachment (Path | None): Optional invoice or photo.
        store (AttachmentStore | None): Collaborator storing the attachment.
        on_progress (Callable | None): Observer for :class:`BatchProgress`.

    Returns:
        BatchOutcome: Status, succeeded and failed items, warnings and the
            operator message.
    """

    kind = OperationKind(operation_kind)
    warnings: List[str] = []
    file_url = ""

    if kind is OperationKind.RECEIVE and attachment is not None:
        if store is None:
            log.warning("Attachment '%s' supplied without an attachment store", attachment)
            warnings.append(UPLOAD_FAILED_MESSAGE)
        else:
            name_hint = "_".join(item.item_name for item in items)
            file_url, warning = await upload_attachment_once(store, attachment, name_hint)
            if warning:
                warnings.append(warning)

    total = len(items)
    succeeded: List[LineItem] = []
    failed: List[LineItem] = []

    for index, item in enumerate(items):
        request = TransactionRequest.from_line_item(
            kind,
            item,
            common,
            file_url=file_url if index == 0 else "",
        )
        try:
            ok = await sink.submit_transaction_record(request)
        except SubmissionFailed as exc:
            log.warning("Submission of '%s' raised: %s", item.item_name, exc)
            ok = False

        if ok:
            succeeded.append(item)
        else:
            log.warning("Submission of '%s' (%s %s) failed", item.item_name, item.quantity, item.unit)
            failed.append(item)

        if on_progress is not None:
            on_progress(BatchProgress(current=index + 1, total=total))

    if not failed:
        status = SubmissionStatus.SUCCESS
    elif succeeded:
        status = SubmissionStatus.PARTIAL
    else:
        status = SubmissionStatus.FAILED

    outcome = BatchOutcome(
        status=status,
        succeeded=tuple(succeeded),
        failed=tuple(failed),
        warnings=tuple(warnings),
        message=_outcome_message(status, succeeded, failed),
        file_url=file_url,
    )
    log.info(
        "%s batch finished with status %s (%d ok, %d failed)",
        kind.value,
        status.value,
        len(succeeded),
        len(failed),
    )
    return outcome


class SubmissionForm:
    """Editable state of one issue or receive form.

    The item list always holds at least one line item. For issue forms the
    unit of every item is taken from the inventory snapshot and re-synced
    whenever an item name or the snapshot changes.
    """

    def __init__(
        self,
        operation_kind: OperationKind,
        snapshot: Mapping[str, data_manager.InventoryRow],
    ) -> None:
        self.operation_kind = OperationKind(operation_kind)
        self._arena = LineItemArena()
        self._snapshot = snapshot
        self.items: List[LineItem] = [self._arena.allocate()]
        self.common = CommonFields()
        self.attachment: Optional[Path] = None
        self.last_outcome: Optional[BatchOutcome] = None
        self._in_flight = False

    @property
    def is_issue(self) -> bool:
        return self.operation_kind is OperationKind.ISSUE

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _index_of(self, key: int) -> int:
        for index, item in enumerate(self.items):
            if item.key == key:
                return index
        raise KeyError(f"Unknown line item: {key}")

    def _sync_units(self) -> None:
        self.items = sync_issue_units(self.operation_kind, self.items, self._snapshot)

    def add_item(self, item_name: str = "", quantity: str = "", unit: str = "") -> LineItem:
        """Append a line item and return it (unit re-synced for issue forms)."""

        item = self._arena.allocate(item_name=item_name, quantity=quantity, unit="" if self.is_issue else unit)
        self.items.append(item)
        self._sync_units()
        return self.items[-1]

    def remove_item(self, key: int) -> bool:
        """Remove a line item; the last remaining item is never removed."""

        if len(self.items) <= 1:
            return False
        del self.items[self._index_of(key)]
        return True

    def update_item(
        self,
        key: int,
        *,
        item_name: Optional[str] = None,
        quantity: Optional[str] = None,
        unit: Optional[str] = None,
    ) -> LineItem:
        """Change fields of one line item.

        Raises:
            KeyError: If ``key`` is not in the item list.
            BusinessRuleViolation: If a unit is edited on an issue form.
        """

        if unit is not None and self.is_issue:
            raise BusinessRuleViolation("The unit of an issued item comes from the inventory")

        index = self._index_of(key)
        changes = {
            name: value
            for name, value in (("item_name", item_name), ("quantity", quantity), ("unit", unit))
            if value is not None
        }
        self.items[index] = replace(self.items[index], **changes)
        self._sync_units()
        return self.items[index]

    def set_common(self, **changes: str) -> CommonFields:
        """Update location, person name and/or notes."""

        self.common = replace(self.common, **changes)
        return self.common

    def attach_file(self, path: Path) -> None:
        """Attach an invoice or photo; receive forms only."""

        if self.is_issue:
            raise BusinessRuleViolation("Attachments are only accepted when receiving stock")
        self.attachment = Path(path)

    def clear_attachment(self) -> None:
        self.attachment = None

    def refresh_inventory(self, snapshot: Mapping[str, data_manager.InventoryRow]) -> None:
        """Swap in a newer inventory snapshot and re-sync issue units."""

        self._snapshot = snapshot
        self._sync_units()

    def reset(self) -> None:
        """Return to a single blank item with empty shared fields and no file."""

        self.items = [self._arena.allocate()]
        self.common = CommonFields()
        self.clear_attachment()

    async def submit(
        self,
        sink: TransactionSink,
        store: Optional[AttachmentStore] = None,
        *,
        on_progress: Optional[ProgressCallback] = None,
        on_success: Optional[SuccessCallback] = None,
    ) -> BatchOutcome:
        """Validate and submit the current item list, then apply the outcome.

        All items are checked against the inventory snapshot first; the first
        invalid item raises before anything is submitted. After the batch:

        * every item recorded: the form resets;
        * some items recorded: only the failed items stay in the list, the
          shared fields are kept;
        * nothing recorded: the form is left untouched.

        ``on_success`` is called whenever at least one item was recorded.

        Raises:
            SubmissionInProgress: If a batch from this form is still running.
            ValidationError: If an item or a shared field is invalid.
        """

        if self._in_flight:
            raise SubmissionInProgress("A batch is already being submitted")

        self._sync_units()
        require_common_fields(self.common.location, self.common.person_name)
        batch = validate_line_items(self.operation_kind, self.items, self._snapshot)

        self._in_flight = True
        try:
            outcome = await submit_batch(
                self.operation_kind,
                batch,
                self.common,
                sink=sink,
                attachment=self.attachment,
                store=store,
                on_progress=on_progress,
            )
        finally:
            self._in_flight = False

        if outcome.status is SubmissionStatus.SUCCESS:
            self.reset()
        elif outcome.status is SubmissionStatus.PARTIAL:
            self.items = list(outcome.failed)

        self.last_outcome = outcome
        if outcome.any_succeeded and on_success is not None:
            on_success(outcome)
        return outcome
