"""Business logic layer for the mall inventory.

This module owns the runtime context (settings plus the live workbook), the
error taxonomy shared by every layer, and the rules that turn a transaction
request into an appended ``TransactionLog`` row plus the matching stock
adjustment. It consumes the Data Access Layer (DAL) for all I/O.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

import bcrypt
from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION, OperationKind

if TYPE_CHECKING:
    from .submission import TransactionRequest


class BusinessRuleViolation(Exception):
    """Raised when a requested operation violates a domain constraint."""


class MissingReferenceError(BusinessRuleViolation):
    """Raised when a referenced inventory item or user is unknown."""


class ValidationError(BusinessRuleViolation):
    """Base class for line item validation failures; aborts the whole batch."""


class MissingField(ValidationError):
    """Raised when an item name, quantity, unit or common field is blank."""

    def __init__(self, message: str = "Please fill in all item fields.") -> None:
        super().__init__(message)


class InvalidQuantity(ValidationError):
    """Raised when a quantity is not a strictly positive decimal."""

    def __init__(self, item_name: str, quantity: str) -> None:
        super().__init__(f'Invalid quantity "{quantity}" for "{item_name}".')
        self.item_name = item_name
        self.quantity = quantity


class UnknownItem(ValidationError):
    """Raised when an issue references an item absent from the snapshot."""

    def __init__(self, item_name: str) -> None:
        super().__init__(f'"{item_name}" is not a valid item.')
        self.item_name = item_name


class InsufficientStock(ValidationError):
    """Raised when an issue would drive available stock negative."""

    def __init__(self, item_name: str, available: Decimal, unit: str) -> None:
        super().__init__(
            f'Insufficient stock for "{item_name}"! Only {format_quantity(available)} {unit} available.'
        )
        self.item_name = item_name
        self.available = available
        self.unit = unit


class SubmissionInProgress(BusinessRuleViolation):
    """Raised when a batch is submitted while another one is still running."""


class UploadFailed(Exception):
    """Raised by an attachment store that could not persist a file."""


class SubmissionFailed(Exception):
    """Raised by a transaction sink that could not record one request."""


EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


@dataclass(frozen=True)
class RuntimeContext:
    """Container for configuration and workbook references used by the BLL."""

    settings: data_manager.ConfigSettings
    workbook: Workbook
    _cache: Dict[str, Dict[str, Any]] = field(default_factory=dict, repr=False, compare=False)


class InventorySnapshot(Mapping[str, data_manager.InventoryRow]):
    """Read-only view of item name -> current stock.

    Names are matched case-sensitively. When the source lists a name twice
    the first entry wins, matching a front-to-back lookup.
    """

    def __init__(self, items: Iterable[data_manager.InventoryRow] = ()) -> None:
        entries: Dict[str, data_manager.InventoryRow] = {}
        for item in items:
            entries.setdefault(item.item_name, item)
        self._entries = entries

    def __getitem__(self, item_name: str) -> data_manager.InventoryRow:
        return self._entries[item_name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        return f"InventorySnapshot({list(self._entries.values())!r})"


def format_quantity(quantity: Decimal) -> str:
    """Render a quantity without exponent or trailing zeros (``10.50`` -> ``10.5``)."""

    text = format(quantity.normalize(), "f")
    return "0" if text in ("-0", "") else text


def _resolve_timestamp(candidate: Optional[datetime]) -> datetime:
    """Return ``candidate`` or the current UTC time when it is ``None``."""

    return candidate if candidate is not None else datetime.now(UTC)


def _get_cache_bucket(context: RuntimeContext, name: str) -> Dict[str, Any]:
    """Return a mutable cache bucket dedicated to the supplied name."""

    bucket = context._cache.get(name)
    if bucket is None:
        log.debug("Initializing cache bucket '%s'", name)
        bucket = {}
        context._cache[name] = bucket
    return bucket


def _invalidate_cache(context: RuntimeContext, *names: str) -> None:
    """Evict one or more cache buckets after mutating workbook state.

    Missing buckets are ignored so callers can request targeted invalidation
    without checking what was populated.
    """

    if not names:
        return

    log.debug("Invalidating cache buckets: %s", ", ".join(names))

    for name in names:
        context._cache.pop(name, None)


def _ensure_inventory_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the inventory cache bucket on demand.

    The bucket keeps the rows in sheet order under ``all`` and the snapshot
    used for name lookups under ``snapshot``.
    """

    bucket = _get_cache_bucket(context, "inventory")
    if "all" not in bucket:
        all_items = list(data_manager.iter_inventory(context.workbook))
        bucket["all"] = all_items
        bucket["snapshot"] = InventorySnapshot(all_items)
        log.debug("Populated inventory cache with %d entries", len(all_items))
    return bucket


def _ensure_transactions_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the transaction log cache bucket on demand."""

    bucket = _get_cache_bucket(context, "transactions")
    if "all" not in bucket:
        all_transactions = list(data_manager.iter_transactions(context.workbook))
        bucket["all"] = all_transactions
        log.debug(
            "Populated transactions cache with %d entries",
            len(all_transactions),
        )
    return bucket


def _ensure_users_cache(context: RuntimeContext) -> Dict[str, Any]:
    """Populate the users cache bucket, keyed by lower-cased email."""

    bucket = _get_cache_bucket(context, "users")
    if "by_email" not in bucket:
        users = list(data_manager.iter_users(context.workbook))
        bucket["by_email"] = {user.email.strip().lower(): user for user in users}
        log.debug("Populated users cache with %d entries", len(users))
    return bucket


def load_runtime_context(config_path: Optional[Path] = None) -> RuntimeContext:
    """Load configuration settings and a live workbook for the BLL.

    Args:
        config_path (Path | None): Optional override path for the configuration
            file. When omitted the data layer searches upward from the current
            working directory.

    Returns:
        RuntimeContext: Fully populated context ready for orchestration
            functions.

    Raises:
        FileNotFoundError: If the configuration file or workbook cannot be
            located.
        KeyError: When mandatory configuration options are missing.
    """
    located_config = data_manager.find_config_file(config_path)
    resolved_config = Path(located_config).expanduser().resolve()
    parser = data_manager.read_config(resolved_config)
    settings = data_manager.parse_settings(parser, base_path=resolved_config.parent)
    workbook = data_manager.open_workbook(settings.data_file)
    log.info("Loaded runtime context for workbook '%s'", settings.data_file)
    return RuntimeContext(settings=settings, workbook=workbook)


def ensure_schema_version(context: RuntimeContext) -> None:
    """Validate workbook compatibility before mutating state.

    Raises:
        RuntimeError: If the schema version declared in the configuration does
            not match ``EXPECTED_SCHEMA_VERSION``.
    """
    if context.settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            context.settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, context.settings.schema_version)
        )

    log.debug("Schema version '%s' validated", context.settings.schema_version)


def list_inventory(context: RuntimeContext) -> List[data_manager.InventoryRow]:
    """Return the inventory rows in sheet order."""
    return list(_ensure_inventory_cache(context)["all"])


def get_inventory_snapshot(context: RuntimeContext) -> InventorySnapshot:
    """Return the cached read-only snapshot used by the stock validator.

    The snapshot is rebuilt only after a recorded transaction invalidates the
    inventory cache, so one validation pass always sees a consistent view.
    """
    return _ensure_inventory_cache(context)["snapshot"]


def get_inventory_item(context: RuntimeContext, item_name: str) -> data_manager.InventoryRow:
    """Resolve an inventory item by its exact name.

    Raises:
        MissingReferenceError: If ``item_name`` is absent from the inventory.
    """
    try:
        return get_inventory_snapshot(context)[item_name]
    except KeyError as exc:
        log.warning("Inventory lookup failed for item '%s'", item_name)
        raise MissingReferenceError(f"Unknown item: {item_name}") from exc


def list_transactions(context: RuntimeContext) -> List[data_manager.TransactionRow]:
    """Fetch the immutable transaction log from cache.

    The returned list is a shallow copy so callers can sort or filter without
    touching the shared cache. Entries remain in workbook (append) order.
    """
    cache = _ensure_transactions_cache(context)
    return list(cache["all"])


def get_user(context: RuntimeContext, email: str) -> data_manager.UserRow:
    """Resolve a user by email, ignoring case and surrounding whitespace.

    Raises:
        MissingReferenceError: If no user is registered under ``email``.
    """
    try:
        return _ensure_users_cache(context)["by_email"][email.strip().lower()]
    except KeyError as exc:
        log.warning("User lookup failed for '%s'", email)
        raise MissingReferenceError(f"Unknown user: {email}") from exc


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        log.warning("Stored password hash is malformed")
        return False


def add_user(context: RuntimeContext, *, email: str, name: str, role: str, password: str) -> data_manager.UserRow:
    """Register a user on the ``Users`` sheet.

    Raises:
        BusinessRuleViolation: If the email is malformed, already registered,
            or the password is blank.
    """
    normalized = email.strip().lower()
    if not EMAIL_RE.match(normalized):
        raise BusinessRuleViolation(f"Invalid email format: {email}")
    if not password.strip():
        raise BusinessRuleViolation("Password must not be blank")
    if normalized in _ensure_users_cache(context)["by_email"]:
        raise BusinessRuleViolation(f"Account already exists for {normalized}")

    record = data_manager.UserRow(
        email=normalized,
        name=name.strip(),
        role=role.strip(),
        password_hash=hash_password(password.strip()),
    )
    data_manager.append_user(context.workbook, record)
    _invalidate_cache(context, "users")
    log.info("Registered user '%s' with role '%s'", normalized, record.role)
    return record


def generate_transaction_id(*, prefix: str = "T", when: Optional[datetime] = None) -> str:
    """Generate a sortable transaction identifier using UTC timestamps.

    Returns:
        str: Identifier formed as ``{prefix}{YYYYMMDDHHMMSSffffff}``.
    """
    when = when or _resolve_timestamp(None)
    return f"{prefix}{when.strftime('%Y%m%d%H%M%S%f')}"


def require_positive_quantity(quantity: Decimal) -> None:
    """Validate that a quantity is strictly positive.

    Raises:
        ValueError: If ``quantity`` is zero, negative or not finite.
    """
    if not quantity.is_finite() or quantity <= Decimal("0"):
        log.error("Quantity validation failed: %s", quantity)
        raise ValueError("Quantity must be greater than zero")


def record_transaction(
    context: RuntimeContext,
    request: "TransactionRequest",
    *,
    timestamp: Optional[datetime] = None,
) -> data_manager.TransactionRow:
    """Append one stock movement to the log and adjust the inventory sheet.

    Issues subtract from an existing item and are refused when the stock at
    write time no longer covers the quantity; this catches changes that
    happened between validation and submission. Receives add to the matching
    item or create a new catalog entry using the request's unit.

    Args:
        context (RuntimeContext): Runtime context providing workbook access and
            caches.
        request (TransactionRequest): Immutable request built by the
            submission pipeline.
        timestamp (datetime | None): Override for the recorded date.

    Returns:
        data_manager.TransactionRow: Newly appended log entry.

    Raises:
        MissingReferenceError: If an issue names an unknown item.
        InsufficientStock: If an issue exceeds the current stock.
        ValueError: If the quantity is not strictly positive.
    """
    require_positive_quantity(request.quantity)
    kind = OperationKind(request.operation_kind)

    if kind is OperationKind.ISSUE:
        item = get_inventory_item(context, request.item_name)
        if item.quantity < request.quantity:
            log.warning(
                "Refusing issue of %s %s for '%s': only %s available",
                request.quantity,
                item.unit,
                request.item_name,
                item.quantity,
            )
            raise InsufficientStock(item.item_name, item.quantity, item.unit)
        data_manager.update_inventory_item(
            context.workbook,
            item.item_name,
            field_values={"Quantity": item.quantity - request.quantity},
        )
    elif request.item_name in get_inventory_snapshot(context):
        item = get_inventory_snapshot(context)[request.item_name]
        data_manager.update_inventory_item(
            context.workbook,
            item.item_name,
            field_values={"Quantity": item.quantity + request.quantity},
        )
    else:
        data_manager.append_inventory_item(
            context.workbook,
            data_manager.InventoryRow(
                item_name=request.item_name,
                quantity=request.quantity,
                unit=request.unit,
            ),
        )
        log.info("Added catalog entry '%s' (%s)", request.item_name, request.unit)

    moment = _resolve_timestamp(timestamp)
    transaction = data_manager.TransactionRow(
        transaction_id=generate_transaction_id(prefix=kind.value[0], when=moment),
        date=moment,
        operation_kind=kind.value,
        item_name=request.item_name,
        quantity=request.quantity,
        unit=request.unit,
        location=request.location,
        person_name=request.person_name,
        notes=request.notes,
        file_url=request.file_url,
    )
    data_manager.append_transaction(context.workbook, transaction)
    _invalidate_cache(context, "transactions", "inventory")
    log.info(
        "Recorded %s transaction '%s' for item '%s' (quantity=%s %s, location=%s)",
        kind.value,
        transaction.transaction_id,
        request.item_name,
        request.quantity,
        request.unit,
        request.location,
    )
    return transaction


def persist_context(context: RuntimeContext) -> None:
    """Persist any in-memory workbook changes to the configured data file."""
    data_manager.save_workbook(
        context.workbook,
        destination=context.settings.data_file,
    )
    log.info("Persisted workbook '%s'", context.settings.data_file)


def refresh_context(context: RuntimeContext) -> RuntimeContext:
    """Reload the workbook to discard unsaved modifications.

    Returns:
        RuntimeContext: Fresh context with a newly opened workbook and an
            empty cache.
    """
    workbook = data_manager.refresh_workbook(context.settings.data_file)
    log.info("Reloaded workbook '%s'", context.settings.data_file)
    return RuntimeContext(settings=context.settings, workbook=workbook)
