"""Stock validation for issue/receive line items.

Validation runs over the whole batch before anything is submitted and stops
at the first failing line item, so a batch is either fully validated or not
submitted at all.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, List, Mapping, Sequence

from . import data_manager, log
from .constants import OperationKind
from .core_logic import InsufficientStock, InvalidQuantity, MissingField, UnknownItem

if TYPE_CHECKING:
    from .submission import LineItem


def parse_quantity(item_name: str, raw: str) -> Decimal:
    """Convert a user-entered quantity string into a positive decimal.

    Raises:
        InvalidQuantity: If ``raw`` is not a finite number greater than zero.
    """

    try:
        quantity = Decimal(raw.strip())
    except InvalidOperation as exc:
        raise InvalidQuantity(item_name, raw) from exc
    if not quantity.is_finite() or quantity <= 0:
        raise InvalidQuantity(item_name, raw)
    return quantity


def sync_issue_units(
    operation_kind: OperationKind,
    items: Sequence["LineItem"],
    snapshot: Mapping[str, data_manager.InventoryRow],
) -> List["LineItem"]:
    """Copy the inventory unit onto every issue line item that names a known item.

    Receive items keep whatever unit the operator typed. Items whose name is
    blank or unknown are returned unchanged.
    """

    if operation_kind is not OperationKind.ISSUE:
        return list(items)

    synced = []
    for item in items:
        match = snapshot.get(item.item_name) if item.item_name else None
        if match is not None and item.unit != match.unit:
            item = replace(item, unit=match.unit)
        synced.append(item)
    return synced


def require_common_fields(location: str, person_name: str) -> None:
    """Reject a batch without a location or a receiver/supplier name."""

    if not location.strip() or not person_name.strip():
        raise MissingField("Please select a location and enter a name.")


def validate_line_item(
    operation_kind: OperationKind,
    item: "LineItem",
    snapshot: Mapping[str, data_manager.InventoryRow],
) -> Decimal:
    """Validate a single line item and return its parsed quantity."""

    if not item.item_name.strip() or not item.quantity.strip() or not item.unit.strip():
        raise MissingField()

    quantity = parse_quantity(item.item_name, item.quantity)

    if operation_kind is OperationKind.ISSUE:
        stock = snapshot.get(item.item_name)
        if stock is None:
            raise UnknownItem(item.item_name)
        if stock.quantity < quantity:
            raise InsufficientStock(item.item_name, stock.quantity, stock.unit)

    return quantity


def validate_line_items(
    operation_kind: OperationKind,
    items: Sequence["LineItem"],
    snapshot: Mapping[str, data_manager.InventoryRow],
) -> List["LineItem"]:
    """Validate a batch in order, raising on the first failing line item.

    Returns:
        list[LineItem]: The validated items, unchanged and in input order.

    Raises:
        MissingField: If a name, quantity or unit is blank.
        InvalidQuantity: If a quantity is not a positive decimal.
        UnknownItem: If an issue names an item missing from ``snapshot``.
        InsufficientStock: If an issue asks for more than is available.
    """

    for position, item in enumerate(items, start=1):
        try:
            validate_line_item(operation_kind, item, snapshot)
        except (MissingField, InvalidQuantity, UnknownItem, InsufficientStock) as exc:
            log.warning("Validation failed at item %d of %d: %s", position, len(items), exc)
            raise
    return list(items)
