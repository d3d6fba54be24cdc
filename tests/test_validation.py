"""Unit tests for the stock validator."""

from __future__ import annotations

from decimal import Decimal

import pytest

from mall_inventory import core_logic, validation
from mall_inventory.constants import OperationKind
from mall_inventory.submission import LineItem

ISSUE = OperationKind.ISSUE
RECEIVE = OperationKind.RECEIVE


def _item(key: int = 1, name: str = "Bolt", quantity: str = "1", unit: str = "pcs") -> LineItem:
    return LineItem(key=key, item_name=name, quantity=quantity, unit=unit)


# ---------------------------------------------------------------------------
# Quantities
# ---------------------------------------------------------------------------


@pytest.mark.parametrize("raw", ["abc", "", "0", "-2", "NaN", "Infinity"])
def test_parse_quantity_rejects_invalid_values(raw):
    """Non-numeric and non-positive quantities should raise InvalidQuantity."""

    with pytest.raises(core_logic.InvalidQuantity):
        validation.parse_quantity("Bolt", raw)


def test_parse_quantity_accepts_fractions():
    """Decimal quantities should be parsed exactly."""

    assert validation.parse_quantity("Paint", " 2.25 ") == Decimal("2.25")


# ---------------------------------------------------------------------------
# Unit sync
# ---------------------------------------------------------------------------


def test_sync_issue_units_copies_inventory_unit(snapshot):
    """Issue items naming a known item should carry the inventory unit."""

    synced = validation.sync_issue_units(ISSUE, [_item(name="Paint", unit="")], snapshot)
    assert synced[0].unit == "litre"


def test_sync_issue_units_leaves_unknown_items(snapshot):
    """Unknown names keep whatever unit they had."""

    item = _item(name="Widget", unit="")
    assert validation.sync_issue_units(ISSUE, [item], snapshot) == [item]


def test_sync_issue_units_ignores_receive_forms(snapshot):
    """Receive units are typed by the operator and never overwritten."""

    item = _item(name="Paint", unit="can")
    assert validation.sync_issue_units(RECEIVE, [item], snapshot) == [item]


# ---------------------------------------------------------------------------
# Line items
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "item",
    [
        _item(name=""),
        _item(quantity=""),
        _item(unit=""),
        _item(name="   "),
    ],
)
def test_validate_line_item_requires_all_fields(item, snapshot):
    """Blank name, quantity or unit should raise MissingField."""

    with pytest.raises(core_logic.MissingField, match="Please fill in all item fields."):
        validation.validate_line_item(RECEIVE, item, snapshot)


def test_validate_line_item_unknown_issue_item(snapshot):
    """Issues of items absent from the snapshot should raise UnknownItem."""

    with pytest.raises(core_logic.UnknownItem, match='"Widget" is not a valid item.'):
        validation.validate_line_item(ISSUE, _item(name="Widget"), snapshot)


def test_validate_line_item_insufficient_stock(snapshot):
    """Issuing more than is available should report the available quantity."""

    with pytest.raises(core_logic.InsufficientStock) as excinfo:
        validation.validate_line_item(ISSUE, _item(quantity="10"), snapshot)

    assert str(excinfo.value) == 'Insufficient stock for "Bolt"! Only 5 pcs available.'
    assert excinfo.value.available == Decimal("5")


def test_validate_line_item_allows_exact_stock(snapshot):
    """Issuing exactly the available stock is allowed."""

    assert validation.validate_line_item(ISSUE, _item(quantity="5"), snapshot) == Decimal("5")


def test_validate_line_item_receive_skips_stock_checks(snapshot):
    """Receives may name new items and any quantity."""

    item = _item(name="Glue", quantity="500", unit="tube")
    assert validation.validate_line_item(RECEIVE, item, snapshot) == Decimal("500")


def test_validate_line_items_stops_at_first_failure(snapshot):
    """The first invalid item should abort validation of the whole batch."""

    items = [
        _item(key=1, name="Cable", quantity="10", unit="m"),
        _item(key=2, name="Widget"),
        _item(key=3, name="Bolt", quantity="99"),
    ]
    with pytest.raises(core_logic.UnknownItem):
        validation.validate_line_items(ISSUE, items, snapshot)


def test_validate_line_items_returns_items_in_order(snapshot):
    """A valid batch should come back unchanged and in input order."""

    items = [_item(key=1, name="Cable", unit="m"), _item(key=2)]
    assert validation.validate_line_items(ISSUE, items, snapshot) == items


def test_require_common_fields_rejects_blank_person():
    """Location and person name are both mandatory."""

    with pytest.raises(core_logic.MissingField):
        validation.require_common_fields("Ground Floor", "  ")
