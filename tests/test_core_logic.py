"""Unit tests verifying the business logic layer with a mocked data access layer."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime
from decimal import Decimal
from unittest.mock import Mock

import pytest

from mall_inventory import constants, core_logic, data_manager
from mall_inventory.submission import TransactionRequest


def _request(**overrides) -> TransactionRequest:
    values = dict(
        operation_kind=constants.OperationKind.ISSUE,
        item_name="Bolt",
        quantity=Decimal("2"),
        unit="pcs",
        location="Ground Floor",
        person_name="Ravi",
        notes="",
        file_url="",
    )
    values.update(overrides)
    return TransactionRequest(**values)


@pytest.fixture
def inventory_rows():
    return [
        data_manager.InventoryRow(item_name="Bolt", quantity=Decimal("5"), unit="pcs"),
        data_manager.InventoryRow(item_name="Paint", quantity=Decimal("12.5"), unit="litre"),
    ]


@pytest.fixture
def mocked_dal(monkeypatch, inventory_rows):
    """Replace the DAL calls used by record_transaction with mocks."""

    mocks = {
        "iter_inventory": Mock(return_value=inventory_rows),
        "iter_transactions": Mock(return_value=[]),
        "update_inventory_item": Mock(),
        "append_inventory_item": Mock(),
        "append_transaction": Mock(),
    }
    for name, mock in mocks.items():
        monkeypatch.setattr(data_manager, name, mock)
    return mocks


# ---------------------------------------------------------------------------
# Runtime/context management
# ---------------------------------------------------------------------------


def test_load_runtime_context_returns_context(monkeypatch, tmp_path, settings):
    """load_runtime_context should assemble settings and workbook into a context."""

    config_path = tmp_path / "config.ini"
    parser = Mock(name="parser")
    workbook = Mock(name="workbook")

    monkeypatch.setattr(data_manager, "find_config_file", Mock(return_value=config_path))
    monkeypatch.setattr(data_manager, "read_config", Mock(return_value=parser))
    parse_settings = Mock(return_value=settings)
    monkeypatch.setattr(data_manager, "parse_settings", parse_settings)
    monkeypatch.setattr(data_manager, "open_workbook", Mock(return_value=workbook))

    context = core_logic.load_runtime_context(config_path)

    assert context.settings is settings
    assert context.workbook is workbook
    parse_settings.assert_called_once_with(parser, base_path=config_path.resolve().parent)


def test_ensure_schema_version_accepts_expected(context):
    """Matching schema versions should pass silently."""

    core_logic.ensure_schema_version(context)


def test_ensure_schema_version_rejects_mismatch(settings, workbook):
    """Mismatched schema versions should raise RuntimeError."""

    context = core_logic.RuntimeContext(settings=replace(settings, schema_version="0.9.0"), workbook=workbook)
    with pytest.raises(RuntimeError, match="schema mismatch"):
        core_logic.ensure_schema_version(context)


# ---------------------------------------------------------------------------
# Inventory lookups and caching
# ---------------------------------------------------------------------------


def test_list_inventory_uses_cache(context, monkeypatch, inventory_rows):
    """The inventory sheet should be read once until the cache is invalidated."""

    iter_mock = Mock(return_value=inventory_rows)
    monkeypatch.setattr(data_manager, "iter_inventory", iter_mock)

    assert core_logic.list_inventory(context) == inventory_rows
    assert core_logic.list_inventory(context) == inventory_rows
    iter_mock.assert_called_once()


def test_snapshot_first_entry_wins_for_duplicate_names():
    """Duplicate item names should resolve to the first row."""

    snapshot = core_logic.InventorySnapshot(
        [
            data_manager.InventoryRow("Bolt", Decimal("5"), "pcs"),
            data_manager.InventoryRow("Bolt", Decimal("50"), "box"),
        ]
    )
    assert len(snapshot) == 1
    assert snapshot["Bolt"].quantity == Decimal("5")


def test_snapshot_lookup_is_case_sensitive(inventory_rows):
    """Item names should be matched exactly."""

    snapshot = core_logic.InventorySnapshot(inventory_rows)
    assert "Bolt" in snapshot
    assert "bolt" not in snapshot


def test_get_inventory_item_unknown_raises(context, mocked_dal):
    """Unknown items should raise MissingReferenceError."""

    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_inventory_item(context, "Widget")


@pytest.mark.parametrize(
    "quantity, expected",
    [
        (Decimal("10.50"), "10.5"),
        (Decimal("1E+1"), "10"),
        (Decimal("0.000"), "0"),
        (Decimal("3"), "3"),
    ],
)
def test_format_quantity_strips_trailing_zeros(quantity, expected):
    """format_quantity should never use exponents or trailing zeros."""

    assert core_logic.format_quantity(quantity) == expected


# ---------------------------------------------------------------------------
# Recording transactions
# ---------------------------------------------------------------------------


def test_record_issue_decrements_stock(context, mocked_dal):
    """An issue should subtract from the inventory and append a log row."""

    moment = datetime(2025, 3, 10, 9, 30, tzinfo=UTC)
    transaction = core_logic.record_transaction(context, _request(), timestamp=moment)

    mocked_dal["update_inventory_item"].assert_called_once_with(
        context.workbook, "Bolt", field_values={"Quantity": Decimal("3")}
    )
    mocked_dal["append_transaction"].assert_called_once_with(context.workbook, transaction)
    assert transaction.transaction_id == "I20250310093000000000"
    assert transaction.operation_kind == "ISSUE"
    assert transaction.date == moment


def test_record_issue_insufficient_stock_raises(context, mocked_dal):
    """Stock shortfalls at write time should be refused without writing."""

    with pytest.raises(core_logic.InsufficientStock) as excinfo:
        core_logic.record_transaction(context, _request(quantity=Decimal("6")))

    assert str(excinfo.value) == 'Insufficient stock for "Bolt"! Only 5 pcs available.'
    mocked_dal["update_inventory_item"].assert_not_called()
    mocked_dal["append_transaction"].assert_not_called()


def test_record_issue_of_entire_stock_is_allowed(context, mocked_dal):
    """Issuing exactly the available quantity should leave zero."""

    core_logic.record_transaction(context, _request(quantity=Decimal("5")))
    mocked_dal["update_inventory_item"].assert_called_once_with(
        context.workbook, "Bolt", field_values={"Quantity": Decimal("0")}
    )


def test_record_receive_increments_existing_item(context, mocked_dal):
    """A receive of a known item should add to its quantity."""

    request = _request(
        operation_kind=constants.OperationKind.RECEIVE,
        item_name="Paint",
        quantity=Decimal("2.5"),
        unit="litre",
        location="Vendor",
    )
    transaction = core_logic.record_transaction(context, request)

    mocked_dal["update_inventory_item"].assert_called_once_with(
        context.workbook, "Paint", field_values={"Quantity": Decimal("15.0")}
    )
    assert transaction.transaction_id.startswith("R")


def test_record_receive_creates_catalog_entry(context, mocked_dal):
    """A receive of an unknown item should create it with the request's unit."""

    request = _request(
        operation_kind=constants.OperationKind.RECEIVE,
        item_name="Glue",
        quantity=Decimal("4"),
        unit="tube",
    )
    core_logic.record_transaction(context, request)

    mocked_dal["append_inventory_item"].assert_called_once_with(
        context.workbook, data_manager.InventoryRow(item_name="Glue", quantity=Decimal("4"), unit="tube")
    )
    mocked_dal["update_inventory_item"].assert_not_called()


def test_record_transaction_invalidates_caches(context, mocked_dal):
    """Recording should force the next read to reload the sheets."""

    core_logic.list_inventory(context)
    core_logic.list_transactions(context)
    core_logic.record_transaction(context, _request())
    core_logic.list_inventory(context)
    core_logic.list_transactions(context)

    assert mocked_dal["iter_inventory"].call_count == 2
    assert mocked_dal["iter_transactions"].call_count == 2


def test_record_transaction_rejects_non_positive_quantity(context, mocked_dal):
    """Zero quantities should raise ValueError."""

    with pytest.raises(ValueError):
        core_logic.record_transaction(context, _request(quantity=Decimal("0")))


def test_generate_transaction_id_is_sortable():
    """Identifiers should embed the UTC timestamp after the prefix."""

    moment = datetime(2025, 1, 2, 3, 4, 5, 6, tzinfo=UTC)
    assert core_logic.generate_transaction_id(prefix="R", when=moment) == "R20250102030405000006"


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def test_add_user_hashes_password(context, monkeypatch):
    """add_user should store a bcrypt hash rather than the password."""

    monkeypatch.setattr(data_manager, "iter_users", Mock(return_value=[]))
    append = Mock()
    monkeypatch.setattr(data_manager, "append_user", append)

    record = core_logic.add_user(context, email=" Asha@Mall.in ", name="Asha", role="staff", password="secret")

    append.assert_called_once_with(context.workbook, record)
    assert record.email == "asha@mall.in"
    assert record.password_hash != "secret"
    assert core_logic.verify_password("secret", record.password_hash)


def test_add_user_rejects_duplicates(context, monkeypatch):
    """Emails are unique regardless of case."""

    existing = data_manager.UserRow("asha@mall.in", "Asha", "staff", "hash")
    monkeypatch.setattr(data_manager, "iter_users", Mock(return_value=[existing]))

    with pytest.raises(core_logic.BusinessRuleViolation, match="already exists"):
        core_logic.add_user(context, email="ASHA@mall.in", name="A", role="staff", password="pw")


def test_add_user_rejects_malformed_email(context, monkeypatch):
    """Malformed emails should be refused."""

    monkeypatch.setattr(data_manager, "iter_users", Mock(return_value=[]))
    with pytest.raises(core_logic.BusinessRuleViolation):
        core_logic.add_user(context, email="not-an-email", name="A", role="staff", password="pw")


def test_verify_password_handles_malformed_hash():
    """Garbage hashes should verify as False instead of raising."""

    assert core_logic.verify_password("secret", "not-a-hash") is False


def test_get_user_is_case_insensitive(context, monkeypatch):
    """Lookups should ignore case and surrounding whitespace."""

    user = data_manager.UserRow("asha@mall.in", "Asha", "admin", "hash")
    monkeypatch.setattr(data_manager, "iter_users", Mock(return_value=[user]))

    assert core_logic.get_user(context, " ASHA@mall.in") is user
    with pytest.raises(core_logic.MissingReferenceError):
        core_logic.get_user(context, "nobody@mall.in")
