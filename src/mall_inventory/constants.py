"""Enumerations shared across the mall inventory modules.

Keeps the identifiers used by the data access layer, the submission pipeline
and the reporting engine in one place so every layer agrees on the exact
strings written to and read from the workbook.
"""

from __future__ import annotations

from enum import Enum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Pass-through value for the report filters.
ALL = "All"

# Unit reported for transactions that were recorded without one.
DEFAULT_UNIT = "pcs"

# Location accepted for receive operations only.
VENDOR_LOCATION = "Vendor"


class OperationKind(str, Enum):
    """Enumerate the stock movements recorded in the transaction log."""

    ISSUE = "ISSUE"
    RECEIVE = "RECEIVE"


class FloorLocation(str, Enum):
    """Enumerate the floors stock can be issued to."""

    BASEMENT = "Basement"
    GROUND_FLOOR = "Ground Floor"
    FIRST_FLOOR = "First Floor"
    SECOND_FLOOR = "Second Floor"
    THIRD_FLOOR = "Third Floor"
    FOURTH_FLOOR = "Fourth Floor"
    TERRACE = "Terrace"


class SheetName(str, Enum):
    """Enumerate the workbook sheet names managed by the DAL."""

    INVENTORY = "Inventory"
    TRANSACTION_LOG = "TransactionLog"
    USERS = "Users"


def allowed_locations(kind: OperationKind) -> tuple[str, ...]:
    """Return the locations a form of ``kind`` may target."""

    floors = tuple(member.value for member in FloorLocation)
    if kind is OperationKind.RECEIVE:
        return floors + (VENDOR_LOCATION,)
    return floors


__all__ = [
    "ALL",
    "DEFAULT_UNIT",
    "EXPECTED_SCHEMA_VERSION",
    "VENDOR_LOCATION",
    "FloorLocation",
    "OperationKind",
    "SheetName",
    "allowed_locations",
]
