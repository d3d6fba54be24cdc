"""Shared pytest fixtures and utilities for mall inventory tests."""

from __future__ import annotations

import argparse
import sys
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Callable, Iterable, Iterator, List
from unittest.mock import Mock

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from mall_inventory import cli, constants, core_logic, data_manager  # noqa: E402
from mall_inventory.setup_excel import create_master_workbook  # noqa: E402
from mall_inventory.submission import TransactionRequest, UploadResult  # noqa: E402

DEFAULT_SCHEMA_VERSION = constants.EXPECTED_SCHEMA_VERSION
DEFAULT_MALL_NAME = "Satyam Mall"
OPENING_STOCK = (
    data_manager.InventoryRow(item_name="Bolt", quantity=Decimal("5"), unit="pcs"),
    data_manager.InventoryRow(item_name="Paint", quantity=Decimal("12.5"), unit="litre"),
    data_manager.InventoryRow(item_name="Cable", quantity=Decimal("100"), unit="m"),
)
_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "MallName = {mall_name}\n"
    "SchemaVersion = {schema_version}\n\n"
    "[Storage]\n"
    "AttachmentDir = {attachment_dir}\n\n"
    "[Reports]\n"
    "OutputDir = {report_dir}\n"
)


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str
    mall_name: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an initialized master workbook in a temp folder."""

    def _create_workbook(
        *,
        subdir: str | None = None,
        opening_stock: Iterable[data_manager.InventoryRow] = OPENING_STOCK,
        filename: str = "master_workbook.xlsx",
    ) -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = base_dir / filename
        create_master_workbook(workbook_path, opening_stock=opening_stock, overwrite=True)
        return workbook_path

    return _create_workbook


@pytest.fixture
def master_workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh master workbook ready for use in a test."""

    return workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        mall_name: str = DEFAULT_MALL_NAME,
        schema_version: str = DEFAULT_SCHEMA_VERSION,
        opening_stock: Iterable[data_manager.InventoryRow] = OPENING_STOCK,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        bundle_dir = tmp_path / bundle_dir_name
        bundle_dir.mkdir(parents=True, exist_ok=True)
        workbook_path = workbook_factory(subdir=bundle_dir_name, opening_stock=opening_stock)
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(
                data_file=data_file_entry,
                mall_name=mall_name,
                schema_version=schema_version,
                attachment_dir="attachments",
                report_dir="reports",
            )
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
            mall_name=mall_name,
        )

    return _create_config


@pytest.fixture
def config_bundle(config_factory: Callable[..., ConfigBundle]) -> ConfigBundle:
    """Default config/workbook bundle with the opening stock."""

    return config_factory()


@pytest.fixture
def config_file(config_bundle: ConfigBundle) -> Path:
    """Convenience fixture returning only the config path."""

    return config_bundle.config_path


@pytest.fixture
def runtime_context(config_file: Path) -> core_logic.RuntimeContext:
    """Load the runtime context for tests through the public API."""

    context = core_logic.load_runtime_context(config_file)
    core_logic.ensure_schema_version(context)
    return context


# ---------------------------------------------------------------------------
# CLI layer fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    """Return a fresh CLI parser instance for tests."""

    return argparse.ArgumentParser(prog="mall-inventory-test")


@pytest.fixture
def subparsers_action(
    cli_parser: argparse.ArgumentParser,
) -> argparse._SubParsersAction[argparse.ArgumentParser]:
    """Return the subparser action used to register commands."""

    return cli_parser.add_subparsers(dest="command")


# ---------------------------------------------------------------------------
# Core logic fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def settings(tmp_path: Path) -> data_manager.ConfigSettings:
    """Provide default configuration settings for runtime context tests."""

    return data_manager.ConfigSettings(
        data_file=tmp_path / "master_workbook.xlsx",
        mall_name=DEFAULT_MALL_NAME,
        schema_version=constants.EXPECTED_SCHEMA_VERSION,
        attachment_dir=tmp_path / "attachments",
        report_dir=tmp_path / "reports",
    )


@pytest.fixture
def workbook() -> Mock:
    """Return a mock workbook object for business logic tests."""

    return Mock(name="workbook")


@pytest.fixture
def context(settings: data_manager.ConfigSettings, workbook: Mock) -> core_logic.RuntimeContext:
    """Assemble a runtime context from injected settings and workbook mocks."""

    return core_logic.RuntimeContext(settings=settings, workbook=workbook)


@pytest.fixture
def snapshot() -> core_logic.InventorySnapshot:
    """Inventory snapshot matching the opening stock."""

    return core_logic.InventorySnapshot(OPENING_STOCK)


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class RecordingSink:
    """Transaction sink that records requests and fails for chosen item names."""

    def __init__(self, fail_items: Iterable[str] = (), raise_items: Iterable[str] = ()) -> None:
        self.fail_items = set(fail_items)
        self.raise_items = set(raise_items)
        self.requests: List[TransactionRequest] = []

    async def submit_transaction_record(self, request: TransactionRequest) -> bool:
        self.requests.append(request)
        if request.item_name in self.raise_items:
            raise core_logic.SubmissionFailed("connection reset")
        return request.item_name not in self.fail_items


class RecordingStore:
    """Attachment store that answers with a fixed result."""

    def __init__(self, result: UploadResult | None = None, error: Exception | None = None) -> None:
        self.result = result or UploadResult(success=True, file_url="https://files.example/invoice.pdf")
        self.error = error
        self.calls: List[tuple[Path, str]] = []

    async def upload_attachment(self, path: Path, name_hint: str) -> UploadResult:
        self.calls.append((path, name_hint))
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
def sink_factory() -> Callable[..., RecordingSink]:
    return RecordingSink


@pytest.fixture
def store_factory() -> Callable[..., RecordingStore]:
    return RecordingStore


@pytest.fixture
def transaction_factory() -> Callable[..., data_manager.TransactionRow]:
    """Build transaction rows with sensible defaults."""

    counter = iter(range(1, 10_000))

    def _make(
        *,
        kind: str = constants.OperationKind.ISSUE.value,
        item_name: str = "Bolt",
        quantity: str = "1",
        unit: str = "pcs",
        location: str = constants.FloorLocation.GROUND_FLOOR.value,
        person_name: str = "Ravi",
        notes: str = "",
        file_url: str = "",
        date: datetime = datetime(2025, 3, 10, 9, 30, tzinfo=UTC),
    ) -> data_manager.TransactionRow:
        return data_manager.TransactionRow(
            transaction_id=f"T{next(counter):05d}",
            date=date,
            operation_kind=kind,
            item_name=item_name,
            quantity=Decimal(quantity),
            unit=unit,
            location=location,
            person_name=person_name,
            notes=notes,
            file_url=file_url,
        )

    return _make
