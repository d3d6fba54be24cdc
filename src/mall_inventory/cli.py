"""Command-line entry points for the mall inventory toolkit.

All orchestration in this module is limited to argparse wiring and
translating command-line arguments into calls on the submission pipeline,
the reporting engine and the exporters. Keeping the CLI thin means the same
parser configuration can be reused by tests, scripts, or any alternative
front-end.
"""

from __future__ import annotations

import argparse
import asyncio
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence

from . import core_logic, export, log, renderers, reporting
from .constants import ALL, OperationKind, allowed_locations
from .gateway import WorkbookGateway
from .submission import BatchOutcome, BatchProgress, SubmissionForm, SubmissionStatus


EXIT_PARTIAL = 4
EXIT_FAILED = 5


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[core_logic.RuntimeContext, argparse.Namespace], int]
    mutates: bool = False


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="mall-inventory",
        description="Record stock movements and build reports for the Mall inventory workbook.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to ./config.ini).",
    )
    parser.add_argument(
        "--user",
        default=export.DEFAULT_USER_NAME,
        help="Name printed as the report author.",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    write_specs = register_write_commands(subparsers)
    read_specs = register_read_commands(subparsers)
    return build_command_table([*write_specs.values(), *read_specs.values()])


def register_write_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare mutating CLI commands such as issues and receipts."""
    specs = {
        "issue": register_issue_command(subparsers),
        "receive": register_receive_command(subparsers),
        "add-user": register_add_user_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def register_read_commands(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> Dict[str, CommandSpec]:
    """Declare read-only CLI commands such as reports and exports."""
    specs = {
        "inventory": register_inventory_command(subparsers),
        "locations": register_locations_command(subparsers),
        "log": register_log_command(subparsers),
        "summary": register_summary_command(subparsers),
        "export-csv": register_export_csv_command(subparsers),
        "export-pdf": register_export_pdf_command(subparsers),
        "export-location-pdf": register_export_location_pdf_command(subparsers),
        "login": register_login_command(subparsers),
    }
    for spec in specs.values():
        spec.register(subparsers)
    return specs


def _add_common_submission_arguments(parser: argparse.ArgumentParser, kind: OperationKind) -> None:
    parser.add_argument("--location", required=True, choices=allowed_locations(kind))
    parser.add_argument("--person", required=True, help="Receiver or supplier name.")
    parser.add_argument("--notes", default="")


def _add_filter_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--type",
        dest="operation_kind",
        choices=[ALL, *(member.value for member in OperationKind)],
        default=ALL,
    )
    parser.add_argument("--location", default=ALL, help="One of the names listed by the locations command.")
    parser.add_argument("--from", dest="start_date", type=date.fromisoformat, default=None, metavar="YYYY-MM-DD")
    parser.add_argument("--to", dest="end_date", type=date.fromisoformat, default=None, metavar="YYYY-MM-DD")


def register_issue_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``issue``."""
    name = "issue"
    help_text = "Issue one or more items to a floor."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            nargs=2,
            required=True,
            metavar=("NAME", "QTY"),
            help="Item to issue; may be repeated. The unit comes from the inventory.",
        )
        _add_common_submission_arguments(parser, OperationKind.ISSUE)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_issue)


def register_receive_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``receive``."""
    name = "receive"
    help_text = "Receive one or more items into stock."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--item",
            dest="items",
            action="append",
            nargs=3,
            required=True,
            metavar=("NAME", "QTY", "UNIT"),
            help="Item to receive; may be repeated.",
        )
        _add_common_submission_arguments(parser, OperationKind.RECEIVE)
        parser.add_argument("--attachment", type=Path, default=None, help="Invoice or photo to attach.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_receive)


def register_add_user_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``add-user``."""
    name = "add-user"
    help_text = "Register a user allowed to log in."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--email", required=True)
        parser.add_argument("--name", required=True)
        parser.add_argument("--role", default="staff")
        parser.add_argument("--password", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_add_user, mutates=True)


def register_inventory_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``inventory``."""
    name = "inventory"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_inventory)


def register_locations_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``locations``."""
    name = "locations"
    help_text = "List the locations that can be used as a report filter."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_locations)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the filtered transaction log, most recent first."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_filter_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def register_summary_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``summary``."""
    name = "summary"
    help_text = "Display totals and the floor-wise summary."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_filter_arguments(parser)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_summary_report)


def register_export_csv_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-csv``."""
    name = "export-csv"
    help_text = "Export the filtered transaction log as CSV."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_filter_arguments(parser)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_csv)


def register_export_pdf_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-pdf``."""
    name = "export-pdf"
    help_text = "Export the filtered report with the floor-wise summary as PDF."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        _add_filter_arguments(parser)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_pdf)


def register_export_location_pdf_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``export-location-pdf``."""
    name = "export-location-pdf"
    help_text = "Export the detailed report of one location as PDF."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("report_location", metavar="LOCATION")
        _add_filter_arguments(parser)
        parser.add_argument("--output", type=Path, default=None)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_export_location_pdf)


def register_login_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``login``."""
    name = "login"
    help_text = "Check a user's credentials."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--email", required=True)
        parser.add_argument("--password", required=True)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_login)


def load_runtime_context(config_path: Optional[Path] = None) -> core_logic.RuntimeContext:
    """Resolve the runtime context for CLI operations."""
    return core_logic.load_runtime_context(Path(config_path) if config_path is not None else None)


def dispatch_command(
    context: core_logic.RuntimeContext,
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(context, args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def translate_filter(args: argparse.Namespace) -> reporting.ReportFilter:
    """Translate CLI args into report filter parameters."""
    return reporting.ReportFilter(
        operation_kind=args.operation_kind,
        location=args.location,
        start_date=args.start_date,
        end_date=args.end_date,
    )


def populate_form(form: SubmissionForm, args: argparse.Namespace) -> SubmissionForm:
    """Copy ``--item`` entries and shared fields from the CLI into ``form``."""
    for index, entry in enumerate(args.items):
        name, quantity = entry[0], entry[1]
        unit = entry[2] if len(entry) > 2 else None
        if index == 0:
            form.update_item(form.items[0].key, item_name=name, quantity=quantity, unit=unit)
        else:
            form.add_item(item_name=name, quantity=quantity, unit=unit or "")
    form.set_common(location=args.location, person_name=args.person, notes=args.notes or "")
    attachment = getattr(args, "attachment", None)
    if attachment is not None:
        form.attach_file(attachment)
    return form


def _print_progress(progress: BatchProgress) -> None:
    print(f"Submitted item {progress.current} of {progress.total}")


def _exit_code(outcome: BatchOutcome) -> int:
    if outcome.status is SubmissionStatus.SUCCESS:
        return 0
    if outcome.status is SubmissionStatus.PARTIAL:
        return EXIT_PARTIAL
    return EXIT_FAILED


def run_submission(context: core_logic.RuntimeContext, args: argparse.Namespace, kind: OperationKind) -> int:
    """Build a form from the CLI args, submit it and persist what was recorded."""
    form = populate_form(SubmissionForm(kind, core_logic.get_inventory_snapshot(context)), args)
    gateway = WorkbookGateway(context)
    outcome = asyncio.run(
        form.submit(
            gateway,
            gateway,
            on_progress=_print_progress,
            on_success=lambda _: core_logic.persist_context(context),
        )
    )
    for warning in outcome.warnings:
        print(f"Warning: {warning}")
    print(outcome.message)
    return _exit_code(outcome)


def run_issue(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the issue workflow."""
    return run_submission(context, args, OperationKind.ISSUE)


def run_receive(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the receive workflow."""
    return run_submission(context, args, OperationKind.RECEIVE)


def run_add_user(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Execute the add-user workflow in the BLL."""
    user = core_logic.add_user(context, email=args.email, name=args.name, role=args.role, password=args.password)
    print(f"Registered {user.email}")
    return 0


def run_inventory(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the current stock levels."""
    for item in core_logic.list_inventory(context):
        print(f"{item.item_name}\t{core_logic.format_quantity(item.quantity)}\t{item.unit}")
    return 0


def run_locations(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the location filter choices, starting with the catch-all."""
    print(ALL)
    for location in reporting.list_locations(core_logic.list_transactions(context)):
        print(location)
    return 0


def _filtered(context: core_logic.RuntimeContext, args: argparse.Namespace):
    return reporting.filter_transactions(core_logic.list_transactions(context), translate_filter(args))


def run_log_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print the filtered transaction log."""
    table = export.build_transaction_table(_filtered(context, args))
    print("\t".join(table.head))
    for row in table.body:
        print("\t".join(row))
    return 0


def run_summary_report(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Print global totals and the floor-wise summary."""
    filtered = _filtered(context, args)
    stats = reporting.compute_stats(filtered)
    fmt = core_logic.format_quantity
    print(f"Records: {stats.total_records}")
    print(f"Issued: {stats.issued_count} ({fmt(stats.issued_qty)} units)")
    print(f"Received: {stats.received_count} ({fmt(stats.received_qty)} units)")
    print(f"Items: {stats.unique_items}  |  Locations: {stats.unique_locations}")
    for floor in reporting.summarize_floors(filtered):
        print()
        print(
            f"{floor.location}: issued {floor.issued_count} txn ({fmt(floor.issued_qty)} units), "
            f"received {floor.received_count} txn ({fmt(floor.received_qty)} units), "
            f"last {export.format_report_date(floor.last_activity)}"
        )
        for item_name, item in floor.items.items():
            print(
                f"  {item_name}: issued {fmt(item.issued_qty)} {item.unit}, "
                f"received {fmt(item.received_qty)} {item.unit}; {', '.join(item.persons)}"
            )
    return 0


def _now() -> datetime:
    return datetime.now().astimezone()


def run_export_csv(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the filtered log to a CSV file."""
    rows = export.build_csv_rows(_filtered(context, args))
    destination = args.output or context.settings.report_dir / export.csv_file_name(_now())
    print(renderers.write_csv(rows, destination))
    return 0


def run_export_pdf(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the full PDF report."""
    document = export.build_full_report(
        _filtered(context, args),
        report_filter=translate_filter(args),
        mall_name=context.settings.mall_name,
        generated_at=_now(),
        user_name=args.user,
    )
    destination = args.output or context.settings.report_dir / document.file_name
    print(renderers.render_pdf(document, destination))
    return 0


def run_export_location_pdf(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Write the detailed PDF report for one location."""
    filtered = _filtered(context, args)
    floor = next(
        (summary for summary in reporting.summarize_floors(filtered) if summary.location == args.report_location),
        None,
    )
    if floor is None:
        raise core_logic.MissingReferenceError(f"No transactions for location: {args.report_location}")
    document = export.build_location_report(
        floor,
        filtered,
        mall_name=context.settings.mall_name,
        generated_at=_now(),
        user_name=args.user,
    )
    destination = args.output or context.settings.report_dir / document.file_name
    print(renderers.render_pdf(document, destination))
    return 0


def run_login(context: core_logic.RuntimeContext, args: argparse.Namespace) -> int:
    """Check credentials through the gateway."""
    result = asyncio.run(WorkbookGateway(context).validate_credentials(args.email, args.password))
    if result.success and result.user is not None:
        print(f"Welcome, {result.user.name} ({result.user.role})")
        return 0
    print(result.message or "Login failed")
    return 2


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, core_logic.BusinessRuleViolation):
        log.error("%s", error)
        return 2
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    log.error("%s", error)
    return 1


def persist_workbook(context: core_logic.RuntimeContext) -> None:
    """Persist workbook changes after successful execution."""
    try:
        core_logic.persist_context(context)
    except PermissionError as error:
        raise RuntimeError(str(error)) from error


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        context = load_runtime_context(getattr(args, "config", None))
        core_logic.ensure_schema_version(context)
        exit_code = dispatch_command(context, args, command_table)
        if exit_code == 0 and command_table[args.command].mutates:
            persist_workbook(context)
        return exit_code
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)
