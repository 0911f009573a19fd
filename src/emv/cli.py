"""Command-line interface for EMV calculations.

Subcommands:

- ``calculate`` -- price one post from selector and metric flags
- ``bulk FILE`` -- process a bulk CSV upload, optionally exporting or saving it
- ``history``   -- list stored calculations (table or JSON)
- ``template``  -- print the bulk upload template
- ``rates``     -- show, edit or reset the rate table and list its change log

Usage::

    emv calculate --platform instagram --post-type post --creator-size micro \\
        --content-topic beauty --impressions 10000 --likes 500
    emv bulk uploads.csv --output results.csv
    emv history --format json --limit 10
    emv rates set creator_factors nano 0.85
"""

from __future__ import annotations

import argparse
import json
import sqlite3
import sys
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from emv.app import build_registry, configure_logging, restore_stored_settings
from emv.bulk.ingestion import build_template_csv, open_bulk_csv
from emv.bulk.models import BulkReport
from emv.bulk.processor import process_batch
from emv.config import Settings, get_settings
from emv.domain.errors import BulkFormatError, EMVValidationError
from emv.domain.models import EMVResult, EngagementCounts, Rejection, Selectors
from emv.domain.types import CreatorSize, Metric, Platform, PostType
from emv.export.csv_export import bulk_results_to_csv, format_currency, format_factor
from emv.pricing.engine import EMVCalculator
from emv.pricing.rate_table import EDITABLE_SECTIONS, RateTable
from emv.pricing.registry import RateTableRegistry
from emv.storage.models import CalculationRecord, RateChange
from emv.storage.store import (
    CalculationStore,
    RateTableStore,
    close_emv_db,
    init_emv_db,
)


def build_parser() -> argparse.ArgumentParser:
    """Create the argument parser with all subcommands.

    Returns:
        A configured :class:`argparse.ArgumentParser`.
    """
    parser = argparse.ArgumentParser(prog="emv", description="Earned Media Value calculator")
    parser.add_argument(
        "--db",
        type=str,
        default=None,
        help="Path to the EMV database (default: EMV_DATABASE_PATH or data/emv.db)",
    )
    parser.add_argument(
        "--user",
        type=str,
        default=None,
        help="User ID that owns saved calculations and is recorded on rate table edits",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    calc = subparsers.add_parser("calculate", help="Calculate EMV for a single post")
    calc.add_argument("--platform", required=True, choices=[p.value for p in Platform])
    calc.add_argument("--post-type", required=True, choices=[p.value for p in PostType])
    calc.add_argument("--creator-size", choices=[c.value for c in CreatorSize])
    calc.add_argument("--content-topic", type=str)
    for metric in Metric:
        calc.add_argument(f"--{metric.value}", type=float, help=f"{metric.value} count")
    calc.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        dest="output_format",
        help="Output format (default: table)",
    )
    calc.add_argument("--save", action="store_true", help="Store the calculation")

    bulk = subparsers.add_parser("bulk", help="Process a bulk CSV upload")
    bulk.add_argument("file", type=Path, help="CSV file with the bulk template headers")
    bulk.add_argument("--output", type=Path, help="Write the results CSV to this path")
    bulk.add_argument(
        "--save",
        action="store_true",
        help="Store successful rows (refused if any row has errors)",
    )

    history = subparsers.add_parser("history", help="List stored calculations")
    history.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        dest="output_format",
        help="Output format (default: table)",
    )
    history.add_argument("--limit", type=int, default=50, help="Maximum results (default: 50)")

    subparsers.add_parser("template", help="Print the bulk upload template")

    rates = subparsers.add_parser("rates", help="Show or edit the rate table")
    rates_sub = rates.add_subparsers(dest="rates_command", required=True)

    show = rates_sub.add_parser("show", help="Print the active rates and factors")
    show.add_argument("--section", choices=EDITABLE_SECTIONS, help="Only this section")
    show.add_argument(
        "--format",
        choices=["table", "json"],
        default="table",
        dest="output_format",
        help="Output format (default: table)",
    )

    set_rate = rates_sub.add_parser("set", help="Change one rate or factor")
    set_rate.add_argument("section", choices=EDITABLE_SECTIONS)
    set_rate.add_argument("entry", help="Factor key, or platform/post_type/metric for base_rates")
    set_rate.add_argument("value", type=float)

    reset = rates_sub.add_parser("reset", help="Restore default rates and factors")
    reset.add_argument("section", nargs="?", choices=EDITABLE_SECTIONS, help="Only this section")

    changes = rates_sub.add_parser("changes", help="List the rate table change log")
    changes.add_argument("--limit", type=int, default=50, help="Maximum entries (default: 50)")

    return parser


def format_result(result: EMVResult) -> str:
    """Format a single result as a breakdown table with a total line."""
    lines = [
        f"Platform: {result.platform}  Post type: {result.post_type}",
        f"Factors: creator {format_factor(result.creator_factor)}  "
        f"post type {format_factor(result.post_type_factor)}  "
        f"topic {format_factor(result.topic_factor)}",
        "",
        f"{'Metric':<14}{'Count':>14}{'Base':>10}{'EMV':>18}",
    ]
    for item in result.breakdown:
        lines.append(
            f"{item.metric.value:<14}{item.count:>14,.0f}{item.base_value:>10}"
            f"{format_currency(item.emv):>18}"
        )
    lines.append(f"{'Total EMV':<38}{format_currency(result.total_emv):>18}")
    return "\n".join(lines)


def format_report(report: BulkReport) -> str:
    """Format a bulk report as one status line per row plus a summary."""
    lines = []
    for row in report.rows:
        emv = format_currency(row.result.total_emv) if row.result else "N/A"
        lines.append(f"{row.row_index:>5}  {row.creator_name[:24]:<24}  {emv:>16}  {row.status}")
    lines.append(
        f"{report.total} rows: {report.success_count} succeeded, "
        f"{report.error_count} failed, total EMV {format_currency(report.total_emv)}"
    )
    return "\n".join(lines)


def format_history(records: list[CalculationRecord]) -> str:
    """Format stored calculations as a table, newest first."""
    if not records:
        return "No results found."

    headers = ["ID", "Date", "Platform", "Post Type", "Creator", "Total EMV"]
    widths = [6, 20, 10, 10, 20, 16]
    header_line = "  ".join(h.ljust(w) for h, w in zip(headers, widths, strict=True))
    lines = [header_line, "-" * len(header_line)]
    for record in records:
        cells = [
            str(record.id),
            record.created_at[:19],
            record.selectors.platform.value,
            record.selectors.post_type.value,
            (record.creator_name or "")[: widths[4]],
            format_currency(record.result.total_emv),
        ]
        lines.append("  ".join(c.ljust(w) for c, w in zip(cells, widths, strict=True)))
    return "\n".join(lines)


def _calculate(
    args: argparse.Namespace, calculator: EMVCalculator, store: CalculationStore, user: str
) -> int:
    try:
        selectors = Selectors(
            platform=args.platform,
            post_type=args.post_type,
            creator_size=args.creator_size,
            content_topic=args.content_topic,
        )
    except ValidationError as exc:
        print(f"Invalid selection: {exc.errors()[0]['msg']}", file=sys.stderr)
        return 2

    values: dict[str, Any] = {metric.value: getattr(args, metric.value) for metric in Metric}
    outcome = calculator.evaluate(selectors, values)
    if isinstance(outcome, Rejection):
        print(f"Error: {outcome.message}", file=sys.stderr)
        return 1

    if args.output_format == "json":
        print(json.dumps(outcome.model_dump(mode="json"), indent=2))
    else:
        print(format_result(outcome))

    if args.save:
        record = store.save(user, selectors, EngagementCounts.from_mapping(values), outcome)
        print(f"Saved calculation {record.id}", file=sys.stderr)
    return 0


def _bulk(
    args: argparse.Namespace, calculator: EMVCalculator, store: CalculationStore, user: str
) -> int:
    try:
        with args.file.open(encoding="utf-8-sig", newline="") as handle:
            headers, rows = open_bulk_csv(handle)
            report = process_batch(rows, calculator, headers)
    except UnicodeDecodeError as exc:
        print(
            f"Error: The CSV file must be UTF-8 encoded (invalid byte at position {exc.start})",
            file=sys.stderr,
        )
        return 1
    except (OSError, BulkFormatError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    if report.total == 0:
        print(
            "Error: The CSV file must contain a header row and at least one data row",
            file=sys.stderr,
        )
        return 1

    print(format_report(report))
    if args.output:
        args.output.write_text(bulk_results_to_csv(report), encoding="utf-8")
        print(f"Results written to {args.output}", file=sys.stderr)

    if args.save:
        if report.has_errors:
            print(
                f"Not saved: {report.error_count} row(s) have errors; fix them before saving",
                file=sys.stderr,
            )
            return 1
        saved = store.save_many(user, report.successful_rows())
        print(f"Saved {len(saved)} calculation(s)", file=sys.stderr)
    return 1 if report.has_errors else 0


def _history(args: argparse.Namespace, store: CalculationStore, user: str) -> int:
    records = store.list_for_user(user, limit=args.limit)
    if args.output_format == "json":
        print(json.dumps([record.model_dump(mode="json") for record in records], indent=2))
    else:
        print(format_history(records))
    return 0


def format_rate_table(table: RateTable, sections: tuple[str, ...] = EDITABLE_SECTIONS) -> str:
    """Format rate table sections as ``entry  value`` lines under a heading each."""
    lines: list[str] = []
    for section in sections:
        if lines:
            lines.append("")
        lines.append(section)
        for entry, value in table.flat_section(section).items():
            lines.append(f"  {entry:<36}{value:>10g}")
    return "\n".join(lines)


def format_changes(changes: list[RateChange]) -> str:
    """Format change log entries as a table, newest first."""
    if not changes:
        return "No changes recorded."

    lines = []
    for change in changes:
        old = "-" if change.old_value is None else f"{change.old_value:g}"
        new = "-" if change.new_value is None else f"{change.new_value:g}"
        lines.append(
            f"{change.created_at[:19]}  {change.user_id:<12}  {change.action:<7}"
            f"{change.section}.{change.entry}: {old} -> {new}"
        )
    return "\n".join(lines)


def _rate_update(section: str, entry: str, value: float) -> dict[str, Any]:
    if section != "base_rates":
        return {section: {entry: value}}
    parts = entry.split("/")
    if len(parts) != 3:
        raise ValueError("base_rates entries are written platform/post_type/metric")
    platform, post_type, metric = parts
    return {section: {platform: {post_type: {metric: value}}}}


def _rates(
    args: argparse.Namespace,
    registry: RateTableRegistry,
    rate_store: RateTableStore,
    user: str,
) -> int:
    if args.rates_command == "show":
        table = registry.current()
        sections = (args.section,) if args.section else EDITABLE_SECTIONS
        if args.output_format == "json":
            print(json.dumps({s: table.model_dump(mode="json")[s] for s in sections}, indent=2))
        else:
            print(format_rate_table(table, sections))
        return 0

    if args.rates_command == "changes":
        print(format_changes(rate_store.list_changes(limit=args.limit)))
        return 0

    try:
        if args.rates_command == "set":
            update = _rate_update(args.section, args.entry, args.value)
            previous, current = registry.apply_updates(update)
        elif args.section:
            previous, current = registry.reset_section(args.section)
        else:
            previous, current = registry.reset()
    except (ValueError, EMVValidationError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    changes = rate_store.record(user, previous, current, reset=args.rates_command == "reset")
    print(format_changes(changes))
    return 0


def _open_db(settings: Settings, db: str | None) -> sqlite3.Connection:
    db_path = Path(db) if db else settings.database_path
    if not db_path.exists():
        db_path.parent.mkdir(parents=True, exist_ok=True)
    return init_emv_db(db_path)


def main(argv: list[str] | None = None) -> int:
    """Parse arguments, run the chosen subcommand, and return an exit code."""
    args = build_parser().parse_args(argv)

    if args.command == "template":
        sys.stdout.write(build_template_csv())
        return 0

    settings = get_settings()
    configure_logging(production=settings.production, stream=sys.stderr)
    user = args.user or settings.default_user_id
    conn = _open_db(settings, args.db)
    try:
        store = CalculationStore(conn)
        if args.command == "history":
            return _history(args, store, user)

        registry = build_registry(settings)
        restore_stored_settings(conn, registry)
        if args.command == "rates":
            return _rates(args, registry, RateTableStore(conn), user)

        calculator = EMVCalculator(registry)
        if args.command == "calculate":
            return _calculate(args, calculator, store, user)
        return _bulk(args, calculator, store, user)
    finally:
        close_emv_db(conn)


if __name__ == "__main__":
    sys.exit(main())
