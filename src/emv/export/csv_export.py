"""CSV export of bulk results and stored calculations.

Monetary values are rounded half-up to cents here, for display only; the
underlying results keep full float precision.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Sequence
from decimal import ROUND_HALF_UP, Decimal

from emv.bulk.models import BulkReport
from emv.domain.types import Metric
from emv.storage.models import CalculationRecord

TWO_PLACES = Decimal("0.01")

BULK_RESULT_HEADERS: tuple[str, ...] = (
    "Creator Name",
    "Platform",
    "Post Type",
    "Creator Size",
    "Content Topic",
    "Total EMV",
    "Creator Factor",
    "Post Type Factor",
    "Topic Factor",
    "Status",
)

HISTORY_HEADERS: tuple[str, ...] = (
    "ID",
    "Date",
    "Platform",
    "Post Type",
    "Creator Size",
    "Content Topic",
    "Impressions",
    "Views",
    "Likes",
    "Comments",
    "Shares",
    "Saves",
    "Clicks",
    "Closeups",
    "Creator Factor",
    "Post Type Factor",
    "Topic Factor",
    "Total EMV",
    "Breakdown Types",
    "Breakdown Values",
)


def round_money(value: float) -> Decimal:
    """Round a float amount to cents with ROUND_HALF_UP."""
    return Decimal(repr(value)).quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def format_currency(value: float) -> str:
    """Format an amount as dollars with thousands separators, e.g. ``$11,466.00``."""
    return f"${round_money(value):,}"


def format_factor(value: float) -> str:
    """Format a multiplier to two decimal places."""
    return f"{round_money(value)}"


def _count(value: float | None) -> str:
    if value is None:
        return "0"
    return str(int(value)) if value.is_integer() else repr(value)


def _write(rows: Iterable[Sequence[object]], quote_all: bool = False) -> str:
    buffer = io.StringIO()
    writer = csv.writer(
        buffer,
        lineterminator="\n",
        quoting=csv.QUOTE_ALL if quote_all else csv.QUOTE_MINIMAL,
    )
    writer.writerows(rows)
    return buffer.getvalue()


def bulk_results_to_csv(report: BulkReport) -> str:
    """Render a bulk report with one line per input row.

    Failed rows keep their identifying columns from the upload, show ``N/A``
    for the computed columns, and carry the rejection reason in ``Status``.
    """
    lines: list[Sequence[object]] = [BULK_RESULT_HEADERS]
    for row in report.rows:
        fields = row.raw_fields
        identity = [
            row.creator_name,
            fields.get("Platform", "").lower(),
            fields.get("Post Type", "").lower(),
            fields.get("Creator Size", "").lower(),
            fields.get("Content Topic", ""),
        ]
        if row.result is not None:
            computed = [
                format_currency(row.result.total_emv),
                format_factor(row.result.creator_factor),
                format_factor(row.result.post_type_factor),
                format_factor(row.result.topic_factor),
            ]
        else:
            computed = ["N/A"] * 4
        lines.append([*identity, *computed, row.status])
    return _write(lines)


def calculations_to_csv(records: Iterable[CalculationRecord]) -> str:
    """Render stored calculations as a history export, one line per calculation."""
    lines: list[Sequence[object]] = [HISTORY_HEADERS]
    for record in records:
        selectors = record.selectors
        result = record.result
        lines.append(
            [
                record.id,
                record.created_at[:10],
                selectors.platform.value,
                selectors.post_type.value,
                selectors.creator_size.value if selectors.creator_size else "",
                selectors.content_topic or "",
                *(_count(getattr(record.counts, metric.value)) for metric in Metric),
                result.creator_factor,
                result.post_type_factor,
                result.topic_factor,
                result.total_emv,
                "; ".join(item.metric.value for item in result.breakdown),
                "; ".join(format_currency(item.emv) for item in result.breakdown),
            ]
        )
    return _write(lines, quote_all=True)


def calculation_to_csv(record: CalculationRecord) -> str:
    """Render a single stored calculation as a two-column field/value sheet."""
    selectors = record.selectors
    result = record.result
    lines: list[Sequence[object]] = [
        ("Field", "Value"),
        ("Calculation ID", record.id),
        ("Date", record.created_at[:10]),
        ("Platform", selectors.platform.value),
        ("Post Type", selectors.post_type.value),
        ("Creator Size", selectors.creator_size.value if selectors.creator_size else ""),
        ("Content Topic", selectors.content_topic or ""),
    ]
    for metric, count in record.counts.populated().items():
        lines.append((metric.value.capitalize(), _count(count)))
    lines.extend(
        [
            ("Creator Factor", result.creator_factor),
            ("Post Type Factor", result.post_type_factor),
            ("Topic Factor", result.topic_factor),
            ("Total EMV", format_currency(result.total_emv)),
            ("", ""),
            ("Breakdown Details", ""),
        ]
    )
    for item in result.breakdown:
        lines.append((f"{item.metric.value} ({_count(item.count)})", format_currency(item.emv)))
    return _write(lines, quote_all=True)
