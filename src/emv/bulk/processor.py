"""Bulk batch processor: validate and price every row of an upload independently.

A row's failure is recorded on that row and processing moves on; the output
always has one entry per input row, in input order. Only configuration errors
(a broken rate table) abort a batch.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator

import structlog

from emv.bulk.ingestion import decode_upload, parse_bulk_csv
from emv.bulk.models import BulkReport, BulkRow, RawRow
from emv.bulk.validator import validate_row
from emv.domain.models import Rejection
from emv.observability.metrics import BULK_ROWS
from emv.pricing.engine import EMVCalculator

logger = structlog.get_logger()


def process_row(
    raw_row: RawRow,
    calculator: EMVCalculator,
    expected_columns: tuple[str, ...],
) -> BulkRow:
    """Validate and price a single row.

    Args:
        raw_row: The row to process.
        calculator: Engine bound to the rate table for this batch.
        expected_columns: The header of the upload.

    Returns:
        A ``BulkRow`` carrying either the result or the rejection.
    """
    raw_fields = raw_row.fields(expected_columns)
    parsed = validate_row(raw_row, expected_columns, calculator.table)

    if isinstance(parsed, Rejection):
        BULK_ROWS.labels(status="error").inc()
        return BulkRow(
            row_index=raw_row.row_index,
            raw_fields=raw_fields,
            creator_name=raw_fields.get("Creator Name", ""),
            error=parsed,
        )

    outcome = calculator.evaluate(parsed.selectors, parsed.counts)
    common = {
        "row_index": parsed.row_index,
        "raw_fields": raw_fields,
        "creator_name": parsed.creator_name,
        "selectors": parsed.selectors,
        "counts": parsed.counts,
    }
    if isinstance(outcome, Rejection):
        BULK_ROWS.labels(status="error").inc()
        return BulkRow(**common, error=outcome)

    BULK_ROWS.labels(status="success").inc()
    return BulkRow(**common, result=outcome)


def iter_process(
    rows: Iterable[RawRow],
    calculator: EMVCalculator,
    expected_columns: tuple[str, ...],
) -> Iterator[BulkRow]:
    """Lazily process rows, yielding one ``BulkRow`` per input row.

    The rate table is snapshotted once, so every row of the batch is priced
    against the same table even if it is replaced mid-batch.

    Args:
        rows: Rows to process; may be a lazy iterator.
        calculator: The calculation engine.
        expected_columns: The header of the upload.

    Yields:
        Processed rows in input order.
    """
    snapshot = EMVCalculator(calculator.table)
    for raw_row in rows:
        yield process_row(raw_row, snapshot, expected_columns)


def process_batch(
    rows: Iterable[RawRow],
    calculator: EMVCalculator,
    expected_columns: tuple[str, ...],
) -> BulkReport:
    """Process a whole batch and aggregate the outcome.

    A batch in which every row failed is still a valid report; callers decide
    whether errors should block follow-up actions such as saving.

    Args:
        rows: Rows to process.
        calculator: The calculation engine.
        expected_columns: The header of the upload.

    Returns:
        A ``BulkReport`` with one row per input row.
    """
    report = BulkReport(rows=tuple(iter_process(rows, calculator, expected_columns)))
    logger.info(
        "Bulk batch processed",
        total=report.total,
        succeeded=report.success_count,
        failed=report.error_count,
    )
    return report


def process_csv(text: str | bytes, calculator: EMVCalculator) -> BulkReport:
    """Parse and process a complete bulk CSV upload.

    Raw bytes are decoded as UTF-8 first.

    Raises:
        BulkFormatError: If the file as a whole cannot be read.
    """
    if isinstance(text, bytes):
        text = decode_upload(text)
    upload = parse_bulk_csv(text)
    return process_batch(upload.rows, calculator, upload.headers)
