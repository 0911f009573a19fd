"""Bulk upload parsing for comma-separated EMV datasets.

The first line is a header. Columns are mapped by exact, case-sensitive header
name, so column order is free; the five identifying columns are mandatory and
any metric column may be missing or blank. Whole-file problems raise
``BulkFormatError``; problems with individual rows are left to the row
validator so one bad line never blocks the rest.
"""

from __future__ import annotations

import csv
import io
from collections.abc import Iterable, Iterator

import structlog

from emv.bulk.models import BulkUpload, RawRow
from emv.domain.errors import BulkFormatError
from emv.domain.types import Metric

logger = structlog.get_logger()

CREATOR_NAME = "Creator Name"
PLATFORM = "Platform"
POST_TYPE = "Post Type"
CREATOR_SIZE = "Creator Size"
CONTENT_TOPIC = "Content Topic"

REQUIRED_HEADERS: tuple[str, ...] = (
    CREATOR_NAME,
    PLATFORM,
    POST_TYPE,
    CREATOR_SIZE,
    CONTENT_TOPIC,
)

# Header name -> metric, in template column order
METRIC_COLUMNS: dict[str, Metric] = {
    "Impressions": Metric.IMPRESSIONS,
    "Views": Metric.VIEWS,
    "Likes": Metric.LIKES,
    "Comments": Metric.COMMENTS,
    "Shares": Metric.SHARES,
    "Saves": Metric.SAVES,
    "Clicks": Metric.CLICKS,
    "Closeups": Metric.CLOSEUPS,
}

BULK_HEADERS: tuple[str, ...] = REQUIRED_HEADERS + tuple(METRIC_COLUMNS)

_TEMPLATE_ROWS: tuple[tuple[str, ...], ...] = (
    (
        "Example Creator 1", "instagram", "post", "micro", "beauty",
        "50000", "", "5000", "300", "100", "200", "", "",
    ),
    (
        "Example Creator 2", "tiktok", "video", "nano", "fashion",
        "", "100000", "15000", "800", "500", "300", "", "",
    ),
)


def _is_blank(cells: list[str]) -> bool:
    return all(not cell.strip() for cell in cells)


def open_bulk_csv(lines: Iterable[str]) -> tuple[tuple[str, ...], Iterator[RawRow]]:
    """Read the header of a bulk file and return a lazy iterator over its rows.

    Rows are produced on demand, so arbitrarily large files can be processed
    with bounded memory by feeding the iterator straight into
    :func:`emv.bulk.processor.iter_process`.

    Args:
        lines: Text lines of the file (an open file or ``io.StringIO`` works).

    Returns:
        A ``(headers, rows)`` pair.

    Raises:
        BulkFormatError: If the file is empty or lacks a required header.
    """
    reader = csv.reader(lines)
    header_cells: list[str] | None = None
    for cells in reader:
        if not _is_blank(cells):
            header_cells = cells
            break

    if header_cells is None:
        raise BulkFormatError("The CSV file must contain a header row and at least one data row")

    headers = tuple(cell.strip() for cell in header_cells)
    missing = [h for h in REQUIRED_HEADERS if h not in headers]
    if missing:
        raise BulkFormatError(f"Missing required headers: {', '.join(missing)}")

    def rows() -> Iterator[RawRow]:
        index = 0
        for cells in reader:
            if _is_blank(cells):
                continue
            index += 1
            yield RawRow(row_index=index, cells=tuple(cell.strip() for cell in cells))

    return headers, rows()


def decode_upload(data: bytes) -> str:
    """Decode an uploaded bulk file, dropping a UTF-8 byte order mark.

    Raises:
        BulkFormatError: If the bytes are not valid UTF-8.
    """
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        logger.warning("Bulk upload not UTF-8", position=exc.start)
        raise BulkFormatError(
            f"The CSV file must be UTF-8 encoded (invalid byte at position {exc.start})"
        ) from exc


def parse_bulk_csv(text: str) -> BulkUpload:
    """Parse a complete bulk file held in memory.

    Args:
        text: The full CSV text.

    Returns:
        The ``BulkUpload`` with headers and every non-blank data row.

    Raises:
        BulkFormatError: If the header is missing or incomplete, or there are
            no data rows.
    """
    headers, row_iter = open_bulk_csv(io.StringIO(text))
    rows = tuple(row_iter)
    if not rows:
        raise BulkFormatError("The CSV file must contain a header row and at least one data row")

    logger.info("Bulk upload parsed", rows=len(rows), columns=len(headers))
    return BulkUpload(headers=headers, rows=rows)


def build_template_csv() -> str:
    """Return the downloadable bulk template with two example rows."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(BULK_HEADERS)
    writer.writerows(_TEMPLATE_ROWS)
    return buffer.getvalue()
