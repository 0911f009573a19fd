"""Bulk EMV uploads: CSV parsing, row validation, and batch processing."""

from emv.bulk.ingestion import (
    BULK_HEADERS,
    METRIC_COLUMNS,
    REQUIRED_HEADERS,
    build_template_csv,
    decode_upload,
    open_bulk_csv,
    parse_bulk_csv,
)
from emv.bulk.models import BulkReport, BulkRow, BulkUpload, ParsedRow, RawRow
from emv.bulk.processor import iter_process, process_batch, process_csv, process_row
from emv.bulk.validator import parse_count, validate_row

__all__ = [
    "BULK_HEADERS",
    "METRIC_COLUMNS",
    "REQUIRED_HEADERS",
    "BulkReport",
    "BulkRow",
    "BulkUpload",
    "ParsedRow",
    "RawRow",
    "build_template_csv",
    "decode_upload",
    "iter_process",
    "open_bulk_csv",
    "parse_bulk_csv",
    "parse_count",
    "process_batch",
    "process_csv",
    "process_row",
    "validate_row",
]
