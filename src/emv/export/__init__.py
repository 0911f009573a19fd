"""Presentation helpers: currency formatting and CSV exports."""

from emv.export.csv_export import (
    BULK_RESULT_HEADERS,
    HISTORY_HEADERS,
    bulk_results_to_csv,
    calculation_to_csv,
    calculations_to_csv,
    format_currency,
    format_factor,
    round_money,
)

__all__ = [
    "BULK_RESULT_HEADERS",
    "HISTORY_HEADERS",
    "bulk_results_to_csv",
    "calculation_to_csv",
    "calculations_to_csv",
    "format_currency",
    "format_factor",
    "round_money",
]
