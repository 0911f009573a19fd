"""Pydantic v2 models for bulk EMV uploads and their per-row outcomes."""

from pydantic import BaseModel, ConfigDict, model_validator

from emv.domain.models import EMVResult, EngagementCounts, Rejection, Selectors


class RawRow(BaseModel):
    """One data line of a bulk upload, as read from the file.

    Attributes:
        row_index: 1-based position among the data rows (header excluded).
        cells: Cell values with surrounding whitespace stripped.
    """

    model_config = ConfigDict(frozen=True)

    row_index: int
    cells: tuple[str, ...]

    def fields(self, columns: tuple[str, ...]) -> dict[str, str]:
        """Map column names to cell values. Extra or missing cells are dropped."""
        return dict(zip(columns, self.cells, strict=False))


class BulkUpload(BaseModel):
    """A parsed bulk file: its header and data rows."""

    model_config = ConfigDict(frozen=True)

    headers: tuple[str, ...]
    rows: tuple[RawRow, ...]


class ParsedRow(BaseModel):
    """A bulk row that passed validation and is ready for calculation."""

    model_config = ConfigDict(frozen=True)

    row_index: int
    creator_name: str
    selectors: Selectors
    counts: EngagementCounts


class BulkRow(BaseModel):
    """Outcome of processing one bulk row.

    After processing exactly one of ``result`` and ``error`` is set. Rows that
    failed validation carry no ``selectors``/``counts``.
    """

    model_config = ConfigDict(frozen=True)

    row_index: int
    raw_fields: dict[str, str]
    creator_name: str = ""
    selectors: Selectors | None = None
    counts: EngagementCounts | None = None
    result: EMVResult | None = None
    error: Rejection | None = None

    @model_validator(mode="after")
    def result_and_error_are_exclusive(self) -> "BulkRow":
        """A row cannot both succeed and fail."""
        if self.result is not None and self.error is not None:
            raise ValueError("a bulk row cannot carry both a result and an error")
        return self

    @property
    def succeeded(self) -> bool:
        """Whether the row produced an EMV result."""
        return self.result is not None

    @property
    def status(self) -> str:
        """Display status: ``Success``, ``Error: <reason>`` or ``Not Calculated``."""
        if self.result is not None:
            return "Success"
        if self.error is not None:
            return f"Error: {self.error.message}"
        return "Not Calculated"


class BulkReport(BaseModel):
    """Fixed-shape report of a processed batch, one entry per input row."""

    model_config = ConfigDict(frozen=True)

    rows: tuple[BulkRow, ...]

    @property
    def total(self) -> int:
        """Number of rows processed."""
        return len(self.rows)

    @property
    def success_count(self) -> int:
        """Number of rows with a result."""
        return sum(1 for row in self.rows if row.result is not None)

    @property
    def error_count(self) -> int:
        """Number of rows with an error."""
        return sum(1 for row in self.rows if row.error is not None)

    @property
    def has_errors(self) -> bool:
        """Whether any row failed; callers use this to block bulk saves."""
        return self.error_count > 0

    @property
    def total_emv(self) -> float:
        """Sum of total EMV across successful rows."""
        return sum((row.result.total_emv for row in self.rows if row.result is not None), 0.0)

    def successful_rows(self) -> list[BulkRow]:
        """Return the rows that produced a result, in input order."""
        return [row for row in self.rows if row.result is not None]
