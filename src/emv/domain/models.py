"""Pydantic v2 models for EMV selectors, engagement counts, and results."""

import math
from collections.abc import Mapping

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from emv.domain.errors import (
    EMVValidationError,
    ErrorCategory,
    NoEngagementError,
    RejectionCode,
)
from emv.domain.types import CreatorSize, Metric, Platform, PostType, normalize_topic


class Selectors(BaseModel):
    """Categorical inputs that pick the rates and multipliers for a calculation.

    Platform, post type and creator size are matched case-insensitively.
    Creator size and content topic may be absent (bulk uploads allow it), in
    which case the calculation engine rejects the selection.
    """

    model_config = ConfigDict(frozen=True)

    platform: Platform
    post_type: PostType
    creator_size: CreatorSize | None = None
    content_topic: str | None = None

    @field_validator("platform", "post_type", "creator_size", mode="before")
    @classmethod
    def lowercase_enum_values(cls, v: object) -> object:
        """Accept enum values regardless of case and surrounding whitespace."""
        if isinstance(v, str):
            return v.strip().lower() or None
        return v

    @field_validator("content_topic", mode="before")
    @classmethod
    def normalize_content_topic(cls, v: object) -> object:
        """Store topics under their lower_snake_case key; blank means absent."""
        if isinstance(v, str):
            return normalize_topic(v) or None
        return v


class EngagementCounts(BaseModel):
    """Engagement counts keyed by the closed set of known metrics.

    Unknown keys are dropped at construction. A metric that is absent and a
    metric whose count is zero both contribute nothing to a calculation.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    impressions: float | None = None
    views: float | None = None
    likes: float | None = None
    comments: float | None = None
    shares: float | None = None
    saves: float | None = None
    clicks: float | None = None
    closeups: float | None = None

    @field_validator(*[m.value for m in Metric])
    @classmethod
    def count_must_be_non_negative(cls, v: float | None) -> float | None:
        """Reject negative, NaN and infinite counts."""
        if v is not None and (not math.isfinite(v) or v < 0):
            raise ValueError("engagement counts must be finite, non-negative numbers")
        return v

    @classmethod
    def from_mapping(cls, values: Mapping[str, object]) -> "EngagementCounts":
        """Build counts from an arbitrary mapping, keeping only known metrics.

        Keys are matched case-insensitively. ``None`` and empty-string values
        are treated as absent.

        Args:
            values: Mapping of metric name to count.

        Returns:
            The validated ``EngagementCounts``.
        """
        known = {m.value for m in Metric}
        picked: dict[str, object] = {}
        for key, value in values.items():
            name = str(key).strip().lower()
            if name in known and value not in (None, ""):
                picked[name] = value
        return cls.model_validate(picked)

    def get(self, metric: Metric) -> float:
        """Return the count for *metric*, or ``0.0`` when absent."""
        value: float | None = getattr(self, metric.value)
        return value if value is not None else 0.0

    def populated(self) -> dict[Metric, float]:
        """Return only the metrics that were supplied, in canonical metric order."""
        return {
            metric: getattr(self, metric.value)
            for metric in Metric
            if getattr(self, metric.value) is not None
        }


class EMVBreakdownItem(BaseModel):
    """Contribution of a single metric to the total EMV."""

    model_config = ConfigDict(frozen=True)

    metric: Metric
    count: float
    base_value: float
    emv: float


class EMVResult(BaseModel):
    """Outcome of a successful EMV calculation.

    ``total_emv`` is the sum of the breakdown contributions. Values are not
    rounded; rounding happens only when results are displayed or exported.
    """

    model_config = ConfigDict(frozen=True)

    platform: Platform
    post_type: PostType
    creator_factor: float
    post_type_factor: float
    topic_factor: float
    total_emv: float
    breakdown: tuple[EMVBreakdownItem, ...]

    @model_validator(mode="after")
    def total_must_match_breakdown(self) -> "EMVResult":
        """Ensure total_emv equals the sum of breakdown contributions."""
        expected = sum(item.emv for item in self.breakdown)
        if not math.isclose(self.total_emv, expected, rel_tol=1e-9, abs_tol=1e-9):
            raise ValueError(
                f"total_emv ({self.total_emv}) does not match breakdown sum ({expected})"
            )
        return self


class Rejection(BaseModel):
    """Tagged failure attached to a row or calculation instead of an exception.

    Attributes:
        code: Machine-readable rejection reason.
        category: Whether the input was invalid or simply had no engagement.
        message: Human-readable reason, suitable for display.
    """

    model_config = ConfigDict(frozen=True)

    code: RejectionCode
    category: ErrorCategory
    message: str

    @classmethod
    def validation(cls, code: RejectionCode, message: str) -> "Rejection":
        """Build a validation-category rejection."""
        return cls(code=code, category=ErrorCategory.VALIDATION, message=message)

    @classmethod
    def from_error(cls, error: EMVValidationError | NoEngagementError) -> "Rejection":
        """Convert a recoverable domain error into a rejection."""
        return cls(code=error.code, category=error.category, message=str(error))
