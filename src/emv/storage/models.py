"""Records returned by the EMV persistence layer."""

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from emv.domain.models import EMVResult, EngagementCounts, Selectors


class CalculationRecord(BaseModel):
    """A stored calculation: the inputs and the result exactly as computed.

    The result is persisted verbatim and never recomputed on read, so later
    rate-table changes do not rewrite history.
    """

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: str
    created_at: str = Field(description="ISO 8601 timestamp")
    creator_name: str | None = None
    selectors: Selectors
    counts: EngagementCounts
    result: EMVResult


class CustomTopic(BaseModel):
    """A user-defined content topic and its multiplier."""

    model_config = ConfigDict(frozen=True)

    id: int
    name: str
    factor: float
    created_at: str = Field(description="ISO 8601 timestamp")


class RateChange(BaseModel):
    """One change-log entry: a single rate or factor that was edited."""

    model_config = ConfigDict(frozen=True)

    id: int
    created_at: str = Field(description="ISO 8601 timestamp")
    user_id: str
    section: str
    action: Literal["add", "modify", "remove", "reset"]
    entry: str = Field(description="Edited key; base rates use platform/post_type/metric")
    old_value: float | None = None
    new_value: float | None = None
