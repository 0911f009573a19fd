"""Validation of individual bulk upload rows.

Bulk rows are checked more leniently than single calculations: only the
platform, post type and one volume metric (views or impressions) are
mandatory. Creator size and content topic are checked only when present.

Checks run in a fixed order and stop at the first failure:

1. Column count matches the header.
2. Platform present and supported.
3. Post type present.
4. Creator size, if present, is a known tier.
5. Content topic, if present, is a built-in or registered custom topic.
6. Post type is offered on the platform.
7. Views or impressions present as a non-negative number.
8. Every other populated metric cell is a non-negative number.

Failures are returned as a :class:`Rejection`, never raised.
"""

from __future__ import annotations

import math

from emv.bulk.ingestion import (
    CONTENT_TOPIC,
    CREATOR_NAME,
    CREATOR_SIZE,
    METRIC_COLUMNS,
    PLATFORM,
    POST_TYPE,
)
from emv.bulk.models import ParsedRow, RawRow
from emv.domain.errors import RejectionCode
from emv.domain.models import EngagementCounts, Rejection, Selectors
from emv.domain.types import VOLUME_METRICS, CreatorSize, Platform
from emv.pricing.rate_table import RateTable
from emv.pricing.schema import is_valid_combination, post_types_for

_VOLUME_COLUMNS: tuple[str, ...] = tuple(
    column for column, metric in METRIC_COLUMNS.items() if metric in VOLUME_METRICS
)


def parse_count(value: str) -> float | None:
    """Parse a metric cell as a finite, non-negative number.

    Returns:
        The number, or ``None`` when the cell is not a valid count.
    """
    try:
        number = float(value)
    except ValueError:
        return None
    if not math.isfinite(number) or number < 0:
        return None
    return number


def validate_row(
    raw_row: RawRow,
    expected_columns: tuple[str, ...],
    table: RateTable,
) -> ParsedRow | Rejection:
    """Validate one bulk row and convert it into calculation inputs.

    Args:
        raw_row: The row as read from the upload.
        expected_columns: The header of the upload.
        table: Rate table used to recognize content topics.

    Returns:
        A ``ParsedRow`` when every check passes, otherwise the ``Rejection``
        of the first failing check.
    """
    if len(raw_row.cells) != len(expected_columns):
        return Rejection.validation(
            RejectionCode.MALFORMED_ROW,
            f"Row has {len(raw_row.cells)} columns, expected {len(expected_columns)}",
        )

    fields = raw_row.fields(expected_columns)

    platform_value = fields.get(PLATFORM, "").lower()
    if not platform_value:
        return Rejection.validation(RejectionCode.MISSING_PLATFORM, "Platform is required")
    if platform_value not in {p.value for p in Platform}:
        return Rejection.validation(
            RejectionCode.INVALID_PLATFORM,
            f"Platform must be one of: {', '.join(p.value for p in Platform)}",
        )

    post_type_value = fields.get(POST_TYPE, "").lower()
    if not post_type_value:
        return Rejection.validation(RejectionCode.MISSING_POST_TYPE, "Post Type is required")

    creator_size_value = fields.get(CREATOR_SIZE, "").lower()
    if creator_size_value and creator_size_value not in {s.value for s in CreatorSize}:
        return Rejection.validation(
            RejectionCode.INVALID_CREATOR_SIZE,
            f"Creator Size must be one of: {', '.join(s.value for s in CreatorSize)}",
        )

    topic_value = fields.get(CONTENT_TOPIC, "")
    if topic_value and not table.has_topic(topic_value):
        return Rejection.validation(
            RejectionCode.INVALID_CONTENT_TOPIC,
            f"Content Topic '{topic_value}' is not a known or custom topic",
        )

    if not is_valid_combination(platform_value, post_type_value):
        allowed = ", ".join(post_types_for(platform_value))
        return Rejection.validation(
            RejectionCode.INVALID_POST_TYPE_FOR_PLATFORM,
            f"Invalid Post Type for {platform_value}. Must be one of: {allowed}",
        )

    has_volume = any(
        fields.get(column) and parse_count(fields[column]) is not None
        for column in _VOLUME_COLUMNS
    )
    if not has_volume:
        return Rejection.validation(
            RejectionCode.MISSING_VOLUME_METRIC,
            f"{' or '.join(_VOLUME_COLUMNS)} must be provided as a non-negative number",
        )

    counts: dict[str, float] = {}
    for column, metric in METRIC_COLUMNS.items():
        cell = fields.get(column, "")
        if not cell:
            continue
        number = parse_count(cell)
        if number is None:
            return Rejection.validation(
                RejectionCode.INVALID_METRIC_VALUE,
                f"{column} must be a non-negative number, got '{cell}'",
            )
        counts[metric.value] = number

    return ParsedRow(
        row_index=raw_row.row_index,
        creator_name=fields.get(CREATOR_NAME, ""),
        selectors=Selectors(
            platform=platform_value,
            post_type=post_type_value,
            creator_size=creator_size_value or None,
            content_topic=topic_value or None,
        ),
        counts=EngagementCounts.model_validate(counts),
    )
