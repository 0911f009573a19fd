"""EMV calculation engine.

EMV for one metric is ``count * base_rate * creator_factor * post_type_factor
* topic_factor``; the total is the sum over every metric of the selected
platform and post type that has a positive count. Arithmetic is plain float
with no rounding; display code rounds.
"""

from __future__ import annotations

from collections.abc import Mapping

import structlog
from pydantic import ValidationError

from emv.domain.errors import (
    EMVValidationError,
    InvalidSelectorError,
    NoEngagementError,
    RejectionCode,
)
from emv.domain.models import (
    EMVBreakdownItem,
    EMVResult,
    EngagementCounts,
    Rejection,
    Selectors,
)
from emv.observability.metrics import CALCULATIONS
from emv.pricing.rate_table import DEFAULT_RATE_TABLE, RateTable
from emv.pricing.registry import RateTableRegistry
from emv.pricing.schema import valid_metrics

logger = structlog.get_logger()


def calculate_emv(
    table: RateTable,
    selectors: Selectors,
    counts: EngagementCounts,
) -> EMVResult:
    """Calculate EMV against a specific rate table.

    Args:
        table: The rate table to price against.
        selectors: Platform, post type, creator size and content topic.
        counts: Engagement counts; metrics not valid for the selection are
            ignored.

    Returns:
        The ``EMVResult`` with one breakdown item per metric with a positive
        count, in canonical metric order.

    Raises:
        InvalidSelectorError: If a selector cannot be resolved, including an
            absent creator size or content topic.
        NoEngagementError: If no valid metric has a positive count.
        RateLookupError: If the table lacks an entry the schema requires.
    """
    metrics = valid_metrics(selectors.platform, selectors.post_type)

    if selectors.creator_size is None:
        raise InvalidSelectorError("creator_size", None)
    if selectors.content_topic is None:
        raise InvalidSelectorError("content_topic", None)
    if not table.has_topic(selectors.content_topic):
        raise InvalidSelectorError("content_topic", selectors.content_topic)

    creator_factor = table.creator_factor(selectors.creator_size)
    post_type_factor = table.post_type_factor(selectors.platform, selectors.post_type)
    topic_factor = table.topic_factor(selectors.content_topic)

    breakdown: list[EMVBreakdownItem] = []
    for metric in metrics:
        count = counts.get(metric)
        if count <= 0:
            continue
        base_value = table.base_rate(selectors.platform, selectors.post_type, metric)
        emv = count * base_value * creator_factor * post_type_factor * topic_factor
        breakdown.append(
            EMVBreakdownItem(metric=metric, count=count, base_value=base_value, emv=emv)
        )

    if not breakdown:
        raise NoEngagementError(selectors.platform, selectors.post_type)

    return EMVResult(
        platform=selectors.platform,
        post_type=selectors.post_type,
        creator_factor=creator_factor,
        post_type_factor=post_type_factor,
        topic_factor=topic_factor,
        total_emv=sum((item.emv for item in breakdown), 0.0),
        breakdown=tuple(breakdown),
    )


class EMVCalculator:
    """Calculation engine bound to a rate table or a live registry.

    When bound to a :class:`RateTableRegistry`, the active table is read once
    per call, so a concurrent table swap never affects a calculation that is
    already running.

    Args:
        rates: A fixed ``RateTable``, a ``RateTableRegistry``, or ``None`` for
            the default table.
    """

    def __init__(self, rates: RateTable | RateTableRegistry | None = None) -> None:
        self._rates = rates if rates is not None else DEFAULT_RATE_TABLE

    @property
    def table(self) -> RateTable:
        """The rate table the next calculation will use."""
        if isinstance(self._rates, RateTableRegistry):
            return self._rates.current()
        return self._rates

    def calculate(
        self,
        selectors: Selectors,
        counts: EngagementCounts | Mapping[str, object],
    ) -> EMVResult:
        """Calculate EMV, raising on invalid input.

        Args:
            selectors: The categorical selection.
            counts: ``EngagementCounts`` or a plain metric-name mapping.

        Returns:
            The calculated ``EMVResult``.

        Raises:
            EMVValidationError: If a count is negative or not a number.
            InvalidSelectorError: If a selector cannot be resolved.
            NoEngagementError: If no valid metric has a positive count.
            RateLookupError: If the rate table is incomplete.
        """
        if not isinstance(counts, EngagementCounts):
            try:
                counts = EngagementCounts.from_mapping(counts)
            except ValidationError as exc:
                raise EMVValidationError(
                    f"Invalid engagement counts: {exc.errors()[0]['msg']}",
                    RejectionCode.INVALID_METRIC_VALUE,
                ) from exc
        return calculate_emv(self.table, selectors, counts)

    def evaluate(
        self,
        selectors: Selectors,
        counts: EngagementCounts | Mapping[str, object],
    ) -> EMVResult | Rejection:
        """Calculate EMV, returning a ``Rejection`` instead of raising for bad input.

        Only configuration errors propagate.

        Args:
            selectors: The categorical selection.
            counts: ``EngagementCounts`` or a plain metric-name mapping.

        Returns:
            The ``EMVResult`` on success, otherwise a ``Rejection``.
        """
        try:
            result = self.calculate(selectors, counts)
        except (EMVValidationError, NoEngagementError) as exc:
            CALCULATIONS.labels(outcome=exc.category.value).inc()
            logger.debug("emv_rejected", code=exc.code.value, reason=str(exc))
            return Rejection.from_error(exc)

        CALCULATIONS.labels(outcome="success").inc()
        logger.debug(
            "emv_calculated",
            platform=result.platform.value,
            post_type=result.post_type.value,
            total_emv=result.total_emv,
        )
        return result
