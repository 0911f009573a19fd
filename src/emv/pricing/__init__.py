"""EMV pricing: rate table, engagement schema, and calculation engine.

Re-exports key functions and types for convenient access:
    from emv.pricing import EMVCalculator, DEFAULT_RATE_TABLE, valid_metrics
"""

from emv.pricing.engine import EMVCalculator, calculate_emv
from emv.pricing.rate_table import (
    DEFAULT_BASE_RATES,
    DEFAULT_CREATOR_FACTORS,
    DEFAULT_POST_TYPE_FACTORS,
    DEFAULT_RATE_TABLE,
    DEFAULT_TOPIC_FACTORS,
    EDITABLE_SECTIONS,
    RateTable,
    load_rate_table,
)
from emv.pricing.registry import RateTableRegistry
from emv.pricing.schema import (
    is_valid_combination,
    post_types_for,
    resolve_platform,
    valid_metrics,
)

__all__ = [
    "DEFAULT_BASE_RATES",
    "DEFAULT_CREATOR_FACTORS",
    "DEFAULT_POST_TYPE_FACTORS",
    "DEFAULT_RATE_TABLE",
    "DEFAULT_TOPIC_FACTORS",
    "EDITABLE_SECTIONS",
    "EMVCalculator",
    "RateTable",
    "RateTableRegistry",
    "calculate_emv",
    "is_valid_combination",
    "load_rate_table",
    "post_types_for",
    "resolve_platform",
    "valid_metrics",
]
