"""Domain types, models, and errors for the EMV engine."""

from emv.domain.errors import (
    BulkFormatError,
    ConfigurationError,
    EMVError,
    EMVValidationError,
    ErrorCategory,
    InvalidSelectorError,
    NoEngagementError,
    RateLookupError,
    RejectionCode,
    UnknownPostTypeError,
)
from emv.domain.models import (
    EMVBreakdownItem,
    EMVResult,
    EngagementCounts,
    Rejection,
    Selectors,
)
from emv.domain.types import (
    ENGAGEMENT_FIELDS,
    VOLUME_METRICS,
    CreatorSize,
    Metric,
    Platform,
    PostType,
    normalize_topic,
    post_type_key,
)

__all__ = [
    "ENGAGEMENT_FIELDS",
    "VOLUME_METRICS",
    "BulkFormatError",
    "ConfigurationError",
    "CreatorSize",
    "EMVBreakdownItem",
    "EMVError",
    "EMVResult",
    "EMVValidationError",
    "EngagementCounts",
    "ErrorCategory",
    "InvalidSelectorError",
    "Metric",
    "NoEngagementError",
    "Platform",
    "PostType",
    "RateLookupError",
    "Rejection",
    "RejectionCode",
    "Selectors",
    "UnknownPostTypeError",
    "normalize_topic",
    "post_type_key",
]
