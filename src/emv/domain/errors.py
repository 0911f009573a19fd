"""Domain-specific exception classes and rejection codes for the EMV engine."""

from enum import StrEnum

from emv.domain.types import Platform, PostType


class ErrorCategory(StrEnum):
    """Broad classes of recoverable failure, used to word user-facing messages."""

    VALIDATION = "validation"
    NO_ENGAGEMENT = "no_engagement"


class RejectionCode(StrEnum):
    """Machine-readable reason attached to a rejected row or calculation."""

    # Row validation, in the order the checks run
    MALFORMED_ROW = "malformed_row"
    MISSING_PLATFORM = "missing_platform"
    INVALID_PLATFORM = "invalid_platform"
    MISSING_POST_TYPE = "missing_post_type"
    INVALID_CREATOR_SIZE = "invalid_creator_size"
    INVALID_CONTENT_TOPIC = "invalid_content_topic"
    INVALID_POST_TYPE_FOR_PLATFORM = "invalid_post_type_for_platform"
    MISSING_VOLUME_METRIC = "missing_volume_metric"
    INVALID_METRIC_VALUE = "invalid_metric_value"
    # Calculation
    INVALID_SELECTOR = "invalid_selector"
    UNKNOWN_POST_TYPE = "unknown_post_type"
    NO_ENGAGEMENT = "no_engagement"
    # Rate table administration
    INVALID_RATE_TABLE = "invalid_rate_table"


class EMVError(Exception):
    """Base class for all domain errors in the EMV engine."""


class ConfigurationError(EMVError):
    """Raised when the rate table is missing or holds an invalid entry.

    Indicates a broken deployment. Never converted into a row-level rejection.
    """


class RateLookupError(ConfigurationError):
    """Raised when a rate-table lookup finds no entry.

    Attributes:
        table: Name of the table that was consulted.
        key: The key that had no entry.
    """

    def __init__(self, table: str, key: str) -> None:
        self.table = table
        self.key = key
        super().__init__(f"No entry for '{key}' in {table}")


class EMVValidationError(EMVError):
    """Raised when caller input is structurally invalid.

    Attributes:
        code: The rejection code describing the failure.
    """

    category = ErrorCategory.VALIDATION

    def __init__(self, message: str, code: RejectionCode) -> None:
        self.code = code
        super().__init__(message)


class InvalidSelectorError(EMVValidationError):
    """Raised when a platform, post type, creator size or topic cannot be resolved.

    Attributes:
        field: The selector that failed to resolve.
        value: The offending value (``None`` when absent).
    """

    def __init__(
        self,
        field: str,
        value: str | None,
        message: str | None = None,
        code: RejectionCode = RejectionCode.INVALID_SELECTOR,
    ) -> None:
        self.field = field
        self.value = value
        if message is None:
            message = (
                f"{field} is required for calculation"
                if value is None
                else f"Unknown {field}: '{value}'"
            )
        super().__init__(message, code)


class UnknownPostTypeError(InvalidSelectorError):
    """Raised when a (platform, post type) pair has no engagement schema.

    Attributes:
        platform: The platform that was requested.
        post_type: The post type that was requested.
    """

    def __init__(self, platform: Platform | str, post_type: PostType | str) -> None:
        self.platform = platform
        self.post_type = post_type
        super().__init__(
            "post_type",
            str(post_type),
            message=f"{post_type} is not a valid post type for {platform}",
            code=RejectionCode.UNKNOWN_POST_TYPE,
        )


class NoEngagementError(EMVError):
    """Raised when no valid metric for the selection has a positive count."""

    category = ErrorCategory.NO_ENGAGEMENT
    code = RejectionCode.NO_ENGAGEMENT

    def __init__(self, platform: Platform, post_type: PostType) -> None:
        self.platform = platform
        self.post_type = post_type
        super().__init__(
            f"Enter at least one engagement metric for {platform} {post_type}"
        )


class BulkFormatError(EMVError):
    """Raised when an uploaded bulk file cannot be read as a whole."""
