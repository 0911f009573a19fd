"""Engagement schema resolution: which metrics apply to a platform and post type.

Both the calculation engine and the bulk row validator consult this module,
so the accepted metric set is defined in exactly one place.
"""

from emv.domain.errors import InvalidSelectorError, UnknownPostTypeError
from emv.domain.types import ENGAGEMENT_FIELDS, Metric, Platform, PostType


def resolve_platform(platform: Platform | str) -> Platform:
    """Coerce a platform name (any case) to a ``Platform``.

    Raises:
        InvalidSelectorError: If the name is not a supported platform.
    """
    if isinstance(platform, Platform):
        return platform
    try:
        return Platform(platform.strip().lower())
    except ValueError:
        raise InvalidSelectorError("platform", platform) from None


def post_types_for(platform: Platform | str) -> tuple[PostType, ...]:
    """Return the post types available on *platform*, in display order.

    Raises:
        InvalidSelectorError: If the platform is not supported.
    """
    return tuple(ENGAGEMENT_FIELDS[resolve_platform(platform)])


def valid_metrics(platform: Platform | str, post_type: PostType | str) -> tuple[Metric, ...]:
    """Return the ordered metrics accepted for a platform and post type.

    Args:
        platform: Platform enum member or case-insensitive name.
        post_type: Post type enum member or case-insensitive name.

    Returns:
        The canonical, ordered tuple of metrics for the combination.

    Raises:
        InvalidSelectorError: If the platform is not supported.
        UnknownPostTypeError: If the platform has no schema for the post type.
    """
    resolved = resolve_platform(platform)
    key = post_type.strip().lower() if isinstance(post_type, str) else post_type
    try:
        return ENGAGEMENT_FIELDS[resolved][PostType(key)]
    except (KeyError, ValueError):
        raise UnknownPostTypeError(resolved, post_type) from None


def is_valid_combination(platform: Platform | str, post_type: PostType | str) -> bool:
    """Return whether *post_type* is offered on *platform*."""
    try:
        valid_metrics(platform, post_type)
    except InvalidSelectorError:
        return False
    return True
