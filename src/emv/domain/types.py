"""Domain enumerations and platform/post-type mappings for EMV calculation."""

from enum import StrEnum


class Platform(StrEnum):
    """Supported social media platforms."""

    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    YOUTUBE = "youtube"
    PINTEREST = "pinterest"


class PostType(StrEnum):
    """Content formats. Which ones apply depends on the platform."""

    POST = "post"
    REEL = "reel"
    STORY = "story"
    VIDEO = "video"
    SHORTS = "shorts"
    PIN = "pin"


class CreatorSize(StrEnum):
    """Audience-scale tier of a creator account."""

    BRAND_FAN = "brand_fan"
    NANO = "nano"
    MICRO = "micro"
    MID_TIER = "mid_tier"
    MACRO = "macro"
    CELEBRITY = "celebrity"


class Metric(StrEnum):
    """Engagement metrics that can carry a base rate."""

    IMPRESSIONS = "impressions"
    VIEWS = "views"
    LIKES = "likes"
    COMMENTS = "comments"
    SHARES = "shares"
    SAVES = "saves"
    CLICKS = "clicks"
    CLOSEUPS = "closeups"


# Metrics that establish the reach of a post; bulk rows need one of them.
VOLUME_METRICS: tuple[Metric, ...] = (Metric.VIEWS, Metric.IMPRESSIONS)

# Canonical metric list per (platform, post type). Order here is the order
# of every breakdown.
ENGAGEMENT_FIELDS: dict[Platform, dict[PostType, tuple[Metric, ...]]] = {
    Platform.INSTAGRAM: {
        PostType.POST: (
            Metric.IMPRESSIONS,
            Metric.LIKES,
            Metric.COMMENTS,
            Metric.SHARES,
            Metric.SAVES,
        ),
        PostType.STORY: (Metric.IMPRESSIONS, Metric.LIKES, Metric.SHARES),
        PostType.REEL: (
            Metric.VIEWS,
            Metric.LIKES,
            Metric.COMMENTS,
            Metric.SHARES,
            Metric.SAVES,
        ),
    },
    Platform.TIKTOK: {
        PostType.VIDEO: (
            Metric.VIEWS,
            Metric.LIKES,
            Metric.COMMENTS,
            Metric.SHARES,
            Metric.SAVES,
        ),
    },
    Platform.YOUTUBE: {
        PostType.VIDEO: (
            Metric.VIEWS,
            Metric.LIKES,
            Metric.COMMENTS,
            Metric.SHARES,
            Metric.SAVES,
        ),
        PostType.SHORTS: (
            Metric.VIEWS,
            Metric.LIKES,
            Metric.COMMENTS,
            Metric.SHARES,
            Metric.SAVES,
        ),
    },
    Platform.PINTEREST: {
        PostType.PIN: (Metric.IMPRESSIONS, Metric.CLICKS, Metric.SAVES, Metric.CLOSEUPS),
    },
}


def post_type_key(platform: Platform, post_type: PostType) -> str:
    """Build the ``platform_posttype`` key used by the post-type factor table."""
    return f"{platform.value}_{post_type.value}"


def normalize_topic(name: str) -> str:
    """Normalize a content topic name to its lower_snake_case key.

    Args:
        name: Topic name as typed by a user, e.g. ``"Home Decor"``.

    Returns:
        The normalized key, e.g. ``"home_decor"``.
    """
    return "_".join(name.strip().lower().split())
