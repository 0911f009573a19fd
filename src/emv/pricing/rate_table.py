"""Rate table: base rates per engagement metric plus adjustment multipliers.

The table is an immutable value. Customization produces a new table
(``with_custom_topic``, ``load_rate_table``) which callers install as a whole
through :class:`emv.pricing.registry.RateTableRegistry`.

Every lookup either returns a configured number or raises
:class:`RateLookupError`. A missing entry is never treated as a zero rate.
"""

from __future__ import annotations

import math
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import structlog
import yaml  # type: ignore[import-untyped]
from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from emv.domain.errors import ConfigurationError, RateLookupError
from emv.domain.types import (
    ENGAGEMENT_FIELDS,
    CreatorSize,
    Metric,
    Platform,
    PostType,
    normalize_topic,
    post_type_key,
)

logger = structlog.get_logger()

BaseRates = dict[Platform, dict[PostType, dict[Metric, float]]]

_SECTIONS = (
    "base_rates",
    "creator_factors",
    "post_type_factors",
    "topic_factors",
    "custom_topics",
)

EDITABLE_SECTIONS: tuple[str, ...] = _SECTIONS[:4]


def _check_number(where: str, value: float) -> None:
    if not math.isfinite(value) or value < 0:
        raise ValueError(f"{where} must be a finite, non-negative number, got {value}")


class RateTable(BaseModel):
    """Immutable EMV rate configuration.

    Attributes:
        base_rates: Dollar value of one unit of each metric, per platform and
            post type.
        creator_factors: Multiplier per creator size tier.
        post_type_factors: Multiplier keyed by ``platform_posttype``.
        topic_factors: Built-in content topic multipliers.
        custom_topics: User-registered topic multipliers.
    """

    model_config = ConfigDict(frozen=True)

    base_rates: BaseRates
    creator_factors: dict[CreatorSize, float]
    post_type_factors: dict[str, float]
    topic_factors: dict[str, float]
    custom_topics: dict[str, float] = {}

    @field_validator("post_type_factors", "topic_factors", "custom_topics", mode="before")
    @classmethod
    def normalize_keys(cls, v: object) -> object:
        """Store string-keyed factors under lower_snake_case keys."""
        if isinstance(v, dict):
            return {normalize_topic(str(k)): factor for k, factor in v.items()}
        return v

    @field_validator("custom_topics")
    @classmethod
    def custom_factors_must_be_positive(cls, v: dict[str, float]) -> dict[str, float]:
        """Custom topics need a strictly positive multiplier."""
        for name, factor in v.items():
            if not name:
                raise ValueError("custom topic name must not be empty")
            if not math.isfinite(factor) or factor <= 0:
                raise ValueError(f"custom topic '{name}' factor must be positive, got {factor}")
        return v

    @model_validator(mode="after")
    def table_must_cover_engagement_schema(self) -> RateTable:
        """Cross-check the table against the engagement schema.

        Every schema (platform, post type) pair needs base rates for exactly
        its metrics and a post-type factor; every creator size needs a factor.
        """
        for platform, post_types in ENGAGEMENT_FIELDS.items():
            for post_type, metrics in post_types.items():
                rates = self.base_rates.get(platform, {}).get(post_type)
                if rates is None:
                    raise ValueError(f"missing base rates for {platform}/{post_type}")
                if set(rates) != set(metrics):
                    raise ValueError(
                        f"base rate metrics for {platform}/{post_type} "
                        f"({', '.join(sorted(rates))}) do not match the schema "
                        f"({', '.join(sorted(metrics))})"
                    )
                for metric, rate in rates.items():
                    _check_number(f"base rate {platform}/{post_type}/{metric}", rate)
                key = post_type_key(platform, post_type)
                if key not in self.post_type_factors:
                    raise ValueError(f"missing post type factor for {key}")

        for platform, post_types in self.base_rates.items():
            for post_type in post_types:
                if post_type not in ENGAGEMENT_FIELDS.get(platform, {}):
                    raise ValueError(f"base rates given for unknown pair {platform}/{post_type}")

        known_keys = {
            post_type_key(platform, post_type)
            for platform, post_types in ENGAGEMENT_FIELDS.items()
            for post_type in post_types
        }
        orphans = set(self.post_type_factors) - known_keys
        if orphans:
            raise ValueError(
                f"post type factors given for unknown pairs: {', '.join(sorted(orphans))}"
            )

        for size in CreatorSize:
            if size not in self.creator_factors:
                raise ValueError(f"missing creator factor for {size}")

        for section in ("creator_factors", "post_type_factors", "topic_factors"):
            factors: dict[Any, float] = getattr(self, section)
            for name, factor in factors.items():
                _check_number(f"{section}[{name}]", factor)

        clashes = set(self.custom_topics) & set(self.topic_factors)
        if clashes:
            raise ValueError(
                f"custom topics shadow built-in topics: {', '.join(sorted(clashes))}"
            )
        return self

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def base_rate(self, platform: Platform, post_type: PostType, metric: Metric) -> float:
        """Return the base rate for one metric of a platform and post type.

        Raises:
            RateLookupError: If the table has no such entry.
        """
        try:
            return self.base_rates[platform][post_type][metric]
        except KeyError:
            raise RateLookupError("base_rates", f"{platform}/{post_type}/{metric}") from None

    def creator_factor(self, creator_size: CreatorSize) -> float:
        """Return the multiplier for a creator size.

        Raises:
            RateLookupError: If the size has no factor.
        """
        try:
            return self.creator_factors[creator_size]
        except KeyError:
            raise RateLookupError("creator_factors", str(creator_size)) from None

    def post_type_factor(self, platform: Platform, post_type: PostType) -> float:
        """Return the multiplier for a platform and post type.

        Raises:
            RateLookupError: If the pair has no factor.
        """
        key = post_type_key(platform, post_type)
        try:
            return self.post_type_factors[key]
        except KeyError:
            raise RateLookupError("post_type_factors", key) from None

    def has_topic(self, topic: str) -> bool:
        """Return whether *topic* is a built-in or registered custom topic."""
        key = normalize_topic(topic)
        return key in self.topic_factors or key in self.custom_topics

    def topic_factor(self, topic: str) -> float:
        """Return the multiplier for a content topic (built-in or custom).

        Raises:
            RateLookupError: If the topic is unknown.
        """
        key = normalize_topic(topic)
        if key in self.custom_topics:
            return self.custom_topics[key]
        try:
            return self.topic_factors[key]
        except KeyError:
            raise RateLookupError("topic_factors", key) from None

    def topics(self) -> list[str]:
        """Return all known topic keys, built-in first, each group sorted."""
        return sorted(self.topic_factors) + sorted(self.custom_topics)

    # ------------------------------------------------------------------
    # Copy-on-write customization
    # ------------------------------------------------------------------

    def with_custom_topic(self, name: str, factor: float) -> RateTable:
        """Return a copy of this table with a custom topic added or replaced.

        Args:
            name: Topic name; normalized to lower_snake_case.
            factor: Positive multiplier for the topic.

        Returns:
            A new ``RateTable``.

        Raises:
            pydantic.ValidationError: If the name is empty or shadows a
                built-in topic, or the factor is not positive.
        """
        custom = dict(self.custom_topics)
        custom[normalize_topic(name)] = factor
        return self._replace(custom_topics=custom)

    def with_custom_topics(self, topics: Mapping[str, float]) -> RateTable:
        """Return a copy of this table with its custom topics replaced by *topics*."""
        return self._replace(custom_topics=dict(topics))

    def without_custom_topic(self, name: str) -> RateTable:
        """Return a copy of this table without the named custom topic.

        Raises:
            KeyError: If no such custom topic is registered.
        """
        key = normalize_topic(name)
        if key not in self.custom_topics:
            raise KeyError(f"Custom topic not found: {key}")
        custom = {k: v for k, v in self.custom_topics.items() if k != key}
        return self._replace(custom_topics=custom)

    # ------------------------------------------------------------------
    # Administrative edits
    # ------------------------------------------------------------------

    def with_updates(self, updates: Mapping[str, Mapping[str, Any]]) -> RateTable:
        """Return a copy of this table with individual entries changed.

        Flat sections (``creator_factors``, ``post_type_factors``,
        ``topic_factors``) are updated key by key; ``base_rates`` takes a
        ``platform -> post_type -> metric -> rate`` mapping and updates only
        the rates it names. Entries not mentioned keep their current value.

        Raises:
            ValueError: If a section is not editable.
            pydantic.ValidationError: If the resulting table is invalid.
        """
        unknown = set(updates) - set(EDITABLE_SECTIONS)
        if unknown:
            raise ValueError(f"Sections cannot be edited: {', '.join(sorted(unknown))}")

        data: dict[str, Any] = self.model_dump(mode="json")
        for section, values in updates.items():
            if section == "base_rates":
                for platform, post_types in values.items():
                    for post_type, rates in post_types.items():
                        entry = data["base_rates"].setdefault(str(platform).lower(), {})
                        entry.setdefault(str(post_type).lower(), {}).update(
                            {str(metric).lower(): rate for metric, rate in rates.items()}
                        )
            else:
                data[section].update({normalize_topic(str(k)): v for k, v in values.items()})
        return RateTable(**data)

    def with_default_section(self, section: str) -> RateTable:
        """Return a copy of this table with *section* restored to its defaults.

        Raises:
            KeyError: If *section* is not editable.
        """
        if section not in EDITABLE_SECTIONS:
            raise KeyError(f"Unknown rate table section: {section}")
        return self._replace(**{section: getattr(DEFAULT_RATE_TABLE, section)})

    def flat_section(self, section: str) -> dict[str, float]:
        """Return one section as ``key -> value``.

        ``base_rates`` keys are joined as ``platform/post_type/metric``.
        """
        values = self.model_dump(mode="json")[section]
        if section != "base_rates":
            return dict(values)
        return {
            f"{platform}/{post_type}/{metric}": rate
            for platform, post_types in values.items()
            for post_type, rates in post_types.items()
            for metric, rate in rates.items()
        }

    def _replace(self, **changes: Any) -> RateTable:
        # model_copy skips validation, so rebuild through the constructor.
        data = {section: getattr(self, section) for section in _SECTIONS}
        data.update(changes)
        return RateTable(**data)


DEFAULT_BASE_RATES: BaseRates = {
    Platform.INSTAGRAM: {
        PostType.POST: {
            Metric.IMPRESSIONS: 0.08,
            Metric.LIKES: 0.20,
            Metric.COMMENTS: 4.50,
            Metric.SHARES: 3.00,
            Metric.SAVES: 3.50,
        },
        PostType.STORY: {
            Metric.IMPRESSIONS: 0.07,
            Metric.LIKES: 0.20,
            Metric.SHARES: 3.00,
        },
        PostType.REEL: {
            Metric.VIEWS: 0.12,
            Metric.LIKES: 0.25,
            Metric.COMMENTS: 5.00,
            Metric.SHARES: 3.00,
            Metric.SAVES: 3.50,
        },
    },
    Platform.TIKTOK: {
        PostType.VIDEO: {
            Metric.VIEWS: 0.08,
            Metric.LIKES: 0.15,
            Metric.COMMENTS: 2.50,
            Metric.SHARES: 1.00,
            Metric.SAVES: 1.00,
        },
    },
    Platform.YOUTUBE: {
        PostType.VIDEO: {
            Metric.VIEWS: 0.12,
            Metric.LIKES: 0.90,
            Metric.COMMENTS: 8.50,
            Metric.SHARES: 3.00,
            Metric.SAVES: 3.00,
        },
        PostType.SHORTS: {
            Metric.VIEWS: 0.08,
            Metric.LIKES: 0.15,
            Metric.COMMENTS: 2.50,
            Metric.SHARES: 1.00,
            Metric.SAVES: 1.00,
        },
    },
    Platform.PINTEREST: {
        PostType.PIN: {
            Metric.IMPRESSIONS: 0.07,
            Metric.CLICKS: 3.50,
            Metric.SAVES: 3.50,
            Metric.CLOSEUPS: 0.10,
        },
    },
}

DEFAULT_CREATOR_FACTORS: dict[CreatorSize, float] = {
    CreatorSize.BRAND_FAN: 0.8,
    CreatorSize.NANO: 0.9,
    CreatorSize.MICRO: 1.2,
    CreatorSize.MID_TIER: 1.0,
    CreatorSize.MACRO: 0.95,
    CreatorSize.CELEBRITY: 0.9,
}

DEFAULT_POST_TYPE_FACTORS: dict[str, float] = {
    "instagram_post": 1.0,
    "instagram_reel": 1.3,
    "instagram_story": 0.8,
    "tiktok_video": 1.4,
    "youtube_video": 1.1,
    "youtube_shorts": 0.9,
    "pinterest_pin": 0.7,
}

DEFAULT_TOPIC_FACTORS: dict[str, float] = {
    # Topics offered on the calculator form and in bulk uploads
    "beauty": 1.3,
    "fashion": 1.2,
    "fitness": 1.1,
    "finance": 0.8,
    "food": 1.2,
    "game": 0.9,
    "music": 1.0,
    "travel": 1.1,
    "technology": 0.9,
    "other": 1.0,
    # Detailed reference categories
    "beauty_cosmetic_personal_care": 1.3,
    "shopping_retail": 1.2,
    "health_beauty": 1.2,
    "food_drink": 1.2,
    "restaurant": 1.2,
    "photography": 1.1,
    "music_band": 1.0,
    "artist": 1.0,
    "writer": 1.0,
    "blogger": 1.0,
    "personal_blog": 1.0,
    "entrepreneur": 1.0,
    "clothing": 1.0,
    "grocery_store": 1.0,
    "product_services": 1.0,
    "gamer": 0.9,
    "editor": 0.9,
}

DEFAULT_RATE_TABLE = RateTable(
    base_rates=DEFAULT_BASE_RATES,
    creator_factors=DEFAULT_CREATOR_FACTORS,
    post_type_factors=DEFAULT_POST_TYPE_FACTORS,
    topic_factors=DEFAULT_TOPIC_FACTORS,
)


def load_rate_table(path: Path) -> RateTable:
    """Load a rate table override from YAML.

    Each top-level section (``base_rates``, ``creator_factors``,
    ``post_type_factors``, ``topic_factors``, ``custom_topics``) replaces the
    matching default section. Within ``base_rates``, each platform/post type
    entry given in the file replaces the default entry for that pair.

    Args:
        path: Path to the YAML override file.

    Returns:
        The validated ``RateTable``.

    Raises:
        FileNotFoundError: If the file does not exist.
        ConfigurationError: If the file is not a mapping or the resulting
            table violates the schema invariants.
    """
    if not path.exists():
        raise FileNotFoundError(f"Rate table config not found: {path}")

    with path.open() as f:
        config = yaml.safe_load(f) or {}

    if not isinstance(config, dict):
        raise ConfigurationError(f"Rate table config must be a mapping: {path}")

    unknown = set(config) - set(_SECTIONS)
    if unknown:
        raise ConfigurationError(
            f"Unknown rate table sections in {path}: {', '.join(sorted(unknown))}"
        )

    data: dict[str, Any] = {
        section: getattr(DEFAULT_RATE_TABLE, section) for section in _SECTIONS
    }
    overrides = config.get("base_rates") or {}
    if overrides:
        merged: dict[str, dict[str, Any]] = {
            str(platform): {str(pt): dict(rates) for pt, rates in post_types.items()}
            for platform, post_types in DEFAULT_BASE_RATES.items()
        }
        for platform, post_types in overrides.items():
            merged.setdefault(str(platform).lower(), {}).update(
                {str(pt).lower(): rates for pt, rates in (post_types or {}).items()}
            )
        data["base_rates"] = merged
    for section in _SECTIONS[1:]:
        if config.get(section) is not None:
            data[section] = config[section]

    try:
        table = RateTable(**data)
    except ValidationError as exc:
        logger.error("rate_table_invalid", path=str(path), errors=exc.errors())
        raise ConfigurationError(f"Invalid rate table in {path}: {exc}") from exc

    logger.info("rate_table_loaded", path=str(path), custom_topics=len(table.custom_topics))
    return table
