"""Shared pytest fixtures for the EMV engine test suite."""

import sqlite3
from collections.abc import Iterator

import pytest
from structlog.testing import capture_logs

from emv.domain.models import EngagementCounts, Selectors
from emv.domain.types import CreatorSize, Platform, PostType
from emv.pricing.engine import EMVCalculator
from emv.pricing.registry import RateTableRegistry
from emv.storage.store import close_emv_db, init_emv_db


@pytest.fixture(autouse=True)
def _quiet_logs() -> Iterator[list[dict]]:
    """Capture structlog output so log lines never mix with CLI output."""
    with capture_logs() as logs:
        yield logs


@pytest.fixture
def sample_selectors() -> Selectors:
    """Instagram post by a micro creator about beauty."""
    return Selectors(
        platform=Platform.INSTAGRAM,
        post_type=PostType.POST,
        creator_size=CreatorSize.MICRO,
        content_topic="beauty",
    )


@pytest.fixture
def sample_counts() -> EngagementCounts:
    """Engagement for the reference Instagram post (total EMV 11,466)."""
    return EngagementCounts(
        impressions=50000,
        likes=5000,
        comments=300,
        shares=100,
        saves=200,
    )


@pytest.fixture
def registry() -> RateTableRegistry:
    """A fresh registry holding the default rate table."""
    return RateTableRegistry()


@pytest.fixture
def calculator(registry: RateTableRegistry) -> EMVCalculator:
    """An engine bound to the ``registry`` fixture."""
    return EMVCalculator(registry)


@pytest.fixture
def emv_conn() -> Iterator[sqlite3.Connection]:
    """An initialized in-memory EMV database."""
    conn = init_emv_db(":memory:")
    yield conn
    close_emv_db(conn)
