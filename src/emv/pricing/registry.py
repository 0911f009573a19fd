"""Process-wide holder for the active rate table.

Readers call :meth:`RateTableRegistry.current` once per operation and work on
that snapshot. Writers never mutate a table in place: every change builds a
new :class:`RateTable` and swaps it in under a lock, so a reader sees either
the old table or the new one, never a mix.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any

import structlog
from pydantic import ValidationError

from emv.domain.errors import EMVValidationError, RejectionCode
from emv.domain.types import normalize_topic
from emv.pricing.rate_table import DEFAULT_RATE_TABLE, RateTable

logger = structlog.get_logger()


class RateTableRegistry:
    """Thread-safe, swap-on-write container for a :class:`RateTable`.

    Args:
        table: Initial table. Defaults to ``DEFAULT_RATE_TABLE``.
    """

    def __init__(self, table: RateTable | None = None) -> None:
        self._table = table or DEFAULT_RATE_TABLE
        self._lock = threading.Lock()

    def current(self) -> RateTable:
        """Return the active table snapshot."""
        return self._table

    def replace(self, table: RateTable) -> None:
        """Atomically install *table* as the active table."""
        with self._lock:
            self._table = table
        logger.info("rate_table_replaced", custom_topics=len(table.custom_topics))

    def reset(self) -> tuple[RateTable, RateTable]:
        """Restore every default rate and factor, keeping the custom topics.

        Returns:
            The ``(previous, current)`` tables.
        """
        with self._lock:
            previous = self._table
            if previous.custom_topics:
                self._table = DEFAULT_RATE_TABLE.with_custom_topics(previous.custom_topics)
            else:
                self._table = DEFAULT_RATE_TABLE
            current = self._table
        logger.info("rate_table_reset", custom_topics=len(current.custom_topics))
        return previous, current

    def register_custom_topic(self, name: str, factor: float) -> str:
        """Add or overwrite a user-defined content topic.

        Concurrent registrations are serialized; the last write wins.

        Args:
            name: Display name of the topic; stored in lower_snake_case.
            factor: Positive multiplier.

        Returns:
            The normalized topic key.

        Raises:
            EMVValidationError: If the name is empty or shadows a built-in
                topic, or the factor is not positive.
        """
        key = normalize_topic(name)
        with self._lock:
            try:
                self._table = self._table.with_custom_topic(key, factor)
            except ValidationError as exc:
                raise EMVValidationError(
                    f"Invalid custom topic '{name}': {_describe(exc)}",
                    RejectionCode.INVALID_CONTENT_TOPIC,
                ) from exc
        logger.info("custom_topic_registered", topic=key, factor=factor)
        return key

    def remove_custom_topic(self, name: str) -> None:
        """Remove a user-defined content topic.

        Raises:
            KeyError: If the topic is not registered.
        """
        with self._lock:
            self._table = self._table.without_custom_topic(name)
        logger.info("custom_topic_removed", topic=normalize_topic(name))

    def apply_updates(
        self, updates: Mapping[str, Mapping[str, Any]]
    ) -> tuple[RateTable, RateTable]:
        """Change individual rate-table entries and install the result.

        The new table is built and validated from the current one under the
        lock, so concurrent edits never overwrite each other's changes.

        Args:
            updates: Section name to partial values, as accepted by
                :meth:`RateTable.with_updates`.

        Returns:
            The ``(previous, current)`` tables.

        Raises:
            EMVValidationError: If the edited table would be invalid.
        """
        with self._lock:
            previous = self._table
            try:
                self._table = previous.with_updates(updates)
            except ValueError as exc:
                raise EMVValidationError(
                    f"Invalid rate table update: {_describe(exc)}",
                    RejectionCode.INVALID_RATE_TABLE,
                ) from exc
            current = self._table
        logger.info("rate_table_updated", sections=sorted(updates))
        return previous, current

    def reset_section(self, section: str) -> tuple[RateTable, RateTable]:
        """Restore one section to its defaults, keeping everything else.

        Returns:
            The ``(previous, current)`` tables.

        Raises:
            KeyError: If *section* is not editable.
            EMVValidationError: If the restored table would be invalid.
        """
        with self._lock:
            previous = self._table
            try:
                self._table = previous.with_default_section(section)
            except ValidationError as exc:
                raise EMVValidationError(
                    f"Cannot reset {section}: {_describe(exc)}",
                    RejectionCode.INVALID_RATE_TABLE,
                ) from exc
            current = self._table
        logger.info("rate_table_section_reset", section=section)
        return previous, current


def _describe(exc: ValueError) -> str:
    if isinstance(exc, ValidationError):
        return "; ".join(str(err["msg"]) for err in exc.errors())
    return str(exc)
