"""SQLite-backed store for EMV calculations, custom topics and rate-table edits.

Uses WAL mode and parameterized queries exclusively. Calculation parameters
and results are serialized to JSON columns and restored into the same
pydantic models on read.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import structlog

from emv.bulk.models import BulkRow
from emv.domain.models import EMVResult, EngagementCounts, Selectors
from emv.domain.types import normalize_topic
from emv.pricing.rate_table import EDITABLE_SECTIONS, RateTable
from emv.pricing.registry import RateTableRegistry
from emv.storage.models import CalculationRecord, CustomTopic, RateChange

logger = structlog.get_logger()


def init_emv_db(db_path: Path | str) -> sqlite3.Connection:
    """Create and initialize the EMV database with WAL mode and indexes.

    Args:
        db_path: Path to the SQLite database file, or ``":memory:"``.

    Returns:
        An open sqlite3.Connection.
    """
    conn = sqlite3.connect(str(db_path), check_same_thread=False)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA journal_mode=WAL")

    conn.execute("""
        CREATE TABLE IF NOT EXISTS emv_calculations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL,
            creator_name TEXT,
            parameters TEXT NOT NULL,
            result TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS custom_topics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL UNIQUE,
            factor TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS rate_table_overrides (
            section TEXT PRIMARY KEY,
            data TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)
    conn.execute("""
        CREATE TABLE IF NOT EXISTS rate_table_changes (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            created_at TEXT NOT NULL,
            user_id TEXT NOT NULL,
            section TEXT NOT NULL,
            action TEXT NOT NULL,
            entry TEXT NOT NULL,
            old_value REAL,
            new_value REAL
        )
    """)

    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_emv_user_created "
        "ON emv_calculations (user_id, created_at)"
    )

    conn.commit()
    return conn


def close_emv_db(conn: sqlite3.Connection) -> None:
    """Close the EMV database connection."""
    conn.close()


def _now() -> str:
    return datetime.now(tz=UTC).isoformat()


class CalculationStore:
    """Persist and query EMV calculations per user.

    Args:
        conn: Connection returned by :func:`init_emv_db`.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def save(
        self,
        user_id: str,
        selectors: Selectors,
        counts: EngagementCounts,
        result: EMVResult,
        creator_name: str | None = None,
    ) -> CalculationRecord:
        """Store a calculation, timestamped at insertion.

        Selectors and counts are merged into a single ``parameters`` object.

        Args:
            user_id: Owner of the calculation.
            selectors: The selection that was priced.
            counts: The engagement counts that were priced.
            result: The result to store verbatim.
            creator_name: Optional creator label from a bulk upload.

        Returns:
            The stored ``CalculationRecord``.
        """
        with self._conn:
            record = self._insert(user_id, selectors, counts, result, creator_name)
        logger.info(
            "calculation_saved",
            calculation_id=record.id,
            user_id=user_id,
            total_emv=result.total_emv,
        )
        return record

    def save_many(self, user_id: str, rows: Iterable[BulkRow]) -> list[CalculationRecord]:
        """Store the successful rows of a bulk report in one transaction.

        Either every row is written or, if any insert fails, none is.

        Args:
            user_id: Owner of the calculations.
            rows: Processed bulk rows; rows without a result are skipped.

        Returns:
            The stored records, in input order.
        """
        records: list[CalculationRecord] = []
        with self._conn:
            for row in rows:
                if row.selectors is None or row.counts is None or row.result is None:
                    continue
                records.append(
                    self._insert(user_id, row.selectors, row.counts, row.result, row.creator_name)
                )
        logger.info("calculations_saved", user_id=user_id, count=len(records))
        return records

    def _insert(
        self,
        user_id: str,
        selectors: Selectors,
        counts: EngagementCounts,
        result: EMVResult,
        creator_name: str | None,
    ) -> CalculationRecord:
        parameters: dict[str, Any] = {
            **selectors.model_dump(mode="json"),
            **counts.model_dump(mode="json", exclude_none=True),
        }
        created_at = _now()
        cursor = self._conn.execute(
            """
            INSERT INTO emv_calculations (user_id, created_at, creator_name, parameters, result)
            VALUES (?, ?, ?, ?, ?)
            """,
            (
                user_id,
                created_at,
                creator_name,
                json.dumps(parameters),
                result.model_dump_json(),
            ),
        )
        return CalculationRecord(
            id=cursor.lastrowid or 0,
            user_id=user_id,
            created_at=created_at,
            creator_name=creator_name,
            selectors=selectors,
            counts=counts,
            result=result,
        )

    def list_for_user(self, user_id: str, limit: int = 100) -> list[CalculationRecord]:
        """Return a user's calculations, newest first."""
        cursor = self._conn.execute(
            """
            SELECT * FROM emv_calculations
            WHERE user_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (user_id, limit),
        )
        return [self._to_record(row) for row in cursor.fetchall()]

    def get(self, calculation_id: int) -> CalculationRecord | None:
        """Return a calculation by ID, or ``None`` if it does not exist."""
        cursor = self._conn.execute(
            "SELECT * FROM emv_calculations WHERE id = ?", (calculation_id,)
        )
        row = cursor.fetchone()
        return self._to_record(row) if row is not None else None

    @staticmethod
    def _to_record(row: sqlite3.Row) -> CalculationRecord:
        parameters = json.loads(row["parameters"])
        return CalculationRecord(
            id=row["id"],
            user_id=row["user_id"],
            created_at=row["created_at"],
            creator_name=row["creator_name"],
            selectors=Selectors.model_validate(parameters),
            counts=EngagementCounts.model_validate(parameters),
            result=EMVResult.model_validate_json(row["result"]),
        )


class CustomTopicStore:
    """Persist the user-defined content topics.

    Topics are global and keyed by name, the same way the rate-table registry
    holds them, so every stored topic is registered at startup.

    Args:
        conn: Connection returned by :func:`init_emv_db`.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def save(self, name: str, factor: float) -> CustomTopic:
        """Insert or update a topic; the latest factor wins.

        The factor is stored as text to keep the value exactly as entered.
        """
        name = normalize_topic(name)
        self._conn.execute(
            """
            INSERT INTO custom_topics (name, factor, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT (name) DO UPDATE SET factor = excluded.factor
            """,
            (name, repr(float(factor)), _now()),
        )
        self._conn.commit()
        cursor = self._conn.execute("SELECT * FROM custom_topics WHERE name = ?", (name,))
        return self._to_topic(cursor.fetchone())

    def list_all(self) -> list[CustomTopic]:
        """Return every custom topic ordered by name."""
        cursor = self._conn.execute("SELECT * FROM custom_topics ORDER BY name")
        return [self._to_topic(row) for row in cursor.fetchall()]

    def get(self, topic_id: int) -> CustomTopic | None:
        """Return a topic by ID, or ``None``."""
        cursor = self._conn.execute("SELECT * FROM custom_topics WHERE id = ?", (topic_id,))
        row = cursor.fetchone()
        return self._to_topic(row) if row is not None else None

    def delete(self, topic_id: int) -> bool:
        """Delete a topic. Returns whether a row was removed."""
        cursor = self._conn.execute("DELETE FROM custom_topics WHERE id = ?", (topic_id,))
        self._conn.commit()
        return cursor.rowcount > 0

    def load_into(self, registry: RateTableRegistry) -> int:
        """Register every stored topic with *registry*.

        Returns:
            The number of topics registered.
        """
        topics = self.list_all()
        for topic in topics:
            registry.register_custom_topic(topic.name, topic.factor)
        logger.info("custom_topics_loaded", count=len(topics))
        return len(topics)

    @staticmethod
    def _to_topic(row: sqlite3.Row) -> CustomTopic:
        return CustomTopic(
            id=row["id"],
            name=row["name"],
            factor=float(row["factor"]),
            created_at=row["created_at"],
        )


class RateTableStore:
    """Persist rate-table edits and the change log that records them.

    Each edited section is stored whole, so the active table can be rebuilt
    at startup by applying the stored sections over the configured table.
    A reset stores the restored section too, so it survives a restart even
    when the configured table differs from the shipped defaults.

    Args:
        conn: Connection returned by :func:`init_emv_db`.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn

    def record(
        self,
        user_id: str,
        previous: RateTable,
        current: RateTable,
        reset: bool = False,
    ) -> list[RateChange]:
        """Persist *current*'s edited sections and log what changed.

        Args:
            user_id: Who made the change.
            previous: The table before the change.
            current: The table after the change.
            reset: Log changed entries with action ``reset`` instead of
                ``add``/``modify``/``remove``.

        Returns:
            The change log entries written, one per changed entry.
        """
        created_at = _now()
        changes: list[RateChange] = []
        before_data = previous.model_dump(mode="json")
        after_data = current.model_dump(mode="json")
        with self._conn:
            for section in EDITABLE_SECTIONS:
                data = after_data[section]
                if data == before_data[section]:
                    continue
                self._conn.execute(
                    """
                    INSERT INTO rate_table_overrides (section, data, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT (section) DO UPDATE
                    SET data = excluded.data, updated_at = excluded.updated_at
                    """,
                    (section, json.dumps(data), created_at),
                )

            for section in (*EDITABLE_SECTIONS, "custom_topics"):
                before = previous.flat_section(section)
                after = current.flat_section(section)
                for key in sorted(set(before) | set(after)):
                    old, new = before.get(key), after.get(key)
                    if old == new:
                        continue
                    if reset:
                        action = "reset"
                    elif old is None:
                        action = "add"
                    elif new is None:
                        action = "remove"
                    else:
                        action = "modify"
                    cursor = self._conn.execute(
                        """
                        INSERT INTO rate_table_changes
                            (created_at, user_id, section, action, entry, old_value, new_value)
                        VALUES (?, ?, ?, ?, ?, ?, ?)
                        """,
                        (created_at, user_id, section, action, key, old, new),
                    )
                    changes.append(
                        RateChange(
                            id=cursor.lastrowid or 0,
                            created_at=created_at,
                            user_id=user_id,
                            section=section,
                            action=action,
                            entry=key,
                            old_value=old,
                            new_value=new,
                        )
                    )
        logger.info("rate_table_changes_recorded", user_id=user_id, changes=len(changes))
        return changes

    def list_changes(self, limit: int = 100) -> list[RateChange]:
        """Return change log entries, newest first."""
        cursor = self._conn.execute(
            "SELECT * FROM rate_table_changes ORDER BY created_at DESC, id DESC LIMIT ?",
            (limit,),
        )
        return [RateChange.model_validate(dict(row)) for row in cursor.fetchall()]

    def overrides(self) -> dict[str, Any]:
        """Return the stored sections keyed by section name."""
        cursor = self._conn.execute("SELECT section, data FROM rate_table_overrides")
        return {row["section"]: json.loads(row["data"]) for row in cursor.fetchall()}

    def load_into(self, registry: RateTableRegistry) -> int:
        """Apply the stored sections to *registry*.

        Returns:
            The number of sections applied.
        """
        sections = self.overrides()
        if sections:
            registry.apply_updates(sections)
        logger.info("rate_table_overrides_loaded", sections=sorted(sections))
        return len(sections)
