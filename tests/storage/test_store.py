"""Tests for the SQLite calculation, custom topic and rate-table stores."""

import sqlite3
from pathlib import Path

import pytest

from emv.bulk.models import BulkRow
from emv.domain.errors import RejectionCode
from emv.domain.models import EngagementCounts, Rejection, Selectors
from emv.pricing.engine import EMVCalculator
from emv.pricing.registry import RateTableRegistry
from emv.storage.store import (
    CalculationStore,
    CustomTopicStore,
    RateTableStore,
    close_emv_db,
    init_emv_db,
)


class TestInitEmvDB:
    """Tests for database initialization."""

    def test_creates_database_file(self, tmp_path: Path):
        db_path = tmp_path / "emv.db"
        conn = init_emv_db(db_path)
        assert db_path.exists()
        close_emv_db(conn)

    def test_wal_mode_enabled(self, tmp_path: Path):
        conn = init_emv_db(tmp_path / "emv.db")
        mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
        assert mode == "wal"
        close_emv_db(conn)

    def test_tables_exist(self, emv_conn: sqlite3.Connection):
        cursor = emv_conn.execute("SELECT name FROM sqlite_master WHERE type='table'")
        tables = {row[0] for row in cursor.fetchall()}
        assert {
            "emv_calculations",
            "custom_topics",
            "rate_table_overrides",
            "rate_table_changes",
        } <= tables

    def test_init_is_idempotent(self, tmp_path: Path):
        close_emv_db(init_emv_db(tmp_path / "emv.db"))
        conn = init_emv_db(tmp_path / "emv.db")
        assert conn.execute("SELECT COUNT(*) FROM emv_calculations").fetchone()[0] == 0
        close_emv_db(conn)


class TestCalculationStore:
    """Tests for storing and reading calculations."""

    def _save(
        self,
        store: CalculationStore,
        selectors: Selectors,
        counts: EngagementCounts,
        user_id: str = "user-1",
        creator_name: str | None = None,
    ):
        result = EMVCalculator().calculate(selectors, counts)
        return store.save(user_id, selectors, counts, result, creator_name)

    def test_save_returns_record(
        self,
        emv_conn: sqlite3.Connection,
        sample_selectors: Selectors,
        sample_counts: EngagementCounts,
    ):
        record = self._save(CalculationStore(emv_conn), sample_selectors, sample_counts)
        assert record.id > 0
        assert record.user_id == "user-1"
        assert record.result.total_emv == pytest.approx(11466)
        assert record.created_at

    def test_round_trip_preserves_inputs_and_result(
        self,
        emv_conn: sqlite3.Connection,
        sample_selectors: Selectors,
        sample_counts: EngagementCounts,
    ):
        store = CalculationStore(emv_conn)
        saved = self._save(store, sample_selectors, sample_counts, creator_name="Alice")
        loaded = store.get(saved.id)
        assert loaded == saved

    def test_parameters_column_merges_selectors_and_counts(
        self,
        emv_conn: sqlite3.Connection,
        sample_selectors: Selectors,
        sample_counts: EngagementCounts,
    ):
        saved = self._save(CalculationStore(emv_conn), sample_selectors, sample_counts)
        raw = emv_conn.execute(
            "SELECT parameters FROM emv_calculations WHERE id = ?", (saved.id,)
        ).fetchone()[0]
        assert '"platform": "instagram"' in raw
        assert '"impressions": 50000.0' in raw
        assert "views" not in raw

    def test_get_missing_returns_none(self, emv_conn: sqlite3.Connection):
        assert CalculationStore(emv_conn).get(999) is None

    def test_list_is_per_user_and_newest_first(
        self,
        emv_conn: sqlite3.Connection,
        sample_selectors: Selectors,
        sample_counts: EngagementCounts,
    ):
        store = CalculationStore(emv_conn)
        first = self._save(store, sample_selectors, sample_counts)
        second = self._save(store, sample_selectors, sample_counts)
        self._save(store, sample_selectors, sample_counts, user_id="someone-else")

        records = store.list_for_user("user-1")
        assert [r.id for r in records] == [second.id, first.id]

    def test_list_respects_limit(
        self,
        emv_conn: sqlite3.Connection,
        sample_selectors: Selectors,
        sample_counts: EngagementCounts,
    ):
        store = CalculationStore(emv_conn)
        for _ in range(3):
            self._save(store, sample_selectors, sample_counts)
        assert len(store.list_for_user("user-1", limit=2)) == 2

    def test_user_id_with_sql_injection_is_treated_as_data(
        self,
        emv_conn: sqlite3.Connection,
        sample_selectors: Selectors,
        sample_counts: EngagementCounts,
    ):
        store = CalculationStore(emv_conn)
        self._save(store, sample_selectors, sample_counts)
        assert store.list_for_user("x' OR '1'='1") == []
        assert len(store.list_for_user("user-1")) == 1


    def test_save_many_stores_rows_in_order(
        self,
        emv_conn: sqlite3.Connection,
        sample_selectors: Selectors,
        sample_counts: EngagementCounts,
    ):
        store = CalculationStore(emv_conn)
        rows = _bulk_rows(sample_selectors, sample_counts, ["Alice", "Bob"])
        failed = BulkRow(row_index=3, raw_fields={}, error=_rejection())

        records = store.save_many("user-1", [*rows, failed])

        assert [r.creator_name for r in records] == ["Alice", "Bob"]
        listed = store.list_for_user("user-1")
        assert sorted(r.id for r in listed) == sorted(r.id for r in records)

    def test_save_many_is_all_or_nothing(
        self,
        emv_conn: sqlite3.Connection,
        sample_selectors: Selectors,
        sample_counts: EngagementCounts,
    ):
        emv_conn.execute("""
            CREATE TRIGGER reject_boom BEFORE INSERT ON emv_calculations
            WHEN NEW.creator_name = 'Boom'
            BEGIN SELECT RAISE(ABORT, 'boom'); END
        """)
        store = CalculationStore(emv_conn)
        rows = _bulk_rows(sample_selectors, sample_counts, ["Alice", "Boom", "Carol"])

        with pytest.raises(sqlite3.Error):
            store.save_many("user-1", rows)

        assert store.list_for_user("user-1") == []


def _bulk_rows(
    selectors: Selectors, counts: EngagementCounts, names: list[str]
) -> list[BulkRow]:
    result = EMVCalculator().calculate(selectors, counts)
    return [
        BulkRow(
            row_index=index,
            raw_fields={},
            creator_name=name,
            selectors=selectors,
            counts=counts,
            result=result,
        )
        for index, name in enumerate(names, start=1)
    ]


def _rejection() -> Rejection:
    return Rejection.validation(RejectionCode.INVALID_METRIC_VALUE, "Invalid likes value")


class TestCustomTopicStore:
    """Tests for persisted custom topics."""

    def test_save_normalizes_name(self, emv_conn: sqlite3.Connection):
        topic = CustomTopicStore(emv_conn).save("Home Decor", 1.15)
        assert topic.name == "home_decor"
        assert topic.factor == 1.15

    def test_factor_round_trips_exactly(self, emv_conn: sqlite3.Connection):
        store = CustomTopicStore(emv_conn)
        store.save("knitting", 0.1 + 0.2)
        assert store.list_all()[0].factor == 0.1 + 0.2

    def test_save_twice_updates_factor(self, emv_conn: sqlite3.Connection):
        store = CustomTopicStore(emv_conn)
        first = store.save("knitting", 1.1)
        second = store.save("Knitting", 1.6)
        assert second.id == first.id
        assert [t.factor for t in store.list_all()] == [1.6]

    def test_list_is_ordered_by_name(self, emv_conn: sqlite3.Connection):
        store = CustomTopicStore(emv_conn)
        store.save("knitting", 1.1)
        store.save("baking", 1.3)
        assert [t.name for t in store.list_all()] == ["baking", "knitting"]

    def test_get_and_delete(self, emv_conn: sqlite3.Connection):
        store = CustomTopicStore(emv_conn)
        topic = store.save("knitting", 1.1)
        assert store.get(topic.id) == topic
        assert store.delete(topic.id) is True
        assert store.get(topic.id) is None
        assert store.delete(topic.id) is False
        assert store.list_all() == []

    def test_load_into_registry(self, emv_conn: sqlite3.Connection):
        store = CustomTopicStore(emv_conn)
        store.save("knitting", 1.1)
        store.save("home decor", 1.2)
        registry = RateTableRegistry()

        assert store.load_into(registry) == 2
        assert registry.current().topic_factor("home_decor") == 1.2
        assert registry.current().topic_factor("knitting") == 1.1


class TestRateTableStore:
    """Tests for persisted rate-table edits and the change log."""

    def test_record_logs_each_changed_entry(self, emv_conn: sqlite3.Connection):
        registry = RateTableRegistry()
        previous, current = registry.apply_updates(
            {"creator_factors": {"micro": 1.5}, "topic_factors": {"pets": 1.2}}
        )

        changes = RateTableStore(emv_conn).record("admin", previous, current)

        by_entry = {(c.section, c.entry): c for c in changes}
        micro = by_entry[("creator_factors", "micro")]
        assert (micro.action, micro.old_value, micro.new_value) == ("modify", 1.2, 1.5)
        pets = by_entry[("topic_factors", "pets")]
        assert (pets.action, pets.old_value, pets.new_value) == ("add", None, 1.2)
        assert len(changes) == 2
        assert all(c.user_id == "admin" for c in changes)

    def test_record_stores_only_edited_sections(self, emv_conn: sqlite3.Connection):
        registry = RateTableRegistry()
        previous, current = registry.apply_updates({"creator_factors": {"micro": 1.5}})
        store = RateTableStore(emv_conn)

        store.record("admin", previous, current)

        overrides = store.overrides()
        assert list(overrides) == ["creator_factors"]
        assert overrides["creator_factors"]["micro"] == 1.5

    def test_reset_is_logged_and_stored(self, emv_conn: sqlite3.Connection):
        registry = RateTableRegistry()
        store = RateTableStore(emv_conn)
        store.record("admin", *registry.apply_updates({"creator_factors": {"micro": 1.5}}))

        changes = store.record("admin", *registry.reset_section("creator_factors"), reset=True)

        assert [(c.entry, c.action, c.new_value) for c in changes] == [("micro", "reset", 1.2)]
        assert store.overrides()["creator_factors"]["micro"] == 1.2

    def test_custom_topic_changes_are_logged(self, emv_conn: sqlite3.Connection):
        registry = RateTableRegistry()
        store = RateTableStore(emv_conn)
        previous = registry.current()
        registry.register_custom_topic("knitting", 1.1)

        changes = store.record("admin", previous, registry.current())

        assert [(c.section, c.entry, c.action) for c in changes] == [
            ("custom_topics", "knitting", "add")
        ]
        assert store.overrides() == {}

    def test_unchanged_table_records_nothing(self, emv_conn: sqlite3.Connection):
        table = RateTableRegistry().current()
        store = RateTableStore(emv_conn)
        assert store.record("admin", table, table) == []
        assert store.list_changes() == []

    def test_list_changes_newest_first(self, emv_conn: sqlite3.Connection):
        registry = RateTableRegistry()
        store = RateTableStore(emv_conn)
        store.record("admin", *registry.apply_updates({"creator_factors": {"micro": 1.5}}))
        store.record("admin", *registry.apply_updates({"creator_factors": {"nano": 0.85}}))

        assert [c.entry for c in store.list_changes()] == ["nano", "micro"]
        assert len(store.list_changes(limit=1)) == 1

    def test_load_into_restores_edits(self, emv_conn: sqlite3.Connection):
        edited = RateTableRegistry()
        store = RateTableStore(emv_conn)
        store.record("admin", *edited.apply_updates({"creator_factors": {"micro": 1.5}}))

        restarted = RateTableRegistry()
        assert store.load_into(restarted) == 1
        assert restarted.current() == edited.current()
