"""Tests for migration 001: peer review wager schema."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from peerwager.cli.main import load_migration
from peerwager.core.exceptions import ConfigException


@pytest.fixture
def migration():
    return load_migration()


def _all_sql(migration) -> str:
    return "\n".join(sql for _, sql in migration._STATEMENTS)


class TestMigration001:
    def test_metadata(self, migration):
        assert migration.version == "001"
        assert migration.description == "peer_review_wagers"

    def test_ships_inside_the_package(self, migration):
        assert migration.__name__ == "peerwager.migrations.001_peer_review_wagers"

    def test_unknown_migration(self):
        with pytest.raises(ConfigException, match="999_missing"):
            load_migration("999_missing")

    def test_creates_all_tables(self, migration):
        sql = _all_sql(migration)
        for table in ("users", "course_proficiency", "peer_reviews", "token_ledger"):
            assert f"CREATE TABLE IF NOT EXISTS {table}" in sql

    def test_balance_never_negative(self, migration):
        sql = _all_sql(migration)
        assert "CHECK (token_balance >= 0)" in sql
        assert "CHECK (balance_after >= 0)" in sql

    def test_one_review_per_reviewer_and_task(self, migration):
        assert "UNIQUE (reviewer_id, task_id)" in _all_sql(migration)

    def test_ledger_is_append_only(self, migration):
        sql = _all_sql(migration)
        assert "ON UPDATE TO token_ledger DO INSTEAD NOTHING" in sql
        assert "ON DELETE TO token_ledger DO INSTEAD NOTHING" in sql

    def test_up_executes_every_statement(self, migration):
        conn = MagicMock()
        cur = conn.cursor.return_value

        migration.up(conn)

        assert cur.execute.call_count == len(migration._STATEMENTS)
        cur.close.assert_called_once()

    def test_up_names_failing_step(self, migration):
        conn = MagicMock()
        conn.cursor.return_value.execute.side_effect = Exception("syntax error")

        with pytest.raises(RuntimeError, match="create table users"):
            migration.up(conn)

    def test_down_drops_tables(self, migration):
        conn = MagicMock()
        cur = conn.cursor.return_value

        migration.down(conn)

        dropped = [c.args[0] for c in cur.execute.call_args_list]
        assert dropped[0] == "DROP TABLE IF EXISTS token_ledger CASCADE"
        assert len(dropped) == 4
