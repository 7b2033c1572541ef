"""Unit tests for schema creation (taskquest/db/schema.py)"""
import pytest

from taskquest.db.schema import SCHEMA_STATEMENTS, create_schema


def test_schema_enforces_uniqueness():
    ddl = "\n".join(SCHEMA_STATEMENTS)
    assert "UNIQUE (user_id, streak_type)" in ddl
    assert "UNIQUE (user_id, achievement_id)" in ddl
    assert "UNIQUE (user_id, period_key, quest_id)" in ddl
    assert "UNIQUE (user_id, period_key, slot)" in ddl


def test_schema_is_idempotent():
    for statement in SCHEMA_STATEMENTS:
        assert "IF NOT EXISTS" in statement


@pytest.mark.asyncio
async def test_create_schema_runs_every_statement(mock_database, mock_db_cursor):
    await create_schema(mock_database)

    assert mock_database.transactions == 1
    assert mock_db_cursor.execute.call_count == len(SCHEMA_STATEMENTS)
