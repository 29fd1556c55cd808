"""SQLite adapter tests against real database files in tmp_path.

Exercises the SQL capability end to end: placeholder styles,
execute results, transactions with rollback, and the convenience
helpers built on top of query/execute.
"""

from __future__ import annotations

import pytest
import pytest_asyncio

from rheodb.adapters.base import TransactionHandle
from rheodb.adapters.connection_manager import ConnectionManager
from rheodb.adapters.sqlite_adapter import SQLiteAdapter
from rheodb.adapters.transaction_manager import TransactionState
from rheodb.config.test_config import TestConfig
from rheodb.types.core_types import ConnectionState, ExecuteResult
from rheodb.utils.errors import (
    AdapterConnectionError,
    ConfigurationError,
    NotInitializedError,
    OperationError,
    TransactionError,
)

# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def adapter(sqlite_path):
    db = SQLiteAdapter("local", {"database": sqlite_path})
    await db.connect()
    await db.execute(
        "CREATE TABLE users (id INTEGER PRIMARY KEY, email TEXT UNIQUE NOT NULL, name TEXT, visits INTEGER DEFAULT 0)"
    )
    yield db
    await db.disconnect()


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_state_transitions(self, sqlite_path):
        db = SQLiteAdapter("local", {"database": sqlite_path})
        assert db.state == ConnectionState.UNINITIALIZED
        assert not db.is_connected()

        await db.connect()
        assert db.state == ConnectionState.CONNECTED
        assert await db.health_check() is True

        await db.disconnect()
        assert db.state == ConnectionState.DISCONNECTED
        assert await db.health_check() is False
        await db.disconnect()

    @pytest.mark.asyncio
    async def test_disconnected_instance_cannot_reconnect(self, sqlite_path):
        db = SQLiteAdapter("local", {"database": sqlite_path})
        await db.connect()
        await db.disconnect()

        with pytest.raises(AdapterConnectionError, match="create a new instance"):
            await db.connect()

    def test_native_handle_before_connect(self, sqlite_path):
        db = SQLiteAdapter("local", {"path": sqlite_path})
        with pytest.raises(NotInitializedError, match="local not initialized"):
            db.native_handle()

    @pytest.mark.asyncio
    async def test_query_before_connect(self, sqlite_path):
        db = SQLiteAdapter("local", {"database": sqlite_path})
        with pytest.raises(NotInitializedError):
            await db.query("SELECT 1")

    def test_missing_database_is_configuration_error(self):
        with pytest.raises(ConfigurationError) as excinfo:
            SQLiteAdapter("local", {})
        assert excinfo.value.provider == "local"
        assert excinfo.value.field_name == "database"

    @pytest.mark.asyncio
    async def test_connect_failure_marks_failed(self, tmp_path):
        db = SQLiteAdapter("broken", {"database": str(tmp_path / "missing-dir" / "x.db")})
        with pytest.raises(AdapterConnectionError) as excinfo:
            await db.connect()
        assert excinfo.value.provider == "broken"
        assert db.state == ConnectionState.FAILED
        assert db.info().error

    @pytest.mark.asyncio
    async def test_in_memory_database(self):
        db = SQLiteAdapter("mem", {"database": ":memory:"})
        await db.connect()
        try:
            assert await db.query("SELECT 1 AS one") == [{"one": 1}]
        finally:
            await db.disconnect()


# ---------------------------------------------------------------------------
# Query / execute
# ---------------------------------------------------------------------------


class TestQueryExecute:
    @pytest.mark.asyncio
    async def test_execute_reports_rows_and_last_insert_id(self, adapter):
        result = await adapter.execute(
            "INSERT INTO users (email, name) VALUES (?, ?)", ["ada@example.com", "Ada"]
        )
        assert result == ExecuteResult(affected_rows=1, last_insert_id=1)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("sql,params", [
        ("SELECT name FROM users WHERE email = ?", ["ada@example.com"]),
        ("SELECT name FROM users WHERE email = $1", ["ada@example.com"]),
        ("SELECT name FROM users WHERE email = %s", ["ada@example.com"]),
        ("SELECT name FROM users WHERE email = :email", {"email": "ada@example.com"}),
    ])
    async def test_placeholder_styles(self, adapter, sql, params):
        await adapter.execute("INSERT INTO users (email, name) VALUES (?, ?)", ["ada@example.com", "Ada"])
        assert await adapter.query(sql, params) == [{"name": "Ada"}]

    @pytest.mark.asyncio
    async def test_values_come_back_as_stored(self, adapter):
        await adapter.execute("CREATE TABLE blobs (data BLOB, n INTEGER, r REAL, note TEXT)")
        payload = b"\xff\x00abc"
        await adapter.execute("INSERT INTO blobs VALUES (?, ?, ?, ?)", [payload, 2 ** 40, 0.5, None])

        rows = await adapter.query("SELECT data, n, r, note FROM blobs")

        assert rows == [{"data": payload, "n": 2 ** 40, "r": 0.5, "note": None}]
        assert isinstance(rows[0]["data"], bytes)

    @pytest.mark.asyncio
    async def test_update_nothing_matches(self, adapter):
        result = await adapter.execute("UPDATE users SET name = ? WHERE id = ?", ["x", 999])
        assert result.affected_rows == 0

    @pytest.mark.asyncio
    async def test_sql_error_is_operation_error(self, adapter):
        with pytest.raises(OperationError) as excinfo:
            await adapter.query("SELECT * FROM no_such_table")
        assert excinfo.value.statement == "SELECT * FROM no_such_table"
        assert excinfo.value.original_error is not None

    @pytest.mark.asyncio
    async def test_parameter_count_mismatch(self, adapter):
        with pytest.raises(OperationError, match="parameters"):
            await adapter.query("SELECT * FROM users WHERE id = ? AND email = ?", [1])


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


class TestTransaction:
    @pytest.mark.asyncio
    async def test_commit_on_success(self, adapter):
        async def body(trx: TransactionHandle):
            await trx.execute("INSERT INTO users (email) VALUES (?)", ["a@example.com"])
            await trx.execute("INSERT INTO users (email) VALUES (?)", ["b@example.com"])
            rows = await trx.query("SELECT COUNT(*) AS n FROM users")
            return rows[0]["n"]

        assert await adapter.transaction(body) == 2
        assert await adapter.query("SELECT COUNT(*) AS n FROM users") == [{"n": 2}]
        assert adapter.transaction_manager.last_transaction.state == TransactionState.COMMITTED

    @pytest.mark.asyncio
    async def test_rollback_and_rethrow_original_error(self, adapter):
        boom = ValueError("boom")

        async def body(trx: TransactionHandle):
            await trx.execute("INSERT INTO users (email) VALUES (?)", ["partial@example.com"])
            raise boom

        with pytest.raises(ValueError) as excinfo:
            await adapter.transaction(body)

        assert excinfo.value is boom
        assert await adapter.query("SELECT * FROM users") == []
        assert adapter.transaction_manager.last_transaction.state == TransactionState.ROLLED_BACK

    @pytest.mark.asyncio
    async def test_rollback_failure_does_not_replace_error(self, adapter, monkeypatch, caplog):
        async def broken_rollback(connection):
            raise RuntimeError("rollback exploded")

        monkeypatch.setattr(adapter, "_rollback", broken_rollback)

        async def body(trx):
            raise KeyError("original")

        with pytest.raises(KeyError, match="original"):
            await adapter.transaction(body)

        assert "rollback exploded" in caplog.text
        assert adapter.transaction_manager.last_transaction.state == TransactionState.FAILED
        # put the connection back in autocommit for teardown
        await adapter.native_handle().execute("ROLLBACK")

    @pytest.mark.asyncio
    async def test_begin_failure_is_transaction_error(self, adapter, monkeypatch):
        async def broken_begin(connection):
            raise RuntimeError("cannot begin")

        monkeypatch.setattr(adapter, "_begin", broken_begin)

        async def body(trx):
            return "never"

        with pytest.raises(TransactionError, match="Failed to start transaction"):
            await adapter.transaction(body)

    @pytest.mark.asyncio
    async def test_failed_statement_inside_body_rolls_back(self, adapter):
        async def body(trx):
            await trx.execute("INSERT INTO users (email) VALUES (?)", ["dup@example.com"])
            await trx.execute("INSERT INTO users (email) VALUES (?)", ["dup@example.com"])

        with pytest.raises(OperationError):
            await adapter.transaction(body)
        assert await adapter.query("SELECT * FROM users") == []


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------


class TestHelpers:
    @pytest.mark.asyncio
    async def test_insert_select_update_delete(self, adapter):
        result = await adapter.insert("users", {"email": "ada@example.com", "name": "Ada"})
        assert result.affected_rows == 1

        row = await adapter.insert("users", {"email": "bob@example.com", "name": "Bob"}, returning=["id", "name"])
        assert row == {"id": 2, "name": "Bob"}

        assert await adapter.select("users", {"name": "Ada"}, columns=["email"]) == [{"email": "ada@example.com"}]

        updated = await adapter.update("users", {"name": "Robert"}, {"id": 2})
        assert updated.affected_rows == 1

        deleted = await adapter.delete("users", {"email": "ada@example.com"})
        assert deleted.affected_rows == 1
        assert await adapter.select("users", columns="name") == [{"name": "Robert"}]

    @pytest.mark.asyncio
    async def test_upsert(self, adapter):
        await adapter.upsert("users", {"email": "ada@example.com", "name": "Ada"}, ["email"])
        await adapter.upsert("users", {"email": "ada@example.com", "name": "Ada L."}, ["email"])

        assert await adapter.select("users", columns=["email", "name"]) == [
            {"email": "ada@example.com", "name": "Ada L."}
        ]

    @pytest.mark.asyncio
    async def test_invalid_identifier_rejected(self, adapter):
        with pytest.raises(OperationError, match="invalid SQL identifier"):
            await adapter.select("users; DROP TABLE users")


# ---------------------------------------------------------------------------
# Through the manager
# ---------------------------------------------------------------------------


class TestManagerWithSQLite:
    @pytest.mark.asyncio
    async def test_transaction_scenario_via_manager(self, sqlite_path):
        config = TestConfig.create_with_sqlite_database(sqlite_path)
        config.set_test_provider("broken", {"type": "sqlite"})

        manager = await ConnectionManager.from_config(config)
        try:
            assert manager.providers() == ["sqlite"]
            db = manager.default().as_sql()
            await db.execute("CREATE TABLE items (id INTEGER PRIMARY KEY, label TEXT)")

            async def body(trx):
                await trx.execute("INSERT INTO items (label) VALUES (:label)", {"label": "draft"})
                raise RuntimeError("boom")

            with pytest.raises(RuntimeError, match="boom"):
                await db.transaction(body)
            assert await db.query("SELECT * FROM items") == []
            assert await manager.health_check() == {"sqlite": True}
        finally:
            await manager.disconnect()
