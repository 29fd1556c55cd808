"""
SQLite数据库适配器
使用aiosqlite；单个连接加异步锁，相当于大小为1的连接池
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional

import aiosqlite

from .base import SQLAdapter
from .dialect_parser import DataDialect
from ..config.models import SQLiteSettings
from ..types.core_types import ExecuteResult, Row
from ..utils.type_converter import convert_row


class SQLiteAdapter(SQLAdapter):
    """
    SQLite适配器
    - isolation_level=None：驱动不隐式开启事务，由事务管理器显式 BEGIN/COMMIT/ROLLBACK
    - 所有操作串行化在同一个连接上；事务期间持有锁直到提交或回滚
    - 事务体内请使用传入的句柄执行语句，直接调用 adapter.query 会等待锁释放
    """

    provider_type = "sqlite"
    dialect = DataDialect.SQLITE
    settings_model = SQLiteSettings

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self.connection: Optional[aiosqlite.Connection] = None
        self._lock = asyncio.Lock()

    async def _open(self) -> None:
        self.connection = await aiosqlite.connect(
            self.settings.database,
            timeout=self.settings.timeout,
            isolation_level=None
        )
        self.connection.row_factory = aiosqlite.Row

    async def _close(self) -> None:
        if self.connection is not None:
            connection, self.connection = self.connection, None
            await connection.close()

    def _native_handle(self) -> aiosqlite.Connection:
        return self.connection

    @asynccontextmanager
    async def _acquire(self) -> AsyncIterator[aiosqlite.Connection]:
        async with self._lock:
            yield self.connection

    async def _fetch(self, connection: aiosqlite.Connection, sql: str, args: List[Any]) -> List[Row]:
        async with connection.execute(sql, args) as cursor:
            rows = await cursor.fetchall()
        return [convert_row(row) for row in rows]

    async def _run(self, connection: aiosqlite.Connection, sql: str, args: List[Any]) -> ExecuteResult:
        async with connection.execute(sql, args) as cursor:
            # DDL语句的rowcount为-1
            return ExecuteResult(
                affected_rows=max(cursor.rowcount, 0),
                last_insert_id=cursor.lastrowid or None
            )
