"""
MySQL数据库适配器 - 支持MySQL和MariaDB
使用aiomysql连接池，autocommit模式下由事务管理器显式开启事务
"""

from typing import Any, List, Optional

import aiomysql

from .base import SQLAdapter
from .dialect_parser import DataDialect
from ..config.models import MySQLSettings
from ..types.core_types import ExecuteResult, Row
from ..utils.type_converter import convert_row


class MySQLAdapter(SQLAdapter):
    """
    MySQL数据库适配器
    - pyformat驱动：语句统一重写为 %s，字面量 % 转义为 %%
    - insert 返回 last_insert_id
    - 不支持 RETURNING，upsert 使用 ON DUPLICATE KEY UPDATE
    """

    provider_type = "mysql"
    dialect = DataDialect.MYSQL
    settings_model = MySQLSettings

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self.pool: Optional[aiomysql.Pool] = None

    async def _open(self) -> None:
        s = self.settings
        self.pool = await aiomysql.create_pool(
            host=s.host,
            port=s.port,
            user=s.user,
            password=s.password,
            db=s.database,
            charset=s.charset,
            minsize=1,
            maxsize=s.pool_size,
            connect_timeout=s.connect_timeout,
            autocommit=True,
        )

    async def _close(self) -> None:
        if self.pool is not None:
            pool, self.pool = self.pool, None
            pool.close()
            await pool.wait_closed()

    def _native_handle(self) -> aiomysql.Pool:
        return self.pool

    def _acquire(self):
        return self.pool.acquire()

    async def _fetch(self, connection: aiomysql.Connection, sql: str, args: List[Any]) -> List[Row]:
        async with connection.cursor(aiomysql.DictCursor) as cursor:
            await cursor.execute(sql, tuple(args))
            rows = await cursor.fetchall()
        return [convert_row(row) for row in rows]

    async def _run(self, connection: aiomysql.Connection, sql: str, args: List[Any]) -> ExecuteResult:
        async with connection.cursor() as cursor:
            await cursor.execute(sql, tuple(args))
            return ExecuteResult(
                affected_rows=max(cursor.rowcount, 0),
                last_insert_id=cursor.lastrowid or None
            )

    async def _begin(self, connection: aiomysql.Connection) -> None:
        await connection.begin()

    async def _commit(self, connection: aiomysql.Connection) -> None:
        await connection.commit()

    async def _rollback(self, connection: aiomysql.Connection) -> None:
        await connection.rollback()
