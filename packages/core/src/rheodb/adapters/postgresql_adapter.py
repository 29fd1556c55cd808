"""
PostgreSQL数据库适配器 - 支持PostgreSQL及其衍生版本
使用asyncpg连接池提供高性能异步操作
"""

from typing import Any, Dict, List, Optional

import asyncpg

from .base import SQLAdapter
from .dialect_parser import DataDialect
from ..config.models import NeonDBSettings, PostgreSQLSettings
from ..types.core_types import ExecuteResult, Row
from ..utils.errors import AdapterConnectionError
from ..utils.type_converter import convert_row


def _affected_rows(status: str) -> int:
    """从命令状态（如 'UPDATE 3'、'INSERT 0 1'）中取出受影响行数"""
    parts = (status or "").split()
    if parts and parts[-1].isdigit():
        return int(parts[-1])
    return 0


class PostgreSQLAdapter(SQLAdapter):
    """
    PostgreSQL数据库适配器
    - asyncpg连接池，每个操作独占一个池连接
    - 原生 $n 占位符
    - acquire() 暴露原始池连接，用于契约之外的高级特性（COPY、LISTEN等）
    """

    provider_type = "postgresql"
    dialect = DataDialect.POSTGRESQL
    settings_model = PostgreSQLSettings

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self.pool: Optional[asyncpg.Pool] = None

    def _pool_params(self) -> Dict[str, Any]:
        """
        准备连接池参数
        连接字符串优先；否则使用 host/port/user/password/database
        """
        s = self.settings
        params: Dict[str, Any] = {
            "min_size": s.pool_min,
            "max_size": s.pool_size,
        }
        if s.command_timeout is not None:
            params["command_timeout"] = s.command_timeout
        if s.ssl is not None:
            # asyncpg 同时接受 bool 和 sslmode 字符串
            params["ssl"] = s.ssl

        if s.connection_string:
            params["dsn"] = s.connection_string
        else:
            params.update(
                host=s.host,
                port=s.port,
                user=s.user,
                password=s.password,
                database=s.database,
            )
        return params

    async def _open(self) -> None:
        params = self._pool_params()
        try:
            self.pool = await asyncpg.create_pool(**params)
        except Exception as e:
            raise AdapterConnectionError(self.name, self._describe_failure(e, params), original_error=e) from e

    def _describe_failure(self, error: Exception, params: Dict[str, Any]) -> str:
        """把常见驱动错误转换为可读的信息"""
        error_str = str(error)
        target = params.get("host") or "dsn"
        if "could not connect" in error_str or "Connection refused" in error_str:
            return (
                f"Cannot reach PostgreSQL server {target}:{params.get('port', '')}. "
                f"Check that the server is running and accepts connections"
            )
        if "password authentication failed" in error_str or "authentication failed" in error_str:
            return f"PostgreSQL authentication failed for user '{params.get('user')}'"
        if "database" in error_str and "does not exist" in error_str:
            return f"PostgreSQL database does not exist: {error_str}"
        return f"PostgreSQL connection failed: {error_str}"

    async def _close(self) -> None:
        if self.pool is not None:
            pool, self.pool = self.pool, None
            await pool.close()

    def _native_handle(self) -> asyncpg.Pool:
        return self.pool

    def _acquire(self):
        return self.pool.acquire()

    def acquire(self):
        """
        从连接池取出原始asyncpg连接

        示例:
            async with adapter.acquire() as conn:
                await conn.copy_records_to_table(...)
        """
        self._require_connected()
        return self.pool.acquire()

    async def _fetch(self, connection: asyncpg.Connection, sql: str, args: List[Any]) -> List[Row]:
        rows = await connection.fetch(sql, *args)
        return [convert_row(row) for row in rows]

    async def _run(self, connection: asyncpg.Connection, sql: str, args: List[Any]) -> ExecuteResult:
        status = await connection.execute(sql, *args)
        return ExecuteResult(affected_rows=_affected_rows(status))


class NeonDBAdapter(PostgreSQLAdapter):
    """
    NeonDB适配器 - serverless PostgreSQL
    只接受连接字符串；pooled=False 时退化为单连接池
    """

    provider_type = "neondb"
    settings_model = NeonDBSettings

    def _pool_params(self) -> Dict[str, Any]:
        s = self.settings
        params: Dict[str, Any] = {
            "dsn": s.connection_string,
            "min_size": 1,
            "max_size": s.pool_size if s.pooled else 1,
        }
        if s.command_timeout is not None:
            params["command_timeout"] = s.command_timeout
        return params

    def _describe_failure(self, error: Exception, params: Dict[str, Any]) -> str:
        return f"NeonDB connection failed: {error}"
