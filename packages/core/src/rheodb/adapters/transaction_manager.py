"""
TransactionManager - 事务管理器
BEGIN / body / COMMIT；body出错时回滚并原样抛出原始异常
回滚本身失败只记录日志，不替换调用方看到的异常
"""

import itertools
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar, TYPE_CHECKING

from ..telemetry.logger import get_logger
from ..utils.errors import TransactionError

if TYPE_CHECKING:
    from .base import SQLAdapter, TransactionHandle

T = TypeVar("T")

_transaction_ids = itertools.count(1)


class TransactionState(Enum):
    """事务状态"""
    INACTIVE = "inactive"
    ACTIVE = "active"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    FAILED = "failed"


@dataclass
class TransactionInfo:
    """事务信息"""
    transaction_id: str
    state: TransactionState = TransactionState.INACTIVE
    start_time: float = field(default_factory=time.monotonic)
    error: Optional[str] = None


class TransactionManager:
    """
    数据库事务管理器

    核心功能：
    1. 独占连接上的 BEGIN/COMMIT/ROLLBACK 编排
    2. 原始异常保证（回滚失败不替换原始异常）
    3. 最近一次事务的状态记录（便于诊断）
    """

    def __init__(self, adapter: "SQLAdapter"):
        self.adapter = adapter
        self.last_transaction: Optional[TransactionInfo] = None
        self.logger = get_logger(__name__)

    async def run(
        self,
        handle: "TransactionHandle",
        body: Callable[["TransactionHandle"], Awaitable[T]]
    ) -> T:
        """
        在handle绑定的连接上执行事务

        Raises:
            TransactionError: BEGIN 或 COMMIT 失败
            body抛出的任何异常（回滚之后原样抛出）
        """
        info = TransactionInfo(transaction_id=f"{self.adapter.name}-txn-{next(_transaction_ids)}")
        self.last_transaction = info
        connection = handle.connection

        with self.adapter.tracer.span("rheodb.transaction", {
            "rheodb.provider": self.adapter.name,
            "rheodb.transaction_id": info.transaction_id
        }):
            try:
                await self.adapter._begin(connection)
            except Exception as e:
                info.state = TransactionState.FAILED
                info.error = str(e)
                self.logger.error(f"Failed to start transaction {info.transaction_id}: {e}")
                raise TransactionError(
                    self.adapter.name, f"Failed to start transaction: {e}", original_error=e
                ) from e

            info.state = TransactionState.ACTIVE
            self.logger.debug(f"Transaction {info.transaction_id} started")

            try:
                result = await body(handle)
            except BaseException as e:
                await self._rollback(info, connection, e)
                raise

            try:
                await self.adapter._commit(connection)
            except Exception as e:
                self.logger.error(f"Failed to commit transaction {info.transaction_id}: {e}")
                await self._rollback(info, connection, e)
                info.state = TransactionState.FAILED
                raise TransactionError(
                    self.adapter.name, f"Failed to commit transaction: {e}", original_error=e
                ) from e

            info.state = TransactionState.COMMITTED
            self.logger.debug(f"Transaction {info.transaction_id} committed")
            return result

    async def _rollback(self, info: TransactionInfo, connection, reason: BaseException) -> None:
        """回滚事务；失败时记录日志后返回，由调用方继续抛出原始异常"""
        info.error = str(reason) or reason.__class__.__name__
        try:
            await self.adapter._rollback(connection)
        except Exception as e:
            info.state = TransactionState.FAILED
            self.logger.error(
                f"Failed to rollback transaction {info.transaction_id} "
                f"(original error: {info.error}): {e}"
            )
            return

        info.state = TransactionState.ROLLED_BACK
        self.logger.info(f"Transaction {info.transaction_id} rolled back: {info.error}")

    def is_in_transaction(self) -> bool:
        """检查最近一次事务是否仍在进行"""
        return self.last_transaction is not None and self.last_transaction.state == TransactionState.ACTIVE
