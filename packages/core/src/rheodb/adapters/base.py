"""
DataAdapter基类 - 统一后端适配器接口
一个基础能力契约（生命周期、健康检查、原生句柄）加三个能力族：
SQLAdapter / DocumentAdapter / OpaqueAdapter
"""

from abc import ABC, abstractmethod
from typing import (
    Any, AsyncContextManager, Awaitable, Callable, ClassVar, Dict, List, Optional,
    Sequence, Type, TypeVar, Union, TYPE_CHECKING
)

from ..config.models import ProviderSettings, validate_settings
from ..telemetry.logger import get_logger
from ..telemetry.tracer import DataTracer, get_tracer
from ..types.core_types import (
    AdapterInfo, Capability, ConnectionState, DeleteResult, Document,
    ExecuteResult, Filter, InsertManyResult, InsertOneResult, Row, UpdateResult
)
from ..utils.errors import (
    AdapterConnectionError, CapabilityError, NotInitializedError, OperationError, RheoError
)
from .dialect_parser import DataDialect, Params, SQLDialectParser

if TYPE_CHECKING:
    from .transaction_manager import TransactionManager

T = TypeVar("T")


class DataAdapter(ABC):
    """
    适配器基类
    - connect/disconnect 是唯一允许修改连接状态的操作
    - health_check 从不抛异常，失败统一折叠为 False
    - 按需向下转换为具体能力族（as_sql/as_document/as_opaque）
    """

    provider_type: ClassVar[str] = "unknown"
    capability: ClassVar[Capability]
    settings_model: ClassVar[Type[ProviderSettings]] = ProviderSettings

    def __init__(
        self,
        name: str,
        settings: Union[ProviderSettings, Dict[str, Any], None] = None,
        tracer: Optional[DataTracer] = None
    ):
        """
        构造未连接的适配器；设置在这里校验

        Raises:
            ConfigurationError: 设置缺少必填字段或取值非法
        """
        self.name = name
        self.settings = validate_settings(name, self.settings_model, settings)
        self.tracer = tracer or get_tracer()
        self.logger = get_logger(f"rheodb.adapters.{self.provider_type}")
        self._state = ConnectionState.UNINITIALIZED
        self._last_error: Optional[str] = None

    # ── 生命周期 ──────────────────────────────────────────────

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def last_error(self) -> Optional[str]:
        return self._last_error

    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    async def connect(self) -> None:
        """
        建立连接
        已连接时直接返回；已断开的实例不可再次连接（需要新建实例）

        Raises:
            AdapterConnectionError: 网络、认证或握手失败
        """
        if self._state == ConnectionState.CONNECTED:
            return
        if self._state == ConnectionState.DISCONNECTED:
            raise AdapterConnectionError(
                self.name, f"{self.name}: adapter was disconnected; create a new instance to reconnect"
            )

        self._state = ConnectionState.CONNECTING
        with self.tracer.span("rheodb.connect", {"rheodb.provider": self.name,
                                                 "rheodb.provider_type": self.provider_type}):
            try:
                await self._open()
            except BaseException as e:
                self._state = ConnectionState.FAILED
                self._last_error = str(e) or e.__class__.__name__
                await self._release_partial()
                if isinstance(e, AdapterConnectionError) or not isinstance(e, Exception):
                    raise
                raise AdapterConnectionError(
                    self.name, f"{self.provider_type} connection failed: {e}", original_error=e
                ) from e

        self._state = ConnectionState.CONNECTED
        self._last_error = None
        self.logger.info(f"{self.name}: connected ({self.provider_type})")

    async def disconnect(self) -> None:
        """关闭连接（幂等）"""
        if self._state != ConnectionState.CONNECTED:
            return

        with self.tracer.span("rheodb.disconnect", {"rheodb.provider": self.name}):
            try:
                await self._close()
            finally:
                self._state = ConnectionState.DISCONNECTED
        self.logger.info(f"{self.name}: disconnected")

    async def _release_partial(self) -> None:
        """connect失败后释放已经打开的部分资源"""
        try:
            await self._close()
        except Exception as e:
            self.logger.debug(f"{self.name}: cleanup after failed connect raised: {e}")

    async def health_check(self) -> bool:
        """轻量往返检查（查询或ping），失败返回False"""
        if not self.is_connected():
            return False
        try:
            await self._ping()
            return True
        except Exception as e:
            self.logger.warning(f"{self.name}: health check failed: {e}")
            return False

    def native_handle(self) -> Any:
        """
        获取底层驱动/客户端对象

        Raises:
            NotInitializedError: 尚未成功connect
        """
        self._require_connected()
        return self._native_handle()

    def _require_connected(self) -> None:
        if not self.is_connected():
            raise NotInitializedError(self.name)

    @abstractmethod
    async def _open(self) -> None:
        """打开驱动连接/连接池"""

    @abstractmethod
    async def _close(self) -> None:
        """释放驱动资源；必须容忍部分打开的状态"""

    @abstractmethod
    async def _ping(self) -> None:
        """健康检查往返，失败时抛异常"""

    @abstractmethod
    def _native_handle(self) -> Any:
        pass

    # ── 能力转换 ──────────────────────────────────────────────

    def as_sql(self) -> "SQLAdapter":
        if isinstance(self, SQLAdapter):
            return self
        raise CapabilityError(self.name, Capability.SQL.value, self.capability.value)

    def as_document(self) -> "DocumentAdapter":
        if isinstance(self, DocumentAdapter):
            return self
        raise CapabilityError(self.name, Capability.DOCUMENT.value, self.capability.value)

    def as_opaque(self) -> "OpaqueAdapter":
        if isinstance(self, OpaqueAdapter):
            return self
        raise CapabilityError(self.name, Capability.OPAQUE.value, self.capability.value)

    def info(self) -> AdapterInfo:
        return AdapterInfo(
            name=self.name,
            provider_type=self.provider_type,
            capability=self.capability,
            state=self._state,
            error=self._last_error
        )

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} state={self._state.value}>"


class TransactionHandle:
    """
    事务作用域句柄
    绑定到事务独占的连接上，只暴露 query/execute
    """

    def __init__(self, adapter: "SQLAdapter", connection: Any):
        self.adapter = adapter
        self.connection = connection

    async def query(self, sql: str, params: Params = None) -> List[Row]:
        return await self.adapter._query_on(self.connection, sql, params)

    async def execute(self, sql: str, params: Params = None) -> ExecuteResult:
        return await self.adapter._execute_on(self.connection, sql, params)


class SQLAdapter(DataAdapter):
    """
    SQL能力族
    - query/execute 接受任意占位符风格，由方言处理器重写
    - transaction 在独占连接上执行 BEGIN / body / COMMIT，出错回滚并抛出原始异常
    - select/insert/update/delete/upsert 是 query/execute 之上的便捷封装
    """

    capability = Capability.SQL
    dialect: ClassVar[DataDialect]

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self.dialect_parser = SQLDialectParser(self.dialect)
        self._transaction_manager: Optional["TransactionManager"] = None

    @property
    def transaction_manager(self) -> "TransactionManager":
        if self._transaction_manager is None:
            from .transaction_manager import TransactionManager
            self._transaction_manager = TransactionManager(self)
        return self._transaction_manager

    # ── 驱动层钩子 ────────────────────────────────────────────

    @abstractmethod
    def _acquire(self) -> AsyncContextManager[Any]:
        """从连接池取出一个独占连接（异步上下文管理器）"""

    @abstractmethod
    async def _fetch(self, connection: Any, sql: str, args: List[Any]) -> List[Row]:
        pass

    @abstractmethod
    async def _run(self, connection: Any, sql: str, args: List[Any]) -> ExecuteResult:
        pass

    async def _begin(self, connection: Any) -> None:
        await self._run(connection, "BEGIN", [])

    async def _commit(self, connection: Any) -> None:
        await self._run(connection, "COMMIT", [])

    async def _rollback(self, connection: Any) -> None:
        await self._run(connection, "ROLLBACK", [])

    async def _ping(self) -> None:
        await self.query("SELECT 1")

    # ── 核心操作 ──────────────────────────────────────────────

    def _prepare(self, sql: str, params: Params) -> tuple:
        try:
            return self.dialect_parser.normalize(sql, params)
        except ValueError as e:
            raise OperationError(self.name, f"Invalid statement parameters: {e}", statement=sql) from e

    async def _query_on(self, connection: Any, sql: str, params: Params = None) -> List[Row]:
        statement, args = self._prepare(sql, params)
        try:
            return await self._fetch(connection, statement, args)
        except RheoError:
            raise
        except Exception as e:
            raise OperationError(
                self.name, f"Query execution failed: {e}", statement=sql, original_error=e
            ) from e

    async def _execute_on(self, connection: Any, sql: str, params: Params = None) -> ExecuteResult:
        statement, args = self._prepare(sql, params)
        try:
            return await self._run(connection, statement, args)
        except RheoError:
            raise
        except Exception as e:
            raise OperationError(
                self.name, f"Command execution failed: {e}", statement=sql, original_error=e
            ) from e

    async def query(self, sql: str, params: Params = None) -> List[Row]:
        """执行查询并返回行（字典列表）"""
        self._require_connected()
        async with self._acquire() as connection:
            return await self._query_on(connection, sql, params)

    async def execute(self, sql: str, params: Params = None) -> ExecuteResult:
        """执行命令（INSERT、UPDATE、DELETE、DDL等）"""
        self._require_connected()
        async with self._acquire() as connection:
            return await self._execute_on(connection, sql, params)

    async def transaction(self, body: Callable[[TransactionHandle], Awaitable[T]]) -> T:
        """
        在独占连接上执行事务

        Args:
            body: 接收TransactionHandle的异步函数

        Returns:
            body的返回值

        Raises:
            body抛出的原始异常（回滚之后）；BEGIN/COMMIT失败时抛TransactionError
        """
        self._require_connected()
        async with self._acquire() as connection:
            handle = TransactionHandle(self, connection)
            return await self.transaction_manager.run(handle, body)

    # ── 便捷封装 ──────────────────────────────────────────────

    async def select(
        self,
        table: str,
        where: Optional[Dict[str, Any]] = None,
        columns: Union[str, Sequence[str]] = "*"
    ) -> List[Row]:
        sql, args = self._build(self.dialect_parser.build_select, table, where, columns)
        return await self.query(sql, args)

    async def insert(
        self,
        table: str,
        data: Dict[str, Any],
        returning: Optional[Union[str, Sequence[str]]] = None
    ) -> Union[ExecuteResult, Optional[Row]]:
        """
        插入一行
        指定returning且方言支持RETURNING时返回插入的行，否则返回ExecuteResult
        """
        sql, args = self._build(self.dialect_parser.build_insert, table, data, returning)
        if returning and self.dialect_parser.features.supports_returning:
            rows = await self.query(sql, args)
            return rows[0] if rows else None
        return await self.execute(sql, args)

    async def update(self, table: str, data: Dict[str, Any], where: Dict[str, Any]) -> ExecuteResult:
        sql, args = self._build(self.dialect_parser.build_update, table, data, where)
        return await self.execute(sql, args)

    async def delete(self, table: str, where: Dict[str, Any]) -> ExecuteResult:
        sql, args = self._build(self.dialect_parser.build_delete, table, where)
        return await self.execute(sql, args)

    async def upsert(
        self,
        table: str,
        data: Dict[str, Any],
        conflict_columns: Sequence[str],
        update_columns: Optional[Sequence[str]] = None
    ) -> ExecuteResult:
        sql, args = self._build(
            self.dialect_parser.build_upsert, table, data, conflict_columns, update_columns
        )
        return await self.execute(sql, args)

    def _build(self, builder: Callable[..., tuple], *args: Any) -> tuple:
        try:
            return builder(*args)
        except ValueError as e:
            raise OperationError(self.name, str(e)) from e


class CollectionHandle(ABC):
    """
    集合句柄 - 基于过滤条件的文档CRUD
    过滤条件是 字段 -> 精确值 的映射（仅相等语义）
    update_* 是部分合并而非整体替换；未匹配时计数返回0
    """

    def __init__(self, adapter: "DocumentAdapter", name: str):
        self.adapter = adapter
        self.name = name

    @abstractmethod
    async def find(self, filter: Optional[Filter] = None) -> List[Document]:
        pass

    @abstractmethod
    async def find_one(self, filter: Filter) -> Optional[Document]:
        pass

    @abstractmethod
    async def insert_one(self, document: Document) -> InsertOneResult:
        pass

    @abstractmethod
    async def insert_many(self, documents: List[Document]) -> InsertManyResult:
        pass

    @abstractmethod
    async def update_one(self, filter: Filter, update: Document) -> UpdateResult:
        pass

    @abstractmethod
    async def update_many(self, filter: Filter, update: Document) -> UpdateResult:
        pass

    @abstractmethod
    async def delete_one(self, filter: Filter) -> DeleteResult:
        pass

    @abstractmethod
    async def delete_many(self, filter: Filter) -> DeleteResult:
        pass

    @abstractmethod
    async def count(self, filter: Optional[Filter] = None) -> int:
        pass

    def _wrap(self, operation: str, error: Exception) -> OperationError:
        return OperationError(
            self.adapter.name,
            f"{operation} on collection '{self.name}' failed: {error}",
            original_error=error
        )


class DocumentAdapter(DataAdapter):
    """文档能力族"""

    capability = Capability.DOCUMENT

    def collection(self, name: str) -> CollectionHandle:
        """
        获取集合句柄

        Raises:
            NotInitializedError: 尚未成功connect
        """
        self._require_connected()
        if not name:
            raise OperationError(self.name, "Collection name must not be empty")
        return self._collection(name)

    @abstractmethod
    def _collection(self, name: str) -> CollectionHandle:
        pass


class OpaqueAdapter(DataAdapter):
    """
    不透明能力族 - 纯委托
    管理器只负责生命周期和健康检查，调用方通过native_handle()使用厂商SDK
    """

    capability = Capability.OPAQUE
