"""
ConnectionManager - 多后端连接管理
持有存活的适配器集合和默认provider，批量连接/断开时隔离单个后端的失败
"""

import asyncio
from typing import Any, Dict, List, Optional, Union, TYPE_CHECKING

from .adapter_factory import AdapterRegistry, default_registry
from .base import DataAdapter, DocumentAdapter, SQLAdapter
from ..config.base import build_manager_config
from ..config.models import ManagerConfig
from ..telemetry.logger import get_logger
from ..telemetry.tracer import DataTracer, get_tracer
from ..types.core_types import AdapterInfo, ConnectionState
from ..utils.errors import (
    AdapterConnectionError, ConfigurationError, NoAdaptersAvailableError, UnknownAdapterError
)
from ..utils.retry import RetryConfig, with_retry

if TYPE_CHECKING:
    from ..config.base import RheoConfig

logger = get_logger(__name__)


class ConnectionManager:
    """
    统一后端连接管理
    - initialize: 并发连接所有provider，等待全部结束，失败的provider被排除
    - get/default: 按名称或默认provider获取存活适配器
    - health_check: 每个存活适配器独立的健康状态
    - disconnect: 并发断开，错误只记录不抛出
    - reconnect: 调用方显式重连失败的provider（管理器从不自动重试）

    适配器集合只在 initialize/disconnect/reconnect 中修改，其余时间只读
    """

    def __init__(
        self,
        registry: Optional[AdapterRegistry] = None,
        tracer: Optional[DataTracer] = None
    ):
        self.registry = registry or default_registry
        self.tracer = tracer or get_tracer()
        self._adapters: Dict[str, DataAdapter] = {}
        self._settings: Dict[str, Any] = {}
        self._failed: Dict[str, AdapterInfo] = {}
        # 同一provider的reconnect串行执行
        self._reconnect_locks: Dict[str, asyncio.Lock] = {}
        self._default: Optional[str] = None
        self._connect_timeout: Optional[float] = None
        self._initialized = False

    @classmethod
    async def from_config(
        cls,
        config: "RheoConfig",
        registry: Optional[AdapterRegistry] = None
    ) -> "ConnectionManager":
        """
        根据RheoConfig创建并初始化管理器

        示例:
            manager = await ConnectionManager.from_config(RheoConfig.load())
        """
        tracer = DataTracer(service_name=config.get("service_name", "rheodb"))
        manager = cls(registry=registry, tracer=tracer)
        await manager.initialize(config.manager_config())
        return manager

    @property
    def initialized(self) -> bool:
        return self._initialized

    @property
    def default_provider(self) -> Optional[str]:
        return self._default

    # ── 初始化 ────────────────────────────────────────────────

    async def initialize(self, config: Union[ManagerConfig, Dict[str, Any], None]) -> None:
        """
        构造并并发连接所有配置的provider

        Args:
            config: {"default": id?, "providers": {id: settings}, "connect_timeout": 秒?}

        Raises:
            ConfigurationError: 配置整体结构非法（例如default不在providers中）
        """
        if self._initialized:
            logger.warning("ConnectionManager already initialized; ignoring initialize()")
            return

        manager_config = build_manager_config(config)
        self._default = manager_config.default
        self._connect_timeout = manager_config.connect_timeout

        candidates: List[DataAdapter] = []
        for provider_id, settings in manager_config.providers.items():
            self._settings[provider_id] = settings
            adapter = self._build(provider_id, settings)
            if adapter is not None:
                candidates.append(adapter)

        results = await asyncio.gather(
            *(self._connect(adapter) for adapter in candidates),
            return_exceptions=True
        )

        # 按配置顺序登记，保证“第一个存活的适配器”稳定
        for adapter, result in zip(candidates, results):
            if isinstance(result, BaseException):
                self._record_failure(adapter.name, result, adapter.info())
                logger.error(f"Provider '{adapter.name}' failed to connect: {result}")
            else:
                self._adapters[adapter.name] = adapter

        self._initialized = True
        logger.info(
            f"ConnectionManager initialized: {len(self._adapters)}/{len(manager_config.providers)} "
            f"providers connected ({', '.join(self._adapters) or 'none'})"
        )

    def _build(self, provider_id: str, settings: Any) -> Optional[DataAdapter]:
        """构造适配器；未知provider和配置错误记录后跳过"""
        provider_type = self.registry.resolve_type(provider_id, settings)
        if provider_type is None:
            message = f"Unknown provider '{provider_id}'"
            logger.warning(
                f"{message}; skipping. Registered types: {', '.join(self.registry.registered_types())}"
            )
            self._record_failure(provider_id, message, None)
            return None

        try:
            return self.registry.create(provider_id, settings, tracer=self.tracer, provider_type=provider_type)
        except ConfigurationError as e:
            logger.error(f"Invalid configuration for provider '{provider_id}': {e}; skipping")
            self._record_failure(provider_id, e, None, provider_type)
        except Exception as e:
            logger.error(f"Failed to construct adapter for provider '{provider_id}': {e}; skipping")
            self._record_failure(provider_id, e, None, provider_type)
        return None

    async def _connect(self, adapter: DataAdapter) -> None:
        """连接单个适配器，可选的超时由管理器配置"""
        if self._connect_timeout is None:
            await adapter.connect()
            return
        try:
            await asyncio.wait_for(adapter.connect(), timeout=self._connect_timeout)
        except asyncio.TimeoutError as e:
            raise AdapterConnectionError(
                adapter.name,
                f"{adapter.name}: connect timed out after {self._connect_timeout}s",
                original_error=e
            ) from e

    def _record_failure(
        self,
        provider_id: str,
        error: Union[BaseException, str],
        info: Optional[AdapterInfo],
        provider_type: Optional[str] = None
    ) -> None:
        message = str(error) or error.__class__.__name__
        if info is None:
            info = AdapterInfo(
                name=provider_id,
                provider_type=provider_type or "unknown",
                capability=None,
                state=ConnectionState.FAILED,
                error=message
            )
        else:
            info.error = message
        self._failed[provider_id] = info

    # ── 查询 ──────────────────────────────────────────────────

    def providers(self) -> List[str]:
        """存活的provider标识（配置顺序）"""
        return list(self._adapters)

    def has(self, provider_id: str) -> bool:
        return provider_id in self._adapters

    def get(self, provider_id: str) -> DataAdapter:
        """
        获取存活的适配器

        Raises:
            UnknownAdapterError: 未配置、连接失败或已断开
        """
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            raise UnknownAdapterError(provider_id, self.providers())
        return adapter

    def default(self) -> DataAdapter:
        """
        获取默认适配器
        - 配置了default：返回该provider；它未连接时抛UnknownAdapterError，不替换为其他provider
        - 未配置default：返回第一个存活的适配器

        Raises:
            UnknownAdapterError: 配置的default未连接（即使没有任何存活的适配器）
            NoAdaptersAvailableError: 未配置default且没有任何存活的适配器
        """
        if self._default is not None:
            adapter = self._adapters.get(self._default)
            if adapter is None:
                failure = self._failed.get(self._default)
                raise UnknownAdapterError(
                    self._default,
                    self.providers(),
                    details={"reason": "not connected", "error": failure.error if failure else None}
                )
            return adapter

        if not self._adapters:
            raise NoAdaptersAvailableError()
        return next(iter(self._adapters.values()))

    def sql(self, provider_id: Optional[str] = None) -> SQLAdapter:
        """按名称（或默认provider）获取SQL适配器"""
        adapter = self.get(provider_id) if provider_id else self.default()
        return adapter.as_sql()

    def document(self, provider_id: Optional[str] = None) -> DocumentAdapter:
        """按名称（或默认provider）获取文档适配器"""
        adapter = self.get(provider_id) if provider_id else self.default()
        return adapter.as_document()

    def failures(self) -> Dict[str, Optional[str]]:
        """已配置但未存活的provider及其错误信息"""
        return {provider_id: info.error for provider_id, info in self._failed.items()}

    def describe(self) -> Dict[str, AdapterInfo]:
        """每个已配置provider的状态快照（配置顺序）"""
        snapshot: Dict[str, AdapterInfo] = {}
        for provider_id in self._settings:
            if provider_id in self._adapters:
                snapshot[provider_id] = self._adapters[provider_id].info()
            elif provider_id in self._failed:
                snapshot[provider_id] = self._failed[provider_id]
        return snapshot

    # ── 健康检查 ──────────────────────────────────────────────

    async def health_check(self) -> Dict[str, bool]:
        """并发检查每个存活适配器，单个适配器失败不影响其他结果"""
        provider_ids = list(self._adapters)
        results = await asyncio.gather(
            *(self._adapters[provider_id].health_check() for provider_id in provider_ids),
            return_exceptions=True
        )

        health: Dict[str, bool] = {}
        for provider_id, result in zip(provider_ids, results):
            if isinstance(result, BaseException):
                logger.warning(f"Health check for '{provider_id}' raised: {result}")
                health[provider_id] = False
            else:
                health[provider_id] = bool(result)
        return health

    # ── 重连 ──────────────────────────────────────────────────

    async def reconnect(self, provider_id: str, retry: Optional[RetryConfig] = None) -> DataAdapter:
        """
        显式重连一个未存活的provider
        使用记住的设置构造新的适配器实例；已存活时直接返回
        并发调用按provider串行，后到的调用拿到先完成的适配器

        Args:
            provider_id: provider标识
            retry: 可选的重试配置（只作用于本次调用）

        Raises:
            UnknownAdapterError: provider从未配置，或重连期间管理器已断开
            ConfigurationError: 设置非法
            AdapterConnectionError: 连接仍然失败
        """
        if provider_id in self._adapters:
            return self._adapters[provider_id]
        if provider_id not in self._settings:
            raise UnknownAdapterError(provider_id, self.providers())

        lock = self._reconnect_locks.setdefault(provider_id, asyncio.Lock())
        async with lock:
            if provider_id in self._adapters:
                return self._adapters[provider_id]
            if provider_id not in self._settings:
                raise UnknownAdapterError(provider_id, self.providers())
            return await self._reconnect(provider_id, retry)

    async def _reconnect(self, provider_id: str, retry: Optional[RetryConfig]) -> DataAdapter:
        settings = self._settings[provider_id]

        async def attempt() -> DataAdapter:
            adapter = self.registry.create(provider_id, settings, tracer=self.tracer)
            try:
                await self._connect(adapter)
            except BaseException as e:
                self._record_failure(provider_id, e, adapter.info())
                raise
            return adapter

        try:
            if retry is not None:
                adapter = await with_retry(attempt, retry, f"reconnect {provider_id}")
            else:
                adapter = await attempt()
        except ConfigurationError as e:
            self._record_failure(provider_id, e, None)
            raise

        if provider_id not in self._settings:
            # 连接期间管理器被disconnect，新适配器不能留在管理器之外
            await adapter.disconnect()
            raise UnknownAdapterError(provider_id, self.providers(), details={"reason": "manager disconnected"})

        self._adapters[provider_id] = adapter
        self._failed.pop(provider_id, None)
        logger.info(f"Provider '{provider_id}' reconnected")
        return adapter

    # ── 断开 ──────────────────────────────────────────────────

    async def disconnect(self) -> None:
        """并发断开所有存活适配器（幂等）；之后允许再次initialize"""
        adapters = list(self._adapters.values())
        results = await asyncio.gather(
            *(adapter.disconnect() for adapter in adapters),
            return_exceptions=True
        )
        for adapter, result in zip(adapters, results):
            if isinstance(result, BaseException):
                logger.error(f"Error disconnecting provider '{adapter.name}': {result}")

        if adapters:
            logger.info(f"Disconnected {len(adapters)} provider(s)")

        self._adapters.clear()
        self._settings.clear()
        self._failed.clear()
        self._reconnect_locks.clear()
        self._default = None
        self._initialized = False

    async def __aenter__(self) -> "ConnectionManager":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()
