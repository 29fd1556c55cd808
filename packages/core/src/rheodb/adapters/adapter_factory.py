"""
适配器注册表 - provider类型到构造函数的映射
内置适配器按需动态导入，未安装的驱动不会影响其他provider
"""

import importlib
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from .base import DataAdapter
from .connection_string import ConnectionStringParser
from ..telemetry.logger import get_logger
from ..telemetry.tracer import DataTracer
from ..utils.errors import ConfigurationError

logger = get_logger(__name__)

# 构造函数签名：(provider_id, settings, tracer=None) -> 未连接的DataAdapter
AdapterConstructor = Callable[..., DataAdapter]

# 内置适配器（"模块:类名"，首次使用时导入）
BUILTIN_ADAPTERS: Dict[str, str] = {
    'postgresql': '.postgresql_adapter:PostgreSQLAdapter',
    'neondb': '.postgresql_adapter:NeonDBAdapter',
    'mysql': '.mysql_adapter:MySQLAdapter',
    'sqlite': '.sqlite_adapter:SQLiteAdapter',
    'mongodb': '.mongodb_adapter:MongoDBAdapter',
    'firebase': '.firebase_adapter:FirebaseAdapter',
    'supabase': '.supabase_adapter:SupabaseAdapter',
}


class AdapterRegistry:
    """
    适配器注册表
    - provider类型解析：settings中的 type > provider id > 别名表
    - 内置适配器延迟导入
    - 支持注册自定义适配器（测试中注册假适配器）
    """

    def __init__(self, include_builtins: bool = True):
        self._constructors: Dict[str, Union[AdapterConstructor, str]] = {}
        if include_builtins:
            self._constructors.update(BUILTIN_ADAPTERS)

    def register(self, provider_type: str, constructor: AdapterConstructor) -> None:
        """
        注册适配器构造函数

        Args:
            provider_type: provider类型标识
            constructor: 适配器类或返回适配器的工厂函数
        """
        self._constructors[provider_type.strip().lower()] = constructor

    def unregister(self, provider_type: str) -> None:
        self._constructors.pop(provider_type.strip().lower(), None)

    def registered_types(self) -> List[str]:
        return list(self._constructors)

    def __contains__(self, provider_type: str) -> bool:
        return provider_type.strip().lower() in self._constructors

    def resolve_type(self, provider_id: str, settings: Any = None) -> Optional[str]:
        """
        确定provider使用的适配器类型，无法识别时返回None

        Args:
            provider_id: 配置中的provider标识
            settings: provider设置（可带 type 字段）
        """
        explicit = settings.get('type') if isinstance(settings, Mapping) else getattr(settings, 'type', None)
        candidate = (explicit or provider_id).strip().lower()

        if candidate in self._constructors:
            return candidate

        normalized = ConnectionStringParser.normalize_db_type(candidate)
        if normalized and normalized in self._constructors:
            return normalized
        return None

    def lookup(self, provider_type: str) -> AdapterConstructor:
        """
        获取构造函数，必要时导入内置适配器模块

        Raises:
            ConfigurationError: 驱动未安装或适配器模块无法导入
        """
        entry = self._constructors[provider_type]
        if isinstance(entry, str):
            module_name, _, attr = entry.partition(':')
            try:
                module = importlib.import_module(module_name, package=__package__)
            except ImportError as e:
                raise ConfigurationError(
                    provider_type,
                    f"Driver for '{provider_type}' is not available: {e}",
                ) from e
            entry = getattr(module, attr)
            self._constructors[provider_type] = entry
        return entry

    def create(
        self,
        provider_id: str,
        settings: Any = None,
        tracer: Optional[DataTracer] = None,
        provider_type: Optional[str] = None
    ) -> DataAdapter:
        """
        构造未连接的适配器

        Raises:
            ConfigurationError: provider类型未知、驱动不可用或设置校验失败
        """
        provider_type = provider_type or self.resolve_type(provider_id, settings)
        if provider_type is None:
            raise ConfigurationError(
                provider_id,
                f"Unknown provider type for '{provider_id}'. "
                f"Registered: {', '.join(self.registered_types())}",
            )

        constructor = self.lookup(provider_type)
        adapter = constructor(provider_id, settings, tracer=tracer)
        logger.debug(f"Created {provider_type} adapter for provider '{provider_id}'")
        return adapter


# 默认注册表
default_registry = AdapterRegistry()


def register_adapter(provider_type: str, constructor: AdapterConstructor) -> None:
    """向默认注册表注册适配器"""
    default_registry.register(provider_type, constructor)
