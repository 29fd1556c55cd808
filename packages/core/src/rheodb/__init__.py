"""
rheodb 统一后端连接管理核心包
导出主要API供外部使用
"""

# 适配器与连接管理
from .adapters.base import (
    DataAdapter,
    SQLAdapter,
    DocumentAdapter,
    OpaqueAdapter,
    CollectionHandle,
    TransactionHandle,
)
from .adapters.adapter_factory import AdapterRegistry, default_registry, register_adapter
from .adapters.connection_manager import ConnectionManager

# 配置
from .config.base import RheoConfig
from .config.models import ManagerConfig

# 监控遥测
from .telemetry.logger import get_logger, setup_logging
from .telemetry.tracer import DataTracer

# 工具函数
from .utils.retry import with_retry, RetryConfig
from .utils.type_converter import convert_rows_to_serializable
from .utils.errors import (
    RheoError,
    ConfigurationError,
    AdapterConnectionError,
    UnknownAdapterError,
    NoAdaptersAvailableError,
    NotInitializedError,
    CapabilityError,
    OperationError,
    TransactionError,
)

# 类型定义
from .types.core_types import *

__version__ = "0.1.0"
__all__ = [
    # 适配器与连接管理
    "DataAdapter",
    "SQLAdapter",
    "DocumentAdapter",
    "OpaqueAdapter",
    "CollectionHandle",
    "TransactionHandle",
    "AdapterRegistry",
    "default_registry",
    "register_adapter",
    "ConnectionManager",

    # 配置
    "RheoConfig",
    "ManagerConfig",

    # 监控遥测
    "get_logger",
    "setup_logging",
    "DataTracer",

    # 工具函数
    "with_retry",
    "RetryConfig",
    "convert_rows_to_serializable",
    "RheoError",
    "ConfigurationError",
    "AdapterConnectionError",
    "UnknownAdapterError",
    "NoAdaptersAvailableError",
    "NotInitializedError",
    "CapabilityError",
    "OperationError",
    "TransactionError",

    # 类型定义
    "ProviderId",
    "Row",
    "Filter",
    "Document",
    "Capability",
    "ConnectionState",
    "ExecuteResult",
    "InsertOneResult",
    "InsertManyResult",
    "UpdateResult",
    "DeleteResult",
    "AdapterInfo",
]
