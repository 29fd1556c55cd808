"""
适配器系统 - 统一的后端能力契约与连接管理
SQL（PostgreSQL、NeonDB、MySQL、SQLite）、文档（MongoDB、Firebase）、不透明（Supabase）
具体适配器由注册表按需导入，驱动未安装不影响其他provider
"""

from .base import (
    DataAdapter,
    SQLAdapter,
    DocumentAdapter,
    OpaqueAdapter,
    CollectionHandle,
    TransactionHandle,
)
from .adapter_factory import AdapterRegistry, default_registry, register_adapter
from .connection_manager import ConnectionManager
from .connection_string import ConnectionStringParser
from .dialect_parser import DataDialect, SQLDialectParser
from .transaction_manager import TransactionManager, TransactionState

__all__ = [
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
    "ConnectionStringParser",
    "DataDialect",
    "SQLDialectParser",
    "TransactionManager",
    "TransactionState",
]
