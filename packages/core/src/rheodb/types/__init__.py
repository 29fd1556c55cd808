"""
类型定义模块
"""

from .core_types import (
    ProviderId,
    Row,
    Filter,
    Document,
    Capability,
    ConnectionState,
    ExecuteResult,
    InsertOneResult,
    InsertManyResult,
    UpdateResult,
    DeleteResult,
    AdapterInfo,
)

__all__ = [
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
