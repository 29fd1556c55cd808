"""
核心类型定义
适配器能力族、连接状态以及各类操作结果
"""

from typing import Optional, Dict, List, Any
from dataclasses import dataclass, field
from enum import Enum

__all__ = [
    "ProviderId", "Row", "Filter", "Document",
    "Capability", "ConnectionState",
    "ExecuteResult", "InsertOneResult", "InsertManyResult", "UpdateResult", "DeleteResult",
    "AdapterInfo",
]


ProviderId = str
Row = Dict[str, Any]
Filter = Dict[str, Any]
Document = Dict[str, Any]


class Capability(Enum):
    """适配器能力族"""
    SQL = "sql"
    DOCUMENT = "document"
    OPAQUE = "opaque"


class ConnectionState(Enum):
    """
    连接状态
    UNINITIALIZED -> CONNECTING -> CONNECTED -> DISCONNECTED
    UNINITIALIZED -> CONNECTING -> FAILED
    """
    UNINITIALIZED = "uninitialized"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"
    DISCONNECTED = "disconnected"


@dataclass
class ExecuteResult:
    """SQL命令执行结果"""
    affected_rows: int = 0
    last_insert_id: Optional[Any] = None


@dataclass
class InsertOneResult:
    inserted_id: str


@dataclass
class InsertManyResult:
    inserted_ids: List[str] = field(default_factory=list)


@dataclass
class UpdateResult:
    modified_count: int = 0


@dataclass
class DeleteResult:
    deleted_count: int = 0


@dataclass
class AdapterInfo:
    """适配器快照（供describe()和健康面板使用）"""
    name: ProviderId
    provider_type: str
    capability: Optional[Capability]
    state: ConnectionState
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "provider_type": self.provider_type,
            "capability": self.capability.value if self.capability else None,
            "state": self.state.value,
            "error": self.error
        }
