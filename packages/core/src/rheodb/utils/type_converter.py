"""
类型转换工具 - 处理各后端驱动返回的特殊类型
SQL行（asyncpg Record、aiomysql DictCursor、sqlite3.Row）统一为普通字典，值保持驱动原样
convert_to_serializable 系列只在调用方需要JSON时显式使用
"""

from decimal import Decimal
from datetime import datetime, date, time
from typing import Any, Dict, List, Mapping
from uuid import UUID

from bson import ObjectId


def convert_to_serializable(value: Any) -> Any:
    """
    将驱动返回的特殊类型转换为可序列化的基本类型

    支持的转换：
    - Decimal -> float
    - datetime/date/time -> ISO格式字符串
    - UUID / ObjectId -> 字符串
    - bytes -> UTF-8字符串或十六进制
    - 嵌套的字典和列表递归处理
    """
    if value is None:
        return None

    if isinstance(value, Decimal):
        return float(value)

    elif isinstance(value, (datetime, date, time)):
        return value.isoformat()

    elif isinstance(value, (UUID, ObjectId)):
        return str(value)

    elif isinstance(value, (bytes, bytearray, memoryview)):
        raw = bytes(value)
        try:
            return raw.decode('utf-8')
        except UnicodeDecodeError:
            return raw.hex()

    elif isinstance(value, Mapping):
        return {k: convert_to_serializable(v) for k, v in value.items()}

    elif isinstance(value, (list, tuple)):
        return [convert_to_serializable(item) for item in value]

    return value


def convert_row(row: Any) -> Dict[str, Any]:
    """
    转换单行结果为字典
    asyncpg.Record 与 sqlite3.Row 都支持 keys()，但不是 Mapping
    """
    if isinstance(row, Mapping):
        return dict(row)
    return {key: row[key] for key in row.keys()}


def convert_document(document: Mapping[str, Any]) -> Dict[str, Any]:
    """
    转换文档数据库返回的文档
    _id 统一为字符串，其余字段保持驱动原值
    """
    result = dict(document)
    if "_id" in result and isinstance(result["_id"], ObjectId):
        result["_id"] = str(result["_id"])
    return result


def convert_rows_to_serializable(rows: List[Any]) -> List[Dict[str, Any]]:
    """
    把查询结果转换为可JSON序列化的数据（按需调用，query本身不做有损转换）
    """
    return [convert_to_serializable(convert_row(row)) for row in rows]
