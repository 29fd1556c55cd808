"""
MongoDB文档数据库适配器
使用pymongo原生异步API（AsyncMongoClient）
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple, Union

from bson import ObjectId
from pymongo import AsyncMongoClient
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase

from .base import CollectionHandle, DocumentAdapter
from ..config.models import MongoDBSettings
from ..types.core_types import (
    DeleteResult, Document, Filter, InsertManyResult, InsertOneResult, UpdateResult
)
from ..utils.type_converter import convert_document


def _coerce_filter(filter: Optional[Filter]) -> Dict[str, Any]:
    """字符串形式的 _id 转回 ObjectId，使 insert_one 返回的id可以直接用于查询"""
    result = dict(filter or {})
    value = result.get("_id")
    if isinstance(value, str) and ObjectId.is_valid(value):
        result["_id"] = ObjectId(value)
    return result


class MongoDBCollection(CollectionHandle):
    """
    MongoDB集合句柄
    update_* 使用 $set 部分合并；未匹配时计数为0
    """

    def __init__(self, adapter: "MongoDBAdapter", name: str, collection: AsyncCollection):
        super().__init__(adapter, name)
        self.collection = collection

    async def find(self, filter: Optional[Filter] = None) -> List[Document]:
        try:
            cursor = self.collection.find(_coerce_filter(filter))
            return [convert_document(doc) for doc in await cursor.to_list(None)]
        except Exception as e:
            raise self._wrap("find", e) from e

    async def find_one(self, filter: Filter) -> Optional[Document]:
        try:
            doc = await self.collection.find_one(_coerce_filter(filter))
        except Exception as e:
            raise self._wrap("find_one", e) from e
        return convert_document(doc) if doc is not None else None

    async def insert_one(self, document: Document) -> InsertOneResult:
        try:
            result = await self.collection.insert_one(dict(document))
        except Exception as e:
            raise self._wrap("insert_one", e) from e
        return InsertOneResult(inserted_id=str(result.inserted_id))

    async def insert_many(self, documents: List[Document]) -> InsertManyResult:
        if not documents:
            return InsertManyResult()
        try:
            result = await self.collection.insert_many([dict(doc) for doc in documents])
        except Exception as e:
            raise self._wrap("insert_many", e) from e
        return InsertManyResult(inserted_ids=[str(i) for i in result.inserted_ids])

    async def update_one(self, filter: Filter, update: Document) -> UpdateResult:
        try:
            result = await self.collection.update_one(_coerce_filter(filter), {"$set": dict(update)})
        except Exception as e:
            raise self._wrap("update_one", e) from e
        return UpdateResult(modified_count=result.modified_count)

    async def update_many(self, filter: Filter, update: Document) -> UpdateResult:
        try:
            result = await self.collection.update_many(_coerce_filter(filter), {"$set": dict(update)})
        except Exception as e:
            raise self._wrap("update_many", e) from e
        return UpdateResult(modified_count=result.modified_count)

    async def delete_one(self, filter: Filter) -> DeleteResult:
        try:
            result = await self.collection.delete_one(_coerce_filter(filter))
        except Exception as e:
            raise self._wrap("delete_one", e) from e
        return DeleteResult(deleted_count=result.deleted_count)

    async def delete_many(self, filter: Filter) -> DeleteResult:
        try:
            result = await self.collection.delete_many(_coerce_filter(filter))
        except Exception as e:
            raise self._wrap("delete_many", e) from e
        return DeleteResult(deleted_count=result.deleted_count)

    async def count(self, filter: Optional[Filter] = None) -> int:
        try:
            return await self.collection.count_documents(_coerce_filter(filter))
        except Exception as e:
            raise self._wrap("count", e) from e

    # MongoDB特有操作（不在统一契约内）

    async def aggregate(self, pipeline: Sequence[Mapping[str, Any]]) -> List[Document]:
        try:
            cursor = await self.collection.aggregate(list(pipeline))
            return [convert_document(doc) for doc in await cursor.to_list(None)]
        except Exception as e:
            raise self._wrap("aggregate", e) from e

    async def create_index(
        self,
        keys: Union[str, Mapping[str, int], Sequence[Tuple[str, int]]],
        **kwargs: Any
    ) -> str:
        if isinstance(keys, Mapping):
            keys = list(keys.items())
        try:
            return await self.collection.create_index(keys, **kwargs)
        except Exception as e:
            raise self._wrap("create_index", e) from e


class MongoDBAdapter(DocumentAdapter):
    """
    MongoDB适配器
    - 连接时执行 ping 验证握手
    - native_handle() 返回数据库对象，mongo_client 返回客户端
    """

    provider_type = "mongodb"
    settings_model = MongoDBSettings

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self.client: Optional[AsyncMongoClient] = None
        self.db: Optional[AsyncDatabase] = None

    async def _open(self) -> None:
        self.client = AsyncMongoClient(self.settings.uri, **self.settings.options)
        await self.client.aconnect()
        if self.settings.database_name:
            self.db = self.client[self.settings.database_name]
        else:
            self.db = self.client.get_default_database(default="test")
        await self.db.command("ping")

    async def _close(self) -> None:
        if self.client is not None:
            client, self.client = self.client, None
            self.db = None
            await client.close()

    async def _ping(self) -> None:
        await self.db.command("ping")

    def _native_handle(self) -> AsyncDatabase:
        return self.db

    def _collection(self, name: str) -> MongoDBCollection:
        return MongoDBCollection(self, name, self.db[name])

    def raw_collection(self, name: str) -> AsyncCollection:
        """获取原始pymongo集合"""
        self._require_connected()
        return self.db[name]

    @property
    def mongo_client(self) -> AsyncMongoClient:
        self._require_connected()
        return self.client
