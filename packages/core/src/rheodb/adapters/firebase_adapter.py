"""
Firebase适配器 - Firestore文档存储 + 可选Realtime Database
使用firebase-admin的Firestore异步客户端
"""

from typing import Any, Dict, List, Optional

import firebase_admin
from firebase_admin import credentials, db as realtime_db, firestore_async
from google.cloud.firestore_v1 import FieldFilter

from .base import CollectionHandle, DocumentAdapter
from ..config.models import FirebaseSettings
from ..types.core_types import (
    DeleteResult, Document, Filter, InsertManyResult, InsertOneResult, UpdateResult
)
from ..utils.errors import OperationError

# Firestore单个批量写入的操作上限
BATCH_LIMIT = 500

TOKEN_URI = "https://oauth2.googleapis.com/token"


def _chunks(items: List[Any], size: int = BATCH_LIMIT):
    for start in range(0, len(items), size):
        yield items[start:start + size]


class FirestoreCollection(CollectionHandle):
    """
    Firestore集合句柄
    - 过滤条件翻译为一组 == 条件
    - 返回的文档带有 id 字段
    - *_one 操作作用于查询结果中的第一个文档（Firestore默认按文档id排序）
    """

    def __init__(self, adapter: "FirebaseAdapter", name: str, ref):
        super().__init__(adapter, name)
        self.ref = ref

    def _query(self, filter: Optional[Filter]):
        query = self.ref
        for key, value in (filter or {}).items():
            query = query.where(filter=FieldFilter(key, "==", value))
        return query

    async def _snapshots(self, filter: Optional[Filter], limit: Optional[int] = None) -> list:
        query = self._query(filter)
        if limit is not None:
            query = query.limit(limit)
        return [snapshot async for snapshot in query.stream()]

    async def find(self, filter: Optional[Filter] = None) -> List[Document]:
        try:
            snapshots = await self._snapshots(filter)
        except Exception as e:
            raise self._wrap("find", e) from e
        return [{"id": s.id, **(s.to_dict() or {})} for s in snapshots]

    async def find_one(self, filter: Filter) -> Optional[Document]:
        try:
            snapshots = await self._snapshots(filter, limit=1)
        except Exception as e:
            raise self._wrap("find_one", e) from e
        if not snapshots:
            return None
        return {"id": snapshots[0].id, **(snapshots[0].to_dict() or {})}

    async def insert_one(self, document: Document) -> InsertOneResult:
        try:
            _, doc_ref = await self.ref.add(dict(document))
        except Exception as e:
            raise self._wrap("insert_one", e) from e
        return InsertOneResult(inserted_id=doc_ref.id)

    async def insert_many(self, documents: List[Document]) -> InsertManyResult:
        inserted_ids: List[str] = []
        try:
            for chunk in _chunks(list(documents)):
                batch = self.adapter.firestore.batch()
                for document in chunk:
                    doc_ref = self.ref.document()
                    batch.set(doc_ref, dict(document))
                    inserted_ids.append(doc_ref.id)
                await batch.commit()
        except Exception as e:
            raise self._wrap("insert_many", e) from e
        return InsertManyResult(inserted_ids=inserted_ids)

    async def update_one(self, filter: Filter, update: Document) -> UpdateResult:
        try:
            snapshots = await self._snapshots(filter, limit=1)
            if not snapshots:
                return UpdateResult(modified_count=0)
            await self.ref.document(snapshots[0].id).update(dict(update))
        except Exception as e:
            raise self._wrap("update_one", e) from e
        return UpdateResult(modified_count=1)

    async def update_many(self, filter: Filter, update: Document) -> UpdateResult:
        try:
            snapshots = await self._snapshots(filter)
            for chunk in _chunks(snapshots):
                batch = self.adapter.firestore.batch()
                for snapshot in chunk:
                    batch.update(self.ref.document(snapshot.id), dict(update))
                await batch.commit()
        except Exception as e:
            raise self._wrap("update_many", e) from e
        return UpdateResult(modified_count=len(snapshots))

    async def delete_one(self, filter: Filter) -> DeleteResult:
        try:
            snapshots = await self._snapshots(filter, limit=1)
            if not snapshots:
                return DeleteResult(deleted_count=0)
            await self.ref.document(snapshots[0].id).delete()
        except Exception as e:
            raise self._wrap("delete_one", e) from e
        return DeleteResult(deleted_count=1)

    async def delete_many(self, filter: Filter) -> DeleteResult:
        try:
            snapshots = await self._snapshots(filter)
            for chunk in _chunks(snapshots):
                batch = self.adapter.firestore.batch()
                for snapshot in chunk:
                    batch.delete(self.ref.document(snapshot.id))
                await batch.commit()
        except Exception as e:
            raise self._wrap("delete_many", e) from e
        return DeleteResult(deleted_count=len(snapshots))

    async def count(self, filter: Optional[Filter] = None) -> int:
        try:
            return len(await self._snapshots(filter))
        except Exception as e:
            raise self._wrap("count", e) from e


class FirebaseAdapter(DocumentAdapter):
    """
    Firebase适配器
    - 每个provider使用独立命名的firebase App，同一进程可配置多个项目
    - 显式凭据（client_email + private_key）> 凭据文件 > 应用默认凭据
    - native_handle() 返回Firestore异步客户端
    """

    provider_type = "firebase"
    settings_model = FirebaseSettings

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self.app: Optional[firebase_admin.App] = None
        self.firestore = None
        self._owns_app = False

    @property
    def app_name(self) -> str:
        return self.settings.app_name or f"rheodb-{self.name}"

    def _credential(self) -> Optional[credentials.Base]:
        s = self.settings
        if s.client_email and s.private_key:
            return credentials.Certificate({
                "type": "service_account",
                "project_id": s.project_id,
                "client_email": s.client_email,
                # 环境变量中的私钥通常把换行写成字面量 \n
                "private_key": s.private_key.replace("\\n", "\n"),
                "token_uri": TOKEN_URI,
            })
        if s.credentials_file:
            return credentials.Certificate(s.credentials_file)
        return None

    async def _open(self) -> None:
        try:
            self.app = firebase_admin.get_app(self.app_name)
        except ValueError:
            options: Dict[str, Any] = {"projectId": self.settings.project_id}
            if self.settings.database_url:
                options["databaseURL"] = self.settings.database_url
            self.app = firebase_admin.initialize_app(self._credential(), options, name=self.app_name)
            self._owns_app = True

        self.firestore = firestore_async.client(app=self.app)

    async def _close(self) -> None:
        self.firestore = None
        if self.app is not None and self._owns_app:
            firebase_admin.delete_app(self.app)
        self.app = None
        self._owns_app = False

    async def _ping(self) -> None:
        async for _ in self.firestore.collections():
            break

    def _native_handle(self):
        return self.firestore

    def _collection(self, name: str) -> FirestoreCollection:
        return FirestoreCollection(self, name, self.firestore.collection(name))

    def realtime(self, path: str = "/"):
        """
        获取Realtime Database引用

        Raises:
            OperationError: 未配置 database_url
        """
        self._require_connected()
        if not self.settings.database_url:
            raise OperationError(
                self.name, "Realtime Database not configured. Add database_url to configuration."
            )
        return realtime_db.reference(path, app=self.app)
