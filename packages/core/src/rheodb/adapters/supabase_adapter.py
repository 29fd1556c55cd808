"""
Supabase适配器 - 托管云平台，纯委托
管理器只负责生命周期和健康检查，查询通过 native_handle() 或便捷属性使用supabase SDK
"""

from typing import Any, Dict, Optional

from supabase import AsyncClient, acreate_client
from supabase.lib.client_options import AsyncClientOptions

from .base import OpaqueAdapter
from ..config.models import SupabaseSettings

# 健康检查表不存在不代表连接失败
_MISSING_TABLE_MARKERS = ("does not exist", "PGRST205", "42P01", "Could not find the table")


def _is_missing_table(error: Exception) -> bool:
    text = " ".join(str(part) for part in (
        getattr(error, "code", ""), getattr(error, "message", ""), error
    ))
    return any(marker in text for marker in _MISSING_TABLE_MARKERS)


class SupabaseAdapter(OpaqueAdapter):
    """
    Supabase适配器
    - 服务端场景：不持久化会话、不自动刷新token
    - 配置了 service_role_key 时优先使用
    """

    provider_type = "supabase"
    settings_model = SupabaseSettings

    def __init__(self, name, settings=None, tracer=None):
        super().__init__(name, settings, tracer)
        self.client: Optional[AsyncClient] = None

    async def _open(self) -> None:
        s = self.settings
        self.client = await acreate_client(
            s.url,
            s.service_role_key or s.anon_key,
            options=AsyncClientOptions(auto_refresh_token=False, persist_session=False),
        )
        await self._check_health_table()

    async def _check_health_table(self) -> None:
        """查询健康检查表；表不存在时视为连接正常"""
        try:
            await self.client.table(self.settings.health_table).select("*").limit(1).execute()
        except Exception as e:
            if not _is_missing_table(e):
                raise

    async def _close(self) -> None:
        # SDK没有显式断开
        self.client = None

    async def _ping(self) -> None:
        await self._check_health_table()

    def _native_handle(self) -> AsyncClient:
        return self.client

    # 便捷委托

    def table(self, name: str):
        return self.native_handle().table(name)

    def rpc(self, fn: str, params: Optional[Dict[str, Any]] = None):
        return self.native_handle().rpc(fn, params or {})

    @property
    def auth(self):
        return self.native_handle().auth

    @property
    def storage(self):
        return self.native_handle().storage

    @property
    def functions(self):
        return self.native_handle().functions
