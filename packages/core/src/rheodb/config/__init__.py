"""
配置模块 - 分层配置源与provider设置模型
"""

from .base import (
    ConfigSource,
    DictConfigSource,
    YamlConfigSource,
    EnvConfigSource,
    RheoConfig,
    build_manager_config,
    expand_env_refs,
)
from .models import (
    ManagerConfig,
    ProviderSettings,
    PostgreSQLSettings,
    NeonDBSettings,
    MySQLSettings,
    SQLiteSettings,
    MongoDBSettings,
    FirebaseSettings,
    SupabaseSettings,
    validate_settings,
)

__all__ = [
    "ConfigSource",
    "DictConfigSource",
    "YamlConfigSource",
    "EnvConfigSource",
    "RheoConfig",
    "build_manager_config",
    "expand_env_refs",
    "ManagerConfig",
    "ProviderSettings",
    "PostgreSQLSettings",
    "NeonDBSettings",
    "MySQLSettings",
    "SQLiteSettings",
    "MongoDBSettings",
    "FirebaseSettings",
    "SupabaseSettings",
    "validate_settings",
]
