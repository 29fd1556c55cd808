"""
配置模型 - 基于pydantic的管理器配置和各provider设置
provider设置只由对应适配器的构造函数校验，管理器不关心其结构
"""

from typing import Any, Dict, Optional, Type, TypeVar, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    model_validator,
)

from ..utils.errors import ConfigurationError

S = TypeVar("S", bound="ProviderSettings")


class ProviderSettings(BaseModel):
    """所有provider设置的基类"""

    # 显式指定provider类型，允许同一类型配置多个实例
    type: Optional[str] = None

    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class PostgreSQLSettings(ProviderSettings):
    """PostgreSQL（asyncpg连接池）"""

    connection_string: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("connection_string", "connectionString", "dsn", "url"),
    )
    host: Optional[str] = None
    port: int = 5432
    user: Optional[str] = Field(default=None, validation_alias=AliasChoices("user", "username"))
    password: Optional[str] = None
    database: Optional[str] = Field(default=None, validation_alias=AliasChoices("database", "dbname", "db"))
    ssl: Optional[Union[bool, str]] = None
    pool_size: int = Field(default=10, ge=1, validation_alias=AliasChoices("pool_size", "max"))
    pool_min: int = Field(default=1, ge=0)
    command_timeout: Optional[float] = None

    @model_validator(mode="after")
    def _require_target(self):
        if not self.connection_string and not self.host:
            raise ValueError("PostgreSQL requires connection_string or host in configuration")
        if self.pool_min > self.pool_size:
            raise ValueError("pool_min must not exceed pool_size")
        return self


class NeonDBSettings(ProviderSettings):
    """NeonDB（serverless PostgreSQL，仅支持连接字符串）"""

    connection_string: str = Field(
        validation_alias=AliasChoices("connection_string", "connectionString", "dsn", "url"),
    )
    pooled: bool = True
    pool_size: int = Field(default=5, ge=1, validation_alias=AliasChoices("pool_size", "max"))
    command_timeout: Optional[float] = None


class MySQLSettings(ProviderSettings):
    """MySQL / MariaDB（aiomysql连接池）"""

    connection_string: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("connection_string", "connectionString", "url"),
    )
    host: Optional[str] = None
    port: int = 3306
    user: Optional[str] = Field(default=None, validation_alias=AliasChoices("user", "username"))
    password: str = ""
    database: Optional[str] = Field(default=None, validation_alias=AliasChoices("database", "db"))
    pool_size: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("pool_size", "connection_limit", "connectionLimit"),
    )
    charset: str = "utf8mb4"
    connect_timeout: float = 10.0

    @model_validator(mode="before")
    @classmethod
    def _expand_connection_string(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        url = data.get("connection_string") or data.get("connectionString") or data.get("url")
        if not url:
            return data

        from ..adapters.connection_string import ConnectionStringParser

        parsed = ConnectionStringParser.parse(url)
        merged = dict(data)
        targets = (
            ("host", ("host",)),
            ("port", ("port",)),
            ("username", ("user", "username")),
            ("password", ("password",)),
            ("database", ("database", "db")),
        )
        for source, keys in targets:
            if parsed.get(source) is not None and not any(key in merged for key in keys):
                merged[keys[0]] = parsed[source]
        return merged

    @model_validator(mode="after")
    def _require_fields(self):
        missing = [name for name in ("host", "user", "database") if not getattr(self, name)]
        if missing:
            raise ValueError("MySQL requires host, user, and database in configuration")
        return self


class SQLiteSettings(ProviderSettings):
    """SQLite（aiosqlite）"""

    database: str = Field(validation_alias=AliasChoices("database", "path", "filename"))
    timeout: float = Field(default=5.0, gt=0)

    @model_validator(mode="after")
    def _non_empty(self):
        if not self.database.strip():
            raise ValueError("SQLite requires a database path or ':memory:'")
        return self


class MongoDBSettings(ProviderSettings):
    """MongoDB（pymongo异步客户端）"""

    uri: str
    database_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("database_name", "db_name", "dbName", "database"),
    )
    options: Dict[str, Any] = Field(default_factory=dict)


class FirebaseSettings(ProviderSettings):
    """Firebase（Firestore异步客户端 + 可选Realtime Database）"""

    project_id: str = Field(validation_alias=AliasChoices("project_id", "projectId"))
    client_email: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("client_email", "clientEmail")
    )
    private_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("private_key", "privateKey")
    )
    credentials_file: Optional[str] = None
    database_url: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("database_url", "databaseURL")
    )
    app_name: Optional[str] = None

    @model_validator(mode="after")
    def _pair_credentials(self):
        if bool(self.client_email) != bool(self.private_key):
            raise ValueError("Firebase requires client_email and private_key together")
        return self


class SupabaseSettings(ProviderSettings):
    """Supabase（托管云客户端，纯委托）"""

    url: str
    anon_key: str = Field(validation_alias=AliasChoices("anon_key", "anonKey", "key"))
    service_role_key: Optional[str] = Field(
        default=None, validation_alias=AliasChoices("service_role_key", "serviceRoleKey")
    )
    health_table: str = "_health_check"


class ManagerConfig(BaseModel):
    """
    ConnectionManager配置
    { default?: ProviderId, providers: { ProviderId: ProviderConfig } }
    """

    default: Optional[str] = None
    # 每个provider的设置原样保存，由对应适配器构造时校验
    providers: Dict[str, Any] = Field(default_factory=dict)
    # 每个适配器connect的超时（秒），None表示完全交给驱动
    connect_timeout: Optional[float] = Field(default=None, gt=0)

    model_config = ConfigDict(extra="ignore")

    @model_validator(mode="after")
    def _default_must_be_configured(self):
        if self.default is not None and self.default not in self.providers:
            raise ValueError(
                f"default provider '{self.default}' is not among configured providers: "
                f"{', '.join(self.providers) or '(none)'}"
            )
        return self


def validate_settings(provider: str, model: Type[S], raw: Any) -> S:
    """
    校验provider设置，将pydantic错误转换为ConfigurationError

    Args:
        provider: provider标识（用于错误信息）
        model: 设置模型类
        raw: 原始设置（通常是字典）

    Raises:
        ConfigurationError: 缺少必填字段或取值非法
    """
    if isinstance(raw, model):
        return raw
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(provider, f"{provider}: settings must be a mapping, got {type(raw).__name__}")

    try:
        return model.model_validate(raw)
    except ValidationError as e:
        first = e.errors()[0]
        field_name = ".".join(str(part) for part in first.get("loc", ())) or None
        message = first.get("msg", str(e))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        detail = f"{field_name}: {message}" if field_name else message
        raise ConfigurationError(
            provider,
            f"Invalid configuration for '{provider}': {detail}",
            field_name=field_name,
            details={"errors": e.errors(include_url=False, include_context=False)}
        ) from e
