"""
分层配置系统
配置源按优先级排列：测试覆盖 > 环境变量 > YAML文件 > 内置默认值
支持点号分隔的嵌套键（如 database.default）
"""

import copy
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import ValidationError

from .models import ManagerConfig
from ..utils.errors import ConfigurationError

ENV_PREFIX = "RHEODB_"
DEFAULT_CONFIG_FILES = ("rheodb.yaml", "rheodb.yml", "backend.config.yaml")

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-([^}]*))?\}")

_MISSING = object()


def _lookup(data: Dict[str, Any], key: str) -> Any:
    """按点号路径取值，不存在时返回 _MISSING"""
    current: Any = data
    for part in key.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """递归合并字典，override优先"""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def expand_env_refs(value: Any) -> Any:
    """
    展开 ${VAR} 和 ${VAR:-default} 形式的环境变量引用
    凭据通常通过这种方式写进YAML
    """
    if isinstance(value, str):
        return _ENV_REF.sub(lambda m: os.environ.get(m.group(1), m.group(2) or ""), value)
    if isinstance(value, dict):
        return {k: expand_env_refs(v) for k, v in value.items()}
    if isinstance(value, list):
        return [expand_env_refs(item) for item in value]
    return value


class ConfigSource(ABC):
    """配置源接口"""

    @abstractmethod
    def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    def get_all(self) -> Dict[str, Any]:
        pass


class DictConfigSource(ConfigSource):
    """内存字典配置源"""

    def __init__(self, data: Optional[Dict[str, Any]] = None):
        self._data = data or {}

    def get(self, key: str) -> Optional[Any]:
        value = _lookup(self._data, key)
        return None if value is _MISSING else value

    def get_all(self) -> Dict[str, Any]:
        return copy.deepcopy(self._data)


class YamlConfigSource(DictConfigSource):
    """YAML文件配置源"""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Config file not found: {self.path}")

        raw = yaml.safe_load(self.path.read_text(encoding="utf-8")) or {}
        if not isinstance(raw, dict):
            raise ConfigurationError("config", f"{self.path}: top level must be a mapping")
        super().__init__(expand_env_refs(raw))


class EnvConfigSource(DictConfigSource):
    """
    环境变量配置源
    RHEODB_DATABASE__DEFAULT=pg  ->  {"database": {"default": "pg"}}
    """

    def __init__(self, prefix: str = ENV_PREFIX, environ: Optional[Dict[str, str]] = None):
        self.prefix = prefix
        environ = os.environ if environ is None else environ

        data: Dict[str, Any] = {}
        for name, value in environ.items():
            if not name.startswith(prefix):
                continue
            path = [part.lower() for part in name[len(prefix):].split("__") if part]
            if not path:
                continue
            current = data
            for part in path[:-1]:
                current = current.setdefault(part, {})
                if not isinstance(current, dict):
                    break
            else:
                current[path[-1]] = value
        super().__init__(data)


class RheoConfig:
    """
    rheodb配置
    - 多个配置源按优先级查询（列表越靠前优先级越高）
    - 提供管理器配置的构建与校验
    """

    DEFAULTS: Dict[str, Any] = {
        "service_name": "rheodb",
        "logging": {"level": "INFO", "format": "text"},
        "database": {"providers": {}},
    }

    def __init__(self, config_sources: Optional[List[ConfigSource]] = None):
        self.config_sources: List[ConfigSource] = list(config_sources or [])
        self.config_sources.append(DictConfigSource(self.DEFAULTS))

    @classmethod
    def load(
        cls,
        path: Optional[Union[str, Path]] = None,
        workspace_root: Optional[Path] = None,
        use_env: bool = True
    ) -> "RheoConfig":
        """
        从YAML文件和环境变量加载配置

        Args:
            path: 显式指定的配置文件；为空时在workspace_root下查找默认文件名
            workspace_root: 查找默认配置文件的目录，默认当前目录
            use_env: 是否叠加 RHEODB_ 环境变量
        """
        sources: List[ConfigSource] = []
        if use_env:
            sources.append(EnvConfigSource())

        if path is not None:
            sources.append(YamlConfigSource(path))
        else:
            root = workspace_root or Path.cwd()
            for name in DEFAULT_CONFIG_FILES:
                candidate = root / name
                if candidate.exists():
                    sources.append(YamlConfigSource(candidate))
                    break

        return cls(sources)

    def get(self, key: str, default: Any = None) -> Any:
        """按优先级获取配置值"""
        for source in self.config_sources:
            value = source.get(key)
            if value is not None:
                return value
        return default

    def get_all(self) -> Dict[str, Any]:
        """合并所有配置源"""
        merged: Dict[str, Any] = {}
        for source in reversed(self.config_sources):
            merged = _deep_merge(merged, source.get_all())
        return merged

    def manager_config(self) -> ManagerConfig:
        """
        构建ConnectionManager配置

        Raises:
            ConfigurationError: database 段结构非法（如default不在providers中）
        """
        section = self.get_all().get("database") or {}
        return build_manager_config(section)


def build_manager_config(raw: Union[ManagerConfig, Dict[str, Any], None]) -> ManagerConfig:
    """
    将原始字典转换为ManagerConfig

    Raises:
        ConfigurationError: 结构非法
    """
    if isinstance(raw, ManagerConfig):
        return raw

    try:
        return ManagerConfig.model_validate(raw or {})
    except ValidationError as e:
        first = e.errors()[0]
        message = first.get("msg", str(e))
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        raise ConfigurationError("database", f"Invalid database configuration: {message}") from e
