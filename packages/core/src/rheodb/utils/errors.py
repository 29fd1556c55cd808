"""
自定义异常类 - 提供结构化的错误处理
定义统一数据后端连接管理特有的异常类型
"""

from typing import Optional, Dict, Any, Iterable


class RheoError(Exception):
    """rheodb基础异常类"""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """转换为字典格式"""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details
        }


class ConfigurationError(RheoError):
    """配置异常 - 适配器构造时发现必填字段缺失或取值非法"""

    def __init__(
        self,
        provider: str,
        message: str,
        field_name: Optional[str] = None,
        **kwargs
    ):
        kwargs.setdefault("error_code", "CONFIGURATION_ERROR")
        super().__init__(message, **kwargs)
        self.provider = provider
        self.field_name = field_name

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            "provider": self.provider,
            "field_name": self.field_name
        })
        return result


class AdapterConnectionError(RheoError):
    """数据库连接异常（网络、认证、握手失败）"""

    def __init__(
        self,
        provider: str,
        message: str,
        original_error: Optional[BaseException] = None,
        **kwargs
    ):
        kwargs.setdefault("error_code", "CONNECTION_ERROR")
        super().__init__(message, **kwargs)
        self.provider = provider
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            "provider": self.provider,
            "original_error": str(self.original_error) if self.original_error else None
        })
        return result


class UnknownAdapterError(RheoError):
    """请求的provider没有存活的适配器"""

    def __init__(self, provider: str, available: Iterable[str], **kwargs):
        self.provider = provider
        self.available = list(available)
        kwargs.setdefault("error_code", "UNKNOWN_ADAPTER")
        super().__init__(
            f"Unknown adapter '{provider}'. Available: {', '.join(self.available)}",
            **kwargs
        )

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            "provider": self.provider,
            "available": self.available
        })
        return result


class NoAdaptersAvailableError(RheoError):
    """default()调用时没有任何存活的适配器"""

    def __init__(self, message: str = "No adapters available", **kwargs):
        kwargs.setdefault("error_code", "NO_ADAPTERS_AVAILABLE")
        super().__init__(message, **kwargs)


class NotInitializedError(RheoError):
    """适配器尚未成功connect"""

    def __init__(self, provider: str, message: Optional[str] = None, **kwargs):
        kwargs.setdefault("error_code", "NOT_INITIALIZED")
        super().__init__(
            message or f"{provider} not initialized. Call connect() first.",
            **kwargs
        )
        self.provider = provider


class CapabilityError(RheoError):
    """请求的能力族与后端不匹配"""

    def __init__(self, provider: str, expected: str, actual: str, **kwargs):
        kwargs.setdefault("error_code", "CAPABILITY_MISMATCH")
        super().__init__(
            f"Adapter '{provider}' provides {actual} capability, not {expected}",
            **kwargs
        )
        self.provider = provider
        self.expected = expected
        self.actual = actual


class OperationError(RheoError):
    """query/execute/集合操作在调用时失败"""

    def __init__(
        self,
        provider: str,
        message: str,
        statement: Optional[str] = None,
        original_error: Optional[BaseException] = None,
        **kwargs
    ):
        kwargs.setdefault("error_code", "OPERATION_ERROR")
        super().__init__(message, **kwargs)
        self.provider = provider
        self.statement = statement
        self.original_error = original_error

    def to_dict(self) -> Dict[str, Any]:
        result = super().to_dict()
        result.update({
            "provider": self.provider,
            "statement": self.statement,
            "original_error": str(self.original_error) if self.original_error else None
        })
        return result


class TransactionError(RheoError):
    """事务控制语句（BEGIN/COMMIT）失败"""

    def __init__(
        self,
        provider: str,
        message: str,
        original_error: Optional[BaseException] = None,
        **kwargs
    ):
        kwargs.setdefault("error_code", "TRANSACTION_ERROR")
        super().__init__(message, **kwargs)
        self.provider = provider
        self.original_error = original_error
