"""
结构化日志系统
支持JSON格式和文本格式，日志记录自动附带OpenTelemetry追踪信息
"""

import json
import logging
import sys
from typing import Any, Optional
from datetime import datetime

from opentelemetry import trace

ROOT_LOGGER_NAME = "rheodb"

# LogRecord 自带属性，JSON输出时不再重复
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName', 'taskName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'message', 'service',
    'timestamp', 'trace_id', 'span_id'
])


def get_logger(name: str) -> logging.Logger:
    """
    获取标准日志器

    Args:
        name: 日志器名称，通常为 __name__

    Returns:
        标准 Python 日志器
    """
    return logging.getLogger(name)


class TraceContextFilter(logging.Filter):
    """为日志记录添加当前span的trace_id/span_id"""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service = self.service_name
        span_context = trace.get_current_span().get_span_context()
        if span_context.is_valid:
            record.trace_id = format(span_context.trace_id, "032x")
            record.span_id = format(span_context.span_id, "016x")
        return True


class JsonFormatter(logging.Formatter):
    """JSON格式化器"""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        """格式化日志记录为JSON"""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "service": getattr(record, "service", self.service_name),
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if hasattr(record, 'trace_id'):
            log_entry["trace_id"] = record.trace_id
        if hasattr(record, 'span_id'):
            log_entry["span_id"] = record.span_id

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # extra= 传入的自定义字段
        for key, value in record.__dict__.items():
            if key not in _RESERVED_ATTRS and key not in log_entry:
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class TextFormatter(logging.Formatter):
    """文本格式化器 - 人类可读的日志格式"""

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )


def setup_logging(config: Optional[Any] = None) -> logging.Logger:
    """
    按配置初始化 rheodb 日志器

    读取的配置键：
        logging.level   DEBUG | INFO | WARNING | ERROR（默认 INFO）
        logging.format  text | json（默认 text）
        logging.file    可选的日志文件路径
        service_name    服务名（默认 rheodb）

    Args:
        config: 任何提供 get(key, default) 的配置对象（如 RheoConfig）

    Returns:
        配置好的 rheodb 根日志器
    """
    def _get(key: str, default: Any) -> Any:
        if config is None:
            return default
        value = config.get(key, default)
        return default if value is None else value

    service_name = _get("service_name", "rheodb")
    level = getattr(logging, str(_get("logging.level", "INFO")).upper(), logging.INFO)
    log_format = str(_get("logging.format", "text")).lower()

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    # 重复调用时替换而不是叠加处理器
    logger.handlers.clear()

    if log_format == "json":
        formatter: logging.Formatter = JsonFormatter(service_name)
    else:
        formatter = TextFormatter()

    trace_filter = TraceContextFilter(service_name)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    console_handler.addFilter(trace_filter)
    logger.addHandler(console_handler)

    log_file = _get("logging.file", None)
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        file_handler.addFilter(trace_filter)
        logger.addHandler(file_handler)

    return logger
