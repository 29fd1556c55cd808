"""
监控遥测系统
提供结构化日志与OpenTelemetry追踪
"""

from .tracer import DataTracer, get_tracer
from .logger import get_logger, setup_logging, JsonFormatter, TextFormatter

__all__ = [
    "DataTracer",
    "get_tracer",
    "get_logger",
    "setup_logging",
    "JsonFormatter",
    "TextFormatter"
]
