"""
分布式追踪 - 基于OpenTelemetry API
为连接、断开、事务等生命周期操作创建span；未配置TracerProvider时为no-op
"""

from typing import Optional, Dict, Any, Iterator
from contextlib import contextmanager

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode


class DataTracer:
    """
    追踪器封装
    - 提供上下文管理器API
    - 异常自动记录到span并标记为ERROR
    """

    def __init__(self, service_name: str = "rheodb", enabled: bool = True):
        self.service_name = service_name
        self.enabled = enabled
        self.tracer = trace.get_tracer(service_name) if enabled else None

    @contextmanager
    def span(self, name: str, attributes: Optional[Dict[str, Any]] = None) -> Iterator[Optional[Span]]:
        """
        追踪上下文管理器
        用于追踪代码块执行；异常会被记录后原样抛出
        """
        if not self.enabled or not self.tracer:
            yield None
            return

        with self.tracer.start_as_current_span(
            name,
            attributes=attributes,
            record_exception=False,
            set_status_on_exception=False
        ) as current_span:
            try:
                yield current_span
            except BaseException as e:
                current_span.record_exception(e)
                current_span.set_status(Status(StatusCode.ERROR, str(e)))
                raise

    def add_event(self, name: str, attributes: Optional[Dict[str, Any]] = None):
        """向当前span添加事件"""
        if not self.enabled:
            return
        trace.get_current_span().add_event(name, attributes=attributes)


_default_tracer: Optional[DataTracer] = None


def get_tracer() -> DataTracer:
    """获取模块级共享追踪器"""
    global _default_tracer
    if _default_tracer is None:
        _default_tracer = DataTracer()
    return _default_tracer
