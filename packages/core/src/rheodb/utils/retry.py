"""
重试机制 - 提供可配置的重试逻辑
只在调用方显式要求时使用（例如 ConnectionManager.reconnect），管理器自身从不自动重试
"""

import asyncio
import logging
import random
from typing import TypeVar, Callable, Awaitable, Optional, Tuple, Type
from dataclasses import dataclass

from .errors import AdapterConnectionError

T = TypeVar('T')

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """重试配置"""
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = True
    retryable_exceptions: Optional[Tuple[Type[BaseException], ...]] = None


async def with_retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig,
    description: str = "operation"
) -> T:
    """
    按配置重试异步调用
    支持指数退避、抖动、异常过滤
    """
    last_exception: Optional[BaseException] = None

    for attempt in range(config.max_attempts):
        try:
            return await func()

        except Exception as e:
            last_exception = e

            if config.retryable_exceptions and not isinstance(e, config.retryable_exceptions):
                logger.warning(f"{description}: non-retryable exception: {e}")
                raise

            if attempt == config.max_attempts - 1:
                break

            delay = _calculate_delay(attempt, config)
            logger.warning(
                f"{description}: attempt {attempt + 1}/{config.max_attempts} failed: {e}. "
                f"Retrying in {delay:.2f} seconds..."
            )
            await asyncio.sleep(delay)

    logger.error(f"{description}: all {config.max_attempts} attempts failed. Last error: {last_exception}")
    raise last_exception


def _calculate_delay(attempt: int, config: RetryConfig) -> float:
    """计算延迟时间（指数退避 + 抖动）"""
    delay = config.base_delay * (config.exponential_base ** attempt)
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay = delay * (0.5 + random.random() * 0.5)

    return delay


CONNECT_RETRY_CONFIG = RetryConfig(
    max_attempts=3,
    base_delay=2.0,
    max_delay=30.0,
    retryable_exceptions=(AdapterConnectionError, TimeoutError, OSError)
)
