"""
存储访问装饰器 - 错误重试机制
"""
import asyncio
import functools

from config import settings
from strategy_lab.domain.errors import TransientStoreError
from utils.logger_utils import get_logger

logger = get_logger("strategy_lab.retry")


def retry_on_error(max_retries=None, backoff_base=None, retry_on=(TransientStoreError,)):
    """
    异步错误重试装饰器

    只重试瞬时存储错误，其它异常直接抛出。

    Args:
        max_retries: 最大尝试次数（默认取 STORE_MAX_RETRIES）
        backoff_base: 退避基础时间（秒）
        retry_on: 需要重试的异常类型

    Returns:
        装饰器函数
    """
    max_retries = max_retries or settings.STORE_MAX_RETRIES
    backoff_base = settings.STORE_BACKOFF_BASE if backoff_base is None else backoff_base

    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    if attempt < max_retries - 1:
                        delay = backoff_base * (2 ** attempt)
                        logger.warning(
                            f"{func.__name__} 失败，{delay:.1f}秒后重试 "
                            f"({attempt+1}/{max_retries}): {e}"
                        )
                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            f"{func.__name__} 重试{max_retries}次后仍失败: {e}"
                        )
                        raise
        return wrapper
    return decorator
