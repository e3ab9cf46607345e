# Author: PB & Claude
# Maintainer: PB
# Original date: 2025.07.06
# License: (c) HRDAG, 2025, GPL-2 or newer
#
# ------
# src/fsconverge/core/retry.py

"""Exponential backoff for transport calls to remote file services."""

import random
import time
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Optional, Tuple, Type

from loguru import logger

from fsconverge.system.exceptions import NetworkError


@dataclass(frozen=True)
class RetryConfig:
    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True


NETWORK_RETRY_CONFIG = RetryConfig(max_attempts=4, base_delay=1.0, max_delay=30.0)


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Delay before the next attempt, with optional +-10% jitter."""
    if attempt <= 0:
        return 0.0
    delay = min(config.base_delay * (config.exponential_base ** (attempt - 1)), config.max_delay)
    if config.jitter:
        jitter_range = delay * 0.1
        delay += random.uniform(-jitter_range, jitter_range)
    return max(0.0, delay)


def is_retryable_error(exception: Exception, retryable_exceptions: Tuple[Type[Exception], ...]) -> bool:
    if not isinstance(exception, retryable_exceptions):
        return False
    return getattr(exception, "retry_possible", True)


def retry_with_backoff(
    config: Optional[RetryConfig] = None,
    retryable_exceptions: Tuple[Type[Exception], ...] = (NetworkError,),
    operation_name: str = "operation",
    sleep: Callable[[float], None] = time.sleep,
):
    """Decorator retrying retryable failures with exponential backoff."""
    config = config or NETWORK_RETRY_CONFIG

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            for attempt in range(1, config.max_attempts + 1):
                try:
                    result = func(*args, **kwargs)
                    if attempt > 1:
                        logger.info(f"{operation_name} succeeded on attempt {attempt}")
                    return result
                except Exception as e:
                    if not is_retryable_error(e, retryable_exceptions):
                        raise
                    if attempt >= config.max_attempts:
                        logger.error(f"{operation_name} failed after {config.max_attempts} attempts")
                        raise
                    delay = calculate_delay(attempt, config)
                    logger.warning(
                        f"{operation_name} failed on attempt {attempt}/{config.max_attempts}: {e}. "
                        f"Retrying in {delay:.2f} seconds..."
                    )
                    sleep(delay)
        return wrapper
    return decorator


# done.
