"""HTTP client and retry helpers for upstream node calls."""

from asyncio import sleep
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

import httpx

from blockwatch.helpers.constants import (
    DEFAULT_TIMEOUT,
    MAX_RETRIES,
    RETRY_BASE_DELAY,
    RETRY_MAX_DELAY,
)
from blockwatch.helpers.logging import get_logger


logger = get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

# Transport failures and JSON-RPC error responses.
UPSTREAM_ERRORS: tuple[type[Exception], ...] = (httpx.HTTPError, ValueError)


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Exponential backoff delay for a zero-based attempt, capped at max_delay.

    Example:
        >>> backoff_delay(3, 1.0, 60.0)
        8.0
    """
    return min(base_delay * (2**attempt), max_delay)


def retry_with_backoff(
    max_retries: int = MAX_RETRIES,
    base_delay: float = RETRY_BASE_DELAY,
    max_delay: float = RETRY_MAX_DELAY,
    *,
    retry_on: tuple[type[Exception], ...] = UPSTREAM_ERRORS,
    log_errors: bool = True,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Retry an async upstream call with capped exponential backoff.

    Only exceptions listed in ``retry_on`` are retried; anything else
    propagates on the first attempt. The last error is re-raised once
    ``max_retries`` attempts have failed.

    Args:
        max_retries: Attempts before giving up
        base_delay: Delay after the first failed attempt in seconds
        max_delay: Cap on the delay between attempts
        retry_on: Exception types worth another attempt
        log_errors: Whether failed attempts are logged

    Example:
        ```python
        from blockwatch.helpers.http import retry_with_backoff

        @retry_with_backoff(max_retries=3, base_delay=2.0)
        async def fetch_logs(client: EthClient, block_hash: str) -> list[RawLog]:
            return await client.get_logs(block_hash)
        ```
    """
    if max_retries < 1:
        msg = f"max_retries must be at least 1, got {max_retries}"
        raise ValueError(msg)

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    attempt += 1
                    if attempt >= max_retries:
                        if log_errors:
                            logger.error(
                                "%s failed after %d attempts: %s",
                                func.__name__,
                                attempt,
                                e,
                            )
                        raise

                    delay = backoff_delay(attempt - 1, base_delay, max_delay)
                    if log_errors:
                        logger.warning(
                            "%s %s (attempt %d/%d), retrying in %.1fs: %s",
                            func.__name__,
                            type(e).__name__,
                            attempt,
                            max_retries,
                            delay,
                            e,
                        )
                    await sleep(delay)

        return wrapper

    return decorator


def create_http_client(
    timeout: float = DEFAULT_TIMEOUT, **kwargs: Any
) -> httpx.AsyncClient:
    """HTTP client for JSON-RPC calls to the upstream node."""
    kwargs.setdefault("headers", {"Content-Type": "application/json"})
    return httpx.AsyncClient(timeout=timeout, **kwargs)


__all__ = [
    "UPSTREAM_ERRORS",
    "backoff_delay",
    "create_http_client",
    "retry_with_backoff",
]
