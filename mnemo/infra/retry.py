"""Exponential backoff for OpenAI SDK calls.

Shared by the chat model client and the embedding client so both ports
retry the same transient failures the same way.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Callable, Coroutine
from typing import Any, TypeVar

import structlog
from openai import APIConnectionError, APIStatusError, APITimeoutError, RateLimitError

from mnemo.infra.errors import PortUnavailable

logger = structlog.get_logger()

T = TypeVar("T")

_RETRYABLE = (APIConnectionError, APITimeoutError, RateLimitError)


async def retry_call(
    coro_factory: Callable[[], Coroutine[Any, Any, T]],
    *,
    max_retries: int,
    base_delay: float,
    error_cls: type[PortUnavailable],
    context: str = "",
) -> T:
    """Execute an async call with exponential backoff retry.

    Retries on: APIConnectionError, APITimeoutError, RateLimitError.
    Non-retryable API errors are wrapped in ``error_cls``.
    """
    for attempt in range(max_retries + 1):
        try:
            return await coro_factory()
        except _RETRYABLE as e:
            if attempt == max_retries:
                raise error_cls(
                    f"{context or 'API'} call failed after {max_retries + 1} attempts: {e}"
                ) from e
            delay = base_delay * (2**attempt) + random.uniform(0, 0.5)
            logger.warning(
                "api_retry",
                attempt=attempt + 1,
                max_retries=max_retries,
                delay=round(delay, 2),
                error=str(e),
                context=context,
            )
            await asyncio.sleep(delay)
        except APIStatusError as e:
            raise error_cls(f"API error: {e.status_code} {e.message}") from e
    # Unreachable, but satisfies type checker
    raise error_cls("Retry loop exhausted")  # pragma: no cover
