from __future__ import annotations

import asyncio
import logging
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

import httpx

from aisecretary.core.config import get_settings
from aisecretary.services.telemetry import increment_counter, record_external_call


logger = logging.getLogger(__name__)


TransientException = (TimeoutError, asyncio.TimeoutError, OSError, httpx.TransportError)


def _default_retryable(exc: Exception) -> bool:
    # Retry only transient network/timeout failures and upstream 5xx responses.
    if isinstance(exc, TransientException):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    status = getattr(exc, "status_code", None)
    if isinstance(status, int) and status >= 500:
        return True
    return False


@dataclass(frozen=True)
class RetryPolicy:
    timeout_ms: int
    max_attempts: int
    backoff_ms: int


def default_retry_policy() -> RetryPolicy:
    settings = get_settings()
    return RetryPolicy(
        timeout_ms=settings.ext_call_timeout_ms,
        max_attempts=settings.ext_retry_max_attempts,
        backoff_ms=settings.ext_retry_backoff_ms,
    )


def single_attempt_policy() -> RetryPolicy:
    # Chat notifications are never retried; they still get the bounded timeout.
    settings = get_settings()
    return RetryPolicy(timeout_ms=settings.ext_call_timeout_ms, max_attempts=1, backoff_ms=0)


async def retry_async(
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
    retryable: Callable[[Exception], bool] | None = None,
) -> Any:
    # Retry helper with jittered backoff for transient failures only.
    policy = policy or default_retry_policy()
    retryable = retryable or _default_retryable
    attempt = 1
    while True:
        try:
            return await asyncio.wait_for(func(), timeout=policy.timeout_ms / 1000.0)
        except Exception as exc:  # noqa: BLE001 - caller handles non-transient failures
            if attempt >= max(policy.max_attempts, 1) or not retryable(exc):
                raise
            increment_counter("external_retries_total")
            logger.info("external_call_retry attempt=%s error=%s", attempt, type(exc).__name__)
            jitter = random.uniform(0.5, 1.5)
            sleep_s = (policy.backoff_ms / 1000.0) * (2 ** (attempt - 1)) * jitter
            await asyncio.sleep(sleep_s)
            attempt += 1


async def timed_call(
    integration: str,
    func: Callable[[], Awaitable[Any]],
    *,
    policy: RetryPolicy | None = None,
) -> Any:
    # Wrap an external call with retries and record its latency/outcome.
    started = time.monotonic()
    try:
        result = await retry_async(func, policy=policy)
    except Exception:
        record_external_call(
            integration=integration,
            latency_ms=(time.monotonic() - started) * 1000.0,
            success=False,
        )
        raise
    record_external_call(
        integration=integration,
        latency_ms=(time.monotonic() - started) * 1000.0,
        success=True,
    )
    return result
