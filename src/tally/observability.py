"""Event logging helpers: timed spans and bounded retries.

Only whitelisted context keys are emitted so that amounts, names and other
payroll data never reach the logs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterator
from contextlib import contextmanager
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SAFE_CONTEXT_KEYS = frozenset(
    {
        "firm_id",
        "user_id",
        "pay_run_id",
        "run_id",
        "run_number",
        "pack_id",
        "pack_version",
        "exception_id",
        "exception_count",
        "check_count",
        "status",
        "attempt",
        "attempts",
        "duration_ms",
        "error_name",
    }
)


def safe_context(context: dict[str, Any]) -> dict[str, Any]:
    """Drop non-whitelisted keys and stringify identifiers."""
    safe: dict[str, Any] = {}
    for key, value in context.items():
        if key not in SAFE_CONTEXT_KEYS or value is None:
            continue
        safe[key] = value if isinstance(value, (int, float, bool)) else str(value)
    return safe


def log_event(event: str, level: int = logging.INFO, **context: Any) -> None:
    """Log a named event with whitelisted context."""
    logger.log(level, event, extra={"event": event, **safe_context(context)})


@contextmanager
def start_span(event: str, **context: Any) -> Iterator[None]:
    """Log ``<event>_STARTED`` then ``_COMPLETED`` or ``_FAILED`` around a block."""
    started = time.perf_counter()
    log_event(f"{event}_STARTED", **context)
    try:
        yield
    except Exception as exc:
        duration_ms = int((time.perf_counter() - started) * 1000)
        log_event(
            f"{event}_FAILED",
            logging.ERROR,
            duration_ms=duration_ms,
            error_name=type(exc).__name__,
            **context,
        )
        raise
    duration_ms = int((time.perf_counter() - started) * 1000)
    log_event(f"{event}_COMPLETED", duration_ms=duration_ms, **context)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int,
    delay_ms: int,
    event: str,
    context: dict[str, Any] | None = None,
    retry_on: tuple[type[Exception], ...] = (OSError,),
) -> T:
    """Await ``operation`` up to ``attempts`` times with a fixed delay between tries.

    Only ``retry_on`` errors are retried, and the last one is re-raised once
    all attempts are exhausted. Anything else, including ``TallyError``,
    propagates from the first attempt.
    """
    context = context or {}
    attempts = max(1, attempts)
    attempt = 1

    while True:
        log_event(f"{event}_ATTEMPT", attempt=attempt, attempts=attempts, **context)
        try:
            return await operation()
        except retry_on as exc:
            log_event(
                f"{event}_FAILED",
                logging.WARNING,
                attempt=attempt,
                attempts=attempts,
                error_name=type(exc).__name__,
                **context,
            )
            if attempt >= attempts:
                raise
        await asyncio.sleep(delay_ms / 1000)
        attempt += 1
