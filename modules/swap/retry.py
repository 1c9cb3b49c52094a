from __future__ import annotations

import asyncio
import logging
import random
import re
from typing import Any, Awaitable, Callable, Literal, TypeVar

from modules.common import log_event

T = TypeVar("T")

SendErrorKind = Literal["stale", "terminal", "other"]

STALE_MARKERS = ("blockhash not found", "blockhash")
# 0x1788 / 6024 only in program error code position
STALE_CODE_RE = re.compile(r"(?:\b0x1788|(?:custom program error|error number|error code):\s*6024)\b")
TERMINAL_MARKERS = (
    "insufficient funds",
    "insufficient lamports",
    "insufficientfunds",
    "constraintseeds",
    "constrainthasone",
    "constraintraw",
    "accountnotinitialized",
    "invalid account data",
)


def classify_send_error(error: BaseException | str) -> SendErrorKind:
    text = str(error).lower()
    if any(marker in text for marker in TERMINAL_MARKERS):
        return "terminal"
    if any(marker in text for marker in STALE_MARKERS) or STALE_CODE_RE.search(text):
        return "stale"
    return "other"


def is_retryable(error: BaseException) -> bool:
    return classify_send_error(error) != "terminal"


class RetryPolicy:
    """Bounded exponential backoff with uniform jitter.

    Attempt ``n`` (1-based) waits ``base * 2**(n-1) + uniform(0, jitter)``
    before attempt ``n + 1``. Terminal errors are raised without retrying.
    """

    def __init__(
        self,
        *,
        logger: logging.Logger,
        max_attempts: int = 5,
        base_delay_seconds: float = 1.0,
        jitter_seconds: float = 1.0,
    ) -> None:
        self._logger = logger
        self.max_attempts = max(1, max_attempts)
        self.base_delay_seconds = max(0.0, base_delay_seconds)
        self.jitter_seconds = max(0.0, jitter_seconds)

    def delay_for(self, attempt: int) -> float:
        jitter = random.uniform(0.0, self.jitter_seconds) if self.jitter_seconds > 0 else 0.0
        return self.base_delay_seconds * (2 ** max(0, attempt - 1)) + jitter

    async def sleep(self, seconds: float) -> None:
        await asyncio.sleep(seconds)

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        operation_name: str,
        max_attempts: int | None = None,
        retry_if: Callable[[BaseException], bool] = is_retryable,
        **log_fields: Any,
    ) -> T:
        attempts = max(1, max_attempts or self.max_attempts)
        last_error: Exception | None = None
        for attempt in range(1, attempts + 1):
            try:
                return await operation()
            except asyncio.CancelledError:
                raise
            except Exception as error:
                last_error = error
                if not retry_if(error):
                    log_event(
                        self._logger,
                        level="warning",
                        event="retry_aborted_terminal",
                        message="Operation failed with a non-retryable error",
                        operation=operation_name,
                        attempt=attempt,
                        error=str(error),
                        **log_fields,
                    )
                    raise
                if attempt >= attempts:
                    break
                delay = self.delay_for(attempt)
                log_event(
                    self._logger,
                    level="warning",
                    event="retry_scheduled",
                    message="Operation failed; retrying",
                    operation=operation_name,
                    attempt=attempt,
                    max_attempts=attempts,
                    backoff_seconds=round(delay, 3),
                    error=str(error),
                    **log_fields,
                )
                await self.sleep(delay)

        log_event(
            self._logger,
            level="error",
            event="retry_exhausted",
            message="Operation failed after exhausting retries",
            operation=operation_name,
            max_attempts=attempts,
            error=str(last_error),
            **log_fields,
        )
        if last_error is None:
            raise RuntimeError(f"{operation_name} exhausted retries without an error.")
        raise last_error
