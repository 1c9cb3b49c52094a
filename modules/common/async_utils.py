from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from .logging import log_event

T = TypeVar("T")
R = TypeVar("R")


async def guarded_call(
    action: Callable[[], Awaitable[T] | T],
    *,
    logger: logging.Logger,
    event: str,
    message: str,
    level: str = "warning",
    default: T | None = None,
    reraise: bool = False,
    **fields: Any,
) -> T | None:
    try:
        result = action()
        if inspect.isawaitable(result):
            return await result
        return result
    except asyncio.CancelledError:
        raise
    except Exception as error:
        log_event(
            logger,
            level=level,
            event=event,
            message=message,
            error=str(error),
            **fields,
        )
        if reraise:
            raise
        return default


async def run_in_batches(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    *,
    batch_size: int,
) -> list[R | BaseException]:
    """Run ``worker`` over ``items`` with at most ``batch_size`` in flight.

    Batches run one after another; results keep input order and a failed item
    yields its exception instead of cancelling its siblings.
    """
    pending = list(items)
    size = max(1, int(batch_size))
    results: list[R | BaseException] = []
    for start in range(0, len(pending), size):
        chunk = pending[start : start + size]
        outcomes = await asyncio.gather(*(worker(item) for item in chunk), return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, asyncio.CancelledError):
                raise outcome
            results.append(outcome)
    return results


async def cancel_task(task: asyncio.Task[Any] | None) -> None:
    if task is None or task.done():
        return
    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task
