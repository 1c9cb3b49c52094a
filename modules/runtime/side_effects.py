from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

from modules.common import cancel_task, log_event

SideEffect = Callable[[], Awaitable[Any]]


@dataclass(slots=True, frozen=True)
class _QueuedEffect:
    name: str
    run: SideEffect
    fields: dict[str, Any]


class SideEffectQueue:
    """Best-effort outbound work (audit rows, failure ledger, cache busting).

    Effects run on a background worker in submission order. A failing effect is
    logged and dropped; callers never wait on or observe it.
    """

    def __init__(self, *, logger: logging.Logger, max_size: int = 1000) -> None:
        self._logger = logger
        self._queue: asyncio.Queue[_QueuedEffect] = asyncio.Queue(maxsize=max(1, max_size))
        self._worker: asyncio.Task[None] | None = None
        self.completed = 0
        self.failed = 0
        self.dropped = 0

    def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="side-effect-worker")

    def submit(self, name: str, effect: SideEffect, /, **fields: Any) -> None:
        self.start()
        try:
            self._queue.put_nowait(_QueuedEffect(name=name, run=effect, fields=fields))
        except asyncio.QueueFull:
            self.dropped += 1
            log_event(
                self._logger,
                level="error",
                event="side_effect_dropped",
                message="Side-effect queue is full; effect dropped",
                side_effect=name,
                **fields,
            )

    async def _run(self) -> None:
        while True:
            effect = await self._queue.get()
            try:
                await effect.run()
                self.completed += 1
            except asyncio.CancelledError:
                raise
            except Exception as error:
                self.failed += 1
                log_event(
                    self._logger,
                    level="warning",
                    event="side_effect_failed",
                    message="Best-effort side effect failed",
                    side_effect=effect.name,
                    error=str(error),
                    **effect.fields,
                )
            finally:
                self._queue.task_done()

    async def drain(self, timeout_seconds: float = 30.0) -> None:
        if self._worker is None:
            return
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout_seconds)
        except asyncio.TimeoutError:
            log_event(
                self._logger,
                level="warning",
                event="side_effect_drain_timeout",
                message="Timed out waiting for pending side effects",
                pending=self._queue.qsize(),
            )

    async def close(self, timeout_seconds: float = 30.0) -> None:
        await self.drain(timeout_seconds)
        await cancel_task(self._worker)
        self._worker = None
