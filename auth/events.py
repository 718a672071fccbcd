"""
auth/events.py -- In-process event queue for post-registration work.

register() publishes a RegistrationCompleted event and returns immediately;
the ConfirmationWorker (auth/worker.py) consumes the queue on the event loop.
publish() never blocks and never raises, so a full queue cannot fail a
registration that has already been persisted.

register() runs on a threadpool worker under FastAPI. Once bind() has
attached the queue to the server loop, publish() from any other thread hands
the event to that loop with call_soon_threadsafe(); asyncio.Queue itself is
not thread-safe.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

logger = logging.getLogger("authorization.events")


@dataclass(frozen=True)
class RegistrationCompleted:
    user_id: int
    email: str
    first_name: str


class EventQueue:
    """Thin wrapper around asyncio.Queue with a non-blocking publish()."""

    def __init__(self, maxsize: int = 0) -> None:
        self._queue: asyncio.Queue[RegistrationCompleted] = asyncio.Queue(maxsize=maxsize)
        self._loop: asyncio.AbstractEventLoop | None = None

    def bind(self, loop: asyncio.AbstractEventLoop) -> None:
        """Attach the queue to the loop its consumer runs on."""
        self._loop = loop

    def publish(self, event: RegistrationCompleted) -> bool:
        """Enqueue event. Returns False (and logs) if the queue is full.

        Called off the bound loop, the event is scheduled onto it and True is
        returned; a full queue is then only logged.
        """
        loop = self._loop
        if loop is not None and not _running_on(loop):
            loop.call_soon_threadsafe(self._put, event)
            return True
        return self._put(event)

    def _put(self, event: RegistrationCompleted) -> bool:
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Event queue full; dropped %s for user_id=%s", type(event).__name__, event.user_id)
            return False
        return True

    async def next(self) -> RegistrationCompleted:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        """Wait until every published event has been processed."""
        await self._queue.join()

    def qsize(self) -> int:
        return self._queue.qsize()


def _running_on(loop: asyncio.AbstractEventLoop) -> bool:
    try:
        return asyncio.get_running_loop() is loop
    except RuntimeError:
        return False
