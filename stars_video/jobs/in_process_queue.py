"""In-process event queue using asyncio.

Delivers stage events (``process-github-stars``, ``render-video``) to their
handlers one at a time from a background task. No external broker needed.
"""

import asyncio
import logging
from typing import Any, Dict, Optional, Tuple

from stars_video.jobs.dispatcher import EventDispatcher, EventHandler

logger = logging.getLogger(__name__)


class InProcessQueue(EventDispatcher):
    """Local async event queue. Processes events one at a time via asyncio."""

    def __init__(self):
        self._queue: "asyncio.Queue[Tuple[str, Dict[str, Any]]]" = asyncio.Queue()
        self._handlers: Dict[str, EventHandler] = {}
        self._task: Optional[asyncio.Task] = None
        self._running = False

    def subscribe(self, topic: str, handler: EventHandler) -> None:
        if topic in self._handlers:
            raise ValueError(f"Topic '{topic}' already has a handler")
        self._handlers[topic] = handler

    async def emit(self, topic: str, data: Dict[str, Any]) -> None:
        await self._queue.put((topic, data))

    async def start(self) -> None:
        self._running = True
        self._task = asyncio.create_task(self._worker_loop())

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def join(self) -> None:
        """Wait until every emitted event has been handled."""
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    async def _worker_loop(self) -> None:
        """Deliver events one at a time from the queue."""
        while self._running:
            try:
                topic, data = await asyncio.wait_for(self._queue.get(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            try:
                handler = self._handlers.get(topic)
                if handler is None:
                    logger.warning("Dropping event for unknown topic %s", topic)
                    continue
                await handler(data)
            except Exception:
                logger.exception("Handler for topic %s raised", topic)
            finally:
                self._queue.task_done()
