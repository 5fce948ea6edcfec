"""Event dispatcher interface used to hand work from one job stage to the next."""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict

EventHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class EventDispatcher(ABC):
    """Abstract interface for stage hand-off (in-process or external queue)."""

    @abstractmethod
    def subscribe(self, topic: str, handler: EventHandler) -> None:
        """Register the single handler that receives events for ``topic``."""
        ...

    @abstractmethod
    async def emit(self, topic: str, data: Dict[str, Any]) -> None:
        """Accept an event for delivery. Returns before the handler runs."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (e.g., start worker loop)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...
