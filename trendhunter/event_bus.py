from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Dict, Generator, List

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Awaitable[None] | None]

TOPIC_CREATED = "topic.created"
TOPIC_UPDATED = "topic.updated"


class EventBus:
    """In-process publish/subscribe hub.

    Coroutine handlers are scheduled as tasks on the running loop; plain
    callables run inline. A failing handler is logged and never affects the
    publisher or the other subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, List[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task] = set()

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Call *handler* with the payload of every *topic* event.

        The returned callable undoes the subscription.
        """
        self._subscribers[topic].append(handler)

        def _unsub() -> None:
            self.unsubscribe(topic, handler)

        return _unsub

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        """Stop delivering *topic* events to *handler*; unknown pairs are ignored."""
        handlers = self._subscribers.get(topic)
        if not handlers:
            return
        try:
            handlers.remove(handler)
        except ValueError:
            return
        if not handlers:
            self._subscribers.pop(topic, None)

    @contextmanager
    def subscription(self, topic: str, handler: Handler) -> Generator[Handler, None, None]:
        """Subscribe *handler* for the duration of a ``with`` block."""
        unsub = self.subscribe(topic, handler)
        try:
            yield handler
        finally:
            unsub()

    def publish(self, topic: str, payload: Any) -> None:
        """Deliver *payload* to the current subscribers of *topic*."""
        handlers = list(self._subscribers.get(topic, []))
        if not handlers:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None
        for h in handlers:
            if inspect.iscoroutinefunction(h):
                if loop is None:
                    asyncio.run(self._guard(topic, h, payload))
                    continue
                task = loop.create_task(self._guard(topic, h, payload))
                self._pending.add(task)
                task.add_done_callback(self._pending.discard)
                continue
            try:
                h(payload)
            except Exception:
                logger.exception("Handler %r for %s failed", h, topic)

    async def _guard(self, topic: str, handler: Handler, payload: Any) -> None:
        try:
            await handler(payload)  # type: ignore[misc]
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Async handler %r for %s failed", handler, topic)

    async def drain(self) -> None:
        """Wait for every async handler scheduled so far."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def reset(self) -> None:
        """Drop all subscriptions and cancel outstanding handler tasks."""
        self._subscribers.clear()
        for task in list(self._pending):
            task.cancel()
        self._pending.clear()


__all__ = ["EventBus", "Handler", "TOPIC_CREATED", "TOPIC_UPDATED"]
