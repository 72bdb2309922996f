from __future__ import annotations

import asyncio
import contextlib
import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable

logger = logging.getLogger("voice_overlay.events")

MEMBERSHIP_CHANGED = "voice.membership_changed"
SPEAKING_CHANGED = "voice.speaking_changed"

Handler = Callable[[Any], Awaitable[None] | None]


@dataclass(slots=True, frozen=True)
class SpeakingEvent:
    guild_id: int
    user_id: int
    speaking: bool


class VoiceEventBus:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[Handler]] = defaultdict(list)
        self._pending: set[asyncio.Task[None]] = set()
        self._tail: asyncio.Task[None] | None = None

    def subscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers[topic]
        if handler not in handlers:
            handlers.append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        handlers = self._subscribers.get(topic)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, ()))

    async def publish(self, topic: str, payload: Any) -> None:
        # A failing subscriber must not starve the ones after it.
        for handler in list(self._subscribers.get(topic, ())):
            try:
                result = handler(payload)
                if asyncio.iscoroutine(result):
                    await result
            except Exception:
                logger.exception("Subscriber failed for topic=%s", topic)

    def publish_threadsafe(self, loop: asyncio.AbstractEventLoop, topic: str, payload: Any) -> None:
        if loop.is_closed():
            return
        with contextlib.suppress(RuntimeError):
            loop.call_soon_threadsafe(self._schedule, topic, payload)

    def _schedule(self, topic: str, payload: Any) -> None:
        # Runs on the loop; each publish waits for the previous one to keep arrival order.
        task = asyncio.get_running_loop().create_task(self._publish_after(self._tail, topic, payload))
        self._tail = task
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _publish_after(self, previous: asyncio.Task[None] | None, topic: str, payload: Any) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        await self.publish(topic, payload)

    async def drain(self) -> None:
        while self._pending:
            await asyncio.wait(set(self._pending))
