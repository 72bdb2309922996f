from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ...errors import IllegalTransition, LinkDestroyed

logger = logging.getLogger("voice_overlay.voice_link")


class VoiceLinkState(str, Enum):
    SIGNALLING = "signalling"
    CONNECTING = "connecting"
    READY = "ready"
    DISCONNECTED = "disconnected"
    DESTROYED = "destroyed"


TRANSITIONS: dict[VoiceLinkState, frozenset[VoiceLinkState]] = {
    VoiceLinkState.SIGNALLING: frozenset(
        {
            VoiceLinkState.CONNECTING,
            VoiceLinkState.READY,
            VoiceLinkState.DISCONNECTED,
            VoiceLinkState.DESTROYED,
        }
    ),
    VoiceLinkState.CONNECTING: frozenset(
        {
            VoiceLinkState.SIGNALLING,
            VoiceLinkState.READY,
            VoiceLinkState.DISCONNECTED,
            VoiceLinkState.DESTROYED,
        }
    ),
    VoiceLinkState.READY: frozenset({VoiceLinkState.DISCONNECTED, VoiceLinkState.DESTROYED}),
    VoiceLinkState.DISCONNECTED: frozenset(
        {
            VoiceLinkState.SIGNALLING,
            VoiceLinkState.CONNECTING,
            VoiceLinkState.DESTROYED,
        }
    ),
    VoiceLinkState.DESTROYED: frozenset(),
}


@dataclass(slots=True, eq=False)
class VoiceLink:
    guild_id: int
    channel_id: int
    state: VoiceLinkState = VoiceLinkState.SIGNALLING
    voice_client: Any = None
    player: Any = None
    receiver_attached: bool = False
    error: BaseException | None = None
    recovery_task: asyncio.Task[None] | None = None
    reconnect_task: asyncio.Task[None] | None = None
    _waiters: list[tuple[frozenset[VoiceLinkState], asyncio.Future[VoiceLinkState]]] = field(
        default_factory=list, repr=False
    )

    @property
    def destroyed(self) -> bool:
        return self.state is VoiceLinkState.DESTROYED

    def can_transition(self, target: VoiceLinkState) -> bool:
        return target in TRANSITIONS[self.state]

    def transition(self, target: VoiceLinkState) -> bool:
        if target is self.state:
            return False
        if not self.can_transition(target):
            raise IllegalTransition(self.state, target)

        previous = self.state
        self.state = target
        logger.info(
            "Voice link guild=%s channel=%s: %s -> %s",
            self.guild_id,
            self.channel_id,
            previous.value,
            target.value,
        )

        pending = self._waiters
        self._waiters = []
        for targets, future in pending:
            if future.done():
                continue
            if target in targets:
                future.set_result(target)
            elif target is VoiceLinkState.DESTROYED:
                future.set_exception(LinkDestroyed(f"voice link for guild={self.guild_id} destroyed"))
            else:
                self._waiters.append((targets, future))
        return True

    async def wait_for(self, *states: VoiceLinkState, timeout: float) -> VoiceLinkState:
        targets = frozenset(states)
        if self.state in targets:
            return self.state
        if self.destroyed:
            raise LinkDestroyed(f"voice link for guild={self.guild_id} destroyed")

        future: asyncio.Future[VoiceLinkState] = asyncio.get_running_loop().create_future()
        entry = (targets, future)
        self._waiters.append(entry)
        try:
            return await asyncio.wait_for(future, timeout=timeout)
        finally:
            if entry in self._waiters:
                self._waiters.remove(entry)
