from __future__ import annotations

import logging
from typing import Any

from .events import SPEAKING_CHANGED, SpeakingEvent, VoiceEventBus
from .transport import SPEAKING, Transport

logger = logging.getLogger("voice_overlay.speaking")


def resolve_speaker(client: Any, guild_id: int, user_id: int) -> tuple[str, str]:
    guild = client.get_guild(guild_id)
    member = guild.get_member(user_id) if guild is not None else None
    if member is None:
        raw = str(user_id)
        return raw, raw
    username = str(getattr(member, "name", "") or user_id)
    display_name = str(getattr(member, "display_name", None) or username)
    return username, display_name


class SpeakingRelay:
    def __init__(self, client: Any, transport: Transport) -> None:
        self.client = client
        self.transport = transport

    def attach(self, bus: VoiceEventBus) -> None:
        bus.subscribe(SPEAKING_CHANGED, self.on_speaking)

    async def on_speaking(self, event: SpeakingEvent) -> None:
        username, display_name = resolve_speaker(self.client, event.guild_id, event.user_id)
        logger.debug(
            "receiver speaking %s: user=%s (%s)",
            "start" if event.speaking else "end",
            event.user_id,
            display_name,
        )
        await self.transport.broadcast(
            SPEAKING,
            {
                "id": str(event.user_id),
                "username": username,
                "displayName": display_name,
                "speaking": event.speaking,
            },
        )
