from __future__ import annotations

import logging

import discord

from ...services.events import MEMBERSHIP_CHANGED

logger = logging.getLogger("voice_overlay")


class VoiceMixin:
    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        channel = getattr(after, "channel", None) or getattr(before, "channel", None)
        if channel is not None:
            await self.bus.publish(MEMBERSHIP_CHANGED, channel)

        me = self.user
        if me is None or int(getattr(member, "id", 0) or 0) != int(getattr(me, "id", 0) or 0):
            return

        guild = getattr(member, "guild", None)
        if guild is None:
            return
        await self.voice_links.handle_bot_voice_state(guild.id, getattr(after, "channel", None))
