from __future__ import annotations

import logging
from typing import Any

import discord

logger = logging.getLogger("voice_overlay")

NOT_IN_VOICE = "You are not in a voice channel."
JOINED = "Joined voice channel!"
JOIN_FAILED = "Failed to join voice channel."
COMMAND_FAILED = "Something went wrong while handling the command."


def _member_voice_channel(member: Any) -> Any | None:
    return getattr(getattr(member, "voice", None), "channel", None)


class CommandMixin:
    async def _join_for_command(self, channel: Any) -> bool:
        try:
            await self.voice_links.join_channel(channel)
        except Exception as exc:
            logger.error("Error joining voice channel %s: %s", getattr(channel, "id", "?"), exc)
            return False
        return True

    async def handle_joinroom(self, interaction: discord.Interaction) -> None:
        try:
            channel = _member_voice_channel(interaction.user)
            if channel is None:
                await self._respond(interaction, NOT_IN_VOICE, ephemeral=True)
                return

            # Joining can outlast the interaction acknowledgement window.
            try:
                await interaction.response.defer(ephemeral=True, thinking=True)
            except Exception as exc:
                logger.warning("Failed to defer interaction reply: %s", exc)

            joined = await self._join_for_command(channel)
            await self._respond(interaction, JOINED if joined else JOIN_FAILED, ephemeral=not joined)
        except Exception:
            logger.exception("joinroom handler error")
            await self._respond(interaction, COMMAND_FAILED, ephemeral=True)

    async def _respond(self, interaction: discord.Interaction, content: str, *, ephemeral: bool) -> None:
        try:
            if interaction.response.is_done():
                await interaction.edit_original_response(content=content)
            else:
                await interaction.response.send_message(content, ephemeral=ephemeral)
        except Exception as exc:
            logger.warning("Failed to send interaction response: %s", exc)

    async def on_message(self, message: discord.Message) -> None:
        if message.author.bot:
            return
        if message.content.strip() != f"{self.settings.command_prefix}join":
            return

        channel = _member_voice_channel(message.author)
        try:
            if channel is None:
                await message.reply(NOT_IN_VOICE)
                return
            joined = await self._join_for_command(channel)
            await message.reply(JOINED if joined else JOIN_FAILED)
        except discord.HTTPException as exc:
            logger.warning("Failed to reply to join command: %s", exc)
