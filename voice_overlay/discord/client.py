from __future__ import annotations

import asyncio
import logging

import discord
from discord import app_commands

from ..config import Settings
from ..services.events import VoiceEventBus
from ..services.voice_link import VoiceLinkManager
from .mixins import CommandMixin, VoiceMixin

logger = logging.getLogger("voice_overlay")

JOINROOM_NAME = "joinroom"
JOINROOM_DESCRIPTION = "Ask the bot to join your voice channel"


class OverlayDiscordBot(
    VoiceMixin,
    CommandMixin,
    discord.Client,
):
    def __init__(
        self,
        settings: Settings,
        bus: VoiceEventBus,
        voice_links: VoiceLinkManager,
    ) -> None:
        intents = discord.Intents.default()
        intents.guilds = True
        intents.voice_states = True
        intents.members = True
        intents.message_content = True

        super().__init__(intents=intents)

        self.settings = settings
        self.bus = bus
        self.voice_links = voice_links
        self.tree = app_commands.CommandTree(self)
        self._commands_synced = False
        self._register_commands()

    def _register_commands(self) -> None:
        @self.tree.command(name=JOINROOM_NAME, description=JOINROOM_DESCRIPTION)
        async def joinroom(interaction: discord.Interaction) -> None:
            await self.handle_joinroom(interaction)

    async def on_ready(self) -> None:
        if self.user:
            logger.info("Logged in as %s (%s)", self.user, self.user.id)
        # on_ready can fire again after a reconnect; register commands once.
        if self._commands_synced:
            return
        self._commands_synced = True
        await self._sync_guild_commands()

    async def _sync_guild_commands(self) -> None:
        for guild in list(self.guilds):
            try:
                self.tree.copy_global_to(guild=guild)
                await self.tree.sync(guild=guild)
                logger.info("Registered /%s for guild %s", JOINROOM_NAME, guild.id)
            except Exception as exc:
                logger.error("Failed to register slash commands for guild %s: %s", guild.id, exc)

    async def on_error(self, event_method: str, /, *args: object, **kwargs: object) -> None:
        logger.exception("Unhandled error in Discord event %s", event_method)

    async def close(self) -> None:
        await self._run_shutdown_step("voice_links.shutdown_all", self.voice_links.shutdown_all(), timeout=6.0)
        await self._run_shutdown_step("discord.Client.close", super().close(), timeout=6.0)

    async def _run_shutdown_step(self, label: str, coro: object, *, timeout: float) -> None:
        try:
            await asyncio.wait_for(coro, timeout=timeout)  # type: ignore[arg-type]
        except asyncio.TimeoutError:
            logger.warning("Shutdown step timed out: %s", label)
        except Exception as exc:
            logger.warning("Shutdown step failed: %s (%s)", label, exc)
