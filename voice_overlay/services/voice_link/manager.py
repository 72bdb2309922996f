from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from typing import Any

from ...discord import voice_integration
from ...errors import (
    ConnectionTimeout,
    IllegalTransition,
    LinkDestroyed,
    TransientDisconnect,
    VoiceJoinError,
)
from ..events import MEMBERSHIP_CHANGED, SPEAKING_CHANGED, SpeakingEvent, VoiceEventBus
from .state import VoiceLink, VoiceLinkState

logger = logging.getLogger("voice_overlay.voice_link")


def _current_voice_channel(guild: Any) -> Any | None:
    me = getattr(guild, "me", None)
    return getattr(getattr(me, "voice", None), "channel", None)


def _listener_count(channel: Any) -> int:
    return sum(1 for m in getattr(channel, "members", None) or () if not getattr(m, "bot", False))


class VoiceLinkManager:
    def __init__(
        self,
        bus: VoiceEventBus,
        *,
        ready_timeout: float = 20.0,
        reconnect_grace: float = 5.0,
        keepalive_enabled: bool = True,
        reconnect_poll_interval: float = 0.25,
    ) -> None:
        self.bus = bus
        self.ready_timeout = ready_timeout
        self.reconnect_grace = reconnect_grace
        self.keepalive_enabled = keepalive_enabled
        self.reconnect_poll_interval = reconnect_poll_interval
        self._links: dict[int, VoiceLink] = {}
        self._loop: asyncio.AbstractEventLoop | None = None

    def attach(self, bus: VoiceEventBus | None = None) -> None:
        (bus or self.bus).subscribe(MEMBERSHIP_CHANGED, self.sync_player)

    def get(self, guild_id: int) -> VoiceLink | None:
        return self._links.get(guild_id)

    def links(self) -> list[VoiceLink]:
        return [link for link in self._links.values() if not link.destroyed]

    def is_joined(self, channel: Any) -> bool:
        current = _current_voice_channel(channel.guild)
        if current is not None and current.id == channel.id:
            return True
        link = self._links.get(channel.guild.id)
        if link is None or link.destroyed or link.channel_id != channel.id:
            return False
        # A first join still in flight, or a live connection. A link waiting out a
        # disconnect does not count.
        return link.voice_client is None or link.state is VoiceLinkState.READY

    async def join_channel(self, channel: Any) -> VoiceLink | None:
        guild = channel.guild
        # Must stay ahead of the first await so concurrent joins see each other.
        if self.is_joined(channel):
            logger.info("Already in voice channel %s (guild=%s)", channel.id, guild.id)
            return None

        existing = self._links.get(guild.id)
        if existing is not None and not existing.destroyed:
            if existing.voice_client is None:
                raise VoiceJoinError(f"A voice join is already in progress for guild {guild.id}")
            if existing.state is VoiceLinkState.READY:
                return await self._move(existing, channel)
            # Connection is lost or recovering; start over.
            await self._destroy(existing, reason="replaced by new join")
            if self._links.get(guild.id) is not None:
                raise VoiceJoinError(f"A voice join is already in progress for guild {guild.id}")

        self._loop = asyncio.get_running_loop()
        link = VoiceLink(guild_id=guild.id, channel_id=channel.id)
        self._links[guild.id] = link
        link.transition(VoiceLinkState.CONNECTING)
        connect_task = asyncio.create_task(self._connect(link, channel), name=f"voice-connect-{guild.id}")

        try:
            await link.wait_for(VoiceLinkState.READY, timeout=self.ready_timeout)
        except (asyncio.TimeoutError, TimeoutError):
            connect_task.cancel()
            with contextlib.suppress(asyncio.CancelledError, Exception):
                await connect_task
            await self._destroy(link, reason="ready timeout")
            partial = getattr(guild, "voice_client", None)
            if partial is not None:
                with contextlib.suppress(Exception):
                    await asyncio.wait_for(partial.disconnect(force=True), timeout=4.0)
            logger.error("Failed to join voice channel %s: not ready after %.0fs", channel.id, self.ready_timeout)
            raise ConnectionTimeout(guild.id, channel.id, self.ready_timeout) from None
        except LinkDestroyed:
            self._forget(link)
            error = link.error
            logger.error("Failed to join voice channel %s: %s", channel.id, error)
            if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
                raise ConnectionTimeout(guild.id, channel.id, self.ready_timeout) from error
            raise VoiceJoinError(f"Could not join voice channel {channel.id}: {error}") from error

        logger.info("Bot joined voice channel %s (guild=%s)", channel.id, guild.id)
        self._attach_hooks(link, channel)
        return link

    async def _connect(self, link: VoiceLink, channel: Any) -> None:
        try:
            voice_client = await channel.connect(
                cls=voice_integration.voice_client_class(),
                timeout=self.ready_timeout,
                reconnect=True,
                self_deaf=False,
                self_mute=True,
            )
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            link.error = exc
            if not link.destroyed:
                link.transition(VoiceLinkState.DESTROYED)
            return

        link.voice_client = voice_client
        if link.destroyed:
            # Lost the race against the ready timeout.
            with contextlib.suppress(Exception):
                await voice_client.disconnect(force=True)
            return
        link.transition(VoiceLinkState.READY)

    async def _move(self, link: VoiceLink, channel: Any) -> VoiceLink:
        logger.info("Moving voice link guild=%s %s -> %s", link.guild_id, link.channel_id, channel.id)
        try:
            await asyncio.wait_for(link.voice_client.move_to(channel), timeout=self.ready_timeout)
        except (asyncio.TimeoutError, TimeoutError):
            logger.error("Moving to voice channel %s timed out", channel.id)
            raise ConnectionTimeout(link.guild_id, channel.id, self.ready_timeout) from None
        link.channel_id = channel.id
        if link.player is not None:
            link.player.sync(_listener_count(channel))
        return link

    def _attach_hooks(self, link: VoiceLink, channel: Any) -> None:
        voice_client = link.voice_client
        if self.keepalive_enabled and link.player is None:
            try:
                link.player = voice_integration.KeepAlivePlayer(voice_client)
                link.player.sync(_listener_count(channel))
            except Exception:
                logger.exception("Failed to start keep-alive player for guild=%s", link.guild_id)

        if link.receiver_attached:
            return
        try:
            link.receiver_attached = voice_integration.attach_speaking_receiver(
                voice_client,
                lambda user_id, speaking: self._on_receiver_speaking(link.guild_id, user_id, speaking),
            )
        except Exception:
            logger.exception("Error attaching receiver speaking handlers for guild=%s", link.guild_id)

    def _on_receiver_speaking(self, guild_id: int, user_id: int, speaking: bool) -> None:
        # Runs on the voice receiver's reader thread.
        loop = self._loop
        if loop is None:
            return
        self.bus.publish_threadsafe(loop, SPEAKING_CHANGED, SpeakingEvent(guild_id, user_id, speaking))

    async def sync_player(self, channel: Any) -> None:
        guild = getattr(channel, "guild", None)
        if guild is None:
            return
        link = self._links.get(guild.id)
        if link is None or link.player is None or link.channel_id != channel.id:
            return
        link.player.sync(_listener_count(channel))

    async def handle_bot_voice_state(self, guild_id: int, after_channel: Any | None) -> None:
        link = self._links.get(guild_id)
        if link is None or link.destroyed:
            return

        try:
            if after_channel is None:
                if link.state is VoiceLinkState.READY:
                    link.transition(VoiceLinkState.DISCONNECTED)
                    link.recovery_task = asyncio.create_task(
                        self._recover(link), name=f"voice-recover-{guild_id}"
                    )
                return

            if after_channel.id != link.channel_id:
                logger.info("Voice link guild=%s moved %s -> %s", guild_id, link.channel_id, after_channel.id)
                link.channel_id = after_channel.id

            if link.state is VoiceLinkState.DISCONNECTED:
                link.transition(VoiceLinkState.SIGNALLING)
                link.reconnect_task = asyncio.create_task(
                    self._await_reconnected(link), name=f"voice-reready-{guild_id}"
                )
        except IllegalTransition as exc:
            logger.warning("Ignoring voice state update for guild=%s: %s", guild_id, exc)

    async def _recover(self, link: VoiceLink) -> None:
        try:
            await link.wait_for(
                VoiceLinkState.SIGNALLING,
                VoiceLinkState.CONNECTING,
                timeout=self.reconnect_grace,
            )
        except (asyncio.TimeoutError, TimeoutError):
            logger.warning(
                "Voice link guild=%s did not reconnect within %.0fs; destroying",
                link.guild_id,
                self.reconnect_grace,
            )
            link.error = TransientDisconnect(f"no reconnect within {self.reconnect_grace:.0f}s")
            await self._destroy(link, reason="disconnect not recovered")
        except LinkDestroyed:
            return

    async def _await_reconnected(self, link: VoiceLink) -> None:
        deadline = time.monotonic() + self.ready_timeout
        while not link.destroyed:
            if link.state is VoiceLinkState.SIGNALLING:
                link.transition(VoiceLinkState.CONNECTING)
            voice_client = link.voice_client
            if voice_client is not None and voice_client.is_connected():
                if link.state is VoiceLinkState.CONNECTING:
                    link.transition(VoiceLinkState.READY)
                return
            if time.monotonic() >= deadline:
                logger.warning("Voice link guild=%s not ready again after reconnect; destroying", link.guild_id)
                await self._destroy(link, reason="reconnect ready timeout")
                return
            await asyncio.sleep(self.reconnect_poll_interval)

    async def leave(self, guild_id: int) -> bool:
        link = self._links.get(guild_id)
        if link is None or link.destroyed:
            return False
        await self._destroy(link, reason="leave requested")
        return True

    async def shutdown_all(self) -> None:
        for link in list(self._links.values()):
            await self._destroy(link, reason="shutdown")

    def _forget(self, link: VoiceLink) -> None:
        if self._links.get(link.guild_id) is link:
            self._links.pop(link.guild_id, None)

    async def _destroy(self, link: VoiceLink, *, reason: str) -> None:
        self._forget(link)
        if not link.destroyed:
            link.transition(VoiceLinkState.DESTROYED)
        logger.info("Voice link guild=%s destroyed (%s)", link.guild_id, reason)

        current = asyncio.current_task()
        for task in (link.recovery_task, link.reconnect_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
        if link.player is not None:
            link.player.stop()
        voice_client = link.voice_client
        if voice_client is None:
            return
        voice_integration.detach_speaking_receiver(voice_client)
        with contextlib.suppress(Exception):
            await asyncio.wait_for(voice_client.disconnect(force=True), timeout=4.0)
