from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from typing import Any

from .config import Settings
from .discord.client import OverlayDiscordBot
from .services.events import VoiceEventBus
from .services.gateway import TransportGateway
from .services.presence import PresenceBridge
from .services.signaling import SignalingHub
from .services.speaking import SpeakingRelay
from .services.voice_link import VoiceLinkManager

logger = logging.getLogger("voice_overlay")


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    logging.getLogger("discord.ext.voice_recv.reader").setLevel(logging.WARNING)
    logging.getLogger("discord.ext.voice_recv.gateway").setLevel(logging.WARNING)
    logging.getLogger("discord.ext.voice_recv.opus").setLevel(logging.ERROR)
    logging.getLogger("engineio").setLevel(logging.WARNING)
    logging.getLogger("socketio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)


def _log_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    exc = context.get("exception")
    message = context.get("message", "Unhandled exception in event loop")
    if exc is not None:
        logger.error("%s", message, exc_info=exc)
    else:
        logger.error("%s", message)


def _log_uncaught(exc_type: type[BaseException], exc: BaseException, tb: Any) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc, tb)
        return
    logger.critical("Uncaught exception", exc_info=(exc_type, exc, tb))


class OverlayBridge:
    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self.bus = VoiceEventBus()
        self.voice_links = VoiceLinkManager(
            self.bus,
            ready_timeout=settings.voice_ready_timeout_seconds,
            reconnect_grace=settings.voice_reconnect_grace_seconds,
            keepalive_enabled=settings.voice_keepalive_enabled,
        )
        self.bot = OverlayDiscordBot(settings, self.bus, self.voice_links)
        self.gateway = TransportGateway(settings.cors_origins)
        self.hub = SignalingHub(self.gateway)
        self.presence = PresenceBridge(self.bot, self.gateway)
        self.speaking = SpeakingRelay(self.bot, self.gateway)

        self.presence.attach(self.bus)
        self.speaking.attach(self.bus)
        self.voice_links.attach(self.bus)
        self.gateway.bind(self.hub, self.presence, self.voice_links)

    async def run(self) -> None:
        asyncio.get_running_loop().set_exception_handler(_log_loop_exception)
        await self.gateway.start(self.settings.host, self.settings.port)
        try:
            async with self.bot:
                await self.bot.start(self.settings.discord_token)
        finally:
            if not self.bot.is_closed():
                with contextlib.suppress(Exception):
                    await asyncio.wait_for(self.bot.close(), timeout=10.0)
            await self.gateway.stop()


def main() -> None:
    settings = Settings.from_env()
    configure_logging(settings.log_level)
    sys.excepthook = _log_uncaught
    try:
        settings.validate()
    except ValueError as exc:
        logger.error("Configuration error: %s", exc)
        raise SystemExit(1) from None

    try:
        asyncio.run(OverlayBridge(settings).run())
    except KeyboardInterrupt:
        logger.info("Shutdown requested, exiting.")
