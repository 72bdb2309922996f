from __future__ import annotations

import contextlib
import logging
from typing import Any, Callable

import discord

logger = logging.getLogger("voice_overlay")

try:
    from discord.ext import voice_recv

    VOICE_RECV_AVAILABLE = True
except Exception:
    voice_recv = None
    VOICE_RECV_AVAILABLE = False


# A single opus frame of silence.
OPUS_SILENCE_FRAME = b"\xf8\xff\xfe"

SpeakingCallback = Callable[[int, bool], None]


class SilentSource(discord.AudioSource):
    def read(self) -> bytes:
        return OPUS_SILENCE_FRAME

    def is_opus(self) -> bool:
        return True


class KeepAlivePlayer:
    """Plays silence into the voice link and pauses while nobody is listening."""

    def __init__(self, voice_client: Any) -> None:
        self.voice_client = voice_client
        self.stopped = False

    def start(self) -> None:
        if self.voice_client.is_playing() or self.voice_client.is_paused():
            return
        self.voice_client.play(SilentSource(), after=self._after_play)

    def _after_play(self, error: Exception | None) -> None:
        if error:
            logger.error("Keep-alive playback error: %s", error)

    def sync(self, listener_count: int) -> None:
        if self.stopped:
            return
        if listener_count <= 0:
            if self.voice_client.is_playing():
                self.voice_client.pause()
            return
        if self.voice_client.is_paused():
            self.voice_client.resume()
        elif not self.voice_client.is_playing():
            self.start()

    def stop(self) -> None:
        self.stopped = True
        with contextlib.suppress(Exception):
            self.voice_client.stop()


if VOICE_RECV_AVAILABLE:

    class SpeakingSink(voice_recv.AudioSink):
        def __init__(self, on_speaking: SpeakingCallback) -> None:
            super().__init__(None)
            self._on_speaking = on_speaking

        def wants_opus(self) -> bool:
            # Speaking state only; skip decoding entirely.
            return True

        def write(self, user: discord.abc.User | None, data: Any) -> None:
            return

        def cleanup(self) -> None:
            return

        @voice_recv.AudioSink.listener()
        def on_voice_member_speaking_start(self, member: discord.abc.User) -> None:
            if member is not None:
                self._on_speaking(int(member.id), True)

        @voice_recv.AudioSink.listener()
        def on_voice_member_speaking_stop(self, member: discord.abc.User) -> None:
            if member is not None:
                self._on_speaking(int(member.id), False)

else:
    SpeakingSink = None


def voice_client_class() -> type[discord.VoiceClient]:
    if VOICE_RECV_AVAILABLE and voice_recv is not None:
        return voice_recv.VoiceRecvClient
    return discord.VoiceClient


def attach_speaking_receiver(voice_client: Any, on_speaking: SpeakingCallback) -> bool:
    if not VOICE_RECV_AVAILABLE or voice_recv is None or SpeakingSink is None:
        logger.warning("Voice receiver not available (discord-ext-voice-recv missing); speaking events disabled")
        return False
    if not isinstance(voice_client, voice_recv.VoiceRecvClient):
        logger.warning("Voice receiver not available on this connection; speaking events disabled")
        return False
    if voice_client.is_listening():
        voice_client.stop_listening()
    voice_client.listen(SpeakingSink(on_speaking))
    return True


def detach_speaking_receiver(voice_client: Any) -> None:
    if not VOICE_RECV_AVAILABLE or voice_recv is None:
        return
    with contextlib.suppress(Exception):
        if isinstance(voice_client, voice_recv.VoiceRecvClient) and voice_client.is_listening():
            voice_client.stop_listening()
