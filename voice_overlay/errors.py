from __future__ import annotations


class VoiceOverlayError(Exception):
    pass


class ConnectionTimeout(VoiceOverlayError):
    def __init__(self, guild_id: int, channel_id: int, timeout: float) -> None:
        super().__init__(f"Voice link for guild={guild_id} channel={channel_id} not ready after {timeout:.0f}s")
        self.guild_id = guild_id
        self.channel_id = channel_id
        self.timeout = timeout


class TransientDisconnect(VoiceOverlayError):
    pass


class IllegalTransition(VoiceOverlayError):
    def __init__(self, current: object, target: object) -> None:
        super().__init__(f"Illegal voice link transition {current} -> {target}")
        self.current = current
        self.target = target


class MalformedRegistration(VoiceOverlayError):
    pass


class LinkDestroyed(VoiceOverlayError):
    pass


class VoiceJoinError(VoiceOverlayError):
    pass
