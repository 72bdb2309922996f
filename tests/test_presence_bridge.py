from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from voice_overlay.services.events import MEMBERSHIP_CHANGED, VoiceEventBus  # noqa: E402
from voice_overlay.services.presence import (  # noqa: E402
    PresenceBridge,
    compute_snapshot,
    resolve_snapshot_channel,
)


class RecordingTransport:
    def __init__(self) -> None:
        self.sent: list[tuple[str, Any, str]] = []
        self.broadcasts: list[tuple[str, Any]] = []

    async def broadcast(self, event: str, data: Any) -> None:
        self.broadcasts.append((event, data))

    async def send(self, event: str, data: Any, to: str) -> None:
        self.sent.append((event, data, to))


class _Avatar:
    def __init__(self, url: str) -> None:
        self.url = url

    def with_size(self, size: int) -> "_Avatar":
        return _Avatar(f"{self.url}?size={size}")


def _member(
    member_id: int,
    name: str,
    *,
    bot: bool = False,
    display_name: str | None = None,
    self_mute: bool = False,
    self_deaf: bool = False,
    avatar: str | None = None,
) -> SimpleNamespace:
    return SimpleNamespace(
        id=member_id,
        name=name,
        display_name=display_name,
        bot=bot,
        display_avatar=_Avatar(avatar) if avatar else None,
        voice=SimpleNamespace(self_mute=self_mute, self_deaf=self_deaf),
    )


class _Guild:
    def __init__(self, guild_id: int, channels: list[SimpleNamespace], bot_channel: SimpleNamespace | None) -> None:
        self.id = guild_id
        self._channels = {c.id: c for c in channels}
        self.me = SimpleNamespace(voice=SimpleNamespace(channel=bot_channel) if bot_channel else None)
        for channel in channels:
            channel.guild = self

    def get_channel(self, channel_id: int) -> SimpleNamespace | None:
        return self._channels.get(channel_id)


class _Client:
    def __init__(self, guilds: list[_Guild]) -> None:
        self.guilds = guilds

    def get_guild(self, guild_id: int) -> _Guild | None:
        return next((g for g in self.guilds if g.id == guild_id), None)


def test_compute_snapshot_excludes_bots_and_keeps_identity_fields() -> None:
    channel = SimpleNamespace(
        id=10,
        members=[
            _member(1, "alice", display_name="Alice A", self_mute=True, avatar="https://cdn/a.png"),
            _member(2, "musicbot", bot=True),
            _member(3, "bob", self_deaf=True),
        ],
    )

    snapshot = compute_snapshot(channel)

    assert [m.id for m in snapshot] == ["1", "3"]
    alice, bob = snapshot
    assert alice.username == "alice"
    assert alice.display_name == "Alice A"
    assert alice.self_mute is True and alice.self_deaf is False
    assert alice.avatar_url == "https://cdn/a.png?size=128"
    assert bob.display_name == "bob"
    assert bob.self_deaf is True
    assert all(m.speaking is False for m in snapshot)


def test_unscoped_request_uses_bot_channel() -> None:
    c37 = SimpleNamespace(id=37, members=[_member(1, "alice"), _member(99, "overlay-bot", bot=True)])
    guild = _Guild(5, [c37], bot_channel=c37)
    transport = RecordingTransport()
    bridge = PresenceBridge(_Client([guild]), transport)

    asyncio.run(bridge.reply_snapshot("sid-1"))

    assert transport.sent == [
        (
            "voiceMembers",
            [
                {
                    "id": "1",
                    "username": "alice",
                    "displayName": "alice",
                    "avatar": None,
                    "speaking": False,
                    "selfMute": False,
                    "selfDeaf": False,
                }
            ],
            "sid-1",
        )
    ]


def test_scoped_request_falls_back_when_scope_is_unknown() -> None:
    bot_channel = SimpleNamespace(id=37, members=[_member(1, "alice")])
    other = SimpleNamespace(id=40, members=[_member(2, "carol")])
    guild = _Guild(5, [bot_channel, other], bot_channel=bot_channel)
    client = _Client([guild])

    assert resolve_snapshot_channel(client, "5", "40") is other
    assert resolve_snapshot_channel(client, "5", "404") is bot_channel
    assert resolve_snapshot_channel(client, "not-a-number", "40") is bot_channel
    assert resolve_snapshot_channel(client, None, "40") is bot_channel


def test_request_without_any_bot_channel_replies_empty_list() -> None:
    guild = _Guild(5, [SimpleNamespace(id=40, members=[_member(2, "carol")])], bot_channel=None)
    transport = RecordingTransport()
    bridge = PresenceBridge(_Client([guild]), transport)

    asyncio.run(bridge.reply_snapshot("sid-2", "9", "9"))

    assert transport.sent == [("voiceMembers", [], "sid-2")]


def test_initial_snapshot_is_sent_once_to_new_client() -> None:
    c37 = SimpleNamespace(id=37, members=[_member(1, "alice")])
    guild = _Guild(5, [c37], bot_channel=c37)
    transport = RecordingTransport()
    bridge = PresenceBridge(_Client([guild]), transport)

    asyncio.run(bridge.send_initial_snapshot("sid-3"))

    assert len(transport.sent) == 1
    event, data, to = transport.sent[0]
    assert (event, to) == ("voiceMembers", "sid-3")
    assert [m["id"] for m in data] == ["1"]
    assert transport.broadcasts == []


def test_membership_change_is_broadcast_through_bus() -> None:
    channel = SimpleNamespace(id=37, members=[_member(1, "alice"), _member(2, "bob")])
    transport = RecordingTransport()
    bridge = PresenceBridge(_Client([]), transport)
    bus = VoiceEventBus()
    bridge.attach(bus)

    asyncio.run(bus.publish(MEMBERSHIP_CHANGED, channel))

    assert len(transport.broadcasts) == 1
    event, data = transport.broadcasts[0]
    assert event == "voiceMembers"
    assert [m["username"] for m in data] == ["alice", "bob"]
