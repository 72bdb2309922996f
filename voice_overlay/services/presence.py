from __future__ import annotations

import contextlib
import logging
from dataclasses import dataclass
from typing import Any, Iterable

from .events import MEMBERSHIP_CHANGED, VoiceEventBus
from .transport import VOICE_MEMBERS, Transport

logger = logging.getLogger("voice_overlay.presence")

AVATAR_SIZE = 128


@dataclass(slots=True)
class Member:
    id: str
    username: str
    display_name: str
    avatar_url: str | None = None
    speaking: bool = False
    self_mute: bool = False
    self_deaf: bool = False

    def to_payload(self) -> dict[str, Any]:
        # The overlay reads the avatar from the `avatar` key.
        return {
            "id": self.id,
            "username": self.username,
            "displayName": self.display_name,
            "avatar": self.avatar_url,
            "speaking": self.speaking,
            "selfMute": self.self_mute,
            "selfDeaf": self.self_deaf,
        }


def _avatar_url(member: Any) -> str | None:
    asset = getattr(member, "display_avatar", None)
    if asset is None:
        return None
    with contextlib.suppress(Exception):
        return str(asset.with_size(AVATAR_SIZE).url)
    return None


def member_from_discord(member: Any) -> Member:
    username = str(getattr(member, "name", "") or member.id)
    display_name = getattr(member, "display_name", None) or username
    voice = getattr(member, "voice", None)
    return Member(
        id=str(member.id),
        username=username,
        display_name=str(display_name),
        avatar_url=_avatar_url(member),
        speaking=False,
        self_mute=bool(getattr(voice, "self_mute", False)),
        self_deaf=bool(getattr(voice, "self_deaf", False)),
    )


def compute_snapshot(channel: Any) -> list[Member]:
    occupants: Iterable[Any] = getattr(channel, "members", None) or ()
    return [member_from_discord(m) for m in occupants if not getattr(m, "bot", False)]


def snapshot_payload(members: list[Member]) -> list[dict[str, Any]]:
    return [m.to_payload() for m in members]


def _as_snowflake(value: object) -> int | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        with contextlib.suppress(ValueError):
            return int(value.strip())
    return None


def find_bot_channel(client: Any) -> Any | None:
    for guild in getattr(client, "guilds", None) or ():
        me = getattr(guild, "me", None)
        channel = getattr(getattr(me, "voice", None), "channel", None)
        if channel is not None:
            return channel
    return None


def resolve_snapshot_channel(client: Any, guild_id: object = None, channel_id: object = None) -> Any | None:
    gid = _as_snowflake(guild_id)
    cid = _as_snowflake(channel_id)
    if gid is not None and cid is not None:
        guild = client.get_guild(gid)
        channel = guild.get_channel(cid) if guild is not None else None
        if channel is not None and hasattr(channel, "members"):
            return channel
        logger.debug("Snapshot scope guild=%s channel=%s not found; falling back", guild_id, channel_id)
    return find_bot_channel(client)


class PresenceBridge:
    def __init__(self, client: Any, transport: Transport) -> None:
        self.client = client
        self.transport = transport

    def attach(self, bus: VoiceEventBus) -> None:
        bus.subscribe(MEMBERSHIP_CHANGED, self.on_membership_changed)

    def snapshot_for(self, guild_id: object = None, channel_id: object = None) -> list[Member]:
        channel = resolve_snapshot_channel(self.client, guild_id, channel_id)
        if channel is None:
            return []
        return compute_snapshot(channel)

    async def on_membership_changed(self, channel: Any) -> None:
        if channel is None:
            return
        members = compute_snapshot(channel)
        await self.transport.broadcast(VOICE_MEMBERS, snapshot_payload(members))

    async def send_initial_snapshot(self, sid: str) -> None:
        channel = find_bot_channel(self.client)
        if channel is None:
            logger.info("No bot voice channel found for initial snapshot (sid=%s)", sid)
            await self.transport.send(VOICE_MEMBERS, [], to=sid)
            return
        members = compute_snapshot(channel)
        await self.transport.send(VOICE_MEMBERS, snapshot_payload(members), to=sid)
        logger.info(
            "Sent initial voiceMembers snapshot for guild=%s channel=%s to sid=%s",
            getattr(getattr(channel, "guild", None), "id", "?"),
            getattr(channel, "id", "?"),
            sid,
        )

    async def reply_snapshot(self, sid: str, guild_id: object = None, channel_id: object = None) -> None:
        try:
            members = self.snapshot_for(guild_id, channel_id)
        except Exception:
            logger.exception("Snapshot request failed for sid=%s", sid)
            members = []
        await self.transport.send(VOICE_MEMBERS, snapshot_payload(members), to=sid)
