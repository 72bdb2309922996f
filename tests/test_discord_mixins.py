from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

pytest.importorskip("discord")

from voice_overlay.discord.mixins.command_mixin import (  # noqa: E402
    JOIN_FAILED,
    JOINED,
    NOT_IN_VOICE,
    CommandMixin,
)
from voice_overlay.discord.mixins.voice_mixin import VoiceMixin  # noqa: E402
from voice_overlay.errors import ConnectionTimeout  # noqa: E402
from voice_overlay.services.events import MEMBERSHIP_CHANGED, VoiceEventBus  # noqa: E402


class _FakeLinks:
    def __init__(self, *, fail: bool = False) -> None:
        self.fail = fail
        self.joined: list[Any] = []
        self.bot_states: list[tuple[int, Any]] = []

    async def join_channel(self, channel: Any) -> None:
        self.joined.append(channel)
        if self.fail:
            raise ConnectionTimeout(1, channel.id, 20.0)

    async def handle_bot_voice_state(self, guild_id: int, after_channel: Any) -> None:
        self.bot_states.append((guild_id, after_channel))


class _FakeResponse:
    def __init__(self) -> None:
        self.deferred = False
        self.sent: list[tuple[str, bool]] = []

    def is_done(self) -> bool:
        return self.deferred or bool(self.sent)

    async def defer(self, *, ephemeral: bool = False, thinking: bool = False) -> None:
        self.deferred = True

    async def send_message(self, content: str, *, ephemeral: bool = False) -> None:
        self.sent.append((content, ephemeral))


class _FakeInteraction:
    def __init__(self, channel: Any) -> None:
        self.user = SimpleNamespace(voice=SimpleNamespace(channel=channel) if channel else None)
        self.response = _FakeResponse()
        self.edits: list[str] = []

    async def edit_original_response(self, *, content: str) -> None:
        self.edits.append(content)


class _CommandBot(CommandMixin):
    def __init__(self, links: _FakeLinks) -> None:
        self.voice_links = links
        self.settings = SimpleNamespace(command_prefix="!")


def test_joinroom_defers_then_edits_reply() -> None:
    links = _FakeLinks()
    channel = SimpleNamespace(id=37)
    interaction = _FakeInteraction(channel)

    asyncio.run(_CommandBot(links).handle_joinroom(interaction))

    assert links.joined == [channel]
    assert interaction.response.deferred is True
    assert interaction.edits == [JOINED]


def test_joinroom_outside_voice_replies_ephemeral() -> None:
    links = _FakeLinks()
    interaction = _FakeInteraction(None)

    asyncio.run(_CommandBot(links).handle_joinroom(interaction))

    assert links.joined == []
    assert interaction.response.sent == [(NOT_IN_VOICE, True)]


def test_joinroom_reports_join_failure() -> None:
    interaction = _FakeInteraction(SimpleNamespace(id=37))

    asyncio.run(_CommandBot(_FakeLinks(fail=True)).handle_joinroom(interaction))

    assert interaction.edits == [JOIN_FAILED]


def test_text_join_command_ignores_bots_and_other_text() -> None:
    links = _FakeLinks()
    replies: list[str] = []

    async def reply(content: str) -> None:
        replies.append(content)

    channel = SimpleNamespace(id=37)
    human = SimpleNamespace(bot=False, voice=SimpleNamespace(channel=channel))
    bot_author = SimpleNamespace(bot=True, voice=SimpleNamespace(channel=channel))
    bot = _CommandBot(links)

    async def scenario() -> None:
        await bot.on_message(SimpleNamespace(author=bot_author, content="!join", reply=reply))
        await bot.on_message(SimpleNamespace(author=human, content="hello", reply=reply))
        await bot.on_message(SimpleNamespace(author=human, content="!join", reply=reply))

    asyncio.run(scenario())

    assert links.joined == [channel]
    assert replies == [JOINED]


class _VoiceBot(VoiceMixin):
    def __init__(self) -> None:
        self.user = SimpleNamespace(id=99)
        self.bus = VoiceEventBus()
        self.voice_links = _FakeLinks()


def test_voice_state_update_publishes_membership_and_drives_bot_link() -> None:
    bot = _VoiceBot()
    published: list[Any] = []
    bot.bus.subscribe(MEMBERSHIP_CHANGED, published.append)
    guild = SimpleNamespace(id=1)
    channel = SimpleNamespace(id=37)

    async def scenario() -> None:
        human = SimpleNamespace(id=5, guild=guild)
        await bot.on_voice_state_update(human, SimpleNamespace(channel=None), SimpleNamespace(channel=channel))
        me = SimpleNamespace(id=99, guild=guild)
        await bot.on_voice_state_update(me, SimpleNamespace(channel=channel), SimpleNamespace(channel=None))

    asyncio.run(scenario())

    assert published == [channel, channel]
    assert bot.voice_links.bot_states == [(1, None)]
