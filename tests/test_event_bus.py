from __future__ import annotations

import asyncio
import sys
import threading
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from voice_overlay.services.events import VoiceEventBus  # noqa: E402


def test_failing_subscriber_does_not_block_others() -> None:
    bus = VoiceEventBus()
    received: list[object] = []

    def broken(payload: object) -> None:
        raise RuntimeError("boom")

    async def collector(payload: object) -> None:
        received.append(payload)

    bus.subscribe("topic", broken)
    bus.subscribe("topic", collector)
    bus.subscribe("topic", collector)

    asyncio.run(bus.publish("topic", 1))

    assert received == [1]
    assert bus.subscriber_count("topic") == 2


def test_unsubscribe_stops_delivery() -> None:
    bus = VoiceEventBus()
    received: list[object] = []
    bus.subscribe("topic", received.append)
    bus.unsubscribe("topic", received.append)

    asyncio.run(bus.publish("topic", "x"))

    assert received == []


def test_publish_threadsafe_delivers_on_loop() -> None:
    bus = VoiceEventBus()

    async def scenario() -> list[tuple[object, bool]]:
        loop = asyncio.get_running_loop()
        loop_thread = threading.get_ident()
        received: list[tuple[object, bool]] = []
        done = asyncio.Event()

        def handler(payload: object) -> None:
            received.append((payload, threading.get_ident() == loop_thread))
            done.set()

        bus.subscribe("speaking", handler)
        worker = threading.Thread(target=bus.publish_threadsafe, args=(loop, "speaking", 42))
        worker.start()
        await asyncio.wait_for(done.wait(), timeout=2.0)
        worker.join()
        return received

    assert asyncio.run(scenario()) == [(42, True)]


def test_publish_threadsafe_keeps_arrival_order() -> None:
    bus = VoiceEventBus()
    received: list[int] = []

    async def slow_first(payload: int) -> None:
        # The first event finishes last unless deliveries are serialized.
        await asyncio.sleep(0.05 if payload == 1 else 0)
        received.append(payload)

    bus.subscribe("speaking", slow_first)

    async def scenario() -> None:
        loop = asyncio.get_running_loop()

        def reader() -> None:
            for payload in (1, 2, 3):
                bus.publish_threadsafe(loop, "speaking", payload)

        await asyncio.to_thread(reader)
        await asyncio.sleep(0)
        await bus.drain()

    asyncio.run(scenario())

    assert received == [1, 2, 3]
