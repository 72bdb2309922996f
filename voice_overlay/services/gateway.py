from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

import socketio
from aiohttp import web

from ..errors import MalformedRegistration
from .presence import PresenceBridge
from .signaling import SignalingHub, parse_role
from .transport import (
    REGISTER_ROLE,
    REQUEST_SNAPSHOT,
    WEBRTC_ANSWER,
    WEBRTC_ICE_CANDIDATE,
    WEBRTC_OFFER,
)

logger = logging.getLogger("voice_overlay.gateway")

SocketHandler = Callable[..., Awaitable[Any]]


def _payload(data: Any) -> dict[str, Any]:
    return data if isinstance(data, dict) else {}


def _optional_str(value: Any) -> str | None:
    if value is None or value == "":
        return None
    return str(value)


class TransportGateway:
    def __init__(self, cors_allowed_origins: str | list[str] = "*") -> None:
        self.sio = socketio.AsyncServer(
            async_mode="aiohttp",
            cors_allowed_origins=cors_allowed_origins,
            always_connect=True,
            logger=False,
            engineio_logger=False,
        )
        self.app = web.Application()
        self.sio.attach(self.app)
        self.app.router.add_get("/health", self._health)

        self.hub: SignalingHub | None = None
        self.presence: PresenceBridge | None = None
        self.voice_links: Any = None
        self._runner: web.AppRunner | None = None

    async def broadcast(self, event: str, data: Any) -> None:
        await self.sio.emit(event, data)

    async def send(self, event: str, data: Any, to: str) -> None:
        await self.sio.emit(event, data, to=to)

    def bind(self, hub: SignalingHub, presence: PresenceBridge, voice_links: Any = None) -> None:
        self.hub = hub
        self.presence = presence
        self.voice_links = voice_links

        self.sio.on("connect", self._guarded("connect", self._on_connect))
        self.sio.on("disconnect", self._guarded("disconnect", self._on_disconnect))
        self.sio.on(REGISTER_ROLE, self._guarded(REGISTER_ROLE, self._on_register_role))
        self.sio.on(WEBRTC_OFFER, self._guarded(WEBRTC_OFFER, self._on_offer))
        self.sio.on(WEBRTC_ANSWER, self._guarded(WEBRTC_ANSWER, self._on_answer))
        self.sio.on(WEBRTC_ICE_CANDIDATE, self._guarded(WEBRTC_ICE_CANDIDATE, self._on_ice_candidate))
        self.sio.on(REQUEST_SNAPSHOT, self._guarded(REQUEST_SNAPSHOT, self._on_request_snapshot))

    def _guarded(self, event: str, handler: SocketHandler) -> SocketHandler:
        async def _wrapped(sid: str, *args: Any) -> None:
            try:
                await handler(sid, *args)
            except MalformedRegistration as exc:
                logger.warning("%s rejected for sid=%s: %s", event, sid, exc)
            except Exception:
                logger.exception("%s handler error (sid=%s)", event, sid)

        return _wrapped

    async def _on_connect(self, sid: str, *_: Any) -> None:
        logger.info("Client connected: %s", sid)
        if self.presence is not None:
            await self.presence.send_initial_snapshot(sid)

    async def _on_disconnect(self, sid: str, *_: Any) -> None:
        logger.info("Client disconnected: %s", sid)
        if self.hub is not None:
            await self.hub.on_disconnect(sid)

    async def _on_register_role(self, sid: str, data: Any = None, *_: Any) -> None:
        if not isinstance(data, dict):
            raise MalformedRegistration("register-role payload must be an object")
        role = parse_role(data.get("role"))
        await self.hub.register_role(sid, role, _optional_str(data.get("userId")))

    async def _on_offer(self, sid: str, data: Any = None, *_: Any) -> None:
        body = _payload(data)
        await self.hub.route_offer(sid, body.get("userId"), body.get("sdp"))

    async def _on_answer(self, sid: str, data: Any = None, *_: Any) -> None:
        body = _payload(data)
        await self.hub.route_answer(body.get("toSocketId"), body.get("sdp"), body.get("userId"))

    async def _on_ice_candidate(self, sid: str, data: Any = None, *_: Any) -> None:
        body = _payload(data)
        await self.hub.route_ice_candidate(
            sid,
            body.get("candidate"),
            user_id=body.get("userId"),
            to_socket_id=body.get("toSocketId"),
        )

    async def _on_request_snapshot(self, sid: str, data: Any = None, *_: Any) -> None:
        body = _payload(data)
        await self.presence.reply_snapshot(sid, body.get("guildId"), body.get("channelId"))

    async def _health(self, request: web.Request) -> web.Response:
        hub = self.hub
        links = self.voice_links.links() if self.voice_links is not None else []
        return web.json_response(
            {
                "status": "ok",
                "host": bool(hub is not None and hub.host_socket_id),
                "publishers": len(hub.publishers) if hub is not None else 0,
                "voice_links": len(links),
            }
        )

    async def start(self, host: str, port: int) -> None:
        runner = web.AppRunner(self.app)
        await runner.setup()
        site = web.TCPSite(runner, host, port)
        await site.start()
        self._runner = runner
        logger.info("Server running on %s:%s", host, port)

    async def stop(self) -> None:
        runner = self._runner
        self._runner = None
        if runner is not None:
            await runner.cleanup()
