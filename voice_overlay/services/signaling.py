from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..errors import MalformedRegistration
from .transport import (
    PUBLISHER_JOINED,
    PUBLISHER_LEFT,
    WEBRTC_ANSWER,
    WEBRTC_ICE_CANDIDATE,
    WEBRTC_OFFER,
    Transport,
)

logger = logging.getLogger("voice_overlay.signaling")


class Role(str, Enum):
    HOST = "host"
    PUBLISHER = "publisher"


def parse_role(raw: object) -> Role:
    if not isinstance(raw, str):
        raise MalformedRegistration(f"role must be a string, got {type(raw).__name__}")
    try:
        return Role(raw.strip().lower())
    except ValueError:
        raise MalformedRegistration(f"unknown role {raw!r}") from None


@dataclass(slots=True)
class RoleRegistration:
    role: Role
    user_id: str | None = None


@dataclass(slots=True)
class SignalingRegistry:
    host_socket_id: str | None = None
    publishers: dict[str, RoleRegistration] = field(default_factory=dict)
    # Last role each socket declared, used to decide implicit ICE routes.
    declared: dict[str, RoleRegistration] = field(default_factory=dict)

    def find_publisher(self, user_id: object) -> str | None:
        # Linear scan; publisher counts stay small.
        wanted = str(user_id)
        for sid, info in self.publishers.items():
            if info.user_id is not None and info.user_id == wanted:
                return sid
        return None


class SignalingHub:
    def __init__(self, transport: Transport, registry: SignalingRegistry | None = None) -> None:
        self.transport = transport
        self.registry = registry or SignalingRegistry()

    @property
    def host_socket_id(self) -> str | None:
        return self.registry.host_socket_id

    @property
    def publishers(self) -> dict[str, RoleRegistration]:
        return dict(self.registry.publishers)

    def role_of(self, socket_id: str) -> Role | None:
        info = self.registry.declared.get(socket_id)
        return info.role if info is not None else None

    async def register_role(self, socket_id: str, role: Role, user_id: str | None = None) -> None:
        registration = RoleRegistration(role=role, user_id=user_id)
        self.registry.declared[socket_id] = registration

        if role is Role.HOST:
            previous = self.registry.host_socket_id
            self.registry.host_socket_id = socket_id
            if previous is not None and previous != socket_id:
                # Last writer wins; nothing arbitrates between competing hosts.
                logger.warning("RTC host %s replaced by %s", previous, socket_id)
            logger.info("RTC host registered: %s", socket_id)
            return

        self.registry.publishers[socket_id] = registration
        logger.info("RTC publisher registered: %s user=%s", socket_id, user_id)
        host = self.registry.host_socket_id
        if host is not None:
            await self.transport.send(
                PUBLISHER_JOINED,
                {"socketId": socket_id, "userId": user_id},
                to=host,
            )

    async def route_offer(self, from_socket_id: str, user_id: Any, sdp: Any) -> None:
        host = self.registry.host_socket_id
        if host is None:
            logger.debug("Dropping webrtc-offer from %s: no host registered", from_socket_id)
            return
        await self.transport.send(
            WEBRTC_OFFER,
            {"fromSocketId": from_socket_id, "userId": user_id, "sdp": sdp},
            to=host,
        )

    async def route_answer(self, to_socket_id: Any, sdp: Any, user_id: Any) -> None:
        if not to_socket_id:
            logger.debug("Dropping webrtc-answer without target socket")
            return
        await self.transport.send(WEBRTC_ANSWER, {"sdp": sdp, "userId": user_id}, to=str(to_socket_id))

    def resolve_ice_target(
        self,
        from_socket_id: str,
        user_id: Any = None,
        to_socket_id: Any = None,
    ) -> str | None:
        if to_socket_id:
            return str(to_socket_id)
        role = self.role_of(from_socket_id)
        if role is Role.PUBLISHER:
            return self.registry.host_socket_id
        if role is Role.HOST and user_id:
            return self.registry.find_publisher(user_id)
        return None

    async def route_ice_candidate(
        self,
        from_socket_id: str,
        candidate: Any,
        user_id: Any = None,
        to_socket_id: Any = None,
    ) -> None:
        target = self.resolve_ice_target(from_socket_id, user_id, to_socket_id)
        if target is None:
            logger.debug("No route for ICE candidate from %s (user=%s)", from_socket_id, user_id)
            return
        await self.transport.send(
            WEBRTC_ICE_CANDIDATE,
            {"candidate": candidate, "userId": user_id, "fromSocketId": from_socket_id},
            to=target,
        )

    async def on_disconnect(self, socket_id: str) -> None:
        self.registry.declared.pop(socket_id, None)
        if self.registry.host_socket_id == socket_id:
            logger.info("RTC host disconnected: %s", socket_id)
            self.registry.host_socket_id = None

        info = self.registry.publishers.pop(socket_id, None)
        if info is None:
            return
        logger.info("RTC publisher disconnected: %s user=%s", socket_id, info.user_id)
        host = self.registry.host_socket_id
        if host is not None:
            await self.transport.send(
                PUBLISHER_LEFT,
                {"socketId": socket_id, "userId": info.user_id},
                to=host,
            )
