from __future__ import annotations

from typing import Any, Protocol

VOICE_MEMBERS = "voiceMembers"
SPEAKING = "speaking"

REGISTER_ROLE = "register-role"
WEBRTC_OFFER = "webrtc-offer"
WEBRTC_ANSWER = "webrtc-answer"
WEBRTC_ICE_CANDIDATE = "webrtc-ice-candidate"
PUBLISHER_JOINED = "publisher-joined"
PUBLISHER_LEFT = "publisher-left"
REQUEST_SNAPSHOT = "requestSnapshot"


class Transport(Protocol):
    async def broadcast(self, event: str, data: Any) -> None: ...

    async def send(self, event: str, data: Any, to: str) -> None: ...
