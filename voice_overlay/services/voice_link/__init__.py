from .manager import VoiceLinkManager
from .state import TRANSITIONS, VoiceLink, VoiceLinkState

__all__ = [
    "TRANSITIONS",
    "VoiceLink",
    "VoiceLinkManager",
    "VoiceLinkState",
]
