from .command_mixin import CommandMixin
from .voice_mixin import VoiceMixin

__all__ = [
    "CommandMixin",
    "VoiceMixin",
]
