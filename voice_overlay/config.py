from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


load_dotenv()


def _env_lookup(name: str, aliases: tuple[str, ...] = ()) -> str | None:
    for key in (name, *aliases):
        # Be tolerant to UTF-8 BOM accidentally saved in .env key names.
        for candidate in (key, f"\ufeff{key}"):
            raw = os.getenv(candidate)
            if raw is not None:
                return raw
    return None


def _env_bool(name: str, default: bool, aliases: tuple[str, ...] = ()) -> bool:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int, aliases: tuple[str, ...] = ()) -> int:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def _env_float(name: str, default: float, aliases: tuple[str, ...] = ()) -> float:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default


def _env_str(name: str, default: str, aliases: tuple[str, ...] = ()) -> str:
    raw = _env_lookup(name, aliases)
    if raw is None:
        return default
    value = raw.strip()
    return value if value else default


def _env_list(name: str, default: tuple[str, ...], aliases: tuple[str, ...] = ()) -> tuple[str, ...]:
    raw = (_env_lookup(name, aliases) or "").strip()
    if not raw:
        return default
    values = tuple(part.strip() for part in raw.split(",") if part.strip())
    return values or default


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if (cleaned.startswith('"') and cleaned.endswith('"')) or (
        cleaned.startswith("'") and cleaned.endswith("'")
    ):
        cleaned = cleaned[1:-1].strip()
    return cleaned


@dataclass(slots=True)
class Settings:
    discord_token: str
    command_prefix: str

    host: str
    port: int
    cors_allowed_origins: tuple[str, ...]

    voice_ready_timeout_seconds: float
    voice_reconnect_grace_seconds: float
    voice_keepalive_enabled: bool

    log_level: str

    @classmethod
    def from_env(cls) -> "Settings":
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN", ("DISCORD_BOT_TOKEN",)) or ""),
            command_prefix=_env_str("DISCORD_COMMAND_PREFIX", "!"),
            host=_env_str("HOST", "0.0.0.0"),
            port=_env_int("PORT", 3001),
            cors_allowed_origins=_env_list("CORS_ALLOWED_ORIGINS", ("*",)),
            voice_ready_timeout_seconds=_env_float("VOICE_READY_TIMEOUT_SECONDS", 20.0),
            voice_reconnect_grace_seconds=_env_float("VOICE_RECONNECT_GRACE_SECONDS", 5.0),
            voice_keepalive_enabled=_env_bool("VOICE_KEEPALIVE_ENABLED", True),
            log_level=_env_str("LOG_LEVEL", "INFO").upper(),
        )

    @property
    def cors_origins(self) -> str | list[str]:
        if self.cors_allowed_origins == ("*",):
            return "*"
        return list(self.cors_allowed_origins)

    def validate(self) -> None:
        if not self.discord_token:
            raise ValueError("DISCORD_TOKEN is required in .env")
        if self.discord_token == "put_your_discord_bot_token_here":
            raise ValueError("DISCORD_TOKEN is still placeholder")
        if not 1 <= self.port <= 65535:
            raise ValueError("PORT must be between 1 and 65535")
        if self.voice_ready_timeout_seconds <= 0:
            raise ValueError("VOICE_READY_TIMEOUT_SECONDS must be > 0")
        if self.voice_reconnect_grace_seconds <= 0:
            raise ValueError("VOICE_RECONNECT_GRACE_SECONDS must be > 0")
