from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from .errors import ConfigurationError


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


def _clean_token(value: str) -> str:
    cleaned = value.strip()
    if cleaned.lower().startswith("bot "):
        cleaned = cleaned[4:].strip()
    if len(cleaned) >= 2 and cleaned[0] == cleaned[-1] and cleaned[0] in {'"', "'"}:
        cleaned = cleaned[1:-1].strip()
    return cleaned


@dataclass(slots=True)
class Settings:
    discord_token: str
    discord_use_webhooks: bool

    gemini_api_key: str
    gemini_base_url: str
    gemini_model: str
    gemini_maintenance_model: str
    gemini_vision_model: str
    gemini_timeout_seconds: int
    gemini_temperature: float
    gemini_max_output_tokens: int

    sqlite_path: Path
    personas_json_path: Path

    history_limit: int = 10
    interaction_limit: int = 2
    debounce_window_ms: int = 5000
    channel_decay_ms: int = 300000
    max_message_chars: int = 2000

    maintenance_interval_seconds: int = 24 * 60 * 60
    maintenance_announce_goals: bool = False
    image_captions_enabled: bool = False

    @classmethod
    def from_env(cls) -> "Settings":
        chat_model = _env_str("GEMINI_MODEL", "gemini-2.5-flash")
        return cls(
            discord_token=_clean_token(_env_lookup("DISCORD_TOKEN", aliases=("DISCORD_BOT_TOKEN",)) or ""),
            discord_use_webhooks=_env_bool("DISCORD_USE_WEBHOOKS", True),
            gemini_api_key=_env_str("GEMINI_API_KEY", ""),
            gemini_base_url=_env_str("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com"),
            gemini_model=chat_model,
            gemini_maintenance_model=_env_str("GEMINI_MAINTENANCE_MODEL", chat_model),
            gemini_vision_model=_env_str("GEMINI_VISION_MODEL", chat_model),
            gemini_timeout_seconds=_env_int("GEMINI_TIMEOUT_SECONDS", 90),
            gemini_temperature=_env_float("GEMINI_TEMPERATURE", 0.8),
            gemini_max_output_tokens=_env_int("GEMINI_MAX_OUTPUT_TOKENS", 0),
            sqlite_path=Path(_env_str("SQLITE_PATH", "./data/persona_chorus.db")).expanduser(),
            personas_json_path=Path(
                _env_str("PERSONAS_JSON_PATH", "./characters.json", aliases=("CHARACTERS_JSON_PATH",))
            ).expanduser(),
            history_limit=_env_int("HISTORY_LIMIT", 10),
            interaction_limit=_env_int("INTERACTION_LIMIT", 2),
            debounce_window_ms=_env_int("DEBOUNCE_WINDOW_MS", 5000),
            channel_decay_ms=_env_int("CHANNEL_DECAY_MS", 300000),
            max_message_chars=_env_int("MAX_MESSAGE_CHARS", 2000),
            maintenance_interval_seconds=_env_int("MAINTENANCE_INTERVAL_SECONDS", 24 * 60 * 60),
            maintenance_announce_goals=_env_bool("MAINTENANCE_ANNOUNCE_GOALS", False),
            image_captions_enabled=_env_bool("IMAGE_CAPTIONS_ENABLED", False),
        )

    def validate_core(self) -> None:
        if self.history_limit < 1:
            raise ConfigurationError("HISTORY_LIMIT must be >= 1")
        if self.interaction_limit < 1:
            raise ConfigurationError("INTERACTION_LIMIT must be >= 1")
        if self.interaction_limit > self.history_limit:
            raise ConfigurationError("INTERACTION_LIMIT cannot exceed HISTORY_LIMIT")
        if self.debounce_window_ms < 0:
            raise ConfigurationError("DEBOUNCE_WINDOW_MS must be >= 0")
        if self.channel_decay_ms < 0:
            raise ConfigurationError("CHANNEL_DECAY_MS must be >= 0")
        if self.max_message_chars < 1 or self.max_message_chars > 2000:
            raise ConfigurationError("MAX_MESSAGE_CHARS must be in [1, 2000]")
        if self.maintenance_interval_seconds < 60:
            raise ConfigurationError("MAINTENANCE_INTERVAL_SECONDS must be >= 60")

    def validate(self) -> None:
        if not self.discord_token:
            raise ConfigurationError("DISCORD_TOKEN is required")
        if self.discord_token == "put_your_discord_bot_token_here":
            raise ConfigurationError("DISCORD_TOKEN is still placeholder")

        if not self.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required")
        if self.gemini_api_key == "put_your_gemini_api_key_here":
            raise ConfigurationError("GEMINI_API_KEY is still placeholder")
        if not self.gemini_model:
            raise ConfigurationError("GEMINI_MODEL cannot be empty")
        if self.gemini_timeout_seconds < 5:
            raise ConfigurationError("GEMINI_TIMEOUT_SECONDS must be >= 5")
        if self.gemini_max_output_tokens < 0:
            raise ConfigurationError("GEMINI_MAX_OUTPUT_TOKENS must be >= 0 (0 disables explicit cap)")

        self.validate_core()
