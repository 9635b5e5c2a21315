"""TOML configuration for the orchestrator.

Loaded once at startup; every section maps onto a frozen dataclass so the
values can be shared between tasks without copying.

Example::

    [telegram]
    api_id = 12345
    api_hash = "..."
    bot_token = "123:ABC"

    [ai]
    api_key = "..."
    models = ["meta-llama/llama-4-maverick-17b-128e-instruct", "llama-3.3-70b-versatile"]

    [settings]
    debounce_seconds = 1

    [[users]]
    id = 42
    name = "Ann"
    system_prompt = "be terse"
"""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from telegram_orchestrator.services.interfaces import PeerIdentity

DEFAULT_API_URL = "https://api.groq.com/openai/v1/chat/completions"
DEFAULT_MODEL = "meta-llama/llama-4-maverick-17b-128e-instruct"
DEFAULT_TEMPERATURE = 1.5
DEFAULT_SESSION_FILE = "userbot.session"
DEFAULT_DEBOUNCE_SECONDS = 1
DEFAULT_HISTORY_LIMIT = 25


class ConfigError(RuntimeError):
    """Raised when the configuration is missing, unreadable or incomplete."""


@dataclass(frozen=True)
class TelegramConfig:
    api_id: int
    api_hash: str
    bot_token: str


@dataclass(frozen=True)
class AIConfig:
    api_key: str
    api_url: str = DEFAULT_API_URL
    models: tuple[str, ...] = (DEFAULT_MODEL,)
    temperature: float = DEFAULT_TEMPERATURE
    base_system_prompt: str | None = None


@dataclass(frozen=True)
class Settings:
    session_file: str = DEFAULT_SESSION_FILE
    debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS
    history_limit: int = DEFAULT_HISTORY_LIMIT


@dataclass(frozen=True)
class TrackedUser:
    id: int
    name: str
    system_prompt: str

    @property
    def peer(self) -> PeerIdentity:
        return PeerIdentity.user(self.id)


@dataclass(frozen=True)
class Config:
    telegram: TelegramConfig
    ai: AIConfig
    settings: Settings = field(default_factory=Settings)
    users: tuple[TrackedUser, ...] = ()

    def users_map(self) -> dict[PeerIdentity, TrackedUser]:
        return {user.peer: user for user in self.users}


def _require(table: dict[str, Any], key: str, section: str) -> Any:
    if key not in table:
        raise ConfigError(f"Missing required key '{key}' in [{section}]")
    return table[key]


def _parse_ai(raw: dict[str, Any]) -> AIConfig:
    # [groq] with a single `model` is the older layout; [ai] with `models` wins.
    if "ai" in raw:
        table, section = raw["ai"], "ai"
    elif "groq" in raw:
        table, section = raw["groq"], "groq"
    else:
        raise ConfigError("Missing [ai] section")
    if not isinstance(table, dict):
        raise ConfigError(f"[{section}] must be a table")

    if "models" in table:
        models = tuple(str(m) for m in table["models"])
    elif "model" in table:
        models = (str(table["model"]),)
    else:
        models = (DEFAULT_MODEL,)

    if not models:
        raise ConfigError(f"[{section}] models must not be empty")

    base_prompt = table.get("base_system_prompt")
    return AIConfig(
        api_key=str(_require(table, "api_key", section)),
        api_url=str(table.get("api_url", DEFAULT_API_URL)),
        models=models,
        temperature=float(table.get("temperature", DEFAULT_TEMPERATURE)),
        base_system_prompt=str(base_prompt) if base_prompt else None,
    )


def parse_config(raw: dict[str, Any]) -> Config:
    """Build a :class:`Config` from an already-decoded TOML document."""
    try:
        return _build_config(raw)
    except (TypeError, ValueError, AttributeError) as exc:
        raise ConfigError(f"Invalid configuration value: {exc}") from exc


def _build_config(raw: dict[str, Any]) -> Config:
    telegram_raw = raw.get("telegram")
    if not isinstance(telegram_raw, dict):
        raise ConfigError("Missing [telegram] section")

    bot_token = telegram_raw.get("bot_token")
    if not bot_token:
        raise ConfigError("[telegram] bot_token is required for the approval workflow")

    telegram = TelegramConfig(
        api_id=int(_require(telegram_raw, "api_id", "telegram")),
        api_hash=str(_require(telegram_raw, "api_hash", "telegram")),
        bot_token=str(bot_token),
    )

    settings_raw = raw.get("settings", {})
    settings = Settings(
        session_file=str(settings_raw.get("session_file", DEFAULT_SESSION_FILE)),
        debounce_seconds=float(settings_raw.get("debounce_seconds", DEFAULT_DEBOUNCE_SECONDS)),
        history_limit=int(settings_raw.get("history_limit", DEFAULT_HISTORY_LIMIT)),
    )

    users = []
    for i, entry in enumerate(raw.get("users", [])):
        section = f"users[{i}]"
        if not isinstance(entry, dict):
            raise ConfigError(f"{section} must be a table")
        users.append(
            TrackedUser(
                id=int(_require(entry, "id", section)),
                name=str(_require(entry, "name", section)),
                system_prompt=str(_require(entry, "system_prompt", section)),
            )
        )

    return Config(telegram=telegram, ai=_parse_ai(raw), settings=settings, users=tuple(users))


def load_config(path: Path | str) -> Config:
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Failed to read config file: {path}") from exc

    try:
        raw = tomllib.loads(content)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse config file: {path}: {exc}") from exc

    return parse_config(raw)
