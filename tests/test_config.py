"""TOML configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from telegram_orchestrator.config.loader import (
    DEFAULT_API_URL,
    DEFAULT_MODEL,
    ConfigError,
    load_config,
    parse_config,
)
from telegram_orchestrator.services.interfaces import PeerIdentity

MINIMAL = {
    "telegram": {"api_id": 12345, "api_hash": "abc", "bot_token": "123:ABC"},
    "ai": {"api_key": "gsk_test"},
}


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.toml"
    path.write_text(text, encoding="utf-8")
    return path


class TestParseConfig:
    def test_defaults(self) -> None:
        config = parse_config(MINIMAL)

        assert config.telegram.api_id == 12345
        assert config.ai.api_url == DEFAULT_API_URL
        assert config.ai.models == (DEFAULT_MODEL,)
        assert config.ai.temperature == 1.5
        assert config.ai.base_system_prompt is None
        assert config.settings.session_file == "userbot.session"
        assert config.settings.debounce_seconds == 1
        assert config.settings.history_limit == 25
        assert config.users == ()

    def test_legacy_groq_section(self) -> None:
        raw = {"telegram": MINIMAL["telegram"], "groq": {"api_key": "k", "model": "llama-3.3-70b-versatile"}}
        config = parse_config(raw)
        assert config.ai.models == ("llama-3.3-70b-versatile",)

    def test_ai_section_wins_over_groq(self) -> None:
        raw = dict(MINIMAL, groq={"api_key": "old", "model": "old-model"})
        raw["ai"] = {"api_key": "new", "models": ["a", "b"]}
        config = parse_config(raw)
        assert config.ai.api_key == "new"
        assert config.ai.models == ("a", "b")

    def test_empty_model_list_rejected(self) -> None:
        raw = dict(MINIMAL, ai={"api_key": "k", "models": []})
        with pytest.raises(ConfigError, match="must not be empty"):
            parse_config(raw)

    def test_missing_bot_token(self) -> None:
        raw = dict(MINIMAL, telegram={"api_id": 1, "api_hash": "h"})
        with pytest.raises(ConfigError, match="bot_token"):
            parse_config(raw)

    def test_missing_telegram_section(self) -> None:
        with pytest.raises(ConfigError, match=r"\[telegram\]"):
            parse_config({"ai": {"api_key": "k"}})

    def test_missing_ai_section(self) -> None:
        with pytest.raises(ConfigError):
            parse_config({"telegram": MINIMAL["telegram"]})

    def test_non_numeric_api_id(self) -> None:
        raw = dict(MINIMAL, telegram={"api_id": "abc", "api_hash": "h", "bot_token": "t"})
        with pytest.raises(ConfigError, match="Invalid configuration value"):
            parse_config(raw)

    def test_non_numeric_debounce(self) -> None:
        raw = dict(MINIMAL, settings={"debounce_seconds": "soon"})
        with pytest.raises(ConfigError):
            parse_config(raw)

    def test_ai_not_a_table(self) -> None:
        raw = dict(MINIMAL, ai="gsk_test")
        with pytest.raises(ConfigError, match="must be a table"):
            parse_config(raw)

    def test_user_entry_not_a_table(self) -> None:
        raw = dict(MINIMAL, users=[42])
        with pytest.raises(ConfigError, match="must be a table"):
            parse_config(raw)

    def test_user_missing_prompt(self) -> None:
        raw = dict(MINIMAL, users=[{"id": 42, "name": "Ann"}])
        with pytest.raises(ConfigError, match="system_prompt"):
            parse_config(raw)


class TestLoadConfig:
    def test_full_file(self, tmp_path: Path) -> None:
        path = _write(tmp_path, """
[telegram]
api_id = 12345
api_hash = "abc"
bot_token = "123:ABC"

[ai]
api_key = "gsk_test"
models = ["primary", "backup"]
temperature = 0.9
base_system_prompt = "You are me."

[settings]
session_file = "me.session"
debounce_seconds = 2.5
history_limit = 10

[[users]]
id = 42
name = "Ann"
system_prompt = "be terse"
""")
        config = load_config(path)

        assert config.ai.models == ("primary", "backup")
        assert config.ai.temperature == 0.9
        assert config.ai.base_system_prompt == "You are me."
        assert config.settings.session_file == "me.session"
        assert config.settings.debounce_seconds == 2.5
        assert config.settings.history_limit == 10

        users = config.users_map()
        ann = users[PeerIdentity.user(42)]
        assert (ann.name, ann.system_prompt) == ("Ann", "be terse")

    def test_missing_file(self, tmp_path: Path) -> None:
        with pytest.raises(ConfigError, match="Failed to read"):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml(self, tmp_path: Path) -> None:
        path = _write(tmp_path, "[telegram\napi_id = ")
        with pytest.raises(ConfigError, match="Failed to parse"):
            load_config(path)


class TestRunWithBadValues:
    def test_malformed_value_exits_nonzero(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        from telegram_orchestrator import orchestrator

        monkeypatch.setattr(orchestrator, "_configure_logging", lambda **kwargs: None)
        path = _write(tmp_path, '[telegram]\napi_id = "abc"\napi_hash = "h"\nbot_token = "t"\n\n[ai]\napi_key = "k"\n')

        assert orchestrator.run(["-c", str(path)]) == 1
