"""Tests for configuration loading and validation."""

from __future__ import annotations

import os
from pathlib import Path

import pytest
from pydantic import ValidationError

from yuruppu.config import DEFAULT_TOOLS, AgentConfig, AppConfig, load_config

EXAMPLE_CONFIG = Path(__file__).resolve().parent.parent / "config.example.yaml"


class TestSchemaDefaults:
    def test_app_config_defaults(self):
        cfg = AppConfig()
        assert cfg.log_level == "INFO"
        assert cfg.log_format == "console"
        assert cfg.anthropic is None
        assert cfg.bot.platform == "telegram"
        assert cfg.tools.enabled == DEFAULT_TOOLS
        assert cfg.storage.timeout == 5.0

    def test_agent_defaults(self):
        cfg = AgentConfig()
        assert cfg.max_tool_rounds == 5
        assert cfg.history_append_attempts == 3
        assert cfg.invocation_timeout == 25.0

    @pytest.mark.parametrize(
        "field, value",
        [
            ("max_tool_rounds", 0),
            ("history_append_attempts", 0),
            ("invocation_timeout", 0),
            ("cache_ttl", -1),
        ],
    )
    def test_invalid_agent_values(self, field, value):
        with pytest.raises(ValidationError):
            AgentConfig(**{field: value})


class TestLoadConfig:
    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.yaml", tmp_path / ".env")

    def test_env_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("YURUPPU_TEST_TOKEN", "tg-123")
        config_file = tmp_path / "config.yaml"
        config_file.write_text(
            "data_dir: /srv/yuruppu\n"
            "bot:\n"
            "  token: ${YURUPPU_TEST_TOKEN}\n"
            "storage:\n"
            "  db_path: ${data_dir}/bot.db\n"
            "anthropic:\n"
            "  api_key: ${YURUPPU_TEST_MISSING}\n",
            encoding="utf-8",
        )

        cfg = load_config(config_file, tmp_path / ".env")

        assert cfg.bot.token == "tg-123"
        assert cfg.storage.db_path == "/srv/yuruppu/bot.db"
        # Unset variables are left as-is.
        assert cfg.anthropic.api_key == "${YURUPPU_TEST_MISSING}"

    def test_dotenv_file_loaded(self, tmp_path):
        (tmp_path / ".env").write_text("YURUPPU_DOTENV_KEY=sk-from-dotenv\n", encoding="utf-8")
        config_file = tmp_path / "config.yaml"
        config_file.write_text("anthropic:\n  api_key: ${YURUPPU_DOTENV_KEY}\n", encoding="utf-8")

        try:
            cfg = load_config(config_file, tmp_path / ".env")
        finally:
            os.environ.pop("YURUPPU_DOTENV_KEY", None)

        assert cfg.anthropic.api_key == "sk-from-dotenv"

    def test_empty_file_uses_defaults(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("", encoding="utf-8")
        assert load_config(config_file, tmp_path / ".env") == AppConfig()

    def test_invalid_value(self, tmp_path):
        config_file = tmp_path / "config.yaml"
        config_file.write_text("agent:\n  max_tool_rounds: zero\n", encoding="utf-8")
        with pytest.raises(ValidationError):
            load_config(config_file, tmp_path / ".env")

    def test_example_config_is_valid(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.setenv("TELEGRAM_BOT_TOKEN", "tg-test")

        cfg = load_config(EXAMPLE_CONFIG, tmp_path / ".env")

        assert cfg.anthropic.api_key == "sk-test"
        assert cfg.storage.db_path == "./data/yuruppu.db"
        assert cfg.tools.enabled == DEFAULT_TOOLS
        assert "reply tool" in cfg.agent.system_prompt
