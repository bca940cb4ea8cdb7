"""Configuration loader with YAML parsing, env-var interpolation, and Pydantic validation."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Optional

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field

DEFAULT_TOOLS = [
    "reply",
    "skip",
    "get_weather",
    "create_event",
    "get_event",
    "list_events",
    "update_event",
    "remove_event",
]


class BotConfig(BaseModel):
    id: str = "yuruppu"
    platform: str = "telegram"
    token: str = ""


class AgentConfig(BaseModel):
    model: str = "claude-sonnet-4-20250514"
    max_tokens: int = 2048
    temperature: float = 0.7
    system_prompt: str = ""
    cache_ttl: int = Field(default=3600, gt=0)  # seconds
    max_tool_rounds: int = Field(default=5, ge=1)
    invocation_timeout: float = Field(default=25.0, gt=0)  # seconds
    history_append_attempts: int = Field(default=3, ge=1)
    history_limit: int = Field(default=50, ge=0)  # turns sent to the model, 0 = all


class AnthropicConfig(BaseModel):
    api_key: str
    base_url: Optional[str] = None
    max_retries: int = 2
    timeout: float = 20.0


class StorageConfig(BaseModel):
    db_path: str = "./data/yuruppu.db"
    timeout: float = Field(default=5.0, gt=0)  # seconds per storage operation


class WeatherToolConfig(BaseModel):
    base_url: str = "https://wttr.in"
    timeout: float = 3.0


class EventToolConfig(BaseModel):
    list_max_period_days: int = Field(default=365, gt=0)
    list_limit: int = Field(default=5, gt=0)


class ToolsConfig(BaseModel):
    enabled: list[str] = Field(default_factory=lambda: list(DEFAULT_TOOLS))
    weather: WeatherToolConfig = Field(default_factory=WeatherToolConfig)
    events: EventToolConfig = Field(default_factory=EventToolConfig)


class AppConfig(BaseModel):
    log_level: str = "INFO"
    log_format: str = "console"  # "console" | "json"
    data_dir: str = "./data"
    bot: BotConfig = Field(default_factory=BotConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    anthropic: Optional[AnthropicConfig] = None
    storage: StorageConfig = Field(default_factory=StorageConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)


_ENV_VAR_PATTERN = re.compile(r"\$\{(\w+)\}")


def _interpolate_env_vars(text: str, extra: dict[str, str] | None = None) -> str:
    """Replace ${VAR_NAME} patterns with environment variable values."""

    def _replace(match: re.Match) -> str:
        var_name = match.group(1)
        if extra and var_name in extra:
            return extra[var_name]
        value = os.environ.get(var_name)
        if value is None:
            return match.group(0)
        return value

    return _ENV_VAR_PATTERN.sub(_replace, text)


def load_config(config_path: str | Path = "config.yaml", env_path: str | Path = ".env") -> AppConfig:
    """Load and validate configuration from YAML file with env-var interpolation.

    ``${data_dir}`` may be referenced by other values, e.g.
    ``db_path: ${data_dir}/yuruppu.db``.
    """
    env_file = Path(env_path)
    if env_file.exists():
        load_dotenv(env_file)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_file}")

    raw_text = config_file.read_text(encoding="utf-8")

    raw_data = yaml.safe_load(raw_text) or {}
    data_dir = _interpolate_env_vars(str(raw_data.get("data_dir", "./data")))

    interpolated = _interpolate_env_vars(raw_text, extra={"data_dir": data_dir})
    data = yaml.safe_load(interpolated) or {}

    return AppConfig(**data)
