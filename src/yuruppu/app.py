"""Application orchestrator - wires all components and manages lifecycle."""

from __future__ import annotations

from yuruppu.ai.agent import Agent
from yuruppu.ai.client import AnthropicProvider
from yuruppu.ai.handler import MessageHandler
from yuruppu.ai.provider import Provider
from yuruppu.ai.tools.base import Tool
from yuruppu.ai.tools.events import (
    CreateEventTool,
    GetEventTool,
    ListEventsTool,
    RemoveEventTool,
    UpdateEventTool,
)
from yuruppu.ai.tools.registry import ToolRegistry
from yuruppu.ai.tools.reply import ReplyTool, SkipTool
from yuruppu.ai.tools.weather import WeatherTool
from yuruppu.config import AppConfig, BotConfig
from yuruppu.errors import ConfigError
from yuruppu.events.service import EventService
from yuruppu.history.store import HistoryStore
from yuruppu.log import get_logger
from yuruppu.messenger.base import MessengerAdapter
from yuruppu.storage.database import Database
from yuruppu.storage.objects import SQLiteObjectStorage, TimeoutObjectStorage

logger = get_logger(__name__)


class YuruppuApp:
    """Top-level application orchestrator."""

    def __init__(
        self,
        config: AppConfig,
        adapter: MessengerAdapter | None = None,
        provider: Provider | None = None,
    ):
        self.config = config
        self.db = Database(config.storage.db_path)
        self.storage = TimeoutObjectStorage(SQLiteObjectStorage(self.db), config.storage.timeout)
        self.history = HistoryStore(self.storage)
        self.events = EventService(self.storage)
        self.adapter = adapter or _create_adapter(config.bot)
        self.provider = provider or _create_provider(config)
        self.registry = ToolRegistry()
        self._weather: WeatherTool | None = None
        self.agent = Agent(self.provider, self.registry, self.history, config.agent)
        self.handler = MessageHandler(self.adapter, self.agent)

    async def start(self) -> None:
        """Initialize and start all components."""
        # 1. Database
        await self.db.initialize()

        # 2. Tools
        for tool in self._build_tools():
            self.registry.register(tool)

        # 3. Agent (system prompt cache)
        await self.agent.start()

        # 4. Messenger
        self.adapter.on_message(self.handler.handle)
        await self.adapter.start()
        logger.info(
            "yuruppu_started",
            bot_id=self.config.bot.id,
            platform=self.config.bot.platform,
            model=self.config.agent.model,
            tools=self.registry.names(),
        )

    async def stop(self) -> None:
        """Gracefully shut down all components.

        In-flight deliveries finish before the agent and provider close.
        """
        try:
            await self.adapter.stop()
        except Exception as e:
            logger.error("adapter_stop_error", error=str(e), exc_info=True)

        await self.agent.close()
        await self.provider.close()
        if self._weather is not None:
            await self._weather.aclose()
        await self.db.close()
        logger.info("yuruppu_stopped")

    def _build_tools(self) -> list[Tool]:
        tools_cfg = self.config.tools
        tools: list[Tool] = []
        for name in tools_cfg.enabled:
            match name:
                case "reply":
                    tools.append(ReplyTool(self.adapter))
                case "skip":
                    tools.append(SkipTool())
                case "get_weather":
                    self._weather = WeatherTool(
                        base_url=tools_cfg.weather.base_url,
                        timeout=tools_cfg.weather.timeout,
                    )
                    tools.append(self._weather)
                case "create_event":
                    tools.append(CreateEventTool(self.events))
                case "get_event":
                    tools.append(GetEventTool(self.events))
                case "list_events":
                    tools.append(
                        ListEventsTool(
                            self.events,
                            max_period_days=tools_cfg.events.list_max_period_days,
                            limit=tools_cfg.events.list_limit,
                        )
                    )
                case "update_event":
                    tools.append(UpdateEventTool(self.events))
                case "remove_event":
                    tools.append(RemoveEventTool(self.events))
                case _:
                    raise ConfigError(f"Unknown tool: {name}")
        return tools


def _create_provider(config: AppConfig) -> Provider:
    if config.anthropic is None:
        raise ConfigError("No 'anthropic' section in config")
    return AnthropicProvider(config.anthropic, config.agent)


def _create_adapter(cfg: BotConfig) -> MessengerAdapter:
    match cfg.platform:
        case "telegram":
            from yuruppu.messenger.telegram import TelegramAdapter

            return TelegramAdapter(cfg.id, cfg.token)
        case _:
            raise ConfigError(f"Unknown platform: {cfg.platform}")
