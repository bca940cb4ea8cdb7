"""Messenger adapter interface: the agent's only channel to chat users."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from yuruppu.messenger.models import IncomingMessage, OutgoingMessage

MessageCallback = Callable[[IncomingMessage], Awaitable[object]]


class MessengerAdapter(ABC):
    """One chat platform.

    Adapters deliver each inbound text message to the registered callback
    and send replies addressed by chat id and the message being answered.
    """

    def __init__(self) -> None:
        self._message_callback: MessageCallback | None = None

    @property
    @abstractmethod
    def platform_name(self) -> str: ...

    @abstractmethod
    async def start(self) -> None:
        """Begin receiving messages."""

    @abstractmethod
    async def stop(self) -> None:
        """Stop receiving and wait for deliveries already in progress."""

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None: ...

    @abstractmethod
    async def send_typing_indicator(self, chat_id: str) -> None: ...

    def on_message(self, callback: MessageCallback) -> None:
        self._message_callback = callback
