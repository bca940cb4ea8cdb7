"""Request-scoped values passed explicitly through the agent and its tools."""

from __future__ import annotations

from dataclasses import dataclass

from yuruppu.core.types import ChatKind
from yuruppu.errors import ReplyHandleUsedError


class ReplyHandle:
    """Single-use token for answering on the channel a message arrived on.

    The messenger decides what the token means; for Telegram it is the chat
    id plus the id of the message being answered.
    """

    __slots__ = ("chat_id", "message_id", "_used")

    def __init__(self, chat_id: str, message_id: str | None = None) -> None:
        self.chat_id = chat_id
        self.message_id = message_id
        self._used = False

    @property
    def used(self) -> bool:
        return self._used

    def check(self) -> None:
        if self._used:
            raise ReplyHandleUsedError("a reply was already sent for this message")

    def consume(self) -> None:
        self.check()
        self._used = True

    def __repr__(self) -> str:
        return f"ReplyHandle(chat_id={self.chat_id!r}, message_id={self.message_id!r}, used={self._used})"


@dataclass(frozen=True, slots=True)
class RequestContext:
    conversation_key: str
    sender_id: str
    reply_handle: ReplyHandle
    chat_kind: ChatKind = ChatKind.USER
    sender_name: str = ""

    @property
    def is_group(self) -> bool:
        return self.chat_kind is not ChatKind.USER
