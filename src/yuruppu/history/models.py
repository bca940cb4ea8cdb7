"""Conversation turns and the tool call/result records they carry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class ToolCall:
    """A tool invocation requested by the model."""

    call_id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class ToolSuccess:
    call_id: str
    name: str
    payload: dict[str, Any]


@dataclass(frozen=True, slots=True)
class ToolFailure:
    call_id: str
    name: str
    error: str


ToolResult = Union[ToolSuccess, ToolFailure]


@dataclass(frozen=True, slots=True)
class UserTurn:
    text: str
    sender_id: str = ""
    timestamp: datetime = field(default_factory=_now)
    role = "user"


@dataclass(frozen=True, slots=True)
class ModelTurn:
    """What the model said: either final text or a non-empty set of tool calls."""

    text: str | None = None
    tool_calls: tuple[ToolCall, ...] = ()
    model_name: str = ""
    timestamp: datetime = field(default_factory=_now)
    role = "model"

    def __post_init__(self) -> None:
        if (self.text is None) == (not self.tool_calls):
            raise ValueError("ModelTurn needs exactly one of text or tool_calls")


@dataclass(frozen=True, slots=True)
class ToolTurn:
    results: tuple[ToolResult, ...]
    timestamp: datetime = field(default_factory=_now)
    role = "tool"


Turn = Union[UserTurn, ModelTurn, ToolTurn]

# Ordered, append-only turn sequence of one conversation.
ConversationHistory = tuple[Turn, ...]

# Storage generation of a conversation's history object.
Revision = int
NO_REVISION: Revision = 0
