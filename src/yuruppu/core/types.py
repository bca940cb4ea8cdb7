"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Platform(StrEnum):
    TELEGRAM = "telegram"


class ChatKind(StrEnum):
    """Where a conversation takes place; the conversation key is the chat id."""

    USER = "user"
    GROUP = "group"
    ROOM = "room"
