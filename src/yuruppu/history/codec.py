"""JSON Lines encoding of conversation history, one turn per line."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Iterable

from yuruppu.history.models import (
    ModelTurn,
    ToolCall,
    ToolFailure,
    ToolResult,
    ToolSuccess,
    ToolTurn,
    Turn,
    UserTurn,
)


class DecodeError(ValueError):
    """A stored line is not a valid turn."""


def encode_turns(turns: Iterable[Turn]) -> bytes:
    lines = [json.dumps(_turn_to_dict(t), ensure_ascii=False, separators=(",", ":")) for t in turns]
    if not lines:
        return b""
    return ("\n".join(lines) + "\n").encode("utf-8")


def decode_turns(data: bytes) -> tuple[Turn, ...]:
    """Decode a JSONL blob. Blank lines are skipped; anything else invalid raises DecodeError."""
    try:
        text = data.decode("utf-8")
    except UnicodeDecodeError as e:
        raise DecodeError(f"not UTF-8: {e}") from e

    turns: list[Turn] = []
    for lineno, line in enumerate(text.splitlines(), start=1):
        if not line.strip():
            continue
        try:
            raw = json.loads(line)
            turns.append(_dict_to_turn(raw))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            raise DecodeError(f"line {lineno}: {e}") from e
    return tuple(turns)


def _turn_to_dict(turn: Turn) -> dict[str, Any]:
    if isinstance(turn, UserTurn):
        return {
            "role": "user",
            "senderId": turn.sender_id,
            "text": turn.text,
            "timestamp": turn.timestamp.isoformat(),
        }
    if isinstance(turn, ModelTurn):
        data: dict[str, Any] = {
            "role": "model",
            "modelName": turn.model_name,
            "timestamp": turn.timestamp.isoformat(),
        }
        if turn.tool_calls:
            data["toolCalls"] = [
                {"id": c.call_id, "name": c.name, "args": c.arguments} for c in turn.tool_calls
            ]
        else:
            data["text"] = turn.text
        return data
    if isinstance(turn, ToolTurn):
        return {
            "role": "tool",
            "results": [_result_to_dict(r) for r in turn.results],
            "timestamp": turn.timestamp.isoformat(),
        }
    raise TypeError(f"unknown turn type: {type(turn).__name__}")


def _result_to_dict(result: ToolResult) -> dict[str, Any]:
    if isinstance(result, ToolSuccess):
        return {"id": result.call_id, "name": result.name, "payload": result.payload}
    return {"id": result.call_id, "name": result.name, "error": result.error}


def _dict_to_turn(raw: dict[str, Any]) -> Turn:
    role = raw["role"]
    timestamp = datetime.fromisoformat(raw["timestamp"])
    if role == "user":
        return UserTurn(text=raw["text"], sender_id=raw.get("senderId", ""), timestamp=timestamp)
    if role == "model":
        calls = tuple(
            ToolCall(call_id=c["id"], name=c["name"], arguments=dict(c.get("args") or {}))
            for c in raw.get("toolCalls", [])
        )
        return ModelTurn(
            text=None if calls else raw["text"],
            tool_calls=calls,
            model_name=raw.get("modelName", ""),
            timestamp=timestamp,
        )
    if role == "tool":
        results: list[ToolResult] = []
        for r in raw["results"]:
            if "error" in r:
                results.append(ToolFailure(call_id=r["id"], name=r["name"], error=r["error"]))
            else:
                results.append(ToolSuccess(call_id=r["id"], name=r["name"], payload=r["payload"]))
        return ToolTurn(results=tuple(results), timestamp=timestamp)
    raise ValueError(f"unknown role: {role}")
