"""Convert conversation turns to Anthropic API message format."""

from __future__ import annotations

import json
from typing import Any, Sequence

from yuruppu.history.models import ModelTurn, ToolSuccess, ToolTurn, Turn, UserTurn


def build_messages(turns: Sequence[Turn]) -> list[dict[str, Any]]:
    """Convert turns into Anthropic API messages.

    A model turn with tool calls becomes an assistant message of
    ``tool_use`` blocks; the tool turn that answers it becomes a user
    message of ``tool_result`` blocks. Consecutive messages with the same
    role (a tool result followed by the next user message) are merged
    into one message of content blocks.
    """
    messages: list[dict[str, Any]] = []

    for turn in turns:
        if isinstance(turn, UserTurn):
            _append(messages, "user", [{"type": "text", "text": turn.text}])

        elif isinstance(turn, ModelTurn):
            if turn.tool_calls:
                blocks = [
                    {"type": "tool_use", "id": c.call_id, "name": c.name, "input": c.arguments}
                    for c in turn.tool_calls
                ]
            elif turn.text:
                blocks = [{"type": "text", "text": turn.text}]
            else:
                # Empty text blocks are rejected by the API.
                continue
            _append(messages, "assistant", blocks)

        elif isinstance(turn, ToolTurn):
            blocks = []
            for result in turn.results:
                if isinstance(result, ToolSuccess):
                    blocks.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": result.call_id,
                            "content": json.dumps(result.payload, ensure_ascii=False),
                        }
                    )
                else:
                    blocks.append(
                        {
                            "type": "tool_result",
                            "tool_use_id": result.call_id,
                            "content": result.error,
                            "is_error": True,
                        }
                    )
            _append(messages, "user", blocks)

    return messages


def _append(messages: list[dict[str, Any]], role: str, blocks: list[dict[str, Any]]) -> None:
    if messages and messages[-1]["role"] == role:
        messages[-1]["content"].extend(blocks)
    else:
        messages.append({"role": role, "content": list(blocks)})
