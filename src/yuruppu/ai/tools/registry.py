"""Tool registry: lookup table plus validated, single-shot dispatch of tool calls."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ValidationError

from yuruppu.ai.tools.base import Tool
from yuruppu.core.context import RequestContext
from yuruppu.errors import DuplicateToolError, ToolError, ToolResponseSchemaError
from yuruppu.history.models import ToolCall, ToolFailure, ToolResult, ToolSuccess
from yuruppu.log import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class DispatchOutcome:
    result: ToolResult
    final: bool = False

    @property
    def ok(self) -> bool:
        return isinstance(self.result, ToolSuccess)


class ToolRegistry:
    """Registry of all available tools, built once at startup."""

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}

    def register(self, tool: Tool) -> None:
        if tool.name in self._tools:
            raise DuplicateToolError(tool.name)
        self._tools[tool.name] = tool
        logger.info("tool_registered", tool_name=tool.name)

    def get(self, name: str) -> Tool | None:
        return self._tools.get(name)

    def names(self) -> list[str]:
        return list(self._tools)

    def all_tools(self) -> list[Tool]:
        return list(self._tools.values())

    def definitions(self) -> list[dict[str, Any]]:
        return [t.to_api_dict() for t in self._tools.values()]

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    async def dispatch(self, ctx: RequestContext, call: ToolCall) -> DispatchOutcome:
        """Validate and run one tool call.

        Lookup, argument and execution failures come back as ``ToolFailure``
        for the model to see. A result that breaks the tool's own response
        schema raises ``ToolResponseSchemaError``.
        """
        tool = self._tools.get(call.name)
        if tool is None:
            logger.warning("unknown_tool_called", tool=call.name, call_id=call.call_id)
            return DispatchOutcome(_failure(call, f"unknown tool: {call.name}"))

        try:
            args = tool.parameters_model.model_validate(call.arguments)
        except ValidationError as e:
            detail = _describe_validation_error(e, tool.parameter_schema)
            logger.info("tool_arguments_rejected", tool=call.name, detail=detail)
            return DispatchOutcome(_failure(call, f"invalid arguments: {detail}"))

        try:
            raw_result = await tool.execute(ctx, args)
        except ToolError as e:
            logger.warning("tool_execution_failed", tool=call.name, error=str(e), exc_info=True)
            return DispatchOutcome(_failure(call, f"{call.name} failed: {e}"))
        except Exception:
            logger.error("tool_execution_failed", tool=call.name, exc_info=True)
            return DispatchOutcome(_failure(call, f"{call.name} failed: internal error"))

        result = _validate_response(tool, raw_result)
        final = tool.is_final(result)
        logger.debug("tool_executed", tool=call.name, call_id=call.call_id, final=final)
        return DispatchOutcome(
            ToolSuccess(
                call_id=call.call_id,
                name=call.name,
                payload=result.model_dump(mode="json", exclude_none=True),
            ),
            final=final,
        )


def _failure(call: ToolCall, message: str) -> ToolFailure:
    return ToolFailure(call_id=call.call_id, name=call.name, error=message)


def _validate_response(tool: Tool, raw: Any) -> BaseModel:
    model = tool.response_model
    try:
        if isinstance(raw, model):
            # Re-validate: instances built with model_construct() skip validation.
            return model.model_validate(raw.model_dump())
        return model.model_validate(raw)
    except ValidationError as e:
        raise ToolResponseSchemaError(tool.name, _describe_validation_error(e, tool.response_schema)) from e


def _describe_validation_error(error: ValidationError, schema: dict[str, Any]) -> str:
    parts = []
    for err in error.errors():
        loc = [str(p) for p in err["loc"]]
        path = ".".join(loc) or "(root)"
        expected = _expected_type(schema, loc)
        msg = f"{path}: {err['msg']}"
        if expected:
            msg += f" (expected {expected})"
        parts.append(msg)
    return "; ".join(parts)


def _expected_type(schema: dict[str, Any], loc: list[str]) -> str | None:
    node: dict[str, Any] | None = schema
    for part in loc:
        if node is None:
            return None
        if "$ref" in node:
            node = schema.get("$defs", {}).get(node["$ref"].rsplit("/", 1)[-1])
            if node is None:
                return None
        if part.isdigit() and "items" in node:
            node = node["items"]
        else:
            node = node.get("properties", {}).get(part)
    if node is None:
        return None
    if "type" in node:
        return node["type"] if "format" not in node else f"{node['type']} ({node['format']})"
    if "anyOf" in node:
        return " or ".join(str(o.get("type")) for o in node["anyOf"] if "type" in o)
    return None
