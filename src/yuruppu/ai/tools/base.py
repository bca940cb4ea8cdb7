"""Abstract tool interface for model tool use."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Generic, TypeVar

from pydantic import BaseModel

from yuruppu.core.context import RequestContext

ArgsT = TypeVar("ArgsT", bound=BaseModel)
ResultT = TypeVar("ResultT", bound=BaseModel)


class Tool(ABC, Generic[ArgsT, ResultT]):
    """Base class for all model-callable tools.

    Arguments arrive from the model as an untyped mapping. The registry
    validates them into ``parameters_model`` before ``execute`` runs, and
    validates the returned ``response_model`` instance again before
    ``is_final`` is consulted.
    """

    parameters_model: type[ArgsT]
    response_model: type[ResultT]

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique tool name sent to the model."""
        ...

    @property
    @abstractmethod
    def description(self) -> str:
        """What this tool does, in terms of this tool only."""
        ...

    @property
    def parameter_schema(self) -> dict[str, Any]:
        return self.parameters_model.model_json_schema()

    @property
    def response_schema(self) -> dict[str, Any]:
        return self.response_model.model_json_schema()

    @abstractmethod
    async def execute(self, ctx: RequestContext, args: ArgsT) -> ResultT:
        """Run the tool.

        Raise ``ToolError`` with a short, model-safe message on failure.
        """
        ...

    def is_final(self, result: ResultT) -> bool:
        """Whether a successful call ends the agent loop."""
        return False

    def to_api_dict(self) -> dict[str, Any]:
        """Serialize to the Anthropic API tool definition format."""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": self.parameter_schema,
        }
