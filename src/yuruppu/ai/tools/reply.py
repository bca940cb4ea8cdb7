"""Reply and skip tools: the two ways the model ends its turn."""

from __future__ import annotations

from typing import Literal, Optional

from pydantic import BaseModel, Field

from yuruppu.ai.tools.base import Tool
from yuruppu.core.context import RequestContext
from yuruppu.errors import ToolError
from yuruppu.log import get_logger
from yuruppu.messenger.base import MessengerAdapter
from yuruppu.messenger.models import OutgoingMessage

logger = get_logger(__name__)


class ReplyArgs(BaseModel):
    message: str = Field(min_length=1, description="Text to send to the user(s)")


class ReplyResult(BaseModel):
    status: Literal["sent"]


class ReplyTool(Tool[ReplyArgs, ReplyResult]):
    """Sends the user-visible answer on the channel the message came from."""

    parameters_model = ReplyArgs
    response_model = ReplyResult

    def __init__(self, messenger: MessengerAdapter):
        self._messenger = messenger

    @property
    def name(self) -> str:
        return "reply"

    @property
    def description(self) -> str:
        return "Use this tool to send a reply message to the user(s)."

    async def execute(self, ctx: RequestContext, args: ReplyArgs) -> ReplyResult:
        handle = ctx.reply_handle
        handle.check()
        try:
            await self._messenger.send_message(
                OutgoingMessage(
                    chat_id=handle.chat_id,
                    text=args.message,
                    reply_to_message_id=handle.message_id,
                )
            )
        except Exception as e:
            raise ToolError("failed to send reply") from e
        # Only a delivered reply uses up the handle.
        handle.consume()
        return ReplyResult(status="sent")

    def is_final(self, result: ReplyResult) -> bool:
        return result.status == "sent"


class SkipArgs(BaseModel):
    reason: Optional[str] = Field(default=None, description="Why no reply is needed")


class SkipResult(BaseModel):
    status: Literal["skipped"]


class SkipTool(Tool[SkipArgs, SkipResult]):
    parameters_model = SkipArgs
    response_model = SkipResult

    @property
    def name(self) -> str:
        return "skip"

    @property
    def description(self) -> str:
        return "Use this tool ONLY when you decide to do nothing for the user(s)."

    async def execute(self, ctx: RequestContext, args: SkipArgs) -> SkipResult:
        logger.debug("reply_skipped", reason=args.reason)
        return SkipResult(status="skipped")

    def is_final(self, result: SkipResult) -> bool:
        return result.status == "skipped"
