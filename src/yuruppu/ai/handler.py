"""Message handler: turns an incoming message into one agent invocation."""

from __future__ import annotations

from yuruppu.ai.agent import Agent, Outcome
from yuruppu.core.context import ReplyHandle, RequestContext
from yuruppu.errors import YuruppuError
from yuruppu.log import get_logger, request_context
from yuruppu.messenger.base import MessengerAdapter
from yuruppu.messenger.models import IncomingMessage

logger = get_logger(__name__)


class MessageHandler:
    """Handles the flow: message -> context -> agent.

    The agent talks to the user only through the reply tool, so nothing is
    sent from here, not even when the invocation fails. Failures are
    logged once, here, with their kind.
    """

    def __init__(self, adapter: MessengerAdapter, agent: Agent):
        self._adapter = adapter
        self._agent = agent

    async def handle(self, message: IncomingMessage) -> Outcome | None:
        text = message.text.strip()
        if not text:
            return None

        ctx = RequestContext(
            conversation_key=message.chat_id,
            sender_id=message.user_id,
            reply_handle=ReplyHandle(message.chat_id, message.message_id),
            chat_kind=message.chat_kind,
            sender_name=message.user_display_name,
        )

        with request_context(ctx.conversation_key, ctx.sender_id):
            logger.info("message_received", chat_kind=message.chat_kind.value, length=len(text))
            try:
                await self._adapter.send_typing_indicator(message.chat_id)
            except Exception as e:
                logger.warning("typing_indicator_failed", error=str(e))

            try:
                outcome = await self._agent.respond(ctx, text)
            except YuruppuError as e:
                logger.error("agent_failed", kind=e.kind, error=str(e), exc_info=True)
                return None
            except Exception:
                logger.error("agent_failed", kind="internal", exc_info=True)
                return None

            if outcome.status == "text":
                # Plain text is kept in history but never relayed.
                logger.info("model_answered_without_reply", text=outcome.final_text)
            elif not ctx.reply_handle.used:
                logger.info("agent_skipped_reply")
            return outcome
