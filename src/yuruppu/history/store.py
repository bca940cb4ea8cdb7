"""Append-only conversation history on top of an ObjectStorage."""

from __future__ import annotations

from typing import Sequence

from yuruppu.errors import ConflictError, CorruptDataError, PreconditionFailedError
from yuruppu.history.codec import DecodeError, decode_turns, encode_turns
from yuruppu.history.models import NO_REVISION, ConversationHistory, Revision, Turn
from yuruppu.log import get_logger
from yuruppu.storage.objects import ObjectStorage

logger = get_logger(__name__)

CONTENT_TYPE = "application/jsonl"


class HistoryStore:
    """One JSONL object per conversation key.

    Turns are only ever read as a whole sequence or appended at the tail.
    Appends are conditional on the revision the caller last read, so a
    concurrent writer is detected instead of overwritten.
    """

    def __init__(self, storage: ObjectStorage, prefix: str = "history/"):
        self._storage = storage
        self._prefix = prefix

    def _object_key(self, conversation_key: str) -> str:
        return f"{self._prefix}{conversation_key}.jsonl"

    async def get(self, conversation_key: str) -> tuple[ConversationHistory, Revision]:
        """Return the stored turns and their revision.

        A conversation that was never written yields ``((), NO_REVISION)``.
        """
        data, generation = await self._storage.read(self._object_key(conversation_key))
        if data is None:
            return (), NO_REVISION
        return self._decode(conversation_key, data), generation

    async def append(
        self,
        conversation_key: str,
        expected_revision: Revision,
        new_turns: Sequence[Turn],
    ) -> Revision:
        """Append ``new_turns`` if the history is still at ``expected_revision``.

        Raises:
            ConflictError: another writer committed since ``expected_revision``.
            CorruptDataError: the stored object cannot be decoded.
        """
        key = self._object_key(conversation_key)
        data, generation = await self._storage.read(key)
        if generation != expected_revision:
            raise ConflictError(conversation_key, expected_revision, generation)

        existing = self._decode(conversation_key, data) if data is not None else ()
        encoded = encode_turns([*existing, *new_turns])

        try:
            revision = await self._storage.write(key, encoded, generation, CONTENT_TYPE)
        except PreconditionFailedError as e:
            raise ConflictError(conversation_key, expected_revision, -1) from e

        logger.debug(
            "history_appended",
            conversation_key=conversation_key,
            appended=len(new_turns),
            total=len(existing) + len(new_turns),
            revision=revision,
        )
        return revision

    @staticmethod
    def _decode(conversation_key: str, data: bytes) -> ConversationHistory:
        try:
            return decode_turns(data)
        except DecodeError as e:
            raise CorruptDataError(conversation_key, str(e)) from e
