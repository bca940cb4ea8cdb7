"""Chat-room events, stored as one JSONL object in the shared object storage."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from pydantic import BaseModel, ValidationError

from yuruppu.errors import (
    CorruptDataError,
    EventExistsError,
    EventNotFoundError,
    PreconditionFailedError,
    StorageWriteError,
)
from yuruppu.log import get_logger
from yuruppu.storage.objects import ObjectStorage

logger = get_logger(__name__)

STORAGE_KEY = "events/all.jsonl"
MAX_WRITE_ATTEMPTS = 3
RETRY_DELAY = 0.1  # seconds, doubled per attempt


class Event(BaseModel):
    chat_room_id: str
    creator_id: str
    creator_name: str = ""
    title: str
    start_time: datetime
    end_time: datetime
    fee: str
    capacity: int
    description: str
    show_creator: bool = False


@dataclass(frozen=True, slots=True)
class ListOptions:
    creator_id: Optional[str] = None
    start: Optional[datetime] = None  # events starting at or after
    end: Optional[datetime] = None  # events starting at or before
    limit: int = 0  # 0 = no limit


class EventService:
    """At most one event per chat room."""

    def __init__(self, storage: ObjectStorage):
        self._storage = storage

    async def create(self, event: Event) -> None:
        def add(events: list[Event]) -> list[Event]:
            if any(e.chat_room_id == event.chat_room_id for e in events):
                raise EventExistsError(f"event already exists: {event.chat_room_id}")
            return [*events, event]

        await self._modify(add)
        logger.info("event_created", chat_room_id=event.chat_room_id, title=event.title)

    async def get(self, chat_room_id: str) -> Event:
        events, _ = await self._read()
        return events[_index_of(events, chat_room_id)]

    async def update(self, chat_room_id: str, description: str) -> None:
        """Replace the description of the room's event."""

        def change(events: list[Event]) -> list[Event]:
            _index_of(events, chat_room_id)
            return [
                e.model_copy(update={"description": description}) if e.chat_room_id == chat_room_id else e
                for e in events
            ]

        await self._modify(change)
        logger.info("event_updated", chat_room_id=chat_room_id)

    async def remove(self, chat_room_id: str) -> None:
        def drop(events: list[Event]) -> list[Event]:
            i = _index_of(events, chat_room_id)
            return events[:i] + events[i + 1 :]

        await self._modify(drop)
        logger.info("event_removed", chat_room_id=chat_room_id)

    async def list(self, opts: ListOptions) -> list[Event]:
        """Filter, then sort by start time and apply the limit.

        Sorted ascending, except when only ``end`` is given: then the most
        recent events before ``end`` come first.
        """
        events, _ = await self._read()
        selected = [
            e
            for e in events
            if (opts.creator_id is None or e.creator_id == opts.creator_id)
            and (opts.start is None or e.start_time >= opts.start)
            and (opts.end is None or e.start_time <= opts.end)
        ]
        descending = opts.end is not None and opts.start is None
        selected.sort(key=lambda e: e.start_time, reverse=descending)
        if opts.limit > 0:
            selected = selected[: opts.limit]
        return selected

    async def _modify(self, change: Callable[[list[Event]], list[Event]]) -> None:
        """Read, apply ``change`` and write back against the read generation.

        A concurrent writer makes the write fail its precondition; the whole
        read-change-write is then retried with backoff.
        """
        for attempt in range(MAX_WRITE_ATTEMPTS):
            if attempt:
                await asyncio.sleep(RETRY_DELAY * (2 ** (attempt - 1)))
            events, generation = await self._read()
            updated = change(events)
            try:
                await self._write(updated, generation)
            except PreconditionFailedError:
                logger.debug("event_write_conflict", attempt=attempt + 1)
                continue
            return
        raise StorageWriteError(f"{STORAGE_KEY} kept changing after {MAX_WRITE_ATTEMPTS} attempts")

    async def _read(self) -> tuple[list[Event], int]:
        data, generation = await self._storage.read(STORAGE_KEY)
        if data is None:
            return [], generation
        try:
            events = [
                Event.model_validate_json(line)
                for line in data.decode("utf-8").splitlines()
                if line.strip()
            ]
        except (UnicodeDecodeError, ValidationError) as e:
            raise CorruptDataError(STORAGE_KEY, str(e)) from e
        return events, generation

    async def _write(self, events: list[Event], generation: int) -> None:
        data = "".join(e.model_dump_json() + "\n" for e in events).encode("utf-8")
        await self._storage.write(STORAGE_KEY, data, generation, "application/jsonl")


def _index_of(events: list[Event], chat_room_id: str) -> int:
    for i, event in enumerate(events):
        if event.chat_room_id == chat_room_id:
            return i
    raise EventNotFoundError(f"event not found: {chat_room_id}")
