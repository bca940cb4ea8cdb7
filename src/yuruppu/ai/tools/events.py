"""Event tools: create, look up, list, update and remove chat-room events."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from pydantic import AwareDatetime, BaseModel, Field

from yuruppu.ai.tools.base import Tool
from yuruppu.core.context import RequestContext
from yuruppu.errors import EventExistsError, EventNotFoundError, ToolError
from yuruppu.events.service import Event, EventService, ListOptions

Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EventSummary(BaseModel):
    title: str
    start_time: datetime
    end_time: datetime
    fee: str
    capacity: int
    description: str
    creator_name: Optional[str] = None

    @classmethod
    def from_event(cls, event: Event) -> EventSummary:
        return cls(
            title=event.title,
            start_time=event.start_time,
            end_time=event.end_time,
            fee=event.fee,
            capacity=event.capacity,
            description=event.description,
            creator_name=event.creator_name if event.show_creator and event.creator_name else None,
        )


class CreateEventArgs(BaseModel):
    title: str = Field(min_length=1)
    start_time: AwareDatetime = Field(description="RFC 3339 start time, e.g. 2025-06-01T19:00:00+09:00")
    end_time: AwareDatetime = Field(description="RFC 3339 end time")
    fee: str = Field(min_length=1, description="Participation fee, free text")
    capacity: int = Field(gt=0)
    description: str = Field(min_length=1)
    show_creator: bool = Field(description="Whether to show the creator's name to participants")


class CreateEventResult(BaseModel):
    chat_room_id: str


class CreateEventTool(Tool[CreateEventArgs, CreateEventResult]):
    parameters_model = CreateEventArgs
    response_model = CreateEventResult

    def __init__(self, service: EventService, clock: Clock = _utcnow):
        self._service = service
        self._clock = clock

    @property
    def name(self) -> str:
        return "create_event"

    @property
    def description(self) -> str:
        return "Create a new event for the current group chat. Each group chat can hold one event."

    async def execute(self, ctx: RequestContext, args: CreateEventArgs) -> CreateEventResult:
        if not ctx.is_group:
            raise ToolError("events can only be created in group chats")
        if args.start_time <= self._clock():
            raise ToolError("start_time must be in the future")
        if args.end_time <= args.start_time:
            raise ToolError("end_time must be after start_time")

        event = Event(
            chat_room_id=ctx.conversation_key,
            creator_id=ctx.sender_id,
            creator_name=ctx.sender_name,
            title=args.title,
            start_time=args.start_time,
            end_time=args.end_time,
            fee=args.fee,
            capacity=args.capacity,
            description=args.description,
            show_creator=args.show_creator,
        )
        try:
            await self._service.create(event)
        except EventExistsError as e:
            raise ToolError("this chat already has an event") from e
        return CreateEventResult(chat_room_id=ctx.conversation_key)


class GetEventArgs(BaseModel):
    pass


class GetEventResult(BaseModel):
    event: EventSummary


class GetEventTool(Tool[GetEventArgs, GetEventResult]):
    parameters_model = GetEventArgs
    response_model = GetEventResult

    def __init__(self, service: EventService):
        self._service = service

    @property
    def name(self) -> str:
        return "get_event"

    @property
    def description(self) -> str:
        return "Get the details of the event held in the current chat."

    async def execute(self, ctx: RequestContext, args: GetEventArgs) -> GetEventResult:
        try:
            event = await self._service.get(ctx.conversation_key)
        except EventNotFoundError as e:
            raise ToolError("there is no event in this chat") from e
        return GetEventResult(event=EventSummary.from_event(event))


class ListEventsArgs(BaseModel):
    created_by_me: bool = Field(default=False, description="Only events created by the sender")
    start: Optional[AwareDatetime] = Field(default=None, description="Events starting at or after this time")
    end: Optional[AwareDatetime] = Field(default=None, description="Events starting at or before this time")


class ListEventsResult(BaseModel):
    events: list[EventSummary]


class ListEventsTool(Tool[ListEventsArgs, ListEventsResult]):
    """Lists events across all chats.

    With both ``start`` and ``end`` the whole window is returned, bounded by
    ``max_period_days``; otherwise at most ``limit`` events.
    """

    parameters_model = ListEventsArgs
    response_model = ListEventsResult

    def __init__(self, service: EventService, max_period_days: int, limit: int):
        if max_period_days <= 0:
            raise ValueError("max_period_days must be positive")
        if limit <= 0:
            raise ValueError("limit must be positive")
        self._service = service
        self._max_period = timedelta(days=max_period_days)
        self._limit = limit

    @property
    def name(self) -> str:
        return "list_events"

    @property
    def description(self) -> str:
        return "List upcoming or past events, optionally only those created by the sender."

    async def execute(self, ctx: RequestContext, args: ListEventsArgs) -> ListEventsResult:
        limit = self._limit
        if args.start is not None and args.end is not None:
            if args.end < args.start:
                raise ToolError("end must be after start")
            if args.end - args.start > self._max_period:
                raise ToolError("period is too long")
            limit = 0

        events = await self._service.list(
            ListOptions(
                creator_id=ctx.sender_id if args.created_by_me else None,
                start=args.start,
                end=args.end,
                limit=limit,
            )
        )
        return ListEventsResult(events=[EventSummary.from_event(e) for e in events])


class UpdateEventArgs(BaseModel):
    description: str = Field(min_length=1, description="New description of the event")


class EventChangedResult(BaseModel):
    chat_room_id: str


class UpdateEventTool(Tool[UpdateEventArgs, EventChangedResult]):
    parameters_model = UpdateEventArgs
    response_model = EventChangedResult

    def __init__(self, service: EventService):
        self._service = service

    @property
    def name(self) -> str:
        return "update_event"

    @property
    def description(self) -> str:
        return (
            "Update the description of the event in the current group chat. "
            "Only the event creator can update the event."
        )

    async def execute(self, ctx: RequestContext, args: UpdateEventArgs) -> EventChangedResult:
        await _check_creator(self._service, ctx, "update")
        try:
            await self._service.update(ctx.conversation_key, args.description)
        except EventNotFoundError as e:
            raise ToolError("there is no event in this chat") from e
        return EventChangedResult(chat_room_id=ctx.conversation_key)


class RemoveEventArgs(BaseModel):
    pass


class RemoveEventTool(Tool[RemoveEventArgs, EventChangedResult]):
    parameters_model = RemoveEventArgs
    response_model = EventChangedResult

    def __init__(self, service: EventService):
        self._service = service

    @property
    def name(self) -> str:
        return "remove_event"

    @property
    def description(self) -> str:
        return (
            "Remove (cancel) the event in the current group chat. "
            "Only the event creator can remove the event."
        )

    async def execute(self, ctx: RequestContext, args: RemoveEventArgs) -> EventChangedResult:
        await _check_creator(self._service, ctx, "remove")
        try:
            await self._service.remove(ctx.conversation_key)
        except EventNotFoundError as e:
            raise ToolError("there is no event in this chat") from e
        return EventChangedResult(chat_room_id=ctx.conversation_key)


async def _check_creator(service: EventService, ctx: RequestContext, action: str) -> None:
    try:
        event = await service.get(ctx.conversation_key)
    except EventNotFoundError as e:
        raise ToolError("there is no event in this chat") from e
    if event.creator_id != ctx.sender_id:
        raise ToolError(f"only the event creator can {action} the event")
