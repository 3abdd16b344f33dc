"""Event store — append-only authentication audit log.

Learn: Instead of keeping a last_login_at column that gets overwritten,
every login, logout and account creation is appended as an immutable
event. The user record itself never changes after creation.

Events are flushed in the caller's transaction, so a failed signup
leaves no "user.registered" event behind.
"""

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from portcullis.db.models import Event


def user_stream(user_id) -> str:
    return f"user:{user_id}"


class EventStore:
    """Append-only event store backed by the application database."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def append(
        self,
        stream_id: str,
        event_type: str,
        data: dict,
        metadata: dict | None = None,
    ) -> Event:
        """Append an event to a stream. Returns the created event."""
        event = Event(
            stream_id=stream_id,
            type=event_type,
            data=data,
            meta=metadata or {},
        )
        self.db.add(event)
        await self.db.flush()  # get the auto-generated id
        return event

    async def read_stream(
        self,
        stream_id: str,
        after_id: int = 0,
        limit: int = 100,
    ) -> list[Event]:
        """Read events for a specific stream, optionally after a given position."""
        result = await self.db.execute(
            select(Event)
            .where(Event.stream_id == stream_id, Event.id > after_id)
            .order_by(Event.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def read_recent(
        self,
        event_types: list[str] | None = None,
        limit: int = 50,
    ) -> list[Event]:
        """Most recent events across all streams, newest first."""
        query = select(Event).order_by(Event.id.desc()).limit(limit)
        if event_types:
            query = query.where(Event.type.in_(event_types))
        result = await self.db.execute(query)
        return list(result.scalars().all())


def request_metadata(request) -> dict:
    """Correlation data for an event recorded while serving a request."""
    meta = {"client_ip": request.client.host if request.client else None}
    request_id = structlog.contextvars.get_contextvars().get("request_id")
    if request_id:
        meta["request_id"] = request_id
    return meta
