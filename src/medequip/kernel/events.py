"""
Base Event model for the marketplace event log

Every state change (a request created, a quote accepted, a dispute
resolved) is recorded as an immutable Event. Read models are rebuilt by
replaying events in log order.
"""

from datetime import datetime

from pydantic import BaseModel, Field


class Event(BaseModel):
    """
    Immutable fact about something that happened

    stream_id + version give optimistic locking per entity; position is
    the global log order assigned by the store when the event is read back.
    """

    event_id: str = Field(..., description="Unique event identifier")

    stream_id: str = Field(
        ...,
        description="Entity identifier - groups the events of one request, quote, etc.",
    )

    stream_type: str = Field(
        ...,
        description="Entity type: 'ServiceRequest', 'Quote', 'Dispute', ...",
    )

    event_type: str = Field(
        ...,
        description="Specific event type: 'QuoteSubmitted', 'DisputeResolved', ...",
    )

    occurred_at: datetime = Field(..., description="UTC timestamp when event occurred")

    actor_id: str | None = Field(
        default=None,
        description="User who triggered this event (None for system events)",
    )

    command_id: str = Field(..., description="ID of the command that caused this event")

    payload: dict = Field(
        default_factory=dict,
        description="Event-specific data (JSON-serializable)",
    )

    version: int = Field(
        ...,
        description="Stream version after this event",
        ge=1,
    )

    position: int | None = Field(
        default=None,
        description="Global log position, set once the event is stored",
    )

    model_config = {"frozen": True}


def create_event(
    *,
    event_id: str,
    stream_id: str,
    stream_type: str,
    event_type: str,
    occurred_at: datetime,
    command_id: str,
    version: int,
    actor_id: str | None = None,
    payload: dict | None = None,
) -> Event:
    """Factory for events with every required field named"""
    return Event(
        event_id=event_id,
        stream_id=stream_id,
        stream_type=stream_type,
        event_type=event_type,
        occurred_at=occurred_at,
        actor_id=actor_id,
        command_id=command_id,
        payload=payload or {},
        version=version,
    )
