"""
Command handler results

Handlers are pure: they read projections, validate, and return the
events to append plus the audit entries describing the mutation. The
facade commits both in one store transaction.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from medequip.kernel.audit_trail import AuditDraft
from medequip.kernel.events import Event, create_event
from medequip.kernel.ids import generate_id
from medequip.kernel.policy import WorkflowPolicy
from medequip.kernel.time import TimeProvider


class CommandResult(BaseModel):
    """Events and audit drafts produced by one command"""

    events: list[Event] = Field(default_factory=list)
    audit: list[AuditDraft] = Field(default_factory=list)

    def streams(self) -> dict[str, list[Event]]:
        """Events grouped by stream, in emission order"""
        grouped: dict[str, list[Event]] = {}
        for event in self.events:
            grouped.setdefault(event.stream_id, []).append(event)
        return grouped


class CommandHandlers:
    """
    Base for the per-domain handler classes

    Stateless: receive a command, validate against projections passed in
    as parameters, emit events. Holds only the clock and the policy.
    """

    def __init__(self, time_provider: TimeProvider, policy: WorkflowPolicy):
        self.time_provider = time_provider
        self.policy = policy

    def _event(
        self,
        *,
        event_type: str,
        stream_id: str,
        stream_type: str,
        version: int,
        payload: BaseModel,
        command_id: str,
        actor_id: str | None,
        occurred_at: datetime,
    ) -> Event:
        return create_event(
            event_id=generate_id(),
            event_type=event_type,
            stream_id=stream_id,
            stream_type=stream_type,
            occurred_at=occurred_at,
            actor_id=actor_id,
            command_id=command_id,
            payload=payload.model_dump(mode="json"),
            version=version,
        )
