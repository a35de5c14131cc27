"""
Dispute Command Handlers

Opening (which moves the request to disputed in the same transaction),
the message thread, escalation, and platform-admin arbitration.

The parties to a dispute are the hospital that owns the request and the
organization of the request's currently assigned provider.
"""

from typing import Any

from pydantic import BaseModel

from medequip.disputes import commands, events, invariants
from medequip.disputes.models import DisputeStatus
from medequip.disputes.projections import DisputeRegistry
from medequip.identity.guard import AuthorizationGuard
from medequip.identity.models import Identity
from medequip.kernel.audit_trail import AuditDraft
from medequip.kernel.commands import CommandHandlers, CommandResult
from medequip.kernel.events import Event
from medequip.kernel.ids import generate_id
from medequip.kernel.policy import WorkflowPolicy
from medequip.kernel.time import TimeProvider
from medequip.providers.projections import ProviderRegistry
from medequip.service_requests.invariants import DISPUTABLE, ServiceRequestNotFound
from medequip.service_requests.machine import ServiceRequestMachine
from medequip.service_requests.models import ServiceRequestStatus
from medequip.service_requests.projections import ServiceRequestRegistry

DISPUTE = "Dispute"
RESOURCE = "dispute"


def dispute_parties(
    request: dict[str, Any], providers: ProviderRegistry
) -> list[str | None]:
    """[hospital organization, assigned provider organization or None]"""
    provider = providers.get(request["assigned_provider_id"] or "")
    return [request["organization_id"], provider["organization_id"] if provider else None]


class DisputeCommandHandlers(CommandHandlers):
    """Handlers for dispute escalation and arbitration"""

    def __init__(self, time_provider: TimeProvider, policy: WorkflowPolicy):
        super().__init__(time_provider, policy)
        self.machine = ServiceRequestMachine(policy.bottleneck_threshold_days)

    def _dispute_event(
        self,
        dispute: dict[str, Any],
        event_type: str,
        payload: BaseModel,
        command_id: str,
        actor_id: str,
    ) -> Event:
        return self._event(
            event_type=event_type,
            stream_id=dispute["dispute_id"],
            stream_type=DISPUTE,
            version=dispute["version"] + 1,
            payload=payload,
            command_id=command_id,
            actor_id=actor_id,
            occurred_at=self.time_provider.now(),
        )

    def handle_open(
        self,
        command: commands.OpenDispute,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        providers: ProviderRegistry,
        disputes: DisputeRegistry,
    ) -> CommandResult:
        """
        Open a dispute

        Validates:
        - Caller belongs to the hospital or the assigned provider
        - No unresolved dispute exists on the request
        - Request is accepted, in progress or completed
        """
        request = guard.require_found(
            requests.get(command.service_request_id), identity, ServiceRequestNotFound()
        )
        opened_by_org = guard.require_any_member(dispute_parties(request, providers), identity)
        if disputes.unresolved_for_request(request["service_request_id"]) is not None:
            raise invariants.DisputeAlreadyOpen()
        if ServiceRequestStatus(request["status"]) not in DISPUTABLE:
            raise invariants.RequestNotDisputable(request["status"])

        now = self.time_provider.now()
        dispute_id = generate_id()
        payload = events.DisputeOpened(
            dispute_id=dispute_id,
            service_request_id=request["service_request_id"],
            organization_id=request["organization_id"],
            provider_id=request["assigned_provider_id"],
            dispute_type=command.dispute_type,
            description_vi=command.description_vi,
            description_en=command.description_en,
            opened_by=identity.user_id,
            opened_by_organization_id=opened_by_org,
            opened_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="DisputeOpened",
                    stream_id=dispute_id,
                    stream_type=DISPUTE,
                    version=1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=identity.user_id,
                    occurred_at=now,
                ),
                self.machine.transition(
                    request,
                    ServiceRequestStatus.DISPUTED,
                    version=request["version"] + 1,
                    trigger="dispute_opened",
                    actor_id=identity.user_id,
                    command_id=command_id,
                    occurred_at=now,
                ),
            ],
            audit=[
                AuditDraft(
                    organization_id=request["organization_id"],
                    action="dispute.created",
                    resource_type=RESOURCE,
                    resource_id=dispute_id,
                    new_values={
                        "serviceRequestId": request["service_request_id"],
                        "type": command.dispute_type.value,
                        "status": DisputeStatus.OPEN.value,
                        "serviceRequestStatus": ServiceRequestStatus.DISPUTED.value,
                    },
                    previous_values={"serviceRequestStatus": request["status"]},
                )
            ],
        )

    def handle_add_message(
        self,
        command: commands.AddDisputeMessage,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        providers: ProviderRegistry,
        disputes: DisputeRegistry,
    ) -> CommandResult:
        """Append to the thread (parties or platform admins, until resolved)"""
        dispute = guard.require_found(
            disputes.get(command.dispute_id), identity, invariants.DisputeNotFound()
        )
        if not identity.is_platform_admin:
            request = requests.get(dispute["service_request_id"])
            guard.require_any_member(dispute_parties(request, providers), identity)
        if dispute["status"] == DisputeStatus.RESOLVED.value:
            raise invariants.DisputeAlreadyResolved()

        message_id = generate_id()
        payload = events.DisputeMessageAdded(
            dispute_id=dispute["dispute_id"],
            message_id=message_id,
            author_id=identity.user_id,
            content_vi=command.content_vi,
            content_en=command.content_en,
            created_at=self.time_provider.now(),
        )
        return CommandResult(
            events=[
                self._dispute_event(
                    dispute, "DisputeMessageAdded", payload, command_id, identity.user_id
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=dispute["organization_id"],
                    action="dispute.messageAdded",
                    resource_type="disputeMessage",
                    resource_id=message_id,
                    new_values={"disputeId": dispute["dispute_id"]},
                )
            ],
        )

    def handle_escalate(
        self,
        command: commands.EscalateDispute,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        providers: ProviderRegistry,
        disputes: DisputeRegistry,
    ) -> CommandResult:
        """open -> escalated; the dispute shows up in the admin queue"""
        dispute = guard.require_found(
            disputes.get(command.dispute_id), identity, invariants.DisputeNotFound()
        )
        request = requests.get(dispute["service_request_id"])
        guard.require_any_member(dispute_parties(request, providers), identity)
        invariants.validate_dispute_transition(
            DisputeStatus(dispute["status"]), DisputeStatus.ESCALATED
        )

        payload = events.DisputeEscalated(
            dispute_id=dispute["dispute_id"],
            reason=command.reason,
            escalated_by=identity.user_id,
            escalated_at=self.time_provider.now(),
        )
        return CommandResult(
            events=[
                self._dispute_event(
                    dispute, "DisputeEscalated", payload, command_id, identity.user_id
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=dispute["organization_id"],
                    action="dispute.escalated",
                    resource_type=RESOURCE,
                    resource_id=dispute["dispute_id"],
                    previous_values={"status": dispute["status"]},
                    new_values={"status": DisputeStatus.ESCALATED.value, "reason": command.reason},
                )
            ],
        )

    def handle_resolve(
        self,
        command: commands.ResolveDispute,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        disputes: DisputeRegistry,
    ) -> CommandResult:
        """
        Arbitrate a dispute (platform admin)

        Validates:
        - Dispute and its request exist (NOT_FOUND otherwise)
        - Dispute isn't resolved yet (CONFLICT otherwise)
        - refund_amount matches the resolution
        """
        admin = guard.require_platform_admin(identity)
        dispute = disputes.get(command.dispute_id)
        if dispute is None:
            raise invariants.DisputeNotFound()
        if requests.get(dispute["service_request_id"]) is None:
            raise ServiceRequestNotFound()
        invariants.validate_dispute_transition(
            DisputeStatus(dispute["status"]), DisputeStatus.RESOLVED
        )
        invariants.validate_refund(command.resolution, command.refund_amount)

        notes = invariants.render_resolution_notes(
            command.resolution,
            command.reason_vi,
            command.reason_en,
            command.refund_amount,
            self.policy.default_currency,
        )
        now = self.time_provider.now()
        payload = events.DisputeResolved(
            dispute_id=dispute["dispute_id"],
            resolution=command.resolution,
            reason_vi=command.reason_vi,
            reason_en=command.reason_en,
            refund_amount=command.refund_amount,
            resolution_notes=notes,
            resolved_by=admin.user_id,
            resolved_at=now,
        )
        return CommandResult(
            events=[
                self._dispute_event(dispute, "DisputeResolved", payload, command_id, admin.user_id)
            ],
            audit=[
                AuditDraft(
                    organization_id=dispute["organization_id"],
                    action="admin.dispute.arbitrated",
                    resource_type=RESOURCE,
                    resource_id=dispute["dispute_id"],
                    previous_values={"status": dispute["status"]},
                    new_values={
                        "status": DisputeStatus.RESOLVED.value,
                        "resolution": command.resolution.value,
                        "reasonVi": command.reason_vi,
                        "reasonEn": command.reason_en,
                        "refundAmount": (
                            str(command.refund_amount)
                            if command.refund_amount is not None
                            else None
                        ),
                        "resolutionNotes": notes,
                    },
                )
            ],
        )
