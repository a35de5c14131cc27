"""
Service Request Command Handlers

Creation by hospital members, explicit transitions by the party that owns
each edge, and provider reassignment by platform admins.
"""

from medequip.equipment import EquipmentDirectory
from medequip.identity.guard import AuthorizationGuard
from medequip.identity.invariants import WrongOrganizationType
from medequip.identity.models import Identity, OrgType
from medequip.identity.projections import OrganizationRegistry
from medequip.kernel.audit_trail import AuditDraft
from medequip.kernel.commands import CommandHandlers, CommandResult
from medequip.kernel.ids import generate_id
from medequip.kernel.policy import WorkflowPolicy
from medequip.kernel.time import TimeProvider
from medequip.providers.invariants import ProviderNotFound
from medequip.providers.projections import ProviderRegistry
from medequip.quotes.events import QuoteRejected
from medequip.quotes.projections import QuoteRegistry
from medequip.service_requests import commands, events, invariants
from medequip.service_requests.machine import STREAM_TYPE, ServiceRequestMachine
from medequip.service_requests.models import ServiceRequestStatus
from medequip.service_requests.projections import ServiceRequestRegistry

RESOURCE = "serviceRequest"


class RequestCommandHandlers(CommandHandlers):
    """Handlers for the service request lifecycle"""

    def __init__(
        self,
        time_provider: TimeProvider,
        policy: WorkflowPolicy,
        equipment: EquipmentDirectory | None = None,
    ):
        super().__init__(time_provider, policy)
        self.equipment = equipment
        self.machine = ServiceRequestMachine(policy.bottleneck_threshold_days)

    def handle_create(
        self,
        command: commands.CreateServiceRequest,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        organizations: OrganizationRegistry,
    ) -> CommandResult:
        """
        File a service request

        Validates:
        - Caller is a member of a hospital organization
        - Equipment belongs to that organization (when a directory is wired)
        """
        guard.require_member(command.organization_id, identity)
        org = organizations.get(command.organization_id)
        if org["org_type"] != OrgType.HOSPITAL.value:
            raise WrongOrganizationType(OrgType.HOSPITAL)
        if self.equipment is not None:
            if self.equipment.owner_of(command.equipment_id) != command.organization_id:
                raise invariants.EquipmentMismatch()

        now = self.time_provider.now()
        service_request_id = generate_id()
        payload = events.ServiceRequestCreated(
            service_request_id=service_request_id,
            organization_id=command.organization_id,
            equipment_id=command.equipment_id,
            requested_by=identity.user_id,
            request_type=command.request_type,
            priority=command.priority,
            description_vi=command.description_vi,
            description_en=command.description_en,
            scheduled_at=command.scheduled_at,
            created_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="ServiceRequestCreated",
                    stream_id=service_request_id,
                    stream_type=STREAM_TYPE,
                    version=1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=identity.user_id,
                    occurred_at=now,
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=command.organization_id,
                    action="serviceRequest.created",
                    resource_type=RESOURCE,
                    resource_id=service_request_id,
                    new_values={
                        "status": ServiceRequestStatus.PENDING.value,
                        "equipmentId": command.equipment_id,
                        "requestType": command.request_type.value,
                        "priority": command.priority.value,
                    },
                )
            ],
        )

    def handle_transition(
        self,
        command: commands.TransitionServiceRequest,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        providers: ProviderRegistry,
        quotes: QuoteRegistry,
    ) -> CommandResult:
        """
        Move a request along an explicit edge

        Checks run in this order:
        - The caller is a party (hospital member or assigned provider member)
        - The edge is in the table and isn't workflow-driven
        - The caller is the party owning the edge: hospital cancels,
          provider starts and completes

        Cancelling also rejects every pending quote on the request.
        """
        request = guard.require_found(
            requests.get(command.service_request_id),
            identity,
            invariants.ServiceRequestNotFound(),
        )
        provider_org_id = None
        if request["assigned_provider_id"]:
            assigned = providers.get(request["assigned_provider_id"])
            provider_org_id = assigned["organization_id"] if assigned else None
        guard.require_any_member([request["organization_id"], provider_org_id], identity)

        current = ServiceRequestStatus(request["status"])
        target = command.target_status
        if target in invariants.WORKFLOW_TARGETS:
            raise invariants.InvalidStatusTransition(current, target)
        invariants.validate_transition(current, target)

        owner_org_id = (
            request["organization_id"]
            if target == ServiceRequestStatus.CANCELLED
            else provider_org_id
        )
        if owner_org_id is None or guard.organizations.role_of(owner_org_id, identity.user_id) is None:
            raise invariants.TransitionNotPermitted(target)

        now = self.time_provider.now()
        status_event = self.machine.transition(
            request,
            target,
            version=request["version"] + 1,
            trigger="manual",
            actor_id=identity.user_id,
            command_id=command_id,
            occurred_at=now,
        )
        result_events = [status_event]
        rejected_quote_ids = []

        if target == ServiceRequestStatus.CANCELLED:
            for quote in quotes.pending_for_request(request["service_request_id"]):
                rejected_quote_ids.append(quote["quote_id"])
                result_events.append(
                    self._event(
                        event_type="QuoteRejected",
                        stream_id=quote["quote_id"],
                        stream_type="Quote",
                        version=quote["version"] + 1,
                        payload=QuoteRejected(
                            quote_id=quote["quote_id"],
                            service_request_id=request["service_request_id"],
                            provider_id=quote["provider_id"],
                            reason="request_cancelled",
                            rejected_at=now,
                        ),
                        command_id=command_id,
                        actor_id=identity.user_id,
                        occurred_at=now,
                    )
                )

        new_values = {"status": target.value}
        if rejected_quote_ids:
            new_values["rejectedQuoteIds"] = rejected_quote_ids
        action = (
            "serviceRequest.cancelled"
            if target == ServiceRequestStatus.CANCELLED
            else "serviceRequest.statusUpdated"
        )
        return CommandResult(
            events=result_events,
            audit=[
                AuditDraft(
                    organization_id=request["organization_id"],
                    action=action,
                    resource_type=RESOURCE,
                    resource_id=request["service_request_id"],
                    previous_values={"status": current.value},
                    new_values=new_values,
                )
            ],
        )

    def handle_reassign_provider(
        self,
        command: commands.ReassignProvider,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        providers: ProviderRegistry,
    ) -> CommandResult:
        """
        Replace the assigned provider (platform admin)

        Independent of dispute resolution: resolving a dispute with
        re_assign records the decision, this command applies it.
        """
        admin = guard.require_platform_admin(identity)
        request = requests.get(command.service_request_id)
        if request is None:
            raise invariants.ServiceRequestNotFound()
        provider = providers.get(command.new_provider_id)
        if provider is None:
            raise ProviderNotFound()
        if request["status"] == ServiceRequestStatus.CANCELLED.value:
            raise invariants.ServiceRequestClosed()
        if provider["organization_id"] == request["organization_id"]:
            raise invariants.ProviderOrganizationConflict()
        if request["assigned_provider_id"] == command.new_provider_id:
            raise invariants.ProviderAlreadyAssigned()

        now = self.time_provider.now()
        payload = events.ProviderReassigned(
            service_request_id=request["service_request_id"],
            previous_provider_id=request["assigned_provider_id"],
            new_provider_id=command.new_provider_id,
            reason_vi=command.reason_vi,
            reason_en=command.reason_en,
            reassigned_by=admin.user_id,
            reassigned_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="ProviderReassigned",
                    stream_id=request["service_request_id"],
                    stream_type=STREAM_TYPE,
                    version=request["version"] + 1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=admin.user_id,
                    occurred_at=now,
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=request["organization_id"],
                    action="admin.serviceRequest.providerReassigned",
                    resource_type=RESOURCE,
                    resource_id=request["service_request_id"],
                    previous_values={"assignedProviderId": request["assigned_provider_id"]},
                    new_values={
                        "assignedProviderId": command.new_provider_id,
                        "reasonVi": command.reason_vi,
                        "reasonEn": command.reason_en,
                    },
                )
            ],
        )
