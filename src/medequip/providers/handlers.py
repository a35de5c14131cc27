"""
Provider Command Handlers

Registration is done by the provider organization's admins; verification
and suspension are platform-admin decisions audited under the provider's
organization; ratings come from the hospital whose request was served.
"""

from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel

from medequip.identity.guard import AuthorizationGuard
from medequip.identity.invariants import WrongOrganizationType
from medequip.identity.models import Identity, OrgType
from medequip.identity.projections import OrganizationRegistry
from medequip.kernel.audit_trail import AuditDraft
from medequip.kernel.commands import CommandHandlers, CommandResult
from medequip.kernel.ids import generate_id
from medequip.providers import commands, events, invariants
from medequip.providers.projections import ProviderRegistry
from medequip.service_requests.invariants import ServiceRequestNotFound
from medequip.service_requests.models import ServiceRequestStatus
from medequip.service_requests.projections import ServiceRequestRegistry

PROVIDER = "Provider"
RESOURCE = "provider"


class ProviderCommandHandlers(CommandHandlers):
    """Handlers for provider records and service ratings"""

    def handle_register(
        self,
        command: commands.RegisterProvider,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        organizations: OrganizationRegistry,
        providers: ProviderRegistry,
    ) -> CommandResult:
        """
        Create the provider record of a provider organization

        Validates:
        - Caller is admin or owner of the organization
        - Organization is provider-type and has no provider record yet
        """
        guard.require_admin(command.organization_id, identity)
        org = organizations.get(command.organization_id)
        if org["org_type"] != OrgType.PROVIDER.value:
            raise WrongOrganizationType(OrgType.PROVIDER)
        if providers.get_by_organization(command.organization_id) is not None:
            raise invariants.ProviderAlreadyRegistered()

        now = self.time_provider.now()
        provider_id = generate_id()
        payload = events.ProviderRegistered(
            provider_id=provider_id,
            organization_id=command.organization_id,
            name=command.name,
            specialties=command.specialties,
            registered_by=identity.user_id,
            registered_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="ProviderRegistered",
                    stream_id=provider_id,
                    stream_type=PROVIDER,
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
                    action="provider.registered",
                    resource_type=RESOURCE,
                    resource_id=provider_id,
                    new_values={
                        "name": command.name,
                        "status": "pending_verification",
                        "verificationStatus": "pending",
                    },
                )
            ],
        )

    def _admin_action(
        self,
        *,
        provider: dict[str, Any] | None,
        action: str,
        event_type: str,
        payload_factory: Callable[[str, datetime], BaseModel],
        audit_action: str,
        new_values: dict[str, Any],
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
    ) -> CommandResult:
        """Shared shape of the platform-admin lifecycle commands"""
        admin = guard.require_platform_admin(identity)
        if provider is None:
            raise invariants.ProviderNotFound()
        invariants.validate_provider_action(provider, action)

        now = self.time_provider.now()
        return CommandResult(
            events=[
                self._event(
                    event_type=event_type,
                    stream_id=provider["provider_id"],
                    stream_type=PROVIDER,
                    version=provider["version"] + 1,
                    payload=payload_factory(admin.user_id, now),
                    command_id=command_id,
                    actor_id=admin.user_id,
                    occurred_at=now,
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=provider["organization_id"],
                    action=audit_action,
                    resource_type=RESOURCE,
                    resource_id=provider["provider_id"],
                    previous_values={
                        "status": provider["status"],
                        "verificationStatus": provider["verification_status"],
                    },
                    new_values=new_values,
                )
            ],
        )

    def handle_begin_review(
        self,
        command: commands.BeginProviderReview,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        providers: ProviderRegistry,
    ) -> CommandResult:
        return self._admin_action(
            provider=providers.get(command.provider_id),
            action="begin_review",
            event_type="ProviderReviewStarted",
            payload_factory=lambda actor, now: events.ProviderReviewStarted(
                provider_id=command.provider_id, reviewed_by=actor, started_at=now
            ),
            audit_action="admin.provider.reviewStarted",
            new_values={"verificationStatus": "in_review"},
            command_id=command_id,
            identity=identity,
            guard=guard,
        )

    def handle_approve(
        self,
        command: commands.ApproveProvider,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        providers: ProviderRegistry,
    ) -> CommandResult:
        return self._admin_action(
            provider=providers.get(command.provider_id),
            action="approve",
            event_type="ProviderApproved",
            payload_factory=lambda actor, now: events.ProviderApproved(
                provider_id=command.provider_id,
                approved_by=actor,
                approved_at=now,
                notes=command.notes,
            ),
            audit_action="admin.provider.approved",
            new_values={"status": "active", "verificationStatus": "verified", "notes": command.notes},
            command_id=command_id,
            identity=identity,
            guard=guard,
        )

    def handle_reject(
        self,
        command: commands.RejectProvider,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        providers: ProviderRegistry,
    ) -> CommandResult:
        guard.require_platform_admin(identity)
        reason = invariants.validate_reason(command.reason)
        return self._admin_action(
            provider=providers.get(command.provider_id),
            action="reject",
            event_type="ProviderRejected",
            payload_factory=lambda actor, now: events.ProviderRejected(
                provider_id=command.provider_id,
                reason=reason,
                rejected_by=actor,
                rejected_at=now,
            ),
            audit_action="admin.provider.rejected",
            new_values={"verificationStatus": "rejected", "reason": reason},
            command_id=command_id,
            identity=identity,
            guard=guard,
        )

    def handle_suspend(
        self,
        command: commands.SuspendProvider,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        providers: ProviderRegistry,
    ) -> CommandResult:
        guard.require_platform_admin(identity)
        reason = invariants.validate_reason(command.reason)
        return self._admin_action(
            provider=providers.get(command.provider_id),
            action="suspend",
            event_type="ProviderSuspended",
            payload_factory=lambda actor, now: events.ProviderSuspended(
                provider_id=command.provider_id,
                reason=reason,
                suspended_by=actor,
                suspended_at=now,
            ),
            audit_action="admin.provider.suspended",
            new_values={"status": "suspended", "reason": reason},
            command_id=command_id,
            identity=identity,
            guard=guard,
        )

    def handle_reactivate(
        self,
        command: commands.ReactivateProvider,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        providers: ProviderRegistry,
    ) -> CommandResult:
        return self._admin_action(
            provider=providers.get(command.provider_id),
            action="reactivate",
            event_type="ProviderReactivated",
            payload_factory=lambda actor, now: events.ProviderReactivated(
                provider_id=command.provider_id,
                reactivated_by=actor,
                reactivated_at=now,
                notes=command.notes,
            ),
            audit_action="admin.provider.reactivated",
            new_values={"status": "active", "notes": command.notes},
            command_id=command_id,
            identity=identity,
            guard=guard,
        )

    def handle_rate_service(
        self,
        command: commands.RateService,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        providers: ProviderRegistry,
    ) -> CommandResult:
        """
        Rate the provider that completed a request

        Validates:
        - Caller is a member of the hospital that filed the request
        - Request is completed, has an assigned provider, and is unrated
        """
        request = guard.require_found(
            requests.get(command.service_request_id), identity, ServiceRequestNotFound()
        )
        guard.require_member(request["organization_id"], identity)
        if request["status"] != ServiceRequestStatus.COMPLETED.value:
            raise invariants.RatingNotAllowed()
        provider_id = request["assigned_provider_id"]
        if not provider_id or providers.get(provider_id) is None:
            raise invariants.NoAssignedProvider()
        if request["rating"] is not None:
            raise invariants.DuplicateRating()

        now = self.time_provider.now()
        payload = events.ServiceRated(
            service_request_id=request["service_request_id"],
            provider_id=provider_id,
            organization_id=request["organization_id"],
            rating=command.rating,
            comment=command.comment,
            rated_by=identity.user_id,
            rated_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="ServiceRated",
                    stream_id=request["service_request_id"],
                    stream_type="ServiceRequest",
                    version=request["version"] + 1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=identity.user_id,
                    occurred_at=now,
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=request["organization_id"],
                    action="serviceRating.created",
                    resource_type="serviceRating",
                    resource_id=request["service_request_id"],
                    new_values={
                        "providerId": provider_id,
                        "rating": command.rating,
                        "comment": command.comment,
                    },
                )
            ],
        )
