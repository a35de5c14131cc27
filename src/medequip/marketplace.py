"""
Marketplace - main facade of the workflow engine

The primary interface for the service marketplace. It owns the event
store, the audit trail, the read models and the command handlers, and
exposes every inbound mutation and query as a method taking the caller's
resolved Identity explicitly.

Every mutation follows the same path: catch the read models up with the
log, let a pure handler decide (events plus audit drafts), then append
the events to all touched streams and write the audit entries in one
SQLite transaction. A version conflict on any stream rolls everything
back; the decision is then re-run against the fresh state so the caller
sees the domain error the winning writer caused.

Example:
    >>> from medequip import Marketplace
    >>> market = Marketplace("marketplace.db")
    >>> owner = market.register_user("owner@benhvien.vn")
    >>> identity = market.identity_for(owner["user_id"])
    >>> hospital = market.create_organization(identity, "Bệnh viện Chợ Rẫy", "hospital")
"""

import copy
import threading
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

from medequip import analytics
from medequip.disputes import commands as dispute_commands
from medequip.disputes.handlers import DisputeCommandHandlers, dispute_parties
from medequip.disputes.invariants import DisputeNotFound
from medequip.disputes.projections import DisputeRegistry
from medequip.equipment import EquipmentDirectory
from medequip.identity import commands as identity_commands
from medequip.identity.guard import AuthorizationGuard
from medequip.identity.handlers import IdentityCommandHandlers
from medequip.identity.invariants import OrganizationNotFound
from medequip.identity.models import Identity, IdentityClaims
from medequip.identity.projections import OrganizationRegistry, UserRegistry
from medequip.identity.resolver import IdentityResolver
from medequip.kernel.audit_trail import AuditTrail, render_csv
from medequip.kernel.commands import CommandResult
from medequip.kernel.errors import (
    ConcurrentModification,
    InvalidInput,
    StreamVersionConflict,
)
from medequip.kernel.event_store import SQLiteEventStore
from medequip.kernel.ids import generate_id
from medequip.kernel.logging import LogOperation, get_logger
from medequip.kernel.metrics import (
    bottleneck_requests,
    disputes_arbitrated_total,
    quote_outcomes_total,
    service_request_transitions_total,
    stream_version_conflicts_total,
    track_command_duration,
)
from medequip.kernel.policy import WorkflowPolicy
from medequip.kernel.time import RealTimeProvider, TimeProvider
from medequip.providers import commands as provider_commands
from medequip.providers.handlers import ProviderCommandHandlers
from medequip.providers.invariants import ProviderNotFound, is_quotable
from medequip.providers.projections import ProviderRegistry
from medequip.quotes import commands as quote_commands
from medequip.quotes.handlers import QuoteCommandHandlers
from medequip.quotes.invariants import QuoteNotFound
from medequip.quotes.models import QuoteStats
from medequip.quotes.projections import QuoteRegistry
from medequip.service_requests import commands as request_commands
from medequip.service_requests.handlers import RequestCommandHandlers
from medequip.service_requests.invariants import OPEN_FOR_QUOTES, ServiceRequestNotFound
from medequip.service_requests.models import ServiceRequestStatus
from medequip.service_requests.projections import ServiceRequestRegistry

logger = get_logger(__name__)

M = TypeVar("M", bound=BaseModel)


def _build(model: type[M], **fields: Any) -> M:
    """Construct a command, surfacing pydantic errors as INVALID_INPUT"""
    try:
        return model(**fields)
    except ValidationError as e:
        raise InvalidInput(
            e.errors(include_url=False, include_context=False, include_input=False)
        ) from e


def _snapshot(record: dict[str, Any]) -> dict[str, Any]:
    """Detached copy of a read-model record, sets rendered as sorted lists"""
    snapshot = copy.deepcopy(record)
    for key, value in snapshot.items():
        if isinstance(value, set):
            snapshot[key] = sorted(value)
    return snapshot


class Marketplace:
    """
    Medical equipment service marketplace facade

    Provides a unified API for:
    - Users, organizations and memberships
    - Provider registration, verification and ratings
    - The service request lifecycle
    - Quote negotiation and acceptance
    - Dispute escalation and arbitration
    - Audit queries and platform analytics
    """

    def __init__(
        self,
        sqlite_path: str | Path,
        policy: WorkflowPolicy | None = None,
        time_provider: TimeProvider | None = None,
        equipment: EquipmentDirectory | None = None,
    ) -> None:
        """
        Initialize the marketplace

        Args:
            sqlite_path: Path to SQLite database
            policy: Workflow policy (defaults if None)
            time_provider: Time provider (real time if None)
            equipment: Equipment directory; when None, equipment ids aren't checked
        """
        self.sqlite_path = Path(sqlite_path)
        self.policy = policy or WorkflowPolicy()
        self.time_provider = time_provider or RealTimeProvider()
        self.equipment = equipment

        # Infrastructure
        self.event_store = SQLiteEventStore(self.sqlite_path)
        self.audit_trail = AuditTrail(self.event_store)

        # Handlers
        self.identity_handlers = IdentityCommandHandlers(self.time_provider, self.policy)
        self.provider_handlers = ProviderCommandHandlers(self.time_provider, self.policy)
        self.request_handlers = RequestCommandHandlers(
            self.time_provider, self.policy, equipment
        )
        self.quote_handlers = QuoteCommandHandlers(self.time_provider, self.policy)
        self.dispute_handlers = DisputeCommandHandlers(self.time_provider, self.policy)

        # Projections
        self.users = UserRegistry()
        self.organizations = OrganizationRegistry()
        self.providers = ProviderRegistry()
        self.requests = ServiceRequestRegistry()
        self.quotes = QuoteRegistry()
        self.disputes = DisputeRegistry()
        self._projections = [
            self.users,
            self.organizations,
            self.providers,
            self.requests,
            self.quotes,
            self.disputes,
        ]

        self.guard = AuthorizationGuard(self.organizations)
        self.resolver = IdentityResolver(self.users, self.organizations)

        self._lock = threading.RLock()
        self._position = 0
        self._sync()

    # ========================================================================
    # Event plumbing
    # ========================================================================

    def _sync(self) -> None:
        """Apply events other writers (or we) appended since the last sync"""
        with self._lock:
            for event in self.event_store.load_all_events(after_position=self._position):
                for projection in self._projections:
                    projection.apply_event(event)
                self._position = event.position

    def _commit(self, result: CommandResult, command_id: str, actor_id: str) -> None:
        now = self.time_provider.now()
        with self.event_store.transaction() as tx:
            for stream_id, stream_events in result.streams().items():
                self.event_store.append_in(
                    tx, stream_id, stream_events[0].version - 1, stream_events
                )
            for draft in result.audit:
                self.audit_trail.record_draft(
                    tx, draft, actor_id=actor_id, created_at=now, command_id=command_id
                )

    def _decide_and_commit(
        self,
        command_id: str,
        actor_id: str,
        decide: Callable[[str], CommandResult],
    ) -> CommandResult:
        with self._lock:
            self._sync()
            result = decide(command_id)
            try:
                self._commit(result, command_id, actor_id)
            except StreamVersionConflict as e:
                stream_type = next(
                    (ev.stream_type for ev in result.events if ev.stream_id == e.stream_id),
                    "unknown",
                )
                stream_version_conflicts_total.labels(stream_type=stream_type).inc()
                logger.info("Stream moved underneath command", stream_id=e.stream_id)
                self._sync()
                # Raises the domain error the competing writer caused, if any
                decide(command_id)
                raise ConcurrentModification(e.stream_id) from e
            self._sync()
        self._observe(result)
        return result

    def _execute(
        self,
        command_type: str,
        identity: Identity | None,
        decide: Callable[[str], CommandResult],
    ) -> CommandResult:
        command_id = generate_id()
        actor_id = identity.user_id if identity else "system"
        with LogOperation(logger, command_type, command_id=command_id, actor_id=actor_id):
            run = track_command_duration(command_type)(self._decide_and_commit)
            return run(command_id, actor_id, decide)

    def _observe(self, result: CommandResult) -> None:
        for event in result.events:
            if event.event_type == "ServiceRequestStatusChanged":
                service_request_transitions_total.labels(
                    from_status=event.payload["previous_status"],
                    to_status=event.payload["new_status"],
                ).inc()
            elif event.event_type == "QuoteAccepted":
                quote_outcomes_total.labels(status="accepted").inc()
            elif event.event_type == "QuoteRejected":
                quote_outcomes_total.labels(status="rejected").inc()
            elif event.event_type == "QuoteExpired":
                quote_outcomes_total.labels(status="expired").inc()
            elif event.event_type == "DisputeResolved":
                disputes_arbitrated_total.labels(
                    resolution=event.payload["resolution"]
                ).inc()

    def _first_stream(self, result: CommandResult, stream_type: str) -> str:
        return next(e.stream_id for e in result.events if e.stream_type == stream_type)

    # ========================================================================
    # Identity & tenancy
    # ========================================================================

    def register_user(
        self,
        email: str,
        name: str | None = None,
        platform_role: str | None = None,
        user_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Register a user known to the identity provider

        Bootstrap operation used by the session collaborator; no identity
        is required.
        """
        command = _build(
            identity_commands.RegisterUser,
            email=email,
            name=name,
            platform_role=platform_role,
            user_id=user_id,
        )
        result = self._execute(
            "register_user",
            None,
            lambda cid: self.identity_handlers.handle_register_user(command, cid, self.users),
        )
        return _snapshot(self.users.get(result.events[0].stream_id))

    def resolve_identity(self, claims: IdentityClaims | None) -> Identity:
        """Two-step identity resolution (claim first, registry fallback)"""
        self._sync()
        return self.resolver.resolve(claims)

    def identity_for(self, user_id: str) -> Identity:
        """Identity of a registered user, as if their token carried no role claim"""
        self._sync()
        user = self.users.get(user_id)
        email = user["email"] if user else None
        return self.resolver.resolve(IdentityClaims(subject=user_id, email=email))

    def create_organization(
        self, identity: Identity | None, name: str, org_type: str
    ) -> dict[str, Any]:
        command = _build(identity_commands.CreateOrganization, name=name, org_type=org_type)
        result = self._execute(
            "create_organization",
            identity,
            lambda cid: self.identity_handlers.handle_create_organization(
                command, cid, identity, self.guard
            ),
        )
        return _snapshot(self.organizations.get(result.events[0].stream_id))

    def get_organization(self, identity: Identity | None, organization_id: str) -> dict[str, Any]:
        identity = self.guard.require_authenticated(identity)
        self._sync()
        org = self.guard.require_found(
            self.organizations.get(organization_id), identity, OrganizationNotFound()
        )
        if not self.guard.can_view(organization_id, identity):
            self.guard.require_member(organization_id, identity)
        return _snapshot(org)

    def list_organizations(
        self, identity: Identity | None, org_type: str | None = None
    ) -> list[dict[str, Any]]:
        """Organizations the caller belongs to (all of them for platform staff)"""
        identity = self.guard.require_authenticated(identity)
        self._sync()
        return [
            _snapshot(org)
            for org in self.organizations.list_all(org_type)
            if identity.is_platform_staff or identity.user_id in org["members"]
        ]

    def add_member(
        self,
        identity: Identity | None,
        organization_id: str,
        user_id: str,
        role: str = "member",
    ) -> dict[str, Any]:
        command = _build(
            identity_commands.AddMember,
            organization_id=organization_id,
            user_id=user_id,
            role=role,
        )
        self._execute(
            "add_member",
            identity,
            lambda cid: self.identity_handlers.handle_add_member(
                command, cid, identity, self.guard, self.organizations, self.users
            ),
        )
        return _snapshot(self.organizations.get(organization_id))

    def update_member_role(
        self,
        identity: Identity | None,
        organization_id: str,
        target_user_id: str,
        role: str,
    ) -> dict[str, Any]:
        command = _build(
            identity_commands.UpdateMemberRole,
            organization_id=organization_id,
            target_user_id=target_user_id,
            role=role,
        )
        self._execute(
            "update_member_role",
            identity,
            lambda cid: self.identity_handlers.handle_update_member_role(
                command, cid, identity, self.guard, self.organizations
            ),
        )
        return _snapshot(self.organizations.get(organization_id))

    def remove_member(
        self, identity: Identity | None, organization_id: str, target_user_id: str
    ) -> dict[str, Any]:
        command = _build(
            identity_commands.RemoveMember,
            organization_id=organization_id,
            target_user_id=target_user_id,
        )
        self._execute(
            "remove_member",
            identity,
            lambda cid: self.identity_handlers.handle_remove_member(
                command, cid, identity, self.guard, self.organizations
            ),
        )
        return _snapshot(self.organizations.get(organization_id))

    def list_members(
        self, identity: Identity | None, organization_id: str
    ) -> list[dict[str, Any]]:
        """Members with their roles (members of the organization, or platform admins)"""
        identity = self.guard.require_authenticated(identity)
        self._sync()
        if not identity.is_platform_admin:
            self.guard.require_member(organization_id, identity)
        org = self.organizations.get(organization_id)
        if org is None:
            return []
        members = []
        for user_id, role in org["members"].items():
            user = self.users.get(user_id) or {}
            members.append(
                {
                    "user_id": user_id,
                    "role": role.value,
                    "email": user.get("email"),
                    "name": user.get("name"),
                }
            )
        return members

    # ========================================================================
    # Providers
    # ========================================================================

    def register_provider(
        self,
        identity: Identity | None,
        organization_id: str,
        name: str,
        specialties: list[str] | None = None,
    ) -> dict[str, Any]:
        command = _build(
            provider_commands.RegisterProvider,
            organization_id=organization_id,
            name=name,
            specialties=specialties or [],
        )
        result = self._execute(
            "register_provider",
            identity,
            lambda cid: self.provider_handlers.handle_register(
                command, cid, identity, self.guard, self.organizations, self.providers
            ),
        )
        return _snapshot(self.providers.get(result.events[0].stream_id))

    def begin_provider_review(self, identity: Identity | None, provider_id: str) -> dict[str, Any]:
        command = _build(provider_commands.BeginProviderReview, provider_id=provider_id)
        self._execute(
            "begin_provider_review",
            identity,
            lambda cid: self.provider_handlers.handle_begin_review(
                command, cid, identity, self.guard, self.providers
            ),
        )
        return _snapshot(self.providers.get(provider_id))

    def approve_provider(
        self, identity: Identity | None, provider_id: str, notes: str | None = None
    ) -> dict[str, Any]:
        command = _build(provider_commands.ApproveProvider, provider_id=provider_id, notes=notes)
        self._execute(
            "approve_provider",
            identity,
            lambda cid: self.provider_handlers.handle_approve(
                command, cid, identity, self.guard, self.providers
            ),
        )
        return _snapshot(self.providers.get(provider_id))

    def reject_provider(
        self, identity: Identity | None, provider_id: str, reason: str
    ) -> dict[str, Any]:
        command = _build(provider_commands.RejectProvider, provider_id=provider_id, reason=reason)
        self._execute(
            "reject_provider",
            identity,
            lambda cid: self.provider_handlers.handle_reject(
                command, cid, identity, self.guard, self.providers
            ),
        )
        return _snapshot(self.providers.get(provider_id))

    def suspend_provider(
        self, identity: Identity | None, provider_id: str, reason: str
    ) -> dict[str, Any]:
        command = _build(provider_commands.SuspendProvider, provider_id=provider_id, reason=reason)
        self._execute(
            "suspend_provider",
            identity,
            lambda cid: self.provider_handlers.handle_suspend(
                command, cid, identity, self.guard, self.providers
            ),
        )
        return _snapshot(self.providers.get(provider_id))

    def reactivate_provider(
        self, identity: Identity | None, provider_id: str, notes: str | None = None
    ) -> dict[str, Any]:
        command = _build(
            provider_commands.ReactivateProvider, provider_id=provider_id, notes=notes
        )
        self._execute(
            "reactivate_provider",
            identity,
            lambda cid: self.provider_handlers.handle_reactivate(
                command, cid, identity, self.guard, self.providers
            ),
        )
        return _snapshot(self.providers.get(provider_id))

    def get_provider(self, identity: Identity | None, provider_id: str) -> dict[str, Any]:
        """
        Provider profile

        Quotable providers form the public directory; other records are
        visible to their own members and platform staff only.
        """
        identity = self.guard.require_authenticated(identity)
        self._sync()
        provider = self.guard.require_found(
            self.providers.get(provider_id), identity, ProviderNotFound()
        )
        if not (is_quotable(provider) or identity.is_platform_staff):
            self.guard.require_member(provider["organization_id"], identity)
        return _snapshot(provider)

    def list_providers(
        self,
        identity: Identity | None,
        status: str | None = None,
        verification_status: str | None = None,
    ) -> list[dict[str, Any]]:
        """
        Provider directory

        Platform staff see every record; everyone else sees quotable
        providers plus the ones of their own organizations.
        """
        identity = self.guard.require_authenticated(identity)
        self._sync()
        return [
            _snapshot(p)
            for p in self.providers.list_all(status, verification_status)
            if identity.is_platform_staff
            or is_quotable(p)
            or self.organizations.role_of(p["organization_id"], identity.user_id)
        ]

    def rate_service(
        self,
        identity: Identity | None,
        service_request_id: str,
        rating: int,
        comment: str | None = None,
    ) -> dict[str, Any]:
        command = _build(
            provider_commands.RateService,
            service_request_id=service_request_id,
            rating=rating,
            comment=comment,
        )
        result = self._execute(
            "rate_service",
            identity,
            lambda cid: self.provider_handlers.handle_rate_service(
                command, cid, identity, self.guard, self.requests, self.providers
            ),
        )
        return _snapshot(self.providers.get(result.events[0].payload["provider_id"]))

    # ========================================================================
    # Service requests
    # ========================================================================

    def _request_view(self, request: dict[str, Any]) -> dict[str, Any]:
        view = _snapshot(request)
        view["is_bottleneck"] = self.request_handlers.machine.is_bottleneck(
            request, self.time_provider.now()
        )
        return view

    def _provider_org_of(self, provider_id: str | None) -> str | None:
        provider = self.providers.get(provider_id or "")
        return provider["organization_id"] if provider else None

    def _can_view_request(self, request: dict[str, Any], identity: Identity) -> bool:
        """
        Hospital members, assigned-provider members, platform staff, and
        members of quotable providers while the request is open to them
        """
        if identity.is_platform_staff:
            return True
        if self.organizations.role_of(request["organization_id"], identity.user_id):
            return True
        assigned_org = self._provider_org_of(request["assigned_provider_id"])
        if assigned_org and self.organizations.role_of(assigned_org, identity.user_id):
            return True
        if ServiceRequestStatus(request["status"]) not in OPEN_FOR_QUOTES:
            return False
        for org_id in self.organizations.memberships_for_user(identity.user_id):
            provider = self.providers.get_by_organization(org_id)
            if (
                provider
                and is_quotable(provider)
                and request["service_request_id"] not in provider["declined_request_ids"]
            ):
                return True
        return False

    def create_service_request(
        self,
        identity: Identity | None,
        organization_id: str,
        equipment_id: str,
        request_type: str,
        description_vi: str,
        priority: str = "medium",
        description_en: str | None = None,
        scheduled_at: datetime | None = None,
    ) -> dict[str, Any]:
        command = _build(
            request_commands.CreateServiceRequest,
            organization_id=organization_id,
            equipment_id=equipment_id,
            request_type=request_type,
            priority=priority,
            description_vi=description_vi,
            description_en=description_en,
            scheduled_at=scheduled_at,
        )
        result = self._execute(
            "create_service_request",
            identity,
            lambda cid: self.request_handlers.handle_create(
                command, cid, identity, self.guard, self.organizations
            ),
        )
        return self._request_view(self.requests.get(result.events[0].stream_id))

    def transition_service_request(
        self, identity: Identity | None, service_request_id: str, target_status: str
    ) -> dict[str, Any]:
        """Explicit status change: cancelled, in_progress or completed"""
        command = _build(
            request_commands.TransitionServiceRequest,
            service_request_id=service_request_id,
            target_status=target_status,
        )
        self._execute(
            "transition_service_request",
            identity,
            lambda cid: self.request_handlers.handle_transition(
                command, cid, identity, self.guard, self.requests, self.providers, self.quotes
            ),
        )
        return self._request_view(self.requests.get(service_request_id))

    def cancel_service_request(
        self, identity: Identity | None, service_request_id: str
    ) -> dict[str, Any]:
        return self.transition_service_request(
            identity, service_request_id, ServiceRequestStatus.CANCELLED.value
        )

    def start_service(self, identity: Identity | None, service_request_id: str) -> dict[str, Any]:
        return self.transition_service_request(
            identity, service_request_id, ServiceRequestStatus.IN_PROGRESS.value
        )

    def complete_service(
        self, identity: Identity | None, service_request_id: str
    ) -> dict[str, Any]:
        return self.transition_service_request(
            identity, service_request_id, ServiceRequestStatus.COMPLETED.value
        )

    def get_service_request(
        self, identity: Identity | None, service_request_id: str
    ) -> dict[str, Any]:
        identity = self.guard.require_authenticated(identity)
        self._sync()
        request = self.guard.require_found(
            self.requests.get(service_request_id), identity, ServiceRequestNotFound()
        )
        if not self._can_view_request(request, identity):
            self.guard.require_member(request["organization_id"], identity)
        return self._request_view(request)

    def list_service_requests(
        self,
        identity: Identity | None,
        organization_id: str,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """Requests of one hospital organization"""
        identity = self.guard.require_authenticated(identity)
        self._sync()
        if not identity.is_platform_staff:
            self.guard.require_member(organization_id, identity)
        return [
            self._request_view(r)
            for r in self.requests.list_by_organization(organization_id, status)
        ]

    def list_provider_requests(
        self,
        identity: Identity | None,
        provider_id: str,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """Marketplace view of a provider: open requests not declined, plus assigned ones"""
        identity = self.guard.require_authenticated(identity)
        self._sync()
        provider = self.guard.require_found(
            self.providers.get(provider_id), identity, ProviderNotFound()
        )
        if not identity.is_platform_staff:
            self.guard.require_member(provider["organization_id"], identity)
        return [
            self._request_view(r)
            for r in self.requests.list_visible_to_provider(
                provider_id, provider["declined_request_ids"], status
            )
        ]

    def list_all_service_requests(
        self,
        identity: Identity | None,
        status: str | None = None,
        hospital_id: str | None = None,
        provider_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
    ) -> list[dict[str, Any]]:
        """Cross-tenant request list (platform admins)"""
        self.guard.require_platform_admin(identity)
        self._sync()
        self._refresh_bottleneck_gauge()
        return [
            self._request_view(r)
            for r in self.requests.list_filtered(
                status=status,
                hospital_id=hospital_id,
                provider_id=provider_id,
                from_date=from_date,
                to_date=to_date,
            )
        ]

    def reassign_provider(
        self,
        identity: Identity | None,
        service_request_id: str,
        new_provider_id: str,
        reason_vi: str,
        reason_en: str | None = None,
    ) -> dict[str, Any]:
        command = _build(
            request_commands.ReassignProvider,
            service_request_id=service_request_id,
            new_provider_id=new_provider_id,
            reason_vi=reason_vi,
            reason_en=reason_en,
        )
        self._execute(
            "reassign_provider",
            identity,
            lambda cid: self.request_handlers.handle_reassign_provider(
                command, cid, identity, self.guard, self.requests, self.providers
            ),
        )
        return self._request_view(self.requests.get(service_request_id))

    def count_bottlenecks(self) -> int:
        now = self.time_provider.now()
        return sum(
            1
            for r in self.requests.list_all()
            if self.request_handlers.machine.is_bottleneck(r, now)
        )

    def _refresh_bottleneck_gauge(self) -> int:
        count = self.count_bottlenecks()
        bottleneck_requests.set(count)
        return count

    # ========================================================================
    # Quotes
    # ========================================================================

    def submit_quote(
        self,
        identity: Identity | None,
        service_request_id: str,
        provider_id: str,
        amount: Decimal | int | str,
        currency: str | None = None,
        notes: str | None = None,
        estimated_duration_days: int | None = None,
        available_start_date: date | None = None,
        valid_until_days: int | None = None,
    ) -> dict[str, Any]:
        command = _build(
            quote_commands.SubmitQuote,
            service_request_id=service_request_id,
            provider_id=provider_id,
            amount=amount,
            currency=currency,
            notes=notes,
            estimated_duration_days=estimated_duration_days,
            available_start_date=available_start_date,
            valid_until_days=valid_until_days,
        )
        result = self._execute(
            "submit_quote",
            identity,
            lambda cid: self.quote_handlers.handle_submit(
                command, cid, identity, self.guard, self.requests, self.providers, self.quotes
            ),
        )
        return _snapshot(self.quotes.get(self._first_stream(result, "Quote")))

    def update_quote(self, identity: Identity | None, quote_id: str, **changes: Any) -> dict[str, Any]:
        """
        Edit a pending quote

        Accepts amount, currency, notes, estimated_duration_days,
        available_start_date and valid_until_days.
        """
        command = _build(quote_commands.UpdateQuote, quote_id=quote_id, **changes)
        self._execute(
            "update_quote",
            identity,
            lambda cid: self.quote_handlers.handle_update(
                command, cid, identity, self.guard, self.quotes
            ),
        )
        return _snapshot(self.quotes.get(quote_id))

    def accept_quote(self, identity: Identity | None, quote_id: str) -> dict[str, Any]:
        """
        Accept a quote

        Rejects the request's other pending quotes and moves the request to
        accepted atomically. A caller losing a race against another
        acceptance gets SERVICE_REQUEST_ALREADY_ACCEPTED (CONFLICT).
        """
        command = _build(quote_commands.AcceptQuote, quote_id=quote_id)
        self._execute(
            "accept_quote",
            identity,
            lambda cid: self.quote_handlers.handle_accept(
                command, cid, identity, self.guard, self.requests, self.quotes
            ),
        )
        return _snapshot(self.quotes.get(quote_id))

    def decline_service_request(
        self,
        identity: Identity | None,
        service_request_id: str,
        provider_id: str,
        reason: str,
    ) -> dict[str, Any]:
        command = _build(
            quote_commands.DeclineServiceRequest,
            service_request_id=service_request_id,
            provider_id=provider_id,
            reason=reason,
        )
        self._execute(
            "decline_service_request",
            identity,
            lambda cid: self.quote_handlers.handle_decline(
                command, cid, identity, self.guard, self.requests, self.providers
            ),
        )
        return _snapshot(self.providers.get(provider_id))

    def get_quote(self, identity: Identity | None, quote_id: str) -> dict[str, Any]:
        """Visible to the quoting provider, the hospital, and platform staff"""
        identity = self.guard.require_authenticated(identity)
        self._sync()
        quote = self.guard.require_found(self.quotes.get(quote_id), identity, QuoteNotFound())
        if not identity.is_platform_staff:
            self.guard.require_any_member(
                [quote["provider_organization_id"], quote["hospital_organization_id"]],
                identity,
            )
        return _snapshot(quote)

    def list_quotes_for_request(
        self, identity: Identity | None, service_request_id: str
    ) -> list[dict[str, Any]]:
        """
        Quotes on a request

        The hospital and platform staff see all of them; a provider sees
        only its own.
        """
        identity = self.guard.require_authenticated(identity)
        self._sync()
        request = self.guard.require_found(
            self.requests.get(service_request_id), identity, ServiceRequestNotFound()
        )
        quotes = self.quotes.list_for_request(service_request_id)
        if identity.is_platform_staff or self.organizations.role_of(
            request["organization_id"], identity.user_id
        ):
            return [_snapshot(q) for q in quotes]
        own = [
            q
            for q in quotes
            if self.organizations.role_of(q["provider_organization_id"], identity.user_id)
        ]
        if not own and not self._can_view_request(request, identity):
            self.guard.require_member(request["organization_id"], identity)
        return [_snapshot(q) for q in own]

    def list_provider_quotes(
        self,
        identity: Identity | None,
        provider_id: str,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        identity = self.guard.require_authenticated(identity)
        self._sync()
        provider = self.guard.require_found(
            self.providers.get(provider_id), identity, ProviderNotFound()
        )
        if not identity.is_platform_staff:
            self.guard.require_member(provider["organization_id"], identity)
        return [_snapshot(q) for q in self.quotes.list_for_provider(provider_id, status)]

    def quote_stats(self, identity: Identity | None, provider_id: str) -> QuoteStats:
        """Provider dashboard counters: pending, accepted, rejected, win rate"""
        identity = self.guard.require_authenticated(identity)
        self._sync()
        provider = self.guard.require_found(
            self.providers.get(provider_id), identity, ProviderNotFound()
        )
        if not identity.is_platform_staff:
            self.guard.require_member(provider["organization_id"], identity)
        return self.quotes.stats(provider_id)

    def tick(self) -> dict[str, int]:
        """
        Periodic housekeeping

        Expires pending quotes past valid_until (as the system actor) and
        refreshes the bottleneck gauge.
        """
        result = self._execute(
            "tick", None, lambda cid: self.quote_handlers.handle_expire(cid, self.quotes)
        )
        bottlenecks = self._refresh_bottleneck_gauge()
        expired = sum(1 for e in result.events if e.event_type == "QuoteExpired")
        logger.info("Tick completed", expired_quotes=expired, bottlenecks=bottlenecks)
        return {"expired_quotes": expired, "bottlenecks": bottlenecks}

    # ========================================================================
    # Disputes
    # ========================================================================

    def _dispute_view(self, dispute: dict[str, Any]) -> dict[str, Any]:
        return _snapshot(dispute)

    def open_dispute(
        self,
        identity: Identity | None,
        service_request_id: str,
        description_vi: str,
        dispute_type: str = "other",
        description_en: str | None = None,
    ) -> dict[str, Any]:
        command = _build(
            dispute_commands.OpenDispute,
            service_request_id=service_request_id,
            dispute_type=dispute_type,
            description_vi=description_vi,
            description_en=description_en,
        )
        result = self._execute(
            "open_dispute",
            identity,
            lambda cid: self.dispute_handlers.handle_open(
                command, cid, identity, self.guard, self.requests, self.providers, self.disputes
            ),
        )
        return self._dispute_view(self.disputes.get(self._first_stream(result, "Dispute")))

    def add_dispute_message(
        self,
        identity: Identity | None,
        dispute_id: str,
        content_vi: str,
        content_en: str | None = None,
    ) -> dict[str, Any]:
        command = _build(
            dispute_commands.AddDisputeMessage,
            dispute_id=dispute_id,
            content_vi=content_vi,
            content_en=content_en,
        )
        self._execute(
            "add_dispute_message",
            identity,
            lambda cid: self.dispute_handlers.handle_add_message(
                command, cid, identity, self.guard, self.requests, self.providers, self.disputes
            ),
        )
        return self._dispute_view(self.disputes.get(dispute_id))

    def escalate_dispute(
        self, identity: Identity | None, dispute_id: str, reason: str | None = None
    ) -> dict[str, Any]:
        command = _build(dispute_commands.EscalateDispute, dispute_id=dispute_id, reason=reason)
        self._execute(
            "escalate_dispute",
            identity,
            lambda cid: self.dispute_handlers.handle_escalate(
                command, cid, identity, self.guard, self.requests, self.providers, self.disputes
            ),
        )
        return self._dispute_view(self.disputes.get(dispute_id))

    def resolve_dispute(
        self,
        identity: Identity | None,
        dispute_id: str,
        resolution: str,
        reason_vi: str,
        reason_en: str | None = None,
        refund_amount: Decimal | int | str | None = None,
    ) -> dict[str, Any]:
        command = _build(
            dispute_commands.ResolveDispute,
            dispute_id=dispute_id,
            resolution=resolution,
            reason_vi=reason_vi,
            reason_en=reason_en,
            refund_amount=refund_amount,
        )
        self._execute(
            "resolve_dispute",
            identity,
            lambda cid: self.dispute_handlers.handle_resolve(
                command, cid, identity, self.guard, self.requests, self.disputes
            ),
        )
        return self._dispute_view(self.disputes.get(dispute_id))

    def get_dispute(self, identity: Identity | None, dispute_id: str) -> dict[str, Any]:
        """Dispute with its message thread (parties or platform staff)"""
        identity = self.guard.require_authenticated(identity)
        self._sync()
        dispute = self.guard.require_found(
            self.disputes.get(dispute_id), identity, DisputeNotFound()
        )
        if not identity.is_platform_staff:
            request = self.requests.get(dispute["service_request_id"])
            self.guard.require_any_member(dispute_parties(request, self.providers), identity)
        return self._dispute_view(dispute)

    def list_disputes(
        self,
        identity: Identity | None,
        organization_id: str,
        status: str | None = None,
    ) -> list[dict[str, Any]]:
        """Disputes of one hospital organization"""
        identity = self.guard.require_authenticated(identity)
        self._sync()
        if not identity.is_platform_staff:
            self.guard.require_member(organization_id, identity)
        return [
            self._dispute_view(d)
            for d in self.disputes.list_by_organization(organization_id, status)
        ]

    def list_provider_disputes(
        self, identity: Identity | None, provider_id: str
    ) -> list[dict[str, Any]]:
        identity = self.guard.require_authenticated(identity)
        self._sync()
        provider = self.guard.require_found(
            self.providers.get(provider_id), identity, ProviderNotFound()
        )
        if not identity.is_platform_staff:
            self.guard.require_member(provider["organization_id"], identity)
        return [self._dispute_view(d) for d in self.disputes.list_for_provider(provider_id)]

    def list_escalated_disputes(self, identity: Identity | None) -> list[dict[str, Any]]:
        """Cross-tenant arbitration queue (platform admins)"""
        self.guard.require_platform_admin(identity)
        self._sync()
        return [self._dispute_view(d) for d in self.disputes.list_escalated()]

    def get_dispute_detail(self, identity: Identity | None, dispute_id: str) -> dict[str, Any]:
        """Dispute, its request and the audit history of the dispute (platform admins)"""
        self.guard.require_platform_admin(identity)
        self._sync()
        dispute = self.disputes.get(dispute_id)
        if dispute is None:
            raise DisputeNotFound()
        detail = self._dispute_view(dispute)
        request = self.requests.get(dispute["service_request_id"])
        detail["service_request"] = self._request_view(request) if request else None
        detail["arbitration_history"] = [
            entry.model_dump() for entry in self.audit_trail.list_for_resource(dispute_id)
        ]
        return detail

    # ========================================================================
    # Audit
    # ========================================================================

    def _audit_limit(self, limit: int | None) -> int:
        cap = self.policy.audit_query_limit_max
        return min(limit, cap) if limit else cap

    def list_audit_entries(
        self,
        identity: Identity | None,
        organization_id: str,
        resource_type: str | None = None,
        resource_id: str | None = None,
        actor_id: str | None = None,
        action: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Audit entries of one organization, newest first (org admins)"""
        self._sync()
        self.guard.require_admin(organization_id, identity)
        entries = self.audit_trail.list_for_organization(
            organization_id,
            resource_type=resource_type,
            resource_id=resource_id,
            actor_id=actor_id,
            action=action,
            from_date=from_date,
            to_date=to_date,
            limit=self._audit_limit(limit),
        )
        return [entry.model_dump() for entry in entries]

    def list_all_audit_entries(
        self,
        identity: Identity | None,
        organization_id: str | None = None,
        resource_type: str | None = None,
        actor_id: str | None = None,
        action: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Unscoped audit listing (platform admins)"""
        self.guard.require_platform_admin(identity)
        entries = self.audit_trail.list_all(
            organization_id=organization_id,
            resource_type=resource_type,
            actor_id=actor_id,
            action=action,
            from_date=from_date,
            to_date=to_date,
            limit=self._audit_limit(limit),
        )
        return [entry.model_dump() for entry in entries]

    def export_audit_csv(
        self,
        identity: Identity | None,
        organization_id: str | None = None,
        resource_type: str | None = None,
        actor_id: str | None = None,
        from_date: datetime | None = None,
        to_date: datetime | None = None,
        search: str | None = None,
    ) -> str:
        """
        Every matching audit entry as CSV, newest first (platform admins)

        Unlike the listings there is no page cap; search matches action,
        resource type or resource id, case-insensitively.
        """
        self.guard.require_platform_admin(identity)
        self._sync()
        entries = self.audit_trail.list_all(
            organization_id=organization_id,
            resource_type=resource_type,
            actor_id=actor_id,
            from_date=from_date,
            to_date=to_date,
            search=search,
        )
        return render_csv(
            entries,
            {u["user_id"]: u for u in self.users.list_all()},
            {o["organization_id"]: o["name"] for o in self.organizations.list_all()},
        )

    # ========================================================================
    # Analytics (platform admins)
    # ========================================================================

    def _hospitals(self) -> list[dict[str, Any]]:
        return self.organizations.list_all("hospital")

    def _window(self, months: int | None) -> int:
        if months is None:
            months = self.policy.analytics_window_months
        return _build(analytics.WindowQuery, months=months).months

    def _ranking(self, top_n: int | None, default: int) -> int:
        return _build(analytics.RankingQuery, top_n=default if top_n is None else top_n).top_n

    def analytics_overview(self, identity: Identity | None) -> analytics.OverviewStats:
        self.guard.require_platform_admin(identity)
        self._sync()
        return analytics.compute_overview(
            self._hospitals(),
            self.providers.list_all(),
            self.equipment.count() if self.equipment is not None else 0,
            self.requests.list_all(),
            self.quotes.list_all(),
        )

    def analytics_growth(
        self, identity: Identity | None, months: int | None = None
    ) -> analytics.GrowthMetrics:
        self.guard.require_platform_admin(identity)
        self._sync()
        return analytics.compute_growth(
            self._hospitals(),
            self.providers.list_all(),
            self.time_provider.now(),
            self._window(months),
        )

    def analytics_service_metrics(
        self, identity: Identity | None, months: int | None = None
    ) -> analytics.ServiceMetrics:
        self.guard.require_platform_admin(identity)
        self._sync()
        return analytics.compute_service_metrics(
            self.requests.list_all(),
            self.time_provider.now(),
            self._window(months),
        )

    def analytics_revenue(
        self, identity: Identity | None, top_n: int | None = None
    ) -> analytics.RevenueBreakdown:
        self.guard.require_platform_admin(identity)
        self._sync()
        return analytics.compute_revenue_breakdown(
            self.requests.list_all(),
            self.quotes.list_all(),
            {o["organization_id"]: o["name"] for o in self.organizations.list_all()},
            {p["provider_id"]: p["name"] for p in self.providers.list_all()},
            self._ranking(top_n, self.policy.revenue_top_n),
        )

    def analytics_top_performers(
        self, identity: Identity | None, top_n: int | None = None
    ) -> analytics.TopPerformers:
        self.guard.require_platform_admin(identity)
        self._sync()
        return analytics.compute_top_performers(
            self.requests.list_all(),
            {o["organization_id"]: o["name"] for o in self.organizations.list_all()},
            self.providers.list_all(),
            self._ranking(top_n, self.policy.top_performers_n),
        )

    def analytics_platform_health(self, identity: Identity | None) -> analytics.PlatformHealth:
        self.guard.require_platform_admin(identity)
        self._sync()
        requests = self.requests.list_all()
        first_quotes = {}
        for request in requests:
            first = self.quotes.first_quote_at(request["service_request_id"])
            if first is not None:
                first_quotes[request["service_request_id"]] = first
        return analytics.compute_platform_health(
            requests,
            first_quotes,
            self.disputes.list_all(),
            self._refresh_bottleneck_gauge(),
        )

    def analytics_provider_scorecard(
        self, identity: Identity | None, provider_id: str
    ) -> analytics.ProviderScorecard:
        """Assignment, completion, rating and dispute figures of one provider"""
        self.guard.require_platform_admin(identity)
        self._sync()
        provider = self.providers.get(provider_id)
        if provider is None:
            raise ProviderNotFound()
        return analytics.compute_provider_scorecard(
            provider, self.requests.list_all(), self.disputes.list_all()
        )

    # ========================================================================
    # Operations
    # ========================================================================

    def health(self) -> dict[str, Any]:
        """Storage and workflow counters for the health endpoint"""
        self._sync()
        return {
            "events": self.event_store.count_events(),
            "streams": self.event_store.count_streams(),
            "audit_entries": self.audit_trail.count(),
            "open_bottlenecks": self._refresh_bottleneck_gauge(),
            "escalated_disputes": len(self.disputes.list_escalated()),
        }
