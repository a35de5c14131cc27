"""
Quote Command Handlers

Submission, editing, acceptance, declining and expiry. Acceptance emits
events on the accepted quote, on every pending sibling and on the request
itself; the facade appends them in one transaction with a version check
per stream, so of two concurrent acceptances only one can commit.
"""

from datetime import datetime, timedelta
from typing import Any

from pydantic import BaseModel

from medequip.identity.guard import AuthorizationGuard
from medequip.identity.models import Identity
from medequip.kernel.audit_trail import AuditDraft
from medequip.kernel.commands import CommandHandlers, CommandResult
from medequip.kernel.events import Event
from medequip.kernel.ids import generate_id
from medequip.kernel.policy import WorkflowPolicy
from medequip.kernel.time import TimeProvider
from medequip.providers.invariants import ProviderNotActive, ProviderNotFound, is_quotable
from medequip.providers.projections import ProviderRegistry
from medequip.quotes import commands, events, invariants
from medequip.quotes.models import QuoteStatus
from medequip.quotes.projections import QuoteRegistry
from medequip.service_requests import events as request_events
from medequip.service_requests.invariants import (
    OPEN_FOR_QUOTES,
    InvalidStatusTransition,
    ProviderOrganizationConflict,
    ServiceRequestNotFound,
)
from medequip.service_requests.machine import STREAM_TYPE as REQUEST_STREAM
from medequip.service_requests.machine import ServiceRequestMachine
from medequip.service_requests.models import ServiceRequestStatus
from medequip.service_requests.projections import ServiceRequestRegistry

QUOTE = "Quote"
SYSTEM_ACTOR = "system"


class QuoteCommandHandlers(CommandHandlers):
    """Handlers for the quote negotiation protocol"""

    def __init__(self, time_provider: TimeProvider, policy: WorkflowPolicy):
        super().__init__(time_provider, policy)
        self.machine = ServiceRequestMachine(policy.bottleneck_threshold_days)

    def _quote_event(
        self,
        quote: dict[str, Any],
        event_type: str,
        payload: BaseModel,
        command_id: str,
        actor_id: str,
        now: datetime,
    ) -> Event:
        return self._event(
            event_type=event_type,
            stream_id=quote["quote_id"],
            stream_type=QUOTE,
            version=quote["version"] + 1,
            payload=payload,
            command_id=command_id,
            actor_id=actor_id,
            occurred_at=now,
        )

    def handle_submit(
        self,
        command: commands.SubmitQuote,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        providers: ProviderRegistry,
        quotes: QuoteRegistry,
    ) -> CommandResult:
        """
        Submit a quote

        Validates:
        - Caller is a member of the provider's organization
        - Provider is active and verified
        - Request is pending or quoted and belongs to another organization
        - Provider has no other pending quote on the request

        The first quote on a pending request moves it to quoted.
        """
        provider = guard.require_found(
            providers.get(command.provider_id), identity, ProviderNotFound()
        )
        guard.require_member(provider["organization_id"], identity)
        if not is_quotable(provider):
            raise ProviderNotActive()
        request = guard.require_found(
            requests.get(command.service_request_id), identity, ServiceRequestNotFound()
        )
        if ServiceRequestStatus(request["status"]) not in OPEN_FOR_QUOTES:
            raise invariants.ServiceRequestNotQuotable(request["status"])
        if request["organization_id"] == provider["organization_id"]:
            raise ProviderOrganizationConflict()
        if quotes.pending_from_provider(request["service_request_id"], command.provider_id):
            raise invariants.DuplicateQuote()

        now = self.time_provider.now()
        quote_id = generate_id()
        validity = command.valid_until_days or self.policy.default_quote_validity_days
        currency = (command.currency or self.policy.default_currency).upper()
        payload = events.QuoteSubmitted(
            quote_id=quote_id,
            service_request_id=request["service_request_id"],
            provider_id=command.provider_id,
            provider_organization_id=provider["organization_id"],
            hospital_organization_id=request["organization_id"],
            amount=command.amount,
            currency=currency,
            valid_until=now + timedelta(days=validity),
            notes=command.notes,
            estimated_duration_days=command.estimated_duration_days,
            available_start_date=command.available_start_date,
            submitted_by=identity.user_id,
            submitted_at=now,
        )
        result_events = [
            self._event(
                event_type="QuoteSubmitted",
                stream_id=quote_id,
                stream_type=QUOTE,
                version=1,
                payload=payload,
                command_id=command_id,
                actor_id=identity.user_id,
                occurred_at=now,
            ),
            self._event(
                event_type="QuoteReceived",
                stream_id=request["service_request_id"],
                stream_type=REQUEST_STREAM,
                version=request["version"] + 1,
                payload=request_events.QuoteReceived(
                    service_request_id=request["service_request_id"],
                    quote_id=quote_id,
                    provider_id=command.provider_id,
                    received_at=now,
                ),
                command_id=command_id,
                actor_id=identity.user_id,
                occurred_at=now,
            ),
        ]
        audit = [
            AuditDraft(
                organization_id=provider["organization_id"],
                action="quote.submitted",
                resource_type="quote",
                resource_id=quote_id,
                new_values={
                    "serviceRequestId": request["service_request_id"],
                    "amount": str(command.amount),
                    "currency": currency,
                    "status": QuoteStatus.PENDING.value,
                },
            )
        ]

        if request["status"] == ServiceRequestStatus.PENDING.value:
            result_events.append(
                self.machine.transition(
                    request,
                    ServiceRequestStatus.QUOTED,
                    version=request["version"] + 2,
                    trigger="quote_submitted",
                    actor_id=identity.user_id,
                    command_id=command_id,
                    occurred_at=now,
                    quote_id=quote_id,
                )
            )
            audit.append(
                AuditDraft(
                    organization_id=request["organization_id"],
                    action="serviceRequest.statusUpdated",
                    resource_type="serviceRequest",
                    resource_id=request["service_request_id"],
                    previous_values={"status": ServiceRequestStatus.PENDING.value},
                    new_values={"status": ServiceRequestStatus.QUOTED.value, "quoteId": quote_id},
                )
            )

        return CommandResult(events=result_events, audit=audit)

    def handle_update(
        self,
        command: commands.UpdateQuote,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        quotes: QuoteRegistry,
    ) -> CommandResult:
        """Edit a pending quote (QUOTE_NOT_EDITABLE otherwise)"""
        quote = guard.require_found(quotes.get(command.quote_id), identity, invariants.QuoteNotFound())
        guard.require_member(quote["provider_organization_id"], identity)
        if quote["status"] != QuoteStatus.PENDING.value:
            raise invariants.QuoteNotEditable(quote["status"])

        now = self.time_provider.now()
        valid_until = (
            now + timedelta(days=command.valid_until_days) if command.valid_until_days else None
        )
        currency = command.currency.upper() if command.currency else None
        payload = events.QuoteUpdated(
            quote_id=quote["quote_id"],
            amount=command.amount,
            currency=currency,
            valid_until=valid_until,
            notes=command.notes,
            estimated_duration_days=command.estimated_duration_days,
            available_start_date=command.available_start_date,
            updated_by=identity.user_id,
            updated_at=now,
        )

        changes = payload.model_dump(
            mode="json", exclude_none=True, exclude={"quote_id", "updated_by", "updated_at"}
        )
        previous = {
            field: quote[field] for field in changes if quote.get(field) is not None
        }
        return CommandResult(
            events=[
                self._quote_event(
                    quote, "QuoteUpdated", payload, command_id, identity.user_id, now
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=quote["provider_organization_id"],
                    action="quote.updated",
                    resource_type="quote",
                    resource_id=quote["quote_id"],
                    previous_values={k: str(v) for k, v in previous.items()},
                    new_values=changes,
                )
            ],
        )

    def handle_accept(
        self,
        command: commands.AcceptQuote,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        quotes: QuoteRegistry,
    ) -> CommandResult:
        """
        Accept a quote: the critical section

        Validates:
        - Caller is a hospital admin (or member, if policy allows)
        - Caller didn't file the request (if policy forbids self-acceptance)
        - Request is quoted; if it already accepted a quote the caller lost
          the race and gets SERVICE_REQUEST_ALREADY_ACCEPTED
        - Quote is pending

        Emits QuoteAccepted, QuoteRejected for each pending sibling, and the
        request's move to accepted with the quote's provider assigned.
        """
        quote = guard.require_found(quotes.get(command.quote_id), identity, invariants.QuoteNotFound())
        request = guard.require_found(
            requests.get(quote["service_request_id"]), identity, ServiceRequestNotFound()
        )
        if self.policy.acceptance_requires_admin:
            guard.require_admin(request["organization_id"], identity)
        else:
            guard.require_member(request["organization_id"], identity)
        if self.policy.forbid_self_acceptance and request["requested_by"] == identity.user_id:
            raise invariants.SelfAcceptanceForbidden()

        if request["status"] != ServiceRequestStatus.QUOTED.value:
            if request["accepted_quote_id"]:
                raise invariants.ServiceRequestAlreadyAccepted()
            raise InvalidStatusTransition(
                ServiceRequestStatus(request["status"]), ServiceRequestStatus.ACCEPTED
            )
        if quote["status"] != QuoteStatus.PENDING.value:
            raise invariants.QuoteNotPending(quote["status"])

        now = self.time_provider.now()
        result_events = [
            self._quote_event(
                quote,
                "QuoteAccepted",
                events.QuoteAccepted(
                    quote_id=quote["quote_id"],
                    service_request_id=request["service_request_id"],
                    provider_id=quote["provider_id"],
                    accepted_by=identity.user_id,
                    accepted_at=now,
                ),
                command_id,
                identity.user_id,
                now,
            )
        ]
        previous_statuses = {quote["quote_id"]: quote["status"]}
        new_statuses = {quote["quote_id"]: QuoteStatus.ACCEPTED.value}

        for sibling in quotes.pending_for_request(request["service_request_id"]):
            if sibling["quote_id"] == quote["quote_id"]:
                continue
            result_events.append(
                self._quote_event(
                    sibling,
                    "QuoteRejected",
                    events.QuoteRejected(
                        quote_id=sibling["quote_id"],
                        service_request_id=request["service_request_id"],
                        provider_id=sibling["provider_id"],
                        reason="another_quote_accepted",
                        rejected_at=now,
                    ),
                    command_id,
                    identity.user_id,
                    now,
                )
            )
            previous_statuses[sibling["quote_id"]] = sibling["status"]
            new_statuses[sibling["quote_id"]] = QuoteStatus.REJECTED.value

        result_events.append(
            self.machine.transition(
                request,
                ServiceRequestStatus.ACCEPTED,
                version=request["version"] + 1,
                trigger="quote_accepted",
                actor_id=identity.user_id,
                command_id=command_id,
                occurred_at=now,
                assigned_provider_id=quote["provider_id"],
                quote_id=quote["quote_id"],
            )
        )

        return CommandResult(
            events=result_events,
            audit=[
                AuditDraft(
                    organization_id=request["organization_id"],
                    action="quote.accepted",
                    resource_type="quote",
                    resource_id=quote["quote_id"],
                    previous_values={
                        "quotes": previous_statuses,
                        "serviceRequestStatus": request["status"],
                        "assignedProviderId": request["assigned_provider_id"],
                    },
                    new_values={
                        "quotes": new_statuses,
                        "serviceRequestStatus": ServiceRequestStatus.ACCEPTED.value,
                        "assignedProviderId": quote["provider_id"],
                        "serviceRequestId": request["service_request_id"],
                    },
                )
            ],
        )

    def handle_decline(
        self,
        command: commands.DeclineServiceRequest,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        requests: ServiceRequestRegistry,
        providers: ProviderRegistry,
    ) -> CommandResult:
        """
        Provider declines to quote a request

        The request's own status is untouched; it only leaves this
        provider's marketplace list.
        """
        provider = guard.require_found(
            providers.get(command.provider_id), identity, ProviderNotFound()
        )
        guard.require_member(provider["organization_id"], identity)
        request = guard.require_found(
            requests.get(command.service_request_id), identity, ServiceRequestNotFound()
        )
        reason = invariants.validate_decline_reason(
            command.reason, self.policy.decline_reason_min_length
        )
        if ServiceRequestStatus(request["status"]) not in OPEN_FOR_QUOTES:
            raise invariants.ServiceRequestNotQuotable(request["status"])
        if request["service_request_id"] in provider["declined_request_ids"]:
            raise invariants.AlreadyDeclined()

        now = self.time_provider.now()
        payload = events.ServiceRequestDeclined(
            service_request_id=request["service_request_id"],
            provider_id=provider["provider_id"],
            provider_organization_id=provider["organization_id"],
            reason=reason,
            declined_by=identity.user_id,
            declined_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="ServiceRequestDeclined",
                    stream_id=provider["provider_id"],
                    stream_type="Provider",
                    version=provider["version"] + 1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=identity.user_id,
                    occurred_at=now,
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=provider["organization_id"],
                    action="quote.requestDeclined",
                    resource_type="serviceRequest",
                    resource_id=request["service_request_id"],
                    new_values={"providerId": provider["provider_id"], "reason": reason},
                )
            ],
        )

    def handle_expire(self, command_id: str, quotes: QuoteRegistry) -> CommandResult:
        """Expire pending quotes past valid_until (system actor, no identity)"""
        now = self.time_provider.now()
        result = CommandResult()
        for quote in quotes.list_expired(now):
            result.events.append(
                self._quote_event(
                    quote,
                    "QuoteExpired",
                    events.QuoteExpired(
                        quote_id=quote["quote_id"],
                        service_request_id=quote["service_request_id"],
                        provider_id=quote["provider_id"],
                        valid_until=quote["valid_until"],
                        expired_at=now,
                    ),
                    command_id,
                    SYSTEM_ACTOR,
                    now,
                )
            )
            result.audit.append(
                AuditDraft(
                    organization_id=quote["provider_organization_id"],
                    action="quote.expired",
                    resource_type="quote",
                    resource_id=quote["quote_id"],
                    previous_values={"status": QuoteStatus.PENDING.value},
                    new_values={
                        "status": QuoteStatus.EXPIRED.value,
                        "validUntil": quote["valid_until"].isoformat(),
                    },
                )
            )
        return result
