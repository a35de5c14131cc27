"""
Tests for quote acceptance

Acceptance is the one mutation that writes several records at once: the
winning quote, every pending sibling and the request. These tests pin
the cascade and the behaviour of the losing side of a race.
"""

import threading
from decimal import Decimal
from pathlib import Path

import pytest

from medequip.equipment import InMemoryEquipmentDirectory
from medequip.identity.invariants import InsufficientRole
from medequip.kernel.errors import (
    Conflict,
    ErrorKind,
    InvalidTransition,
    MarketplaceError,
    StreamVersionConflict,
)
from medequip.kernel.policy import WorkflowPolicy
from medequip.kernel.time import TestTimeProvider
from medequip.marketplace import Marketplace
from medequip.quotes.commands import AcceptQuote
from medequip.quotes.invariants import (
    QuoteNotPending,
    SelfAcceptanceForbidden,
    ServiceRequestAlreadyAccepted,
)
from tests.helpers import World, create_request, submit


def test_accept_cascades_to_siblings_and_request(
    marketplace: Marketplace, world: World
) -> None:
    """Two bids, the cheaper one wins"""
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]
    assert request["status"] == "pending"

    q1 = submit(marketplace, world, request_id, which=1, amount="500000", currency="VND")
    assert marketplace.get_service_request(world.hospital_owner, request_id)["status"] == "quoted"
    q2 = submit(marketplace, world, request_id, which=2, amount="450000")
    assert q2["currency"] == "VND"
    assert q2["amount"] == Decimal("450000")

    accepted = marketplace.accept_quote(world.hospital_owner, q2["quote_id"])

    assert accepted["status"] == "accepted"
    assert accepted["accepted_by"] == world.hospital_owner.user_id
    loser = marketplace.get_quote(world.hospital_owner, q1["quote_id"])
    assert loser["status"] == "rejected"
    assert loser["rejection_reason"] == "another_quote_accepted"

    request = marketplace.get_service_request(world.hospital_owner, request_id)
    assert request["status"] == "accepted"
    assert request["assigned_provider_id"] == world.provider2_id
    assert request["accepted_quote_id"] == q2["quote_id"]


def test_second_acceptance_is_a_conflict(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]
    q1 = submit(marketplace, world, request_id, which=1)
    q2 = submit(marketplace, world, request_id, which=2)
    marketplace.accept_quote(world.hospital_owner, q2["quote_id"])

    with pytest.raises(ServiceRequestAlreadyAccepted) as exc_info:
        marketplace.accept_quote(world.hospital_owner, q1["quote_id"])

    assert exc_info.value.kind == ErrorKind.CONFLICT
    assert marketplace.get_quote(world.hospital_owner, q1["quote_id"])["status"] == "rejected"


def test_acceptance_writes_one_audit_entry(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]
    q1 = submit(marketplace, world, request_id, which=1)
    q2 = submit(marketplace, world, request_id, which=2)

    marketplace.accept_quote(world.hospital_owner, q2["quote_id"])

    entries = marketplace.list_audit_entries(
        world.hospital_owner, world.hospital_id, action="quote.accepted"
    )
    assert len(entries) == 1
    entry = entries[0]
    assert entry["resource_id"] == q2["quote_id"]
    assert entry["previous_values"]["serviceRequestStatus"] == "quoted"
    assert entry["new_values"]["quotes"] == {
        q2["quote_id"]: "accepted",
        q1["quote_id"]: "rejected",
    }


def test_concurrent_acceptances_have_one_winner(
    temp_db: Path,
    marketplace: Marketplace,
    world: World,
    policy: WorkflowPolicy,
    test_time: TestTimeProvider,
    equipment: InMemoryEquipmentDirectory,
) -> None:
    """Two processes on one database, each accepting a different quote"""
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]
    q1 = submit(marketplace, world, request_id, which=1)
    q2 = submit(marketplace, world, request_id, which=2)

    other_process = Marketplace(
        temp_db, policy=policy, time_provider=test_time, equipment=equipment
    )
    barrier = threading.Barrier(2)
    outcomes: dict[str, object] = {}

    def accept(market: Marketplace, quote_id: str) -> None:
        barrier.wait()
        try:
            outcomes[quote_id] = market.accept_quote(world.hospital_owner, quote_id)
        except MarketplaceError as e:
            outcomes[quote_id] = e

    threads = [
        threading.Thread(target=accept, args=(marketplace, q1["quote_id"])),
        threading.Thread(target=accept, args=(other_process, q2["quote_id"])),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    errors = [o for o in outcomes.values() if isinstance(o, MarketplaceError)]
    winners = [o for o in outcomes.values() if isinstance(o, dict)]
    assert len(winners) == 1
    assert len(errors) == 1
    assert isinstance(errors[0], Conflict)

    # Exactly one accepted quote survives, whichever instance is asked
    for market in (marketplace, other_process):
        statuses = sorted(
            q["status"] for q in market.list_quotes_for_request(world.hospital_owner, request_id)
        )
        assert statuses == ["accepted", "rejected"]
        request = market.get_service_request(world.hospital_owner, request_id)
        assert request["accepted_quote_id"] == winners[0]["quote_id"]


def test_stale_decision_cannot_commit(
    temp_db: Path,
    marketplace: Marketplace,
    world: World,
    policy: WorkflowPolicy,
    test_time: TestTimeProvider,
    equipment: InMemoryEquipmentDirectory,
) -> None:
    """A decision made on an old view is refused by the stream version check"""
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]
    q1 = submit(marketplace, world, request_id, which=1)
    q2 = submit(marketplace, world, request_id, which=2)
    other_process = Marketplace(
        temp_db, policy=policy, time_provider=test_time, equipment=equipment
    )

    stale = other_process.quote_handlers.handle_accept(
        AcceptQuote(quote_id=q1["quote_id"]),
        "stale-command",
        world.hospital_owner,
        other_process.guard,
        other_process.requests,
        other_process.quotes,
    )
    marketplace.accept_quote(world.hospital_owner, q2["quote_id"])

    with pytest.raises(StreamVersionConflict):
        other_process._commit(stale, "stale-command", world.hospital_owner.user_id)

    assert marketplace.get_quote(world.hospital_owner, q1["quote_id"])["status"] == "rejected"


def test_only_hospital_admins_accept(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    quote = submit(marketplace, world, request["service_request_id"])

    with pytest.raises(InsufficientRole):
        marketplace.accept_quote(world.hospital_staff, quote["quote_id"])


def test_requester_cannot_accept_own_request(marketplace: Marketplace, world: World) -> None:
    marketplace.update_member_role(
        world.hospital_owner, world.hospital_id, world.hospital_staff.user_id, "admin"
    )
    request = create_request(marketplace, world)
    quote = submit(marketplace, world, request["service_request_id"])

    with pytest.raises(SelfAcceptanceForbidden):
        marketplace.accept_quote(world.hospital_staff, quote["quote_id"])


def test_cancelled_request_cannot_accept(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    quote = submit(marketplace, world, request["service_request_id"])
    marketplace.cancel_service_request(world.hospital_owner, request["service_request_id"])

    with pytest.raises(InvalidTransition) as exc_info:
        marketplace.accept_quote(world.hospital_owner, quote["quote_id"])

    assert exc_info.value.code == "INVALID_TRANSITION"


def test_expired_quote_cannot_be_accepted(
    marketplace: Marketplace, world: World, test_time: TestTimeProvider
) -> None:
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]
    short = submit(marketplace, world, request_id, which=1, valid_until_days=1)
    submit(marketplace, world, request_id, which=2, valid_until_days=30)

    test_time.advance_days(2)
    marketplace.tick()

    with pytest.raises(QuoteNotPending):
        marketplace.accept_quote(world.hospital_owner, short["quote_id"])
