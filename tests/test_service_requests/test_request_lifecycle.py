"""
Tests for the service request lifecycle through the facade

Who may move a request where: hospitals file and cancel, the assigned
provider starts and completes, workflow-only states can't be set by hand.
"""

import pytest

from medequip.identity.invariants import PlatformAdminRequired, WrongOrganizationType
from medequip.kernel.errors import AccessDenied, ErrorKind, InvalidInput
from medequip.kernel.time import TestTimeProvider
from medequip.marketplace import Marketplace
from medequip.service_requests.invariants import (
    EquipmentMismatch,
    InvalidStatusTransition,
    ProviderAlreadyAssigned,
    TransitionNotPermitted,
)
from tests.helpers import World, accepted_request, completed_request, create_request, submit


def test_create_request_starts_pending(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)

    assert request["status"] == "pending"
    assert request["requested_by"] == world.hospital_staff.user_id
    assert request["assigned_provider_id"] is None
    assert request["is_bottleneck"] is False

    entries = marketplace.list_audit_entries(
        world.hospital_owner, world.hospital_id, resource_id=request["service_request_id"]
    )
    assert [e["action"] for e in entries] == ["serviceRequest.created"]
    assert entries[0]["new_values"]["status"] == "pending"


def test_equipment_must_belong_to_the_hospital(marketplace: Marketplace, world: World) -> None:
    with pytest.raises(EquipmentMismatch) as exc_info:
        create_request(marketplace, world, equipment_id=world.other_equipment_id)

    assert exc_info.value.code == "EQUIPMENT_ORG_MISMATCH"
    assert marketplace.list_service_requests(world.hospital_owner, world.hospital_id) == []


def test_provider_organizations_cannot_file_requests(
    marketplace: Marketplace, world: World
) -> None:
    with pytest.raises(WrongOrganizationType):
        marketplace.create_service_request(
            world.tech1,
            organization_id=world.provider1_org_id,
            equipment_id=world.equipment_id,
            request_type="repair",
            description_vi="Thử",
        )


def test_vietnamese_description_is_required(marketplace: Marketplace, world: World) -> None:
    with pytest.raises(InvalidInput):
        create_request(marketplace, world, description_vi="")


def test_first_quote_moves_request_to_quoted(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]

    submit(marketplace, world, request_id, which=1)
    submit(marketplace, world, request_id, which=2)

    request = marketplace.get_service_request(world.hospital_owner, request_id)
    assert request["status"] == "quoted"
    assert len(request["quote_ids"]) == 2


def test_workflow_states_cannot_be_set_by_hand(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]
    submit(marketplace, world, request_id)

    for target in ("quoted", "accepted", "disputed"):
        with pytest.raises(InvalidStatusTransition) as exc_info:
            marketplace.transition_service_request(world.hospital_owner, request_id, target)
        assert exc_info.value.kind == ErrorKind.INVALID_TRANSITION


def test_cancel_rejects_pending_quotes(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]
    first = submit(marketplace, world, request_id, which=1)
    second = submit(marketplace, world, request_id, which=2)

    cancelled = marketplace.cancel_service_request(world.hospital_staff, request_id)

    assert cancelled["status"] == "cancelled"
    for quote in (first, second):
        assert marketplace.get_quote(world.hospital_owner, quote["quote_id"])["status"] == "rejected"

    entries = marketplace.list_audit_entries(
        world.hospital_owner, world.hospital_id, action="serviceRequest.cancelled"
    )
    assert len(entries) == 1
    assert set(entries[0]["new_values"]["rejectedQuoteIds"]) == {
        first["quote_id"],
        second["quote_id"],
    }


def test_cancelled_is_terminal(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]
    marketplace.cancel_service_request(world.hospital_staff, request_id)

    with pytest.raises(InvalidStatusTransition):
        marketplace.cancel_service_request(world.hospital_staff, request_id)


def test_provider_runs_the_work(marketplace: Marketplace, world: World) -> None:
    request, quote = accepted_request(marketplace, world)
    request_id = request["service_request_id"]
    assert request["status"] == "accepted"
    assert request["assigned_provider_id"] == world.provider1_id
    assert request["accepted_quote_id"] == quote["quote_id"]

    # The hospital doesn't start the work
    with pytest.raises(TransitionNotPermitted):
        marketplace.start_service(world.hospital_owner, request_id)

    started = marketplace.start_service(world.tech1, request_id)
    assert started["status"] == "in_progress"

    done = marketplace.complete_service(world.tech1, request_id)
    assert done["status"] == "completed"
    assert done["completed_at"] is not None


def test_provider_cannot_cancel_for_the_hospital(
    marketplace: Marketplace, world: World
) -> None:
    request, _ = accepted_request(marketplace, world)

    with pytest.raises(TransitionNotPermitted):
        marketplace.cancel_service_request(world.tech1, request["service_request_id"])


def test_unassigned_provider_is_not_a_party(marketplace: Marketplace, world: World) -> None:
    request, _ = accepted_request(marketplace, world)

    with pytest.raises(AccessDenied):
        marketplace.start_service(world.tech2, request["service_request_id"])


def test_completed_cannot_be_cancelled(marketplace: Marketplace, world: World) -> None:
    request = completed_request(marketplace, world)

    with pytest.raises(InvalidStatusTransition):
        marketplace.cancel_service_request(world.hospital_owner, request["service_request_id"])


def test_idle_request_becomes_a_bottleneck(
    marketplace: Marketplace, world: World, test_time: TestTimeProvider
) -> None:
    request = create_request(marketplace, world)
    request_id = request["service_request_id"]

    test_time.advance_days(7)
    assert marketplace.get_service_request(world.hospital_owner, request_id)["is_bottleneck"] is False

    test_time.advance_days(1)
    assert marketplace.get_service_request(world.hospital_owner, request_id)["is_bottleneck"] is True
    assert marketplace.count_bottlenecks() == 1

    # Any update resets the clock
    submit(marketplace, world, request_id)
    assert marketplace.count_bottlenecks() == 0


def test_admin_reassigns_provider(marketplace: Marketplace, world: World) -> None:
    request, _ = accepted_request(marketplace, world)
    request_id = request["service_request_id"]

    updated = marketplace.reassign_provider(
        world.admin, request_id, world.provider2_id, reason_vi="Nhà cung cấp không phản hồi"
    )

    assert updated["assigned_provider_id"] == world.provider2_id
    assert updated["status"] == "accepted"
    # The new provider can now run the work
    assert marketplace.start_service(world.tech2, request_id)["status"] == "in_progress"

    with pytest.raises(ProviderAlreadyAssigned):
        marketplace.reassign_provider(world.admin, request_id, world.provider2_id, reason_vi="Lại")


def test_reassign_is_platform_admin_only(marketplace: Marketplace, world: World) -> None:
    request, _ = accepted_request(marketplace, world)

    for caller in (world.support, world.hospital_owner):
        with pytest.raises(PlatformAdminRequired):
            marketplace.reassign_provider(
                caller, request["service_request_id"], world.provider2_id, reason_vi="Đổi"
            )


def test_provider_marketplace_view(marketplace: Marketplace, world: World) -> None:
    open_request = create_request(marketplace, world)
    taken, _ = accepted_request(marketplace, world)

    visible_to_1 = {
        r["service_request_id"]
        for r in marketplace.list_provider_requests(world.tech1, world.provider1_id)
    }
    visible_to_2 = {
        r["service_request_id"]
        for r in marketplace.list_provider_requests(world.tech2, world.provider2_id)
    }

    assert visible_to_1 == {open_request["service_request_id"], taken["service_request_id"]}
    assert visible_to_2 == {open_request["service_request_id"]}


def test_admin_cross_tenant_listing(marketplace: Marketplace, world: World) -> None:
    create_request(marketplace, world)
    accepted_request(marketplace, world)

    everything = marketplace.list_all_service_requests(world.admin)
    accepted = marketplace.list_all_service_requests(world.admin, status="accepted")
    by_provider = marketplace.list_all_service_requests(world.admin, provider_id=world.provider1_id)

    assert len(everything) == 2
    assert len(accepted) == 1
    assert by_provider == accepted

    with pytest.raises(PlatformAdminRequired):
        marketplace.list_all_service_requests(world.support)
