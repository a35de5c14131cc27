"""
Tests for tenant isolation across the marketplace

A user of one hospital must not read or change another hospital's
requests, disputes, quotes or audit trail, and the errors they get must
not reveal whether the resource exists.
"""

import pytest

from medequip.disputes.invariants import DisputeNotFound
from medequip.identity.invariants import InsufficientRole, PlatformAdminRequired
from medequip.kernel.errors import AccessDenied
from medequip.marketplace import Marketplace
from medequip.providers.invariants import ProviderNotFound
from medequip.quotes.invariants import QuoteNotFound
from tests.helpers import World, accepted_request, completed_request, create_request


def test_foreign_requests_are_invisible(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    outsider = world.other_hospital_owner

    with pytest.raises(AccessDenied) as foreign:
        marketplace.get_service_request(outsider, request["service_request_id"])
    with pytest.raises(AccessDenied) as missing:
        marketplace.get_service_request(outsider, "does-not-exist")

    # Same payload either way
    assert foreign.value.to_payload() == missing.value.to_payload()
    assert world.hospital_id not in str(foreign.value.to_payload())

    with pytest.raises(AccessDenied):
        marketplace.list_service_requests(outsider, world.hospital_id)
    with pytest.raises(AccessDenied):
        marketplace.cancel_service_request(outsider, request["service_request_id"])


def test_cannot_file_for_another_hospital(marketplace: Marketplace, world: World) -> None:
    with pytest.raises(AccessDenied):
        marketplace.create_service_request(
            world.other_hospital_owner,
            organization_id=world.hospital_id,
            equipment_id=world.equipment_id,
            request_type="inspection",
            description_vi="Kiểm tra định kỳ",
        )


def test_foreign_disputes_and_quotes(marketplace: Marketplace, world: World) -> None:
    request = completed_request(marketplace, world)
    dispute = marketplace.open_dispute(
        world.hospital_owner, request["service_request_id"], "Thiết bị vẫn hỏng"
    )
    outsider = world.other_hospital_owner

    with pytest.raises(AccessDenied):
        marketplace.get_dispute(outsider, dispute["dispute_id"])
    with pytest.raises(AccessDenied):
        marketplace.list_disputes(outsider, world.hospital_id)
    with pytest.raises(AccessDenied):
        marketplace.escalate_dispute(outsider, dispute["dispute_id"])
    with pytest.raises(AccessDenied):
        marketplace.list_provider_quotes(world.tech2, world.provider1_id)
    with pytest.raises(AccessDenied):
        marketplace.quote_stats(outsider, world.provider1_id)


def test_staff_learn_what_is_missing(marketplace: Marketplace, world: World) -> None:
    with pytest.raises(QuoteNotFound):
        marketplace.get_quote(world.support, "no-such-quote")
    with pytest.raises(DisputeNotFound):
        marketplace.get_dispute(world.support, "no-such-dispute")
    with pytest.raises(ProviderNotFound):
        marketplace.get_provider(world.admin, "no-such-provider")

    with pytest.raises(AccessDenied):
        marketplace.get_quote(world.hospital_owner, "no-such-quote")


def test_support_reads_but_does_not_act(marketplace: Marketplace, world: World) -> None:
    request, _ = accepted_request(marketplace, world)
    request_id = request["service_request_id"]

    assert marketplace.get_service_request(world.support, request_id)["status"] == "accepted"
    assert len(marketplace.list_service_requests(world.support, world.hospital_id)) == 1

    with pytest.raises(AccessDenied):
        marketplace.cancel_service_request(world.support, request_id)
    with pytest.raises(AccessDenied):
        marketplace.open_dispute(world.support, request_id, "Hỗ trợ mở tranh chấp")


def test_audit_trail_is_scoped_and_admin_only(marketplace: Marketplace, world: World) -> None:
    create_request(marketplace, world)
    marketplace.create_service_request(
        world.other_hospital_owner,
        organization_id=world.other_hospital_id,
        equipment_id=world.other_equipment_id,
        request_type="calibration",
        description_vi="Hiệu chuẩn máy X-quang",
    )

    own = marketplace.list_audit_entries(world.hospital_owner, world.hospital_id)
    assert {e["organization_id"] for e in own} == {world.hospital_id}

    with pytest.raises(InsufficientRole):
        marketplace.list_audit_entries(world.hospital_staff, world.hospital_id)
    with pytest.raises(AccessDenied):
        marketplace.list_audit_entries(world.other_hospital_owner, world.hospital_id)
    with pytest.raises(PlatformAdminRequired):
        marketplace.list_all_audit_entries(world.support)

    everything = marketplace.list_all_audit_entries(world.admin, action="serviceRequest.created")
    assert {e["organization_id"] for e in everything} == {
        world.hospital_id,
        world.other_hospital_id,
    }


def test_audit_limit(marketplace: Marketplace, world: World) -> None:
    for _ in range(3):
        create_request(marketplace, world)

    entries = marketplace.list_audit_entries(world.hospital_owner, world.hospital_id, limit=2)

    assert len(entries) == 2
    assert all(e["action"] == "serviceRequest.created" for e in entries)
