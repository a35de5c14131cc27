"""
Tests for provider verification and suspension

Fun fact: In Vietnam, companies servicing medical devices need a
Ministry of Health declaration before touching a ventilator, which is
why nothing here can quote until a platform admin approves it.
"""

import pytest

from medequip.identity.invariants import PlatformAdminRequired, WrongOrganizationType
from medequip.kernel.errors import AccessDenied
from medequip.marketplace import Marketplace
from medequip.providers.invariants import (
    InvalidProviderTransition,
    ProviderAlreadyRegistered,
    ProviderNotActive,
    ReasonRequired,
    updated_average,
)
from tests.helpers import World, create_request, register


@pytest.fixture
def applicant(marketplace: Marketplace, world: World):
    """(owner identity, organization id, provider) of a freshly registered provider"""
    owner = register(marketplace, "director@thietbi.vn")
    org = marketplace.create_organization(owner, "Thiết Bị Miền Nam", "provider")
    provider = marketplace.register_provider(
        owner, org["organization_id"], "Thiết Bị Miền Nam", ["ventilator", "imaging"]
    )
    return owner, org["organization_id"], provider


def test_registration_starts_unverified(applicant) -> None:
    _, org_id, provider = applicant

    assert provider["organization_id"] == org_id
    assert provider["status"] == "pending_verification"
    assert provider["verification_status"] == "pending"
    assert provider["specialties"] == ["ventilator", "imaging"]
    assert provider["average_rating"] == 0.0


def test_one_provider_per_organization(marketplace: Marketplace, applicant) -> None:
    owner, org_id, _ = applicant

    with pytest.raises(ProviderAlreadyRegistered):
        marketplace.register_provider(owner, org_id, "Tên khác")


def test_hospitals_cannot_register_providers(marketplace: Marketplace, world: World) -> None:
    with pytest.raises(WrongOrganizationType):
        marketplace.register_provider(world.hospital_owner, world.hospital_id, "Chợ Rẫy Kỹ Thuật")


def test_review_then_approve(marketplace: Marketplace, world: World, applicant) -> None:
    owner, org_id, provider = applicant
    provider_id = provider["provider_id"]

    reviewed = marketplace.begin_provider_review(world.admin, provider_id)
    assert reviewed["verification_status"] == "in_review"

    approved = marketplace.approve_provider(world.admin, provider_id, notes="Giấy phép hợp lệ")
    assert approved["status"] == "active"
    assert approved["verification_status"] == "verified"
    assert approved["verification_notes"] == "Giấy phép hợp lệ"

    entries = marketplace.list_audit_entries(owner, org_id, resource_type="provider")
    assert [e["action"] for e in entries] == [
        "admin.provider.approved",
        "admin.provider.reviewStarted",
        "provider.registered",
    ]


def test_rejected_provider_can_be_approved_later(
    marketplace: Marketplace, world: World, applicant
) -> None:
    _, _, provider = applicant
    provider_id = provider["provider_id"]

    with pytest.raises(ReasonRequired):
        marketplace.reject_provider(world.admin, provider_id, reason="   ")

    rejected = marketplace.reject_provider(world.admin, provider_id, reason="Thiếu giấy phép")
    assert rejected["verification_status"] == "rejected"
    assert rejected["verification_notes"] == "Thiếu giấy phép"

    with pytest.raises(InvalidProviderTransition):
        marketplace.reject_provider(world.admin, provider_id, reason="Lần nữa")

    assert marketplace.approve_provider(world.admin, provider_id)["status"] == "active"


def test_suspension_blocks_quoting(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)

    suspended = marketplace.suspend_provider(
        world.admin, world.provider1_id, reason="Khiếu nại chất lượng"
    )
    assert suspended["status"] == "suspended"

    with pytest.raises(ProviderNotActive):
        marketplace.submit_quote(
            world.tech1, request["service_request_id"], world.provider1_id, "500000"
        )

    reactivated = marketplace.reactivate_provider(world.admin, world.provider1_id)
    assert reactivated["status"] == "active"
    quote = marketplace.submit_quote(
        world.tech1, request["service_request_id"], world.provider1_id, "500000"
    )
    assert quote["status"] == "pending"


def test_lifecycle_edges(marketplace: Marketplace, world: World, applicant) -> None:
    _, _, provider = applicant

    with pytest.raises(InvalidProviderTransition):
        marketplace.suspend_provider(world.admin, provider["provider_id"], reason="Sớm quá")
    with pytest.raises(InvalidProviderTransition):
        marketplace.reactivate_provider(world.admin, world.provider1_id)
    with pytest.raises(InvalidProviderTransition):
        marketplace.begin_provider_review(world.admin, world.provider1_id)


def test_verification_is_platform_admin_only(
    marketplace: Marketplace, world: World, applicant
) -> None:
    owner, _, provider = applicant

    for caller in (owner, world.support):
        with pytest.raises(PlatformAdminRequired):
            marketplace.approve_provider(caller, provider["provider_id"])


def test_directory_hides_unverified_providers(
    marketplace: Marketplace, world: World, applicant
) -> None:
    owner, _, provider = applicant
    provider_id = provider["provider_id"]

    public = {p["provider_id"] for p in marketplace.list_providers(world.hospital_owner)}
    assert public == {world.provider1_id, world.provider2_id}

    own_view = {p["provider_id"] for p in marketplace.list_providers(owner)}
    assert provider_id in own_view
    assert len(marketplace.list_providers(world.support, status="pending_verification")) == 1

    assert marketplace.get_provider(owner, provider_id)["name"] == "Thiết Bị Miền Nam"
    with pytest.raises(AccessDenied):
        marketplace.get_provider(world.hospital_owner, provider_id)


@pytest.mark.parametrize(
    ("average", "count", "rating", "expected"),
    [(0.0, 0, 5, 5.0), (5.0, 1, 4, 4.5), (4.0, 2, 5, 4.33), (4.33, 3, 1, 3.5)],
)
def test_updated_average(average: float, count: int, rating: int, expected: float) -> None:
    assert updated_average(average, count, rating) == expected
