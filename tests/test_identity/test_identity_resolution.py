"""
Tests for identity resolution and the authorization guard

Resolution is two-step: the token's platform-role claim wins, the user
registry is the fallback. The guard never trusts the membership snapshot
on the identity; it re-reads the live organization registry.
"""

import pytest

from medequip.identity.models import IdentityClaims, OrgRole, PlatformRole
from medequip.kernel.errors import (
    AccessDenied,
    Conflict,
    ErrorKind,
    NotFound,
    Unauthenticated,
)
from medequip.marketplace import Marketplace
from tests.helpers import World, register


def test_missing_claims_are_unauthenticated(marketplace: Marketplace) -> None:
    with pytest.raises(Unauthenticated) as exc_info:
        marketplace.resolve_identity(None)

    assert exc_info.value.kind == ErrorKind.UNAUTHENTICATED


def test_claim_role_wins_over_registry(marketplace: Marketplace) -> None:
    user = marketplace.register_user("ops@medequip.vn", platform_role="platform_support")

    identity = marketplace.resolve_identity(
        IdentityClaims(subject=user["user_id"], platform_role=PlatformRole.PLATFORM_ADMIN)
    )

    assert identity.platform_role == PlatformRole.PLATFORM_ADMIN
    assert identity.is_platform_admin


def test_registry_role_is_the_fallback(marketplace: Marketplace) -> None:
    user = marketplace.register_user("ops@medequip.vn", platform_role="platform_admin")

    identity = marketplace.resolve_identity(IdentityClaims(subject=user["user_id"]))

    assert identity.is_platform_admin
    assert identity.email == "ops@medequip.vn"


def test_lookup_by_email_when_subject_unknown(marketplace: Marketplace) -> None:
    user = marketplace.register_user("ops@medequip.vn", platform_role="platform_support")

    identity = marketplace.resolve_identity(
        IdentityClaims(subject="external-idp-123", email="OPS@medequip.vn")
    )

    assert identity.user_id == user["user_id"]
    assert identity.is_platform_staff
    assert not identity.is_platform_admin


def test_unknown_user_resolves_without_privileges(marketplace: Marketplace) -> None:
    identity = marketplace.resolve_identity(IdentityClaims(subject="stranger"))

    assert identity.user_id == "stranger"
    assert identity.platform_role is None
    assert identity.memberships == {}


def test_memberships_attached(world: World) -> None:
    assert world.hospital_owner.memberships == {world.hospital_id: OrgRole.OWNER}
    assert world.hospital_staff.memberships == {world.hospital_id: OrgRole.MEMBER}


def test_guard_reads_live_membership(marketplace: Marketplace, world: World) -> None:
    """A stale identity snapshot doesn't keep access after removal"""
    stale = world.hospital_staff
    marketplace.remove_member(world.hospital_owner, world.hospital_id, stale.user_id)

    with pytest.raises(AccessDenied):
        marketplace.list_service_requests(stale, world.hospital_id)


def test_missing_resource_looks_forbidden_to_tenants(
    marketplace: Marketplace, world: World
) -> None:
    """Non-staff can't tell a missing request from someone else's"""
    with pytest.raises(AccessDenied):
        marketplace.get_service_request(world.hospital_owner, "no-such-request")

    with pytest.raises(NotFound) as exc_info:
        marketplace.get_service_request(world.support, "no-such-request")
    assert exc_info.value.code == "SERVICE_REQUEST_NOT_FOUND"


def test_unauthenticated_mutation(marketplace: Marketplace, world: World) -> None:
    with pytest.raises(Unauthenticated):
        marketplace.create_service_request(
            None,
            organization_id=world.hospital_id,
            equipment_id=world.equipment_id,
            request_type="repair",
            description_vi="Hỏng",
        )


def test_duplicate_email_conflicts(marketplace: Marketplace) -> None:
    register(marketplace, "dup@choray.vn")

    with pytest.raises(Conflict) as exc_info:
        marketplace.register_user("dup@choray.vn")

    assert exc_info.value.code == "USER_ALREADY_EXISTS"
