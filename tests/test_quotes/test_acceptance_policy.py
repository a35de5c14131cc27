"""
Tests for relaxed acceptance policy

With both switches off, any hospital member may accept, including the
member who filed the request.
"""

import pytest

from medequip.kernel.errors import AccessDenied
from medequip.kernel.policy import WorkflowPolicy
from medequip.marketplace import Marketplace
from tests.helpers import World, create_request, submit


@pytest.fixture
def policy() -> WorkflowPolicy:
    return WorkflowPolicy(acceptance_requires_admin=False, forbid_self_acceptance=False)


def test_member_accepts_own_request(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    quote = submit(marketplace, world, request["service_request_id"])

    accepted = marketplace.accept_quote(world.hospital_staff, quote["quote_id"])

    assert accepted["status"] == "accepted"
    assert accepted["accepted_by"] == world.hospital_staff.user_id


def test_outsiders_still_cannot_accept(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)
    quote = submit(marketplace, world, request["service_request_id"])

    with pytest.raises(AccessDenied):
        marketplace.accept_quote(world.other_hospital_owner, quote["quote_id"])
