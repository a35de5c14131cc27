"""
Tests for rating completed services
"""

import pytest

from medequip.kernel.errors import AccessDenied, InvalidInput
from medequip.marketplace import Marketplace
from medequip.providers.invariants import DuplicateRating, RatingNotAllowed
from tests.helpers import World, accepted_request, completed_request


def test_rating_updates_provider_aggregate(marketplace: Marketplace, world: World) -> None:
    first = completed_request(marketplace, world)
    second = completed_request(marketplace, world)

    provider = marketplace.rate_service(
        world.hospital_staff, first["service_request_id"], 5, comment="Rất nhanh"
    )
    assert provider["provider_id"] == world.provider1_id
    assert (provider["average_rating"], provider["total_ratings"]) == (5.0, 1)
    assert provider["completed_services"] == 1

    provider = marketplace.rate_service(world.hospital_owner, second["service_request_id"], 4)
    assert (provider["average_rating"], provider["total_ratings"]) == (4.5, 2)
    assert provider["completed_services"] == 2

    request = marketplace.get_service_request(world.hospital_owner, first["service_request_id"])
    assert request["rating"] == 5


def test_each_request_is_rated_once(marketplace: Marketplace, world: World) -> None:
    request = completed_request(marketplace, world)
    marketplace.rate_service(world.hospital_owner, request["service_request_id"], 3)

    with pytest.raises(DuplicateRating):
        marketplace.rate_service(world.hospital_owner, request["service_request_id"], 5)


def test_only_completed_work_is_rated(marketplace: Marketplace, world: World) -> None:
    request, _ = accepted_request(marketplace, world)

    with pytest.raises(RatingNotAllowed) as exc_info:
        marketplace.rate_service(world.hospital_owner, request["service_request_id"], 5)

    assert exc_info.value.code == "SERVICE_NOT_COMPLETED"


def test_rating_bounds(marketplace: Marketplace, world: World) -> None:
    request = completed_request(marketplace, world)

    for stars in (0, 6):
        with pytest.raises(InvalidInput):
            marketplace.rate_service(world.hospital_owner, request["service_request_id"], stars)


def test_providers_cannot_rate_themselves(marketplace: Marketplace, world: World) -> None:
    request = completed_request(marketplace, world)

    with pytest.raises(AccessDenied):
        marketplace.rate_service(world.tech1, request["service_request_id"], 5)
