"""
Test Helper Functions - Builders for marketplace scenarios

Builds the seeded world (organizations, users, verified providers) and
walks requests through the lifecycle so tests can start from the state
they care about.

Fun fact: The Builder pattern was formalized by the Gang of Four in 1994;
test data builders keep each test about one behaviour instead of twenty
lines of setup.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from medequip.equipment import InMemoryEquipmentDirectory
from medequip.identity.models import Identity
from medequip.marketplace import Marketplace


@dataclass
class World:
    """Ids and identities of the seeded marketplace"""

    admin: Identity
    support: Identity
    hospital_id: str
    hospital_owner: Identity
    hospital_staff: Identity
    other_hospital_id: str
    other_hospital_owner: Identity
    provider1_org_id: str
    provider1_id: str
    tech1: Identity
    provider2_org_id: str
    provider2_id: str
    tech2: Identity
    equipment_id: str = "eq-ventilator-01"
    other_equipment_id: str = "eq-xray-07"


def register(market: Marketplace, email: str, platform_role: str | None = None) -> Identity:
    """Register a user and return their resolved identity"""
    user = market.register_user(email, name=email.split("@")[0], platform_role=platform_role)
    return market.identity_for(user["user_id"])


def refresh(market: Marketplace, identity: Identity) -> Identity:
    """Re-resolve an identity so its membership snapshot is current"""
    return market.identity_for(identity.user_id)


def verified_provider(
    market: Marketplace, admin: Identity, owner: Identity, name: str
) -> tuple[str, str]:
    """Create a provider organization owned by owner and approve it"""
    org = market.create_organization(owner, f"{name} Co.", "provider")
    provider = market.register_provider(owner, org["organization_id"], name, ["imaging"])
    market.approve_provider(admin, provider["provider_id"], notes="documents checked")
    return org["organization_id"], provider["provider_id"]


def build_world(market: Marketplace, equipment: InMemoryEquipmentDirectory) -> World:
    admin = register(market, "admin@medequip.vn", "platform_admin")
    support = register(market, "support@medequip.vn", "platform_support")

    hospital_owner = register(market, "owner@choray.vn")
    hospital = market.create_organization(hospital_owner, "Bệnh viện Chợ Rẫy", "hospital")
    hospital_id = hospital["organization_id"]
    hospital_staff = register(market, "staff@choray.vn")
    market.add_member(hospital_owner, hospital_id, hospital_staff.user_id, "member")

    other_owner = register(market, "owner@bachmai.vn")
    other = market.create_organization(other_owner, "Bệnh viện Bạch Mai", "hospital")

    tech1 = register(market, "tech@suachua.vn")
    provider1_org_id, provider1_id = verified_provider(market, admin, tech1, "Sửa Chữa Y Tế")
    tech2 = register(market, "tech@kythuat.vn")
    provider2_org_id, provider2_id = verified_provider(market, admin, tech2, "Kỹ Thuật Y Khoa")

    world = World(
        admin=admin,
        support=support,
        hospital_id=hospital_id,
        hospital_owner=refresh(market, hospital_owner),
        hospital_staff=refresh(market, hospital_staff),
        other_hospital_id=other["organization_id"],
        other_hospital_owner=refresh(market, other_owner),
        provider1_org_id=provider1_org_id,
        provider1_id=provider1_id,
        tech1=refresh(market, tech1),
        provider2_org_id=provider2_org_id,
        provider2_id=provider2_id,
        tech2=refresh(market, tech2),
    )
    equipment.register(world.equipment_id, hospital_id)
    equipment.register(world.other_equipment_id, world.other_hospital_id)
    return world


def create_request(market: Marketplace, world: World, **overrides: Any) -> dict[str, Any]:
    """Pending repair request filed by the hospital staff member"""
    fields: dict[str, Any] = {
        "organization_id": world.hospital_id,
        "equipment_id": world.equipment_id,
        "request_type": "repair",
        "priority": "high",
        "description_vi": "Máy thở báo lỗi áp suất",
        "description_en": "Ventilator reports a pressure fault",
    }
    fields.update(overrides)
    return market.create_service_request(world.hospital_staff, **fields)


def submit(
    market: Marketplace,
    world: World,
    request_id: str,
    which: int = 1,
    amount: str | int | Decimal = "500000",
    **fields: Any,
) -> dict[str, Any]:
    """Quote from provider 1 or 2"""
    identity = world.tech1 if which == 1 else world.tech2
    provider_id = world.provider1_id if which == 1 else world.provider2_id
    return market.submit_quote(identity, request_id, provider_id, amount, **fields)


def accepted_request(market: Marketplace, world: World) -> tuple[dict[str, Any], dict[str, Any]]:
    """Request with provider 1's quote accepted; returns (request, quote)"""
    request = create_request(market, world)
    quote = submit(market, world, request["service_request_id"])
    market.accept_quote(world.hospital_owner, quote["quote_id"])
    return market.get_service_request(world.hospital_owner, request["service_request_id"]), quote


def completed_request(market: Marketplace, world: World) -> dict[str, Any]:
    """Request accepted, started and completed by provider 1"""
    request, _ = accepted_request(market, world)
    request_id = request["service_request_id"]
    market.start_service(world.tech1, request_id)
    return market.complete_service(world.tech1, request_id)
