"""
Tests for dispute escalation and arbitration

Either party opens a dispute on work the provider took on; escalation
hands it to platform admins, who resolve it exactly once.
"""

from decimal import Decimal

import pytest

from medequip.disputes.invariants import (
    DisputeAlreadyOpen,
    DisputeAlreadyResolved,
    InvalidDisputeTransition,
    RefundAmountNotAllowed,
    RefundAmountRequired,
    RequestNotDisputable,
    render_resolution_notes,
    validate_refund,
)
from medequip.disputes.models import Resolution
from medequip.identity.invariants import PlatformAdminRequired
from medequip.kernel.errors import AccessDenied, ErrorKind
from medequip.kernel.time import TestTimeProvider
from medequip.marketplace import Marketplace
from tests.helpers import World, accepted_request, completed_request, create_request


@pytest.fixture
def dispute(marketplace: Marketplace, world: World) -> dict:
    """Open dispute raised by the hospital on a completed request"""
    request = completed_request(marketplace, world)
    return marketplace.open_dispute(
        world.hospital_owner,
        request["service_request_id"],
        description_vi="Máy vẫn báo lỗi sau khi sửa",
        dispute_type="quality",
        description_en="Device still faults after the repair",
    )


def test_refund_rules() -> None:
    validate_refund(Resolution.REFUND, Decimal("250000"))
    validate_refund(Resolution.DISMISS, None)

    with pytest.raises(RefundAmountRequired):
        validate_refund(Resolution.PARTIAL_REFUND, None)
    with pytest.raises(RefundAmountRequired):
        validate_refund(Resolution.REFUND, Decimal("0"))
    with pytest.raises(RefundAmountNotAllowed):
        validate_refund(Resolution.RE_ASSIGN, Decimal("10"))


def test_resolution_notes_rendering() -> None:
    notes = render_resolution_notes(Resolution.DISMISS, "Không có căn cứ", None, None, "VND")

    assert notes == "[resolution:dismiss] Không có căn cứ"


def test_full_arbitration(
    marketplace: Marketplace, world: World, dispute: dict, test_time: TestTimeProvider
) -> None:
    assert dispute["status"] == "open"
    assert dispute["provider_id"] == world.provider1_id
    request = marketplace.get_service_request(world.hospital_owner, dispute["service_request_id"])
    assert request["status"] == "disputed"

    escalated = marketplace.escalate_dispute(
        world.hospital_owner, dispute["dispute_id"], reason="Nhà cung cấp không phản hồi"
    )
    assert escalated["status"] == "escalated"
    queue = marketplace.list_escalated_disputes(world.admin)
    assert [d["dispute_id"] for d in queue] == [dispute["dispute_id"]]

    test_time.advance_days(1)
    resolved = marketplace.resolve_dispute(
        world.admin,
        dispute["dispute_id"],
        resolution="refund",
        reason_vi="Hoàn tiền do sửa chữa không đạt",
        reason_en="Refund, repair did not hold",
        refund_amount=250000,
    )

    assert resolved["status"] == "resolved"
    assert resolved["resolution"] == "refund"
    assert resolved["refund_amount"] == Decimal("250000")
    assert resolved["resolved_at"] == test_time.now()
    assert resolved["resolved_by"] == world.admin.user_id
    assert "Refund amount: 250000 VND" in resolved["resolution_notes"]
    assert marketplace.list_escalated_disputes(world.admin) == []

    entries = marketplace.list_audit_entries(
        world.hospital_owner, world.hospital_id, action="admin.dispute.arbitrated"
    )
    assert len(entries) == 1
    assert entries[0]["actor_id"] == world.admin.user_id
    assert entries[0]["previous_values"] == {"status": "escalated"}
    assert entries[0]["new_values"]["refundAmount"] == "250000"


def test_resolved_dispute_is_final(marketplace: Marketplace, world: World, dispute: dict) -> None:
    marketplace.resolve_dispute(
        world.admin, dispute["dispute_id"], resolution="dismiss", reason_vi="Không có căn cứ"
    )

    with pytest.raises(DisputeAlreadyResolved) as exc_info:
        marketplace.resolve_dispute(
            world.admin, dispute["dispute_id"], resolution="dismiss", reason_vi="Lần nữa"
        )
    assert exc_info.value.kind == ErrorKind.CONFLICT

    with pytest.raises(DisputeAlreadyResolved):
        marketplace.add_dispute_message(world.hospital_owner, dispute["dispute_id"], "Còn nữa")


def test_refund_amount_validated_on_resolve(
    marketplace: Marketplace, world: World, dispute: dict
) -> None:
    with pytest.raises(RefundAmountRequired):
        marketplace.resolve_dispute(
            world.admin, dispute["dispute_id"], resolution="partial_refund", reason_vi="Một phần"
        )
    with pytest.raises(RefundAmountNotAllowed):
        marketplace.resolve_dispute(
            world.admin,
            dispute["dispute_id"],
            resolution="dismiss",
            reason_vi="Bác bỏ",
            refund_amount="100",
        )

    assert marketplace.get_dispute(world.hospital_owner, dispute["dispute_id"])["status"] == "open"


def test_only_platform_admins_resolve(marketplace: Marketplace, world: World, dispute: dict) -> None:
    for caller in (world.hospital_owner, world.support):
        with pytest.raises(PlatformAdminRequired):
            marketplace.resolve_dispute(
                caller, dispute["dispute_id"], resolution="dismiss", reason_vi="Bác bỏ"
            )


def test_escalating_twice_is_invalid(marketplace: Marketplace, world: World, dispute: dict) -> None:
    marketplace.escalate_dispute(world.tech1, dispute["dispute_id"])

    with pytest.raises(InvalidDisputeTransition):
        marketplace.escalate_dispute(world.hospital_owner, dispute["dispute_id"])


def test_one_unresolved_dispute_per_request(
    marketplace: Marketplace, world: World, dispute: dict
) -> None:
    with pytest.raises(DisputeAlreadyOpen):
        marketplace.open_dispute(world.tech1, dispute["service_request_id"], "Tranh chấp thứ hai")


def test_only_agreed_work_is_disputable(marketplace: Marketplace, world: World) -> None:
    request = create_request(marketplace, world)

    with pytest.raises(RequestNotDisputable) as exc_info:
        marketplace.open_dispute(
            world.hospital_owner, request["service_request_id"], "Chưa có nhà cung cấp"
        )
    assert exc_info.value.code == "INVALID_SERVICE_REQUEST_STATUS"


def test_provider_may_open_on_accepted_work(marketplace: Marketplace, world: World) -> None:
    request, _ = accepted_request(marketplace, world)

    opened = marketplace.open_dispute(
        world.tech1, request["service_request_id"], "Bệnh viện không bàn giao thiết bị", "timeline"
    )

    assert opened["opened_by_organization_id"] == world.provider1_org_id
    listed = marketplace.list_provider_disputes(world.tech1, world.provider1_id)
    assert [d["dispute_id"] for d in listed] == [opened["dispute_id"]]


def test_message_thread_and_visibility(
    marketplace: Marketplace, world: World, dispute: dict
) -> None:
    marketplace.add_dispute_message(world.tech1, dispute["dispute_id"], "Chúng tôi sẽ kiểm tra lại")
    thread = marketplace.add_dispute_message(
        world.admin, dispute["dispute_id"], "Đã ghi nhận", content_en="Noted"
    )

    assert [m["author_id"] for m in thread["messages"]] == [
        world.tech1.user_id,
        world.admin.user_id,
    ]
    seen_by_provider = marketplace.get_dispute(world.tech1, dispute["dispute_id"])
    assert seen_by_provider["messages"] == thread["messages"]

    with pytest.raises(AccessDenied):
        marketplace.get_dispute(world.tech2, dispute["dispute_id"])
    with pytest.raises(AccessDenied):
        marketplace.add_dispute_message(
            world.other_hospital_owner, dispute["dispute_id"], "Xin chào"
        )


def test_dispute_detail_carries_history(
    marketplace: Marketplace, world: World, dispute: dict
) -> None:
    marketplace.escalate_dispute(world.hospital_owner, dispute["dispute_id"])
    marketplace.resolve_dispute(
        world.admin, dispute["dispute_id"], resolution="re_assign", reason_vi="Giao cho bên khác"
    )

    detail = marketplace.get_dispute_detail(world.admin, dispute["dispute_id"])

    assert detail["service_request"]["status"] == "disputed"
    assert [entry["action"] for entry in detail["arbitration_history"]] == [
        "dispute.created",
        "dispute.escalated",
        "admin.dispute.arbitrated",
    ]
    # re_assign only records the decision
    assert detail["service_request"]["assigned_provider_id"] == world.provider1_id

    with pytest.raises(PlatformAdminRequired):
        marketplace.get_dispute_detail(world.hospital_owner, dispute["dispute_id"])
