"""
Dispute Invariants

Dispute edges, refund rules and the rendered resolution note.

Fun fact: The resolution note format is read by people, not machines;
the structured fields next to it are what analytics and audits use.
"""

from decimal import Decimal

from medequip.disputes.models import REFUND_RESOLUTIONS, DisputeStatus, Resolution
from medequip.kernel.errors import Conflict, InvalidTransition, NotFound, ValidationFailed

D = DisputeStatus

DISPUTE_TRANSITIONS: dict[DisputeStatus, frozenset[DisputeStatus]] = {
    D.OPEN: frozenset({D.ESCALATED, D.RESOLVED}),
    D.ESCALATED: frozenset({D.RESOLVED}),
    D.RESOLVED: frozenset(),
}


# ============================================================================
# Exceptions
# ============================================================================


class DisputeNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__(
            "DISPUTE_NOT_FOUND",
            "Không tìm thấy khiếu nại",
            "Dispute not found",
        )


class DisputeAlreadyOpen(Conflict):
    def __init__(self) -> None:
        super().__init__(
            "DISPUTE_ALREADY_OPEN",
            "Yêu cầu dịch vụ này đã có khiếu nại chưa được giải quyết",
            "This service request already has an unresolved dispute",
        )


class DisputeAlreadyResolved(Conflict):
    def __init__(self) -> None:
        super().__init__(
            "DISPUTE_ALREADY_RESOLVED",
            "Khiếu nại đã được giải quyết",
            "The dispute has already been resolved",
        )


class RequestNotDisputable(InvalidTransition):
    def __init__(self, status: str) -> None:
        super().__init__(
            "INVALID_SERVICE_REQUEST_STATUS",
            "Chỉ có thể khiếu nại yêu cầu đã được chấp nhận, đang thực hiện hoặc đã hoàn thành",
            "Only accepted, in-progress or completed requests can be disputed",
            status=status,
        )


class InvalidDisputeTransition(InvalidTransition):
    def __init__(self, current: DisputeStatus, target: DisputeStatus) -> None:
        super().__init__(
            "INVALID_DISPUTE_TRANSITION",
            f"Không thể chuyển khiếu nại từ '{current.value}' sang '{target.value}'",
            f"Cannot move a dispute from '{current.value}' to '{target.value}'",
            current_status=current.value,
            target_status=target.value,
        )


class RefundAmountRequired(ValidationFailed):
    def __init__(self) -> None:
        super().__init__(
            "REFUND_AMOUNT_REQUIRED",
            "Vui lòng nhập số tiền hoàn trả lớn hơn 0",
            "A refund amount greater than 0 is required",
        )


class RefundAmountNotAllowed(ValidationFailed):
    def __init__(self, resolution: Resolution) -> None:
        super().__init__(
            "REFUND_AMOUNT_NOT_ALLOWED",
            "Hình thức giải quyết này không có hoàn tiền",
            "This resolution does not carry a refund amount",
            resolution=resolution.value,
        )


# ============================================================================
# Rules
# ============================================================================


def validate_dispute_transition(current: DisputeStatus, target: DisputeStatus) -> None:
    """
    Raises:
        DisputeAlreadyResolved: current is resolved
        InvalidDisputeTransition: Any other edge outside the table
    """
    if current == DisputeStatus.RESOLVED:
        raise DisputeAlreadyResolved()
    if target not in DISPUTE_TRANSITIONS[current]:
        raise InvalidDisputeTransition(current, target)


def validate_refund(resolution: Resolution, refund_amount: Decimal | None) -> None:
    if resolution in REFUND_RESOLUTIONS:
        if refund_amount is None or refund_amount <= 0:
            raise RefundAmountRequired()
    elif refund_amount is not None:
        raise RefundAmountNotAllowed(resolution)


def render_resolution_notes(
    resolution: Resolution,
    reason_vi: str,
    reason_en: str | None,
    refund_amount: Decimal | None,
    currency: str,
) -> str:
    """
    One-line human rendering of an arbitration decision

    Example:
        >>> render_resolution_notes(Resolution.REFUND, "Hoàn tiền", "Refund", Decimal("250000"), "VND")
        '[resolution:refund] Hoàn tiền | (Refund) | Refund amount: 250000 VND'
    """
    parts = [f"[resolution:{resolution.value}] {reason_vi}"]
    if reason_en:
        parts.append(f"({reason_en})")
    if refund_amount is not None:
        parts.append(f"Refund amount: {refund_amount} {currency}")
    return " | ".join(parts)
