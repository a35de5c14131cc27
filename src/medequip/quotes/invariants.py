"""
Quote Invariants

Quote edges, the decline-reason rule, and win-rate arithmetic.

Fun fact: Accepting one quote is the only operation in the marketplace
that must write to several records at once, and the only one two
hospital admins can realistically race on.
"""

import math
from datetime import datetime
from typing import Any

from medequip.kernel.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationFailed,
)
from medequip.quotes.models import QuoteStatus

Q = QuoteStatus

QUOTE_TRANSITIONS: dict[QuoteStatus, frozenset[QuoteStatus]] = {
    Q.PENDING: frozenset({Q.ACCEPTED, Q.REJECTED, Q.EXPIRED}),
    Q.ACCEPTED: frozenset(),
    Q.REJECTED: frozenset(),
    Q.EXPIRED: frozenset(),
}


# ============================================================================
# Exceptions
# ============================================================================


class QuoteNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__(
            "QUOTE_NOT_FOUND",
            "Không tìm thấy báo giá",
            "Quote not found",
        )


class QuoteNotEditable(InvalidTransition):
    def __init__(self, status: str) -> None:
        super().__init__(
            "QUOTE_NOT_EDITABLE",
            "Chỉ có thể chỉnh sửa báo giá đang chờ xử lý",
            "Only pending quotes can be edited",
            status=status,
        )


class QuoteNotPending(InvalidTransition):
    def __init__(self, status: str) -> None:
        super().__init__(
            "QUOTE_NOT_PENDING",
            "Báo giá không còn ở trạng thái chờ xử lý",
            "The quote is no longer pending",
            status=status,
        )


class ServiceRequestNotQuotable(InvalidTransition):
    def __init__(self, status: str) -> None:
        super().__init__(
            "SERVICE_REQUEST_NOT_QUOTABLE",
            "Yêu cầu dịch vụ không còn nhận báo giá",
            "The service request is no longer accepting quotes",
            status=status,
        )


class ServiceRequestAlreadyAccepted(Conflict):
    """Another quote won the request first"""

    def __init__(self) -> None:
        super().__init__(
            "SERVICE_REQUEST_ALREADY_ACCEPTED",
            "Yêu cầu dịch vụ đã chấp nhận một báo giá khác",
            "The service request has already accepted a quote",
        )


class DuplicateQuote(Conflict):
    def __init__(self) -> None:
        super().__init__(
            "DUPLICATE_QUOTE",
            "Bạn đã có báo giá đang chờ cho yêu cầu này",
            "You already have a pending quote for this request",
        )


class AlreadyDeclined(Conflict):
    def __init__(self) -> None:
        super().__init__(
            "ALREADY_DECLINED",
            "Bạn đã từ chối yêu cầu này",
            "You have already declined this request",
        )


class DeclineReasonTooShort(ValidationFailed):
    def __init__(self, min_length: int) -> None:
        super().__init__(
            "DECLINE_REASON_TOO_SHORT",
            f"Lý do từ chối phải có ít nhất {min_length} ký tự",
            f"The decline reason must be at least {min_length} characters",
            min_length=min_length,
        )


class SelfAcceptanceForbidden(Forbidden):
    def __init__(self) -> None:
        super().__init__(
            "SELF_ACCEPTANCE_FORBIDDEN",
            "Người tạo yêu cầu không được tự chấp nhận báo giá",
            "The member who filed the request may not accept its quotes",
        )


# ============================================================================
# Rules
# ============================================================================


def validate_decline_reason(reason: str | None, min_length: int) -> str:
    """
    Stripped reason, at least min_length characters

    Raises:
        DeclineReasonTooShort
    """
    stripped = (reason or "").strip()
    if len(stripped) < min_length:
        raise DeclineReasonTooShort(min_length)
    return stripped


def is_expired(quote: dict[str, Any], now: datetime) -> bool:
    """Pending quote whose validity window has closed"""
    return (
        quote["status"] == QuoteStatus.PENDING.value
        and quote["valid_until"] is not None
        and quote["valid_until"] < now
    )


def win_rate(accepted: int, rejected: int) -> int:
    """
    Accepted share of decided quotes, in whole percent (half up)

    Returns -1 when nothing has been decided yet.

    Example:
        >>> win_rate(2, 1)
        67
        >>> win_rate(0, 0)
        -1
    """
    decided = accepted + rejected
    if decided == 0:
        return -1
    return math.floor(accepted * 100 / decided + 0.5)
