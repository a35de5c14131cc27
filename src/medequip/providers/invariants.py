"""
Provider Invariants

Verification and suspension edges, quoting eligibility and the rating
aggregate formula.
"""

from typing import Any

from medequip.kernel.errors import (
    Conflict,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationFailed,
)
from medequip.providers.models import ProviderStatus, VerificationStatus


# ============================================================================
# Exceptions
# ============================================================================


class ProviderNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__(
            "PROVIDER_NOT_FOUND",
            "Không tìm thấy nhà cung cấp dịch vụ",
            "Provider not found",
        )


class ProviderAlreadyRegistered(Conflict):
    def __init__(self) -> None:
        super().__init__(
            "PROVIDER_ALREADY_REGISTERED",
            "Tổ chức này đã đăng ký nhà cung cấp",
            "This organization already has a provider record",
        )


class ProviderNotActive(Forbidden):
    """Provider may not quote until it is active and verified"""

    def __init__(self) -> None:
        super().__init__(
            "PROVIDER_NOT_ACTIVE",
            "Nhà cung cấp chưa được xác minh hoặc đang bị tạm ngưng",
            "Provider is not verified or is suspended",
        )


class InvalidProviderTransition(InvalidTransition):
    def __init__(self, action: str, status: str, verification_status: str) -> None:
        super().__init__(
            "INVALID_PROVIDER_TRANSITION",
            "Không thể thực hiện thao tác với trạng thái hiện tại của nhà cung cấp",
            "Action not allowed in the provider's current status",
            action=action,
            status=status,
            verification_status=verification_status,
        )


class ReasonRequired(ValidationFailed):
    def __init__(self) -> None:
        super().__init__(
            "REASON_REQUIRED",
            "Vui lòng nhập lý do",
            "A reason is required",
        )


class DuplicateRating(Conflict):
    def __init__(self) -> None:
        super().__init__(
            "DUPLICATE_RATING",
            "Yêu cầu dịch vụ này đã được đánh giá",
            "This service request has already been rated",
        )


class RatingNotAllowed(InvalidTransition):
    def __init__(self) -> None:
        super().__init__(
            "SERVICE_NOT_COMPLETED",
            "Chỉ có thể đánh giá yêu cầu đã hoàn thành",
            "Only completed service requests can be rated",
        )


class NoAssignedProvider(ValidationFailed):
    def __init__(self) -> None:
        super().__init__(
            "NO_ASSIGNED_PROVIDER",
            "Yêu cầu dịch vụ chưa có nhà cung cấp được chỉ định",
            "The service request has no assigned provider",
        )


# ============================================================================
# Lifecycle
# ============================================================================

# action -> (allowed statuses, allowed verification statuses)
PROVIDER_ACTIONS: dict[str, tuple[set[ProviderStatus], set[VerificationStatus]]] = {
    "begin_review": (
        {ProviderStatus.PENDING_VERIFICATION},
        {VerificationStatus.PENDING},
    ),
    "approve": (
        {ProviderStatus.PENDING_VERIFICATION, ProviderStatus.INACTIVE},
        {VerificationStatus.PENDING, VerificationStatus.IN_REVIEW, VerificationStatus.REJECTED},
    ),
    "reject": (
        {ProviderStatus.PENDING_VERIFICATION, ProviderStatus.INACTIVE},
        {VerificationStatus.PENDING, VerificationStatus.IN_REVIEW},
    ),
    "suspend": (
        {ProviderStatus.ACTIVE},
        {VerificationStatus.VERIFIED},
    ),
    "reactivate": (
        {ProviderStatus.SUSPENDED},
        {VerificationStatus.VERIFIED},
    ),
}


def validate_provider_action(provider: dict[str, Any], action: str) -> None:
    """
    Raises:
        InvalidProviderTransition: If the provider's current state doesn't allow action
    """
    statuses, verifications = PROVIDER_ACTIONS[action]
    status = ProviderStatus(provider["status"])
    verification = VerificationStatus(provider["verification_status"])
    if status not in statuses or verification not in verifications:
        raise InvalidProviderTransition(action, status.value, verification.value)


def validate_reason(reason: str | None) -> str:
    """Return the stripped reason, rejecting blank ones"""
    if reason is None or not reason.strip():
        raise ReasonRequired()
    return reason.strip()


def is_quotable(provider: dict[str, Any]) -> bool:
    """Active and verified providers may submit quotes"""
    return (
        provider["status"] == ProviderStatus.ACTIVE.value
        and provider["verification_status"] == VerificationStatus.VERIFIED.value
    )


def updated_average(average: float, count: int, rating: int) -> float:
    """
    Running average after one more rating, rounded to 2 places

    Example:
        >>> updated_average(4.0, 2, 5)
        4.33
    """
    return round((average * count + rating) / (count + 1), 2)
