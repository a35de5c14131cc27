"""
Service Request Invariants

The fixed transition table, bottleneck detection and the errors raised
when a request is asked to move somewhere it can't go.

Fun fact: A typical 500-bed hospital manages over 10,000 pieces of
equipment; an infusion pump stuck "in progress" for a week is a
bottleneck somebody on a ward feels.
"""

from datetime import datetime, timedelta
from typing import Any

from medequip.kernel.errors import Forbidden, InvalidTransition, NotFound, ValidationFailed
from medequip.service_requests.models import ServiceRequestStatus

S = ServiceRequestStatus

# ============================================================================
# Transition table
# ============================================================================

ALLOWED_TRANSITIONS: dict[ServiceRequestStatus, frozenset[ServiceRequestStatus]] = {
    S.PENDING: frozenset({S.QUOTED, S.CANCELLED}),
    S.QUOTED: frozenset({S.ACCEPTED, S.CANCELLED}),
    S.ACCEPTED: frozenset({S.IN_PROGRESS, S.CANCELLED, S.DISPUTED}),
    S.IN_PROGRESS: frozenset({S.COMPLETED, S.DISPUTED}),
    S.COMPLETED: frozenset({S.DISPUTED}),
    S.CANCELLED: frozenset(),
    S.DISPUTED: frozenset(),
}

# Reached only as a side effect of quote submission/acceptance or dispute opening
WORKFLOW_TARGETS = frozenset({S.QUOTED, S.ACCEPTED, S.DISPUTED})

OPEN_FOR_QUOTES = frozenset({S.PENDING, S.QUOTED})

DISPUTABLE = frozenset({S.ACCEPTED, S.IN_PROGRESS, S.COMPLETED})

CLOSED = frozenset({S.COMPLETED, S.CANCELLED})


# ============================================================================
# Exceptions
# ============================================================================


class InvalidStatusTransition(InvalidTransition):
    def __init__(self, current: ServiceRequestStatus, target: ServiceRequestStatus) -> None:
        super().__init__(
            "INVALID_TRANSITION",
            f"Không thể chuyển trạng thái từ '{current.value}' sang '{target.value}'",
            f"Cannot transition from '{current.value}' to '{target.value}'",
            current_status=current.value,
            target_status=target.value,
        )


class ServiceRequestNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__(
            "SERVICE_REQUEST_NOT_FOUND",
            "Không tìm thấy yêu cầu dịch vụ",
            "Service request not found",
        )


class ServiceRequestClosed(InvalidTransition):
    def __init__(self) -> None:
        super().__init__(
            "SERVICE_REQUEST_CLOSED",
            "Yêu cầu dịch vụ đã bị hủy",
            "The service request has been cancelled",
        )


class EquipmentMismatch(ValidationFailed):
    def __init__(self) -> None:
        super().__init__(
            "EQUIPMENT_ORG_MISMATCH",
            "Thiết bị không thuộc tổ chức của bạn",
            "Equipment does not belong to this organization",
        )


class ProviderAlreadyAssigned(ValidationFailed):
    def __init__(self) -> None:
        super().__init__(
            "PROVIDER_ALREADY_ASSIGNED",
            "Nhà cung cấp này đã được chỉ định cho yêu cầu",
            "This provider is already assigned to the request",
        )


class TransitionNotPermitted(Forbidden):
    """The caller is a party to the request, but not the one that moves it to target"""

    def __init__(self, target: ServiceRequestStatus) -> None:
        super().__init__(
            "TRANSITION_NOT_PERMITTED",
            f"Bạn không có quyền chuyển yêu cầu sang trạng thái '{target.value}'",
            f"You may not move this request to '{target.value}'",
            target_status=target.value,
        )


class ProviderOrganizationConflict(ValidationFailed):
    """A hospital can't be its own provider"""

    def __init__(self) -> None:
        super().__init__(
            "PROVIDER_ORG_CONFLICT",
            "Nhà cung cấp không được thuộc cùng tổ chức với bệnh viện",
            "Provider must belong to a different organization than the hospital",
        )


# ============================================================================
# Validation
# ============================================================================


def is_valid_transition(current: ServiceRequestStatus, target: ServiceRequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


def validate_transition(current: ServiceRequestStatus, target: ServiceRequestStatus) -> None:
    """
    Raises:
        InvalidStatusTransition: If (current, target) isn't an edge; self-loops included
    """
    if not is_valid_transition(current, target):
        raise InvalidStatusTransition(current, target)


def is_bottleneck(request: dict[str, Any], now: datetime, threshold_days: int) -> bool:
    """Open request whose last update is older than threshold_days"""
    if ServiceRequestStatus(request["status"]) in CLOSED:
        return False
    return now - request["updated_at"] > timedelta(days=threshold_days)
