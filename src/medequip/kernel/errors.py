"""
Error taxonomy for the marketplace workflow engine

Every failure that reaches a caller is a MarketplaceError: one object
carrying a kind (what category of failure), a machine-readable code and a
bilingual message bundle. Domain packages subclass the kind classes below
for the failures they raise.

Fun fact: Vietnamese uses six tones, so "ma" can mean ghost, mother, but,
tomb, horse or rice seedling. We keep both languages in one error so the
meaning never drifts between them.
"""

from enum import Enum
from typing import Any

from pydantic import BaseModel


class ErrorKind(str, Enum):
    """Caller-facing failure categories"""

    UNAUTHENTICATED = "UNAUTHENTICATED"
    FORBIDDEN = "FORBIDDEN"
    NOT_FOUND = "NOT_FOUND"
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CONFLICT = "CONFLICT"
    VALIDATION = "VALIDATION"


class LocalizedMessage(BaseModel):
    """Message bundle: Vietnamese first, English second"""

    vi: str
    en: str

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"{self.vi} ({self.en})"


class MarketplaceError(Exception):
    """
    Base exception for all caller-facing failures

    Subclasses pin the kind; instances pin the code and message.
    """

    kind: ErrorKind = ErrorKind.VALIDATION

    def __init__(self, code: str, vi: str, en: str, **details: Any) -> None:
        self.code = code
        self.message = LocalizedMessage(vi=vi, en=en)
        self.details = details
        super().__init__(f"[{code}] {self.message}")

    def to_payload(self) -> dict[str, Any]:
        """Render the error for a transport layer"""
        return {
            "code": self.code,
            "kind": self.kind.value,
            "message": self.message.model_dump(),
            "details": self.details,
        }


class Unauthenticated(MarketplaceError):
    """No identity was presented"""

    kind = ErrorKind.UNAUTHENTICATED

    def __init__(self) -> None:
        super().__init__(
            "UNAUTHENTICATED",
            "Bạn cần đăng nhập để thực hiện thao tác này",
            "You must be signed in to perform this action",
        )


class Forbidden(MarketplaceError):
    """Identity present but not allowed"""

    kind = ErrorKind.FORBIDDEN


class AccessDenied(Forbidden):
    """
    Generic denial used for org-scoped resources

    The message never names the resource's organization, so a foreign
    resource and a missing one look the same to the caller.
    """

    def __init__(self) -> None:
        super().__init__(
            "ACCESS_DENIED",
            "Bạn không có quyền truy cập tài nguyên này",
            "You do not have access to this resource",
        )


class NotFound(MarketplaceError):
    """Resource absent (platform-admin call paths only)"""

    kind = ErrorKind.NOT_FOUND


class InvalidTransition(MarketplaceError):
    """State-machine edge not permitted"""

    kind = ErrorKind.INVALID_TRANSITION


class Conflict(MarketplaceError):
    """Concurrent race lost or state already settled"""

    kind = ErrorKind.CONFLICT


class ConcurrentModification(Conflict):
    """Another mutation committed first against the same entity"""

    def __init__(self, stream_id: str) -> None:
        super().__init__(
            "CONCURRENT_MODIFICATION",
            "Dữ liệu đã được cập nhật bởi thao tác khác, vui lòng thử lại",
            "The record was modified concurrently, please retry",
            stream_id=stream_id,
        )


class ValidationFailed(MarketplaceError):
    """Malformed input"""

    kind = ErrorKind.VALIDATION


class InvalidInput(ValidationFailed):
    """Raised when a command model rejects its arguments"""

    def __init__(self, errors: list[dict[str, Any]]) -> None:
        super().__init__(
            "INVALID_INPUT",
            "Dữ liệu đầu vào không hợp lệ",
            "Invalid input",
            errors=errors,
        )


# ============================================================================
# Storage errors (not caller-facing)
# ============================================================================


class EventStoreError(Exception):
    """Base class for event store errors"""

    pass


class StreamVersionConflict(EventStoreError):
    """
    Raised when stream version doesn't match expected (optimistic locking)

    Indicates another transaction committed to the stream first.
    """

    def __init__(
        self, stream_id: str, expected_version: int, actual_version: int
    ) -> None:
        self.stream_id = stream_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Stream {stream_id} version mismatch: "
            f"expected {expected_version}, got {actual_version}"
        )
