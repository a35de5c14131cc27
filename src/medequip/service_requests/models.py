"""
Service Request Models
"""

from enum import Enum


class ServiceRequestStatus(str, Enum):
    """
    Lifecycle of a service request

    PENDING -> QUOTED -> ACCEPTED -> IN_PROGRESS -> COMPLETED, with
    CANCELLED reachable early and DISPUTED reachable once work is agreed.
    """

    PENDING = "pending"
    QUOTED = "quoted"
    ACCEPTED = "accepted"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class RequestType(str, Enum):
    REPAIR = "repair"
    MAINTENANCE = "maintenance"
    CALIBRATION = "calibration"
    INSPECTION = "inspection"
    INSTALLATION = "installation"
    OTHER = "other"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"
