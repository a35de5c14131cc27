"""
Identity & Tenancy Invariants

Pure predicates and validators for membership management. No I/O: the
caller passes in the member table it read from the organization registry.
"""

from medequip.identity.models import OrgRole, OrgType
from medequip.kernel.errors import Conflict, Forbidden, NotFound


# ============================================================================
# Exceptions
# ============================================================================


class InsufficientRole(Forbidden):
    """Caller is a member but lacks the required role"""

    def __init__(self, required: OrgRole) -> None:
        super().__init__(
            "INSUFFICIENT_ROLE",
            "Bạn không đủ quyền để thực hiện thao tác này",
            "Your role does not allow this action",
            required_role=required.value,
        )


class PlatformAdminRequired(Forbidden):
    """Cross-tenant action attempted without platform_admin"""

    def __init__(self) -> None:
        super().__init__(
            "PLATFORM_ADMIN_REQUIRED",
            "Chỉ quản trị viên nền tảng mới có quyền thực hiện thao tác này",
            "Only platform administrators can perform this action",
        )


class CannotManageMember(Forbidden):
    """Role-management rules forbid the caller acting on the target"""

    def __init__(self) -> None:
        super().__init__(
            "CANNOT_MANAGE_MEMBER",
            "Bạn không thể thay đổi quyền của thành viên này",
            "You cannot manage this member",
        )


class WrongOrganizationType(Forbidden):
    """Operation not available to this kind of organization"""

    def __init__(self, required: OrgType) -> None:
        super().__init__(
            "FORBIDDEN_ORG_TYPE",
            "Loại tổ chức không được phép thực hiện thao tác này",
            "This organization type cannot perform this action",
            required_type=required.value,
        )


class LastOwnerError(Conflict):
    """The change would leave the organization without an owner"""

    def __init__(self) -> None:
        super().__init__(
            "LAST_OWNER",
            "Tổ chức phải có ít nhất một chủ sở hữu",
            "An organization must keep at least one owner",
        )


class DuplicateMembership(Conflict):
    def __init__(self) -> None:
        super().__init__(
            "ALREADY_A_MEMBER",
            "Người dùng đã là thành viên của tổ chức",
            "User is already a member of this organization",
        )


class MemberNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__(
            "MEMBER_NOT_FOUND",
            "Không tìm thấy thành viên",
            "Member not found",
        )


class OrganizationNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__(
            "ORGANIZATION_NOT_FOUND",
            "Không tìm thấy tổ chức",
            "Organization not found",
        )


class UserNotFound(NotFound):
    def __init__(self) -> None:
        super().__init__(
            "USER_NOT_FOUND",
            "Không tìm thấy người dùng",
            "User not found",
        )


class DuplicateUser(Conflict):
    def __init__(self) -> None:
        super().__init__(
            "USER_ALREADY_EXISTS",
            "Email hoặc mã người dùng đã tồn tại",
            "A user with this email or id already exists",
        )


# ============================================================================
# Role management
# ============================================================================


def can_manage(
    caller_role: OrgRole,
    target_role: OrgRole,
    caller_id: str,
    target_id: str,
) -> bool:
    """
    Whether caller may change or remove target's membership

    Nobody manages themselves; owners manage anyone; admins manage
    everyone except owners; members manage no one.
    """
    if caller_id == target_id:
        return False
    if caller_role == OrgRole.OWNER:
        return True
    if caller_role == OrgRole.ADMIN:
        return target_role != OrgRole.OWNER
    return False


def count_owners(members: dict[str, OrgRole]) -> int:
    """Number of owners in a user_id -> role table"""
    return sum(1 for role in members.values() if role == OrgRole.OWNER)


def validate_not_last_owner(
    members: dict[str, OrgRole],
    target_user_id: str,
    new_role: OrgRole | None,
) -> None:
    """
    Reject demoting or removing the only owner

    Args:
        members: Current user_id -> role table
        target_user_id: Member being changed
        new_role: Role after the change, None for removal

    Raises:
        LastOwnerError: If zero owners would remain
    """
    if members.get(target_user_id) != OrgRole.OWNER:
        return
    if new_role == OrgRole.OWNER:
        return
    if count_owners(members) <= 1:
        raise LastOwnerError()


def validate_can_grant(caller_role: OrgRole, granted_role: OrgRole) -> None:
    """Only owners hand out the owner role"""
    if granted_role == OrgRole.OWNER and caller_role != OrgRole.OWNER:
        raise CannotManageMember()
