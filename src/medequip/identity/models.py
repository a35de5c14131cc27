"""
Identity & Tenancy Models

Organizations are the tenants; memberships give users a role inside one
organization; platform roles sit above all tenants.
"""

from enum import Enum

from pydantic import BaseModel, Field


class OrgType(str, Enum):
    """Kind of tenant"""

    HOSPITAL = "hospital"
    PROVIDER = "provider"


class OrgRole(str, Enum):
    """Role inside one organization"""

    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class PlatformRole(str, Enum):
    """Cross-tenant role held by platform staff"""

    PLATFORM_ADMIN = "platform_admin"
    PLATFORM_SUPPORT = "platform_support"


class IdentityClaims(BaseModel):
    """Claims handed over by the session/token collaborator"""

    subject: str = Field(..., min_length=1, description="Authenticated user id")
    email: str | None = Field(default=None, description="Email from the token, if any")
    platform_role: PlatformRole | None = Field(
        default=None, description="Platform role claim, if the token carries one"
    )

    model_config = {"frozen": True}


class Identity(BaseModel):
    """
    A resolved caller

    Passed explicitly into every guard and mutation. memberships is a
    snapshot taken at resolution time; guards always re-check the live
    organization registry.
    """

    user_id: str
    email: str | None = None
    platform_role: PlatformRole | None = None
    memberships: dict[str, OrgRole] = Field(default_factory=dict)

    model_config = {"frozen": True}

    @property
    def is_platform_admin(self) -> bool:
        return self.platform_role == PlatformRole.PLATFORM_ADMIN

    @property
    def is_platform_staff(self) -> bool:
        return self.platform_role is not None


class Membership(BaseModel):
    """A user's role in one organization"""

    organization_id: str
    user_id: str
    role: OrgRole

    model_config = {"frozen": True}
