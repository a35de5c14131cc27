"""
Identity & Tenancy Commands
"""

from pydantic import BaseModel, Field

from medequip.identity.models import OrgRole, OrgType, PlatformRole


class RegisterUser(BaseModel):
    """Register a user (bootstrap; normally fed by the identity provider)"""

    email: str = Field(..., min_length=3, pattern=r".+@.+", description="Login email")
    name: str | None = Field(default=None, description="Display name")
    platform_role: PlatformRole | None = Field(default=None, description="Platform role")
    user_id: str | None = Field(
        default=None, description="Use this id instead of generating one"
    )


class CreateOrganization(BaseModel):
    """Create a hospital or provider organization"""

    name: str = Field(..., min_length=1, max_length=200, description="Organization name")
    org_type: OrgType = Field(..., description="hospital or provider")


class AddMember(BaseModel):
    """Add an existing user to an organization"""

    organization_id: str
    user_id: str
    role: OrgRole = OrgRole.MEMBER


class UpdateMemberRole(BaseModel):
    """Change a member's role"""

    organization_id: str
    target_user_id: str
    role: OrgRole


class RemoveMember(BaseModel):
    """Remove a member from an organization"""

    organization_id: str
    target_user_id: str
