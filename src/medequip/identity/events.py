"""
Identity & Tenancy Events

Membership changes live on the organization's stream, so two concurrent
role changes in the same organization can't both commit against a stale
owner count.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from medequip.identity.models import OrgRole, OrgType, PlatformRole


class UserRegistered(BaseModel):
    """User known to the platform"""

    user_id: str = Field(..., description="User identifier (token subject)")
    email: str = Field(..., description="Login email")
    name: str | None = Field(default=None, description="Display name")
    platform_role: PlatformRole | None = Field(default=None, description="Platform role")
    registered_at: datetime = Field(..., description="Registration timestamp")


class OrganizationCreated(BaseModel):
    """New tenant; the creator becomes its first owner"""

    organization_id: str = Field(..., description="Organization identifier")
    name: str = Field(..., description="Organization name")
    org_type: OrgType = Field(..., description="hospital or provider")
    created_by: str = Field(..., description="Creating user, recorded as owner")
    created_at: datetime = Field(..., description="Creation timestamp")


class MemberAdded(BaseModel):
    """User joined an organization"""

    organization_id: str
    user_id: str
    role: OrgRole
    added_by: str
    added_at: datetime


class MemberRoleChanged(BaseModel):
    """Member's role changed"""

    organization_id: str
    user_id: str
    previous_role: OrgRole
    new_role: OrgRole
    changed_by: str
    changed_at: datetime


class MemberRemoved(BaseModel):
    """User removed from an organization"""

    organization_id: str
    user_id: str
    previous_role: OrgRole
    removed_by: str
    removed_at: datetime
