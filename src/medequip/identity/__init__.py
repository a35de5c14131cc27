"""
Identity & Tenancy Module

Users, organizations, memberships, the two-step identity resolver and
the authorization guard that every other module calls before it reads or
writes tenant data.
"""

from medequip.identity.guard import AuthorizationGuard
from medequip.identity.invariants import can_manage, count_owners
from medequip.identity.models import (
    Identity,
    IdentityClaims,
    Membership,
    OrgRole,
    OrgType,
    PlatformRole,
)
from medequip.identity.resolver import IdentityResolver

__all__ = [
    "AuthorizationGuard",
    "IdentityResolver",
    "Identity",
    "IdentityClaims",
    "Membership",
    "OrgRole",
    "OrgType",
    "PlatformRole",
    "can_manage",
    "count_owners",
]
