"""
Authorization Guard - the multi-tenancy boundary

Every mutation and query runs one of these checks before touching data.
Checks escalate: member, then admin, then owner. The platform-admin check
ignores organizations entirely and is reserved for cross-tenant paths.

A caller without a membership gets the same AccessDenied whether the
organization exists or not, so failures never reveal other tenants.
"""

from typing import Any

from medequip.identity.invariants import InsufficientRole, PlatformAdminRequired
from medequip.identity.models import Identity, Membership, OrgRole
from medequip.identity.projections import OrganizationRegistry
from medequip.kernel.errors import AccessDenied, MarketplaceError, Unauthenticated
from medequip.kernel.logging import get_logger
from medequip.kernel.metrics import authorization_denials_total

logger = get_logger(__name__)


class AuthorizationGuard:
    """Membership and platform-role checks against the live registry"""

    def __init__(self, organizations: OrganizationRegistry) -> None:
        self.organizations = organizations

    def _deny(self, error: MarketplaceError) -> MarketplaceError:
        authorization_denials_total.labels(kind=error.kind.value).inc()
        logger.warning("Authorization denied", error_code=error.code)
        return error

    def require_authenticated(self, identity: Identity | None) -> Identity:
        if identity is None:
            raise self._deny(Unauthenticated())
        return identity

    def require_member(self, organization_id: str, identity: Identity | None) -> Membership:
        """
        Membership of identity in organization_id

        Raises:
            Unauthenticated: No identity
            AccessDenied: No membership row (or no such organization)
        """
        identity = self.require_authenticated(identity)
        role = self.organizations.role_of(organization_id, identity.user_id)
        if role is None:
            raise self._deny(AccessDenied())
        return Membership(organization_id=organization_id, user_id=identity.user_id, role=role)

    def require_admin(self, organization_id: str, identity: Identity | None) -> Membership:
        """Membership with role admin or owner"""
        membership = self.require_member(organization_id, identity)
        if membership.role not in (OrgRole.ADMIN, OrgRole.OWNER):
            raise self._deny(InsufficientRole(OrgRole.ADMIN))
        return membership

    def require_owner(self, organization_id: str, identity: Identity | None) -> Membership:
        """Membership with role owner"""
        membership = self.require_member(organization_id, identity)
        if membership.role != OrgRole.OWNER:
            raise self._deny(InsufficientRole(OrgRole.OWNER))
        return membership

    def require_platform_admin(self, identity: Identity | None) -> Identity:
        """platform_admin regardless of organization"""
        identity = self.require_authenticated(identity)
        if not identity.is_platform_admin:
            raise self._deny(PlatformAdminRequired())
        return identity

    def require_found(
        self,
        resource: dict[str, Any] | None,
        identity: Identity | None,
        not_found: MarketplaceError,
    ) -> dict[str, Any]:
        """
        Resource lookup result, or the error its absence should surface as

        Platform staff learn that the resource doesn't exist; everyone else
        gets the same AccessDenied a foreign resource would produce.
        """
        identity = self.require_authenticated(identity)
        if resource is not None:
            return resource
        if identity.is_platform_staff:
            raise not_found
        raise self._deny(AccessDenied())

    def can_view(self, organization_id: str, identity: Identity) -> bool:
        """Read access: a member, or platform staff"""
        if identity.is_platform_staff:
            return True
        return self.organizations.role_of(organization_id, identity.user_id) is not None

    def require_any_member(
        self, organization_ids: list[str | None], identity: Identity | None
    ) -> str:
        """
        Membership in at least one of the given organizations

        Used where either party of a request (hospital or assigned provider)
        may act. Returns the first matching organization id.
        """
        identity = self.require_authenticated(identity)
        for organization_id in organization_ids:
            if organization_id and self.organizations.role_of(
                organization_id, identity.user_id
            ):
                return organization_id
        raise self._deny(AccessDenied())
