"""
Identity Resolver

Turns token claims into an Identity in two explicit steps:
1. the platform-role claim, when the token carries one, wins;
2. otherwise the user registry is consulted (by subject, then by email).
Org memberships are attached from the organization registry.
"""

from medequip.identity.models import Identity, IdentityClaims, PlatformRole
from medequip.identity.projections import OrganizationRegistry, UserRegistry
from medequip.kernel.errors import Unauthenticated


class IdentityResolver:
    def __init__(self, users: UserRegistry, organizations: OrganizationRegistry) -> None:
        self.users = users
        self.organizations = organizations

    def resolve(self, claims: IdentityClaims | None) -> Identity:
        """
        Args:
            claims: Output of the session collaborator, None when unauthenticated

        Raises:
            Unauthenticated: If claims is None
        """
        if claims is None:
            raise Unauthenticated()

        user = self.users.get(claims.subject)
        if user is None and claims.email:
            user = self.users.get_by_email(claims.email)

        platform_role = claims.platform_role
        if platform_role is None and user is not None and user.get("platform_role"):
            platform_role = PlatformRole(user["platform_role"])

        user_id = user["user_id"] if user else claims.subject
        email = claims.email or (user["email"] if user else None)

        return Identity(
            user_id=user_id,
            email=email,
            platform_role=platform_role,
            memberships=self.organizations.memberships_for_user(user_id),
        )
