"""
Identity & Tenancy Command Handlers

Organization creation and membership management. Each handler checks the
caller through the AuthorizationGuard, validates the change with the pure
invariants, and returns events plus one audit draft.
"""

from medequip.identity import commands, events, invariants
from medequip.identity.guard import AuthorizationGuard
from medequip.identity.models import Identity
from medequip.identity.projections import OrganizationRegistry, UserRegistry
from medequip.kernel.audit_trail import AuditDraft
from medequip.kernel.commands import CommandHandlers, CommandResult
from medequip.kernel.ids import generate_id

ORGANIZATION = "Organization"
MEMBERSHIP = "organizationMembership"


class IdentityCommandHandlers(CommandHandlers):
    """Handlers for users, organizations and memberships"""

    def handle_register_user(
        self,
        command: commands.RegisterUser,
        command_id: str,
        users: UserRegistry,
    ) -> CommandResult:
        """
        Register a user known to the identity provider

        Not audited: user registration isn't an org-scoped mutation.
        """
        user_id = command.user_id or generate_id()
        if users.get(user_id) or users.get_by_email(command.email):
            raise invariants.DuplicateUser()

        now = self.time_provider.now()
        payload = events.UserRegistered(
            user_id=user_id,
            email=command.email,
            name=command.name,
            platform_role=command.platform_role,
            registered_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="UserRegistered",
                    stream_id=user_id,
                    stream_type="User",
                    version=1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=None,
                    occurred_at=now,
                )
            ]
        )

    def handle_create_organization(
        self,
        command: commands.CreateOrganization,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
    ) -> CommandResult:
        """Create an organization with the caller as owner"""
        identity = guard.require_authenticated(identity)
        now = self.time_provider.now()
        organization_id = generate_id()

        payload = events.OrganizationCreated(
            organization_id=organization_id,
            name=command.name,
            org_type=command.org_type,
            created_by=identity.user_id,
            created_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="OrganizationCreated",
                    stream_id=organization_id,
                    stream_type=ORGANIZATION,
                    version=1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=identity.user_id,
                    occurred_at=now,
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=organization_id,
                    action="organization.created",
                    resource_type="organization",
                    resource_id=organization_id,
                    new_values={
                        "name": command.name,
                        "type": command.org_type.value,
                        "owner": identity.user_id,
                    },
                )
            ],
        )

    def handle_add_member(
        self,
        command: commands.AddMember,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        organizations: OrganizationRegistry,
        users: UserRegistry,
    ) -> CommandResult:
        """
        Add a registered user to an organization

        Validates:
        - Caller is admin or owner
        - Only owners may grant owner
        - Target user exists and isn't already a member
        """
        caller = guard.require_admin(command.organization_id, identity)
        invariants.validate_can_grant(caller.role, command.role)

        if users.get(command.user_id) is None:
            raise invariants.UserNotFound()
        org = organizations.get(command.organization_id)
        if command.user_id in org["members"]:
            raise invariants.DuplicateMembership()

        now = self.time_provider.now()
        payload = events.MemberAdded(
            organization_id=command.organization_id,
            user_id=command.user_id,
            role=command.role,
            added_by=identity.user_id,
            added_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="MemberAdded",
                    stream_id=command.organization_id,
                    stream_type=ORGANIZATION,
                    version=org["version"] + 1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=identity.user_id,
                    occurred_at=now,
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=command.organization_id,
                    action="organization.member_added",
                    resource_type=MEMBERSHIP,
                    resource_id=f"{command.organization_id}:{command.user_id}",
                    new_values={"userId": command.user_id, "role": command.role.value},
                )
            ],
        )

    def handle_update_member_role(
        self,
        command: commands.UpdateMemberRole,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        organizations: OrganizationRegistry,
    ) -> CommandResult:
        """
        Change a member's role

        Validates:
        - Caller is a member allowed to manage the target (can_manage)
        - Only owners may grant owner
        - The organization keeps at least one owner

        A sole owner changing their own role gets LAST_OWNER; anyone else
        is checked against the management rules first.
        """
        caller = guard.require_member(command.organization_id, identity)
        org = organizations.get(command.organization_id)
        members = org["members"]

        target_role = members.get(command.target_user_id)
        if target_role is None:
            raise invariants.MemberNotFound()
        if identity.user_id == command.target_user_id:
            invariants.validate_not_last_owner(members, command.target_user_id, command.role)
        if not invariants.can_manage(
            caller.role, target_role, identity.user_id, command.target_user_id
        ):
            raise invariants.CannotManageMember()
        invariants.validate_can_grant(caller.role, command.role)
        invariants.validate_not_last_owner(members, command.target_user_id, command.role)

        now = self.time_provider.now()
        payload = events.MemberRoleChanged(
            organization_id=command.organization_id,
            user_id=command.target_user_id,
            previous_role=target_role,
            new_role=command.role,
            changed_by=identity.user_id,
            changed_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="MemberRoleChanged",
                    stream_id=command.organization_id,
                    stream_type=ORGANIZATION,
                    version=org["version"] + 1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=identity.user_id,
                    occurred_at=now,
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=command.organization_id,
                    action="organization.member_role_changed",
                    resource_type=MEMBERSHIP,
                    resource_id=f"{command.organization_id}:{command.target_user_id}",
                    previous_values={"role": target_role.value},
                    new_values={"role": command.role.value},
                )
            ],
        )

    def handle_remove_member(
        self,
        command: commands.RemoveMember,
        command_id: str,
        identity: Identity,
        guard: AuthorizationGuard,
        organizations: OrganizationRegistry,
    ) -> CommandResult:
        """
        Remove a member

        Validates:
        - Caller is admin or owner and may manage the target
        - The organization keeps at least one owner
        """
        caller = guard.require_admin(command.organization_id, identity)
        org = organizations.get(command.organization_id)
        members = org["members"]

        target_role = members.get(command.target_user_id)
        if target_role is None:
            raise invariants.MemberNotFound()
        if identity.user_id == command.target_user_id:
            invariants.validate_not_last_owner(members, command.target_user_id, None)
        if not invariants.can_manage(
            caller.role, target_role, identity.user_id, command.target_user_id
        ):
            raise invariants.CannotManageMember()
        invariants.validate_not_last_owner(members, command.target_user_id, None)

        now = self.time_provider.now()
        payload = events.MemberRemoved(
            organization_id=command.organization_id,
            user_id=command.target_user_id,
            previous_role=target_role,
            removed_by=identity.user_id,
            removed_at=now,
        )
        return CommandResult(
            events=[
                self._event(
                    event_type="MemberRemoved",
                    stream_id=command.organization_id,
                    stream_type=ORGANIZATION,
                    version=org["version"] + 1,
                    payload=payload,
                    command_id=command_id,
                    actor_id=identity.user_id,
                    occurred_at=now,
                )
            ],
            audit=[
                AuditDraft(
                    organization_id=command.organization_id,
                    action="organization.member_removed",
                    resource_type=MEMBERSHIP,
                    resource_id=f"{command.organization_id}:{command.target_user_id}",
                    previous_values={"role": target_role.value},
                )
            ],
        )
