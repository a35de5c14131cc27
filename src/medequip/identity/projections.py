"""
Identity & Tenancy Projections

Read models for users and organizations (with their member tables),
rebuilt from the event log.
"""

from datetime import datetime
from typing import Any

from medequip.identity.models import OrgRole
from medequip.kernel.events import Event


class UserRegistry:
    """Known users, indexed by id and by email"""

    def __init__(self) -> None:
        self.users: dict[str, dict[str, Any]] = {}
        self._by_email: dict[str, str] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "UserRegistered":
            payload = event.payload
            self.users[payload["user_id"]] = {
                "user_id": payload["user_id"],
                "email": payload["email"],
                "name": payload.get("name"),
                "platform_role": payload.get("platform_role"),
                "registered_at": datetime.fromisoformat(payload["registered_at"]),
                "version": event.version,
            }
            self._by_email[payload["email"].lower()] = payload["user_id"]

    def get(self, user_id: str) -> dict[str, Any] | None:
        return self.users.get(user_id)

    def get_by_email(self, email: str) -> dict[str, Any] | None:
        user_id = self._by_email.get(email.lower())
        return self.users.get(user_id) if user_id else None

    def list_all(self) -> list[dict[str, Any]]:
        return list(self.users.values())


class OrganizationRegistry:
    """
    Organizations and their member tables

    Each organization dict carries "members": {user_id: OrgRole}.
    """

    def __init__(self) -> None:
        self.organizations: dict[str, dict[str, Any]] = {}

    def apply_event(self, event: Event) -> None:
        if event.event_type == "OrganizationCreated":
            self._apply_organization_created(event)
        elif event.event_type == "MemberAdded":
            self._apply_member_added(event)
        elif event.event_type == "MemberRoleChanged":
            self._apply_member_role_changed(event)
        elif event.event_type == "MemberRemoved":
            self._apply_member_removed(event)

    def _apply_organization_created(self, event: Event) -> None:
        payload = event.payload
        self.organizations[payload["organization_id"]] = {
            "organization_id": payload["organization_id"],
            "name": payload["name"],
            "org_type": payload["org_type"],
            "created_by": payload["created_by"],
            "created_at": datetime.fromisoformat(payload["created_at"]),
            "members": {payload["created_by"]: OrgRole.OWNER},
            "version": event.version,
        }

    def _apply_member_added(self, event: Event) -> None:
        org = self.organizations.get(event.payload["organization_id"])
        if org:
            org["members"][event.payload["user_id"]] = OrgRole(event.payload["role"])
            org["version"] = event.version

    def _apply_member_role_changed(self, event: Event) -> None:
        org = self.organizations.get(event.payload["organization_id"])
        if org:
            org["members"][event.payload["user_id"]] = OrgRole(event.payload["new_role"])
            org["version"] = event.version

    def _apply_member_removed(self, event: Event) -> None:
        org = self.organizations.get(event.payload["organization_id"])
        if org:
            org["members"].pop(event.payload["user_id"], None)
            org["version"] = event.version

    def get(self, organization_id: str) -> dict[str, Any] | None:
        return self.organizations.get(organization_id)

    def list_all(self, org_type: str | None = None) -> list[dict[str, Any]]:
        return [
            org
            for org in self.organizations.values()
            if org_type is None or org["org_type"] == org_type
        ]

    def role_of(self, organization_id: str, user_id: str) -> OrgRole | None:
        org = self.organizations.get(organization_id)
        if not org:
            return None
        return org["members"].get(user_id)

    def memberships_for_user(self, user_id: str) -> dict[str, OrgRole]:
        """organization_id -> role for every organization the user belongs to"""
        return {
            org_id: org["members"][user_id]
            for org_id, org in self.organizations.items()
            if user_id in org["members"]
        }
