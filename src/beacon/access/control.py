"""
Role-Based Access Control

Generic role/assignment check with the minimum necessary principle:
- Admin: everything in the organization
- Supervisor: read anything in the organization, write/delete via explicit grant
- Peer specialist: assigned participants only; other resources via explicit grant
"""

import structlog

from beacon.access.models import ACLEntry, Action, Resource, UserContext, UserRole

logger = structlog.get_logger(__name__)


class RoleAccessControl:
    """
    Generic access check used by the sensitive-category gate and query engine.

    The ACL table holds explicit grants only; role and assignment are
    re-evaluated from the supplied context on every call.
    """

    def __init__(self):
        self._acl: dict[str, list[ACLEntry]] = {}

    @staticmethod
    def _key(resource_type: str, resource_id: str) -> str:
        return f"{resource_type}:{resource_id}"

    async def check_access(
        self,
        user: UserContext,
        resource: Resource,
        action: Action,
    ) -> bool:
        """Return True if ``user`` may perform ``action`` on ``resource``."""
        if resource.organization_id is not None and resource.organization_id != user.organization_id:
            allowed = False
        elif user.role == UserRole.ADMIN:
            allowed = True
        elif user.role == UserRole.SUPERVISOR:
            allowed = action == Action.READ or self._has_grant(user.user_id, resource, action)
        elif user.role == UserRole.PEER_SPECIALIST:
            if resource.type == "participant":
                allowed = user.is_assigned(resource.id)
            else:
                allowed = self._has_grant(user.user_id, resource, action)
        else:
            allowed = False

        logger.debug("Access checked",
            user_id=user.user_id,
            role=user.role.value,
            resource_type=resource.type,
            action=action.value,
            allowed=allowed)
        return allowed

    def _has_grant(self, user_id: str, resource: Resource, action: Action) -> bool:
        entries = self._acl.get(self._key(resource.type, resource.id), [])
        return any(e.user_id == user_id and action in e.permissions for e in entries)

    def grant(self, entry: ACLEntry) -> None:
        """Add or replace an explicit grant."""
        key = self._key(entry.resource_type, entry.resource_id)
        entries = [e for e in self._acl.get(key, []) if e.user_id != entry.user_id]
        entries.append(entry)
        self._acl[key] = entries
        logger.info("Access granted",
            user_id=entry.user_id,
            resource=key,
            permissions=[p.value for p in entry.permissions],
            granted_by=entry.granted_by)

    def revoke(self, user_id: str, resource: Resource) -> None:
        """Remove a user's explicit grant on a resource."""
        key = self._key(resource.type, resource.id)
        remaining = [e for e in self._acl.get(key, []) if e.user_id != user_id]
        if remaining:
            self._acl[key] = remaining
        else:
            self._acl.pop(key, None)
        logger.info("Access revoked", user_id=user_id, resource=key)

    def grants_for(self, resource: Resource) -> list[ACLEntry]:
        return list(self._acl.get(self._key(resource.type, resource.id), []))
