"""Generic role/assignment access check."""
from beacon.access.control import RoleAccessControl
from beacon.access.models import (
    ACLEntry,
    Action,
    RequestOrigin,
    Resource,
    UserContext,
    UserRole,
)

__all__ = [
    "RoleAccessControl",
    "ACLEntry",
    "Action",
    "RequestOrigin",
    "Resource",
    "UserContext",
    "UserRole",
]
