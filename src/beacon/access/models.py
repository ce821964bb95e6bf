"""
Access Domain Models

Who (UserContext), what (Resource) and how (Action) for authorization decisions.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from beacon.timeutil import utcnow


class UserRole(str, Enum):
    """Roles in a peer recovery organization, least to most privileged."""
    PEER_SPECIALIST = "peer_specialist"
    SUPERVISOR = "supervisor"
    ADMIN = "admin"


class Action(str, Enum):
    READ = "read"
    WRITE = "write"
    DELETE = "delete"
    EXPORT = "export"


ResourceType = Literal["participant", "assessment", "consent", "plan", "interaction"]


class Resource(BaseModel):
    """A resource being accessed."""
    type: ResourceType
    id: str
    # Owning organization when known; a mismatch always denies
    organization_id: str | None = None


class UserContext(BaseModel):
    """
    Authorization input for one request.

    Passed explicitly into every operation; never read from ambient state.
    """
    user_id: str
    role: UserRole
    organization_id: str
    # Only meaningful for peer specialists
    assigned_participants: set[str] | None = None

    def is_assigned(self, participant_id: str) -> bool:
        return participant_id in (self.assigned_participants or set())


class ACLEntry(BaseModel):
    """Explicit grant beyond what the role allows."""
    user_id: str
    resource_type: ResourceType
    resource_id: str
    permissions: list[Action]
    granted_by: str
    granted_at: datetime = Field(default_factory=utcnow)
    reason: str | None = None


class RequestOrigin(BaseModel):
    """Where a request came from, recorded on PHI access events."""
    ip_address: str = "0.0.0.0"
    device_id: str = "system"
