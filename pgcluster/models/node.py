"""Data models for cluster nodes and their published health."""

from pydantic import BaseModel, field_validator

PRIMARY = "primary"
REPLICA = "replica"

# Role names the node supervisor may publish for the writable leader
PRIMARY_ROLE_ALIASES = {"primary", "master", "leader"}


def normalize_role(role: str) -> str:
    """Map a published role name onto primary or replica."""
    return PRIMARY if role.lower() in PRIMARY_ROLE_ALIASES else REPLICA


class Node(BaseModel):
    """One database process belonging to an instance, hosted on a backend."""

    id: str
    backend_id: str
    plan_id: str = ""
    service_id: str = ""
    role: str = REPLICA

    @field_validator("id", "backend_id")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        """Validate identifiers are not empty."""
        if not v:
            raise ValueError("node identifiers cannot be empty")
        return v

    @field_validator("role")
    @classmethod
    def validate_role(cls, v: str) -> str:
        """Validate role is either primary or replica."""
        allowed_roles = [PRIMARY, REPLICA]
        if v not in allowed_roles:
            raise ValueError(f"role must be one of {allowed_roles}, got '{v}'")
        return v

    @property
    def is_primary(self) -> bool:
        return self.role == PRIMARY


class MemberHealth(BaseModel):
    """Health record published by a node supervisor."""

    role: str = ""
    state: str = ""

    @property
    def is_primary(self) -> bool:
        return normalize_role(self.role) == PRIMARY if self.role else False

    @property
    def is_running(self) -> bool:
        return self.state == "running"
