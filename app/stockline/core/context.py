import uuid
from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """The authenticated user on whose behalf a domain operation runs."""

    user_id: uuid.UUID
    role: str
    username: str
    trace_id: str = ""

    @classmethod
    def from_user(cls, user, *, trace_id: str = "") -> "Actor":
        return cls(user_id=user.id, role=user.role, username=user.username, trace_id=trace_id)
