"""
Authentication User Models

This module defines the calling principal as supplied by the upstream
identity provider. Token verification happens before a request reaches
this service, so only the id and role are carried here.
"""

import enum
from dataclasses import dataclass

from examprep.common.serialization import SerializableMixin


class UserRole(enum.Enum):
    """User roles for authorization."""

    ADMIN = "admin"
    USER = "user"


@dataclass(frozen=True)
class Principal(SerializableMixin):
    """
    An already-authenticated caller.

    Attributes:
        id: Unique user identifier
        role: User's role
    """

    __serializable_fields__ = ["id", "role"]

    id: str
    role: UserRole = UserRole.USER

    def __post_init__(self):
        if not self.id:
            raise ValueError("Principal id is required")
        if isinstance(self.role, str):
            # frozen dataclass, so bypass __setattr__
            object.__setattr__(self, "role", UserRole(self.role.lower()))

    @property
    def is_admin(self) -> bool:
        """Check if the principal has the admin role."""
        return self.role == UserRole.ADMIN
