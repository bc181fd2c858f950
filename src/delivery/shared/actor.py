"""The acting user behind an operation.

Authentication happens upstream; the domain receives an already-resolved
identity and role and only decides what that role may do.
"""

from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    RIDER = "rider"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    id: str
    role: str
    restaurant_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    @property
    def is_system(self) -> bool:
        return self.role == Role.SYSTEM.value

    @classmethod
    def system(cls, name: str = "system") -> "Actor":
        return cls(id=name, role=Role.SYSTEM.value)

    @classmethod
    def from_command(cls, command) -> "Actor":
        return cls(
            id=command.actor_id,
            role=command.actor_role,
            restaurant_id=command.actor_restaurant_id or None,
        )
