from __future__ import annotations

from dataclasses import dataclass

from campus_eats.models.enums import UserRole


@dataclass(frozen=True)
class Actor:
    """The authenticated principal, passed explicitly into every service call."""

    id: int
    role: str

    @property
    def is_manager(self) -> bool:
        return self.role == UserRole.MANAGER

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.WORKER, UserRole.MANAGER)

    @classmethod
    def from_user(cls, user) -> "Actor":
        return cls(id=int(user.id), role=str(user.role))
