from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Protocol

from app.stockline.core.config import settings
from app.stockline.repos.users import UserRepository


def _normalize_role(role: str | None) -> str:
    return (role or "").strip().lower()


@dataclass(frozen=True)
class RolePolicy:
    manager_roles: frozenset[str]
    admin_roles: frozenset[str]

    @classmethod
    def from_settings(cls, config=settings) -> "RolePolicy":
        return cls(
            manager_roles=frozenset(_normalize_role(role) for role in config.MANAGER_ROLES),
            admin_roles=frozenset(_normalize_role(role) for role in config.ADMIN_ROLES),
        )

    def is_manager(self, role: str | None) -> bool:
        return _normalize_role(role) in self.manager_roles

    def is_admin(self, role: str | None) -> bool:
        return _normalize_role(role) in self.admin_roles


class AccessPolicy(Protocol):
    def has_outlet_access(self, user_id: uuid.UUID, outlet_id: uuid.UUID) -> bool: ...


class DatabaseAccessPolicy:
    """Outlet access backed by the users table and explicit grants.

    Admin roles reach every outlet. Everyone else reaches their home outlet plus
    any outlet granted in ``outlet_access_grants``.
    """

    def __init__(self, db, roles: RolePolicy | None = None):
        self.repo = UserRepository(db)
        self.roles = roles or RolePolicy.from_settings()

    def has_outlet_access(self, user_id: uuid.UUID, outlet_id: uuid.UUID) -> bool:
        user = self.repo.get_by_id(user_id)
        if user is None or not user.is_active:
            return False
        if self.roles.is_admin(user.role):
            return True
        if user.outlet_id is not None and user.outlet_id == outlet_id:
            return True
        return self.repo.has_grant(user.id, outlet_id)

    def visible_outlet_ids(self, user_id: uuid.UUID) -> frozenset[uuid.UUID] | None:
        """Outlets whose transfers and variances the user may read; None means all of them."""
        user = self.repo.get_by_id(user_id)
        if user is None or not user.is_active:
            return frozenset()
        if self.roles.is_manager(user.role) or self.roles.is_admin(user.role):
            return None
        outlets = set(self.repo.granted_outlet_ids(user.id))
        if user.outlet_id is not None:
            outlets.add(user.outlet_id)
        return frozenset(outlets)

    def can_view(self, user_id: uuid.UUID, *outlet_ids: uuid.UUID) -> bool:
        visible = self.visible_outlet_ids(user_id)
        return visible is None or any(outlet_id in visible for outlet_id in outlet_ids)
