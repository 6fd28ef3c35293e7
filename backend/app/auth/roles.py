"""
Roles and their default permission sets.

Roles are a closed enumeration. ``Role.UNKNOWN`` is the explicit fallback
for any stored or transmitted value that does not name a known role, and it
carries no permissions.

Exactly one role, ``Role.ADMINISTRATOR``, is granted the whole catalog.
That grant is computed from the catalog on every call and is never listed
in ``ROLE_DEFAULT_PERMISSIONS``.
"""
from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Final

from ..errors import UnknownPermission
from .catalog import DEFAULT_CATALOG, PermissionCatalog


class Role(str, Enum):
    ADMINISTRATOR = "administrator"
    PASTOR = "pastor"
    LEADER = "leader"
    TREASURER = "treasurer"
    VOLUNTEER = "volunteer"
    MEMBER = "member"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: object) -> "Role":
        """Map a stored or transmitted role label to a ``Role``.

        Accepts canonical values, member names and the legacy labels used by
        earlier releases. Anything else maps to ``Role.UNKNOWN``.
        """
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return cls.UNKNOWN
        label = value.strip()
        legacy = LEGACY_ROLE_LABELS.get(label)
        if legacy is not None:
            return legacy
        try:
            return cls(label.lower())
        except ValueError:
            return cls.UNKNOWN

    @property
    def is_administrator(self) -> bool:
        return self is ADMINISTRATOR_ROLE


ADMINISTRATOR_ROLE: Final[Role] = Role.ADMINISTRATOR

ASSIGNABLE_ROLES: Final[tuple[Role, ...]] = tuple(
    role for role in Role if role is not Role.UNKNOWN
)

LEGACY_ROLE_LABELS: Final[dict[str, Role]] = {
    "Administrador": Role.ADMINISTRATOR,
    "Pastor": Role.PASTOR,
    "Líder": Role.LEADER,
    "Tesoureiro": Role.TREASURER,
    "Voluntário": Role.VOLUNTEER,
    "Membro": Role.MEMBER,
}

ROLE_DISPLAY_NAMES: Final[dict[Role, str]] = {
    Role.ADMINISTRATOR: "Administrator",
    Role.PASTOR: "Pastor",
    Role.LEADER: "Leader",
    Role.TREASURER: "Treasurer",
    Role.VOLUNTEER: "Volunteer",
    Role.MEMBER: "Member",
    Role.UNKNOWN: "Unknown",
}

ROLE_DEFAULT_PERMISSIONS: Final[dict[Role, frozenset[str]]] = {
    Role.PASTOR: frozenset({
        "dashboard.view",
        "members.view", "members.create", "members.edit", "members.export",
        "departments.view", "departments.create", "departments.edit",
        "events.view", "events.create", "events.edit",
        "financial.view", "financial.reports",
        "notifications.view", "notifications.create", "notifications.edit",
        "notifications.delete",
    }),
    Role.LEADER: frozenset({
        "dashboard.view",
        "members.view", "members.create", "members.edit",
        "departments.view", "departments.create", "departments.edit",
        "events.view", "events.create", "events.edit",
        "notifications.view", "notifications.create",
    }),
    Role.TREASURER: frozenset({
        "dashboard.view",
        "members.view",
        "events.view",
        "financial.view", "financial.create", "financial.edit", "financial.delete",
        "financial.export", "financial.reports",
    }),
    Role.VOLUNTEER: frozenset({
        "dashboard.view",
        "members.view",
        "departments.view",
        "events.view",
        "notifications.view",
    }),
    Role.MEMBER: frozenset({
        "dashboard.view",
        "members.view",
        "departments.view",
        "events.view",
        "financial.view",
        "notifications.view",
    }),
}


class RoleDefaults:
    """Role → default permission names, validated against a catalog."""

    def __init__(
        self,
        mapping: Mapping[Role, frozenset[str] | set[str]],
        catalog: PermissionCatalog = DEFAULT_CATALOG,
    ):
        if ADMINISTRATOR_ROLE in mapping:
            raise ValueError(
                "The administrator role is granted the full catalog and must not be enumerated"
            )
        unknown: set[str] = set()
        for permissions in mapping.values():
            unknown |= catalog.unknown(permissions)
        if unknown:
            raise UnknownPermission(unknown)
        self.catalog = catalog
        self._mapping = {role: frozenset(perms) for role, perms in mapping.items()}

    def defaults_for(self, role: Role) -> frozenset[str]:
        if role is ADMINISTRATOR_ROLE:
            return self.catalog.names()
        return self._mapping.get(role, frozenset())

    def roles(self) -> tuple[Role, ...]:
        return ASSIGNABLE_ROLES

    def as_mapping(self) -> dict[Role, frozenset[str]]:
        return {role: self.defaults_for(role) for role in ASSIGNABLE_ROLES}


# Validated on import (fail-fast)
DEFAULT_ROLE_DEFAULTS: Final[RoleDefaults] = RoleDefaults(ROLE_DEFAULT_PERMISSIONS)
