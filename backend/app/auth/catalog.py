"""
Permission Catalog - the closed universe of (module, action) permissions.

Every permission is identified on the wire by ``"<module>.<action>"`` and
resolved to a structured ``PermissionDef`` as soon as it is loaded. The
catalog is built once at import time from ``PERMISSION_DEFINITIONS``; a
duplicate name fails the import instead of surfacing at request time.

No wildcards. A permission grants exactly one action on exactly one module.
"""
from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from enum import Enum
from typing import Final

from ..errors import DuplicatePermission, UnknownPermission


class PermissionModule(str, Enum):
    DASHBOARD = "dashboard"
    MEMBERS = "members"
    DEPARTMENTS = "departments"
    EVENTS = "events"
    FINANCIAL = "financial"
    USERS = "users"
    NOTIFICATIONS = "notifications"
    SETTINGS = "settings"


class PermissionAction(str, Enum):
    VIEW = "view"
    CREATE = "create"
    EDIT = "edit"
    DELETE = "delete"
    EXPORT = "export"
    REPORTS = "reports"
    PERMISSIONS = "permissions"


@dataclass(frozen=True)
class PermissionDef:
    module: PermissionModule
    action: PermissionAction
    description: str = ""

    @property
    def name(self) -> str:
        return f"{self.module.value}.{self.action.value}"


def parse_permission_name(name: str) -> tuple[PermissionModule, PermissionAction]:
    """Split a wire name into its module and action.

    Raises:
        UnknownPermission: If the name is malformed, uses a wildcard, or
            names a module/action outside the enumerations.
    """
    if not isinstance(name, str) or name.count(".") != 1 or "*" in name:
        raise UnknownPermission(str(name))
    module_value, action_value = name.split(".")
    try:
        return PermissionModule(module_value), PermissionAction(action_value)
    except ValueError:
        raise UnknownPermission(name) from None


# ============================================================================
# STATIC DEFINITIONS
# ============================================================================

_M = PermissionModule
_A = PermissionAction

PERMISSION_DEFINITIONS: Final[tuple[PermissionDef, ...]] = (
    PermissionDef(_M.DASHBOARD, _A.VIEW, "View the dashboard"),
    PermissionDef(_M.MEMBERS, _A.VIEW, "View member records"),
    PermissionDef(_M.MEMBERS, _A.CREATE, "Register new members"),
    PermissionDef(_M.MEMBERS, _A.EDIT, "Edit member records"),
    PermissionDef(_M.MEMBERS, _A.DELETE, "Delete member records"),
    PermissionDef(_M.MEMBERS, _A.EXPORT, "Export member reports"),
    PermissionDef(_M.DEPARTMENTS, _A.VIEW, "View departments"),
    PermissionDef(_M.DEPARTMENTS, _A.CREATE, "Create departments"),
    PermissionDef(_M.DEPARTMENTS, _A.EDIT, "Edit departments"),
    PermissionDef(_M.DEPARTMENTS, _A.DELETE, "Delete departments"),
    PermissionDef(_M.EVENTS, _A.VIEW, "View events"),
    PermissionDef(_M.EVENTS, _A.CREATE, "Create events"),
    PermissionDef(_M.EVENTS, _A.EDIT, "Edit events"),
    PermissionDef(_M.EVENTS, _A.DELETE, "Delete events"),
    PermissionDef(_M.FINANCIAL, _A.VIEW, "View financial transactions"),
    PermissionDef(_M.FINANCIAL, _A.CREATE, "Record financial transactions"),
    PermissionDef(_M.FINANCIAL, _A.EDIT, "Edit financial transactions"),
    PermissionDef(_M.FINANCIAL, _A.DELETE, "Delete financial transactions"),
    PermissionDef(_M.FINANCIAL, _A.EXPORT, "Export financial data"),
    PermissionDef(_M.FINANCIAL, _A.REPORTS, "View financial reports"),
    PermissionDef(_M.USERS, _A.VIEW, "View system users"),
    PermissionDef(_M.USERS, _A.EDIT, "Activate and deactivate users"),
    PermissionDef(_M.USERS, _A.PERMISSIONS, "Manage user roles and permissions"),
    PermissionDef(_M.NOTIFICATIONS, _A.VIEW, "View notifications and announcements"),
    PermissionDef(_M.NOTIFICATIONS, _A.CREATE, "Create notifications and announcements"),
    PermissionDef(_M.NOTIFICATIONS, _A.EDIT, "Edit notifications and announcements"),
    PermissionDef(_M.NOTIFICATIONS, _A.DELETE, "Delete notifications and announcements"),
    PermissionDef(_M.SETTINGS, _A.VIEW, "View church settings"),
    PermissionDef(_M.SETTINGS, _A.EDIT, "Edit church settings"),
)


class PermissionCatalog:
    """Immutable, ordered collection of permissions keyed by name."""

    def __init__(self, definitions: Iterable[PermissionDef]):
        by_name: dict[str, PermissionDef] = {}
        for definition in definitions:
            if definition.name in by_name:
                raise DuplicatePermission(
                    f"Permission '{definition.name}' is defined more than once",
                    details={"permission": definition.name},
                )
            by_name[definition.name] = definition
        self._by_name = by_name
        self._ordered = tuple(by_name.values())
        self._names = frozenset(by_name)

    def list_permissions(self) -> tuple[PermissionDef, ...]:
        return self._ordered

    def get_by_name(self, name: str) -> PermissionDef:
        try:
            return self._by_name[name]
        except (KeyError, TypeError):
            raise UnknownPermission(str(name)) from None

    def names(self) -> frozenset[str]:
        return self._names

    def unknown(self, names: Iterable[str]) -> frozenset[str]:
        """Return the subset of ``names`` that the catalog does not define."""
        return frozenset(name for name in names if name not in self._names)

    def by_module(self) -> dict[PermissionModule, tuple[PermissionDef, ...]]:
        grouped: dict[PermissionModule, list[PermissionDef]] = {}
        for definition in self._ordered:
            grouped.setdefault(definition.module, []).append(definition)
        return {module: tuple(items) for module, items in grouped.items()}

    def __contains__(self, name: object) -> bool:
        return name in self._names

    def __iter__(self) -> Iterator[PermissionDef]:
        return iter(self._ordered)

    def __len__(self) -> int:
        return len(self._ordered)


# Loaded on import (fail-fast on duplicates)
DEFAULT_CATALOG: Final[PermissionCatalog] = PermissionCatalog(PERMISSION_DEFINITIONS)
