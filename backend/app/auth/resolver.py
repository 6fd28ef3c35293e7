"""
Effective permission resolution.

``resolve_effective_permissions`` is a pure function of its arguments. The
server calls it on every authorization decision and the client mirror calls
it with the ``(role, overrides)`` pair it last received, so both sides make
the same decision from the same inputs.

    effective = (defaults[role] ∪ added) \\ removed

The administrator role short-circuits to the full catalog and ignores
overrides. An unknown role resolves to nothing, whatever its overrides say.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from .roles import DEFAULT_ROLE_DEFAULTS, Role, RoleDefaults

logger = logging.getLogger("church.authz")


@dataclass(frozen=True)
class PermissionOverrides:
    added: frozenset[str] = field(default_factory=frozenset)
    removed: frozenset[str] = field(default_factory=frozenset)

    @classmethod
    def of(
        cls,
        added: Iterable[str] | None = None,
        removed: Iterable[str] | None = None,
    ) -> "PermissionOverrides":
        return cls(frozenset(added or ()), frozenset(removed or ()))

    @property
    def conflicts(self) -> frozenset[str]:
        return self.added & self.removed


EMPTY_OVERRIDES = PermissionOverrides()


def resolve_effective_permissions(
    role: Role,
    overrides: PermissionOverrides = EMPTY_OVERRIDES,
    defaults: RoleDefaults = DEFAULT_ROLE_DEFAULTS,
    *,
    principal_ref: object | None = None,
) -> frozenset[str]:
    """Compute the effective permission set for a role and its overrides.

    For recognised roles this is ``(defaults | added) - removed``. An unknown
    role departs from that formula on purpose: it resolves to the empty set and
    its ``added`` overrides are dropped too, so a corrupt or unmapped role label
    never carries individually granted access.

    Args:
        role: The principal's role (``Role.UNKNOWN`` yields nothing)
        overrides: Per-principal grants and revocations
        defaults: Role defaults bound to the catalog in use
        principal_ref: Identifier used only for logging conflicts

    Returns:
        frozenset[str]: Permission names the principal holds right now
    """
    if role.is_administrator:
        return defaults.catalog.names()
    if role is Role.UNKNOWN:
        # Unknown roles hold nothing, overrides included
        return frozenset()

    conflicts = overrides.conflicts
    if conflicts:
        # Revocation wins for names present on both sides
        logger.warning(
            "Override conflict resolved as revoke principal=%s permissions=%s",
            principal_ref if principal_ref is not None else "n/a",
            sorted(conflicts),
        )

    base = defaults.defaults_for(role)
    effective = (base | overrides.added) - overrides.removed
    # Names no longer in the catalog grant nothing
    return frozenset(effective & defaults.catalog.names())
