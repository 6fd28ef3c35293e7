"""
Client-side permission mirror.

A best-effort copy of the server's decision used only to show or hide
affordances. It evaluates the same ``resolve_effective_permissions`` function
over the ``(role, overrides)`` pair the server last sent. It is never
authoritative: every action it enables still passes the server's guard.

A missing, malformed or stale snapshot answers ``False`` to every question.
"""
from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from .catalog import PermissionAction, PermissionModule
from .resolver import PermissionOverrides, resolve_effective_permissions
from .roles import DEFAULT_ROLE_DEFAULTS, Role, RoleDefaults

logger = logging.getLogger("church.authz")

DEFAULT_MAX_AGE = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MirrorSnapshot(BaseModel):
    """Payload the server sends so a client can rebuild its decisions."""

    principal_id: str
    role: str
    overrides_added: list[str] = Field(default_factory=list)
    overrides_removed: list[str] = Field(default_factory=list)
    permissions: list[str] = Field(default_factory=list)
    version: int | None = None
    issued_at: datetime
    # Lifetime the server grants this snapshot
    max_age_seconds: int | None = Field(None, gt=0)


class PermissionMirror:
    def __init__(
        self,
        snapshot: MirrorSnapshot | dict[str, Any] | None,
        *,
        defaults: RoleDefaults = DEFAULT_ROLE_DEFAULTS,
        max_age: timedelta | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.defaults = defaults
        self.snapshot = self._coerce(snapshot)
        if max_age is None and self.snapshot is not None and self.snapshot.max_age_seconds:
            max_age = timedelta(seconds=self.snapshot.max_age_seconds)
        self.max_age = max_age or DEFAULT_MAX_AGE
        self.clock = clock
        # Resolved once; every read re-checks freshness against the clock
        self._resolved = self._evaluate()

    @staticmethod
    def _coerce(snapshot: MirrorSnapshot | dict[str, Any] | None) -> MirrorSnapshot | None:
        if snapshot is None or isinstance(snapshot, MirrorSnapshot):
            return snapshot
        try:
            return MirrorSnapshot.model_validate(snapshot)
        except PydanticValidationError:
            logger.warning("Discarding malformed permission snapshot")
            return None

    def is_stale(self, now: datetime | None = None) -> bool:
        if self.snapshot is None:
            return True
        now = now or self.clock()
        issued_at = self.snapshot.issued_at
        if issued_at.tzinfo is None:
            issued_at = issued_at.replace(tzinfo=timezone.utc)
        return now - issued_at > self.max_age

    def _evaluate(self) -> frozenset[str]:
        if self.snapshot is None:
            return frozenset()
        overrides = PermissionOverrides.of(
            self.snapshot.overrides_added, self.snapshot.overrides_removed
        )
        return resolve_effective_permissions(
            Role.parse(self.snapshot.role),
            overrides,
            self.defaults,
            principal_ref=self.snapshot.principal_id,
        )

    @property
    def role(self) -> Role:
        if self.snapshot is None:
            return Role.UNKNOWN
        return Role.parse(self.snapshot.role)

    @property
    def permissions(self) -> frozenset[str]:
        if self.is_stale():
            return frozenset()
        return self._resolved

    def has(self, permission_name: str) -> bool:
        return permission_name in self.permissions

    def has_module_access(
        self,
        module: PermissionModule | str,
        action: PermissionAction | str | None = None,
    ) -> bool:
        """Any permission in ``module``, or exactly ``module.action`` if given."""
        module_value = module.value if isinstance(module, PermissionModule) else module
        if action is not None:
            action_value = action.value if isinstance(action, PermissionAction) else action
            return self.has(f"{module_value}.{action_value}")
        prefix = f"{module_value}."
        return any(name.startswith(prefix) for name in self.permissions)

    def drifted(self) -> bool:
        """True when a fresh local evaluation disagrees with the server's list."""
        if self.snapshot is None or self.is_stale():
            return False
        return self._resolved != frozenset(self.snapshot.permissions)
