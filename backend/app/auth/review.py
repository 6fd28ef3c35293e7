"""
Advisory review of a proposed role/permission assignment.

These checks help an administrator spot unusual assignments before saving.
They never block a change and never influence enforcement.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from .resolver import PermissionOverrides, resolve_effective_permissions
from .roles import DEFAULT_ROLE_DEFAULTS, Role, RoleDefaults


@dataclass
class AssignmentReview:
    warnings: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    suggestions: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def review_assignment(
    role: Role,
    overrides: PermissionOverrides,
    defaults: RoleDefaults = DEFAULT_ROLE_DEFAULTS,
) -> AssignmentReview:
    review = AssignmentReview()
    if role is Role.UNKNOWN:
        review.errors.append("Role is not recognised; the principal would hold no permissions")
        return review
    if role.is_administrator:
        if overrides.added or overrides.removed:
            review.warnings.append(
                "Overrides have no effect on the administrator role, which holds every permission"
            )
        return review

    if overrides.conflicts:
        review.errors.append(
            f"Granted and revoked at once: {', '.join(sorted(overrides.conflicts))}"
        )

    role_defaults = defaults.defaults_for(role)
    effective = resolve_effective_permissions(role, overrides, defaults)

    missing = role_defaults - effective
    if missing:
        review.warnings.append(
            f"Missing {len(missing)} default permission(s) of role {role.value}: {', '.join(sorted(missing))}"
        )
    extra = effective - role_defaults
    if extra:
        review.warnings.append(
            f"Holds {len(extra)} permission(s) beyond the role defaults: {', '.join(sorted(extra))}"
        )

    if role is Role.TREASURER:
        if "financial.view" not in effective:
            review.errors.append("A treasurer must be able to view financial data")
        if "financial.edit" not in effective:
            review.warnings.append("A treasurer usually needs to edit financial data")

    if role is Role.MEMBER and any(name.endswith(".delete") for name in effective):
        review.warnings.append("Members holding delete permissions are a security risk")

    if role is Role.LEADER and "members.create" not in effective:
        review.suggestions.append("Leaders usually need to register new members")

    return review
