"""
Route guards and the declarative map of guarded endpoints.

Every privileged route depends on exactly one ``require_permission(name)``
guard. ``ENFORCEMENT_MATRIX`` lists which permission each (METHOD, PATH)
pair requires, and ``check_enforcement_coverage`` compares the routes an
application actually serves against it.
"""
from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Iterator
from typing import Any, Callable

from fastapi import Depends, FastAPI, Request
from fastapi.dependencies.models import Dependant
from fastapi.routing import APIRoute
from starlette.routing import BaseRoute

from ..dependencies import get_current_principal_id, get_permission_service
from ..services.authz.permission_service import PermissionService, PrincipalAccess
from .context import RequestContext

logger = logging.getLogger("church.authz")

# Unguarded routes outside the matrix are only flagged for these methods.
# GET /api/me/permissions is the one read that writes: it provisions the
# caller on first contact, acting on the caller alone and never on others.
MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})

ENFORCEMENT_MATRIX: dict[tuple[str, str], str] = {
    ("GET", "/api/permissions"): "users.view",
    ("GET", "/api/roles"): "users.view",
    ("GET", "/api/roles/{role}/permissions"): "users.view",
    ("GET", "/api/users/{principal_id}/permissions"): "users.view",
    ("PUT", "/api/users/{principal_id}/permissions"): "users.permissions",
    ("POST", "/api/users/{principal_id}/permissions/review"): "users.permissions",
    ("GET", "/api/users/{principal_id}/audit"): "users.permissions",
    ("GET", "/api/audit/users"): "users.permissions",
}


def require_permission(permission_name: str) -> Callable:
    """
    Build a dependency that lets the route run only if the caller holds
    ``permission_name``.

    The dependency resolves the caller's effective permissions from storage on
    every request. On denial it records an ``access_denied`` audit entry and
    raises ``PermissionDenied``; the route body never runs. The name is
    checked against the catalog at request time so a typo surfaces as a 500
    instead of silently denying everyone.

    Args:
        permission_name: Catalog name such as ``"members.edit"``

    Returns:
        Dependency returning the caller's ``PrincipalAccess`` when allowed
    """

    async def dependency(
        request: Request,
        principal_id: uuid.UUID = Depends(get_current_principal_id),
        service: PermissionService = Depends(get_permission_service),
    ) -> PrincipalAccess:
        return await service.authorize(
            principal_id, permission_name, RequestContext.from_request(request)
        )

    dependency.required_permission = permission_name  # type: ignore[attr-defined]
    dependency.__name__ = f"require_{permission_name.replace('.', '_')}"
    return dependency


def _walk(dependant: Dependant) -> Iterator[Dependant]:
    for sub in dependant.dependencies:
        yield sub
        yield from _walk(sub)


def iter_api_routes(routes: Iterable[BaseRoute]) -> Iterator[Any]:
    """Yield every API route an application serves, with its full path.

    Older FastAPI releases copy included routes into the parent flat. Newer
    ones keep an included router as one nested entry whose
    ``effective_route_contexts()`` yields per-inclusion views carrying the
    joined path, the methods and a dependant with include-level dependencies.
    """
    for route in routes:
        if isinstance(route, APIRoute):
            yield route
            continue
        contexts = getattr(route, "effective_route_contexts", None)
        if contexts is None:
            continue
        for context in contexts():
            if isinstance(context.original_route, APIRoute) and context.dependant is not None:
                yield context


def route_guards(route: Any) -> list[str]:
    """Permission names required by the guards attached to ``route``."""
    return [
        sub.call.required_permission
        for sub in _walk(route.dependant)
        if sub.call is not None and hasattr(sub.call, "required_permission")
    ]


def check_enforcement_coverage(
    app: FastAPI,
    matrix: dict[tuple[str, str], str] | None = None,
) -> list[str]:
    """Report routes whose guards disagree with the enforcement matrix.

    Problems reported:
    - a route in the matrix without a guard, with several guards, or with a
      guard for a different permission;
    - a mutating route outside the matrix (unguarded privileged operation);
    - a guarded route outside the matrix;
    - a matrix entry no route serves.

    Returns:
        list[str]: Human-readable problems, empty when coverage is complete
    """
    matrix = ENFORCEMENT_MATRIX if matrix is None else matrix
    problems: list[str] = []
    served: set[tuple[str, str]] = set()

    for route in iter_api_routes(app.routes):
        guards = route_guards(route)
        for method in sorted(route.methods or ()):
            key = (method, route.path)
            served.add(key)
            expected = matrix.get(key)
            label = f"{method} {route.path}"
            if expected is None:
                if guards:
                    problems.append(f"{label} is guarded by {guards} but missing from the matrix")
                elif method in MUTATING_METHODS:
                    problems.append(f"{label} mutates state without a guard")
                continue
            if not guards:
                problems.append(f"{label} has no guard, expected {expected}")
            elif len(guards) > 1:
                problems.append(f"{label} has {len(guards)} guards {guards}, expected one")
            elif guards[0] != expected:
                problems.append(f"{label} requires {guards[0]}, expected {expected}")

    for method, path in sorted(set(matrix) - served):
        problems.append(f"{method} {path} is in the matrix but no route serves it")

    for problem in problems:
        logger.error("Enforcement coverage: %s", problem)
    return problems
