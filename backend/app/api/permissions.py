"""
Permission endpoints.

- ``GET /me/permissions`` serves the caller's mirror snapshot
- catalog and role defaults for the permission editor (``users.view``)
- reading and replacing a principal's role and overrides
  (``users.view`` / ``users.permissions``)
"""
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from ..auth.context import RequestContext
from ..auth.guards import require_permission
from ..auth.mirror import MirrorSnapshot
from ..auth.resolver import PermissionOverrides, resolve_effective_permissions
from ..auth.review import review_assignment
from ..auth.roles import ROLE_DISPLAY_NAMES, Role
from ..config import settings
from ..dependencies import get_current_principal_id, get_permission_service
from ..errors import NotFoundError, UnknownPermission
from ..schemas.permission import PermissionCatalogResponse, PermissionResponse
from ..schemas.principal import (
    AccessUpdate,
    AssignmentReviewRequest,
    AssignmentReviewResponse,
    PrincipalAccessResponse,
)
from ..schemas.role import RolePermissionsResponse, RoleResponse
from ..services.authz.permission_service import PermissionService, PrincipalAccess

router = APIRouter(tags=["permissions"])


def _access_response(access: PrincipalAccess) -> PrincipalAccessResponse:
    return PrincipalAccessResponse(
        principal_id=access.principal_id,
        role=access.role.value,
        overrides_added=sorted(access.overrides.added),
        overrides_removed=sorted(access.overrides.removed),
        permissions=sorted(access.permissions),
        version=access.version,
    )


@router.get("/me/permissions", response_model=MirrorSnapshot)
async def get_my_permissions(
    request: Request,
    principal_id: uuid.UUID = Depends(get_current_principal_id),
    service: PermissionService = Depends(get_permission_service),
):
    """
    Snapshot the client mirror evaluates locally.

    Provisions the caller with the default role on first contact.
    """
    access = await service.ensure_principal(principal_id, RequestContext.from_request(request))
    return MirrorSnapshot(
        principal_id=str(access.principal_id),
        role=access.role.value,
        overrides_added=sorted(access.overrides.added),
        overrides_removed=sorted(access.overrides.removed),
        permissions=sorted(access.permissions),
        version=access.version,
        issued_at=datetime.now(timezone.utc),
        max_age_seconds=settings.mirror_max_age_seconds,
    )


@router.get("/permissions", response_model=PermissionCatalogResponse)
async def list_permissions(
    service: PermissionService = Depends(get_permission_service),
    _: PrincipalAccess = Depends(require_permission("users.view")),
):
    items = [
        PermissionResponse(
            name=definition.name,
            module=definition.module.value,
            action=definition.action.value,
            description=definition.description,
        )
        for definition in service.catalog.list_permissions()
    ]
    return PermissionCatalogResponse(items=items, total=len(items))


@router.get("/roles", response_model=list[RoleResponse])
async def list_roles(
    service: PermissionService = Depends(get_permission_service),
    _: PrincipalAccess = Depends(require_permission("users.view")),
):
    return [
        RoleResponse(
            name=role.value,
            display_name=ROLE_DISPLAY_NAMES[role],
            is_administrator=role.is_administrator,
            permission_count=len(service.defaults.defaults_for(role)),
        )
        for role in service.defaults.roles()
    ]


@router.get("/roles/{role}/permissions", response_model=RolePermissionsResponse)
async def get_role_permissions(
    role: str,
    service: PermissionService = Depends(get_permission_service),
    _: PrincipalAccess = Depends(require_permission("users.view")),
):
    parsed = Role.parse(role)
    if parsed is Role.UNKNOWN:
        raise NotFoundError("Role not found", details={"role": role})
    return RolePermissionsResponse(
        role=parsed.value,
        display_name=ROLE_DISPLAY_NAMES[parsed],
        permissions=sorted(service.defaults.defaults_for(parsed)),
    )


@router.get("/users/{principal_id}/permissions", response_model=PrincipalAccessResponse)
async def get_user_permissions(
    principal_id: uuid.UUID,
    service: PermissionService = Depends(get_permission_service),
    _: PrincipalAccess = Depends(require_permission("users.view")),
):
    access = await service.access_for(principal_id)
    if not access.is_stored:
        raise NotFoundError("Principal not found", details={"principal_id": str(principal_id)})
    return _access_response(access)


@router.put("/users/{principal_id}/permissions", response_model=PrincipalAccessResponse)
async def update_user_permissions(
    principal_id: uuid.UUID,
    payload: AccessUpdate,
    request: Request,
    service: PermissionService = Depends(get_permission_service),
    caller: PrincipalAccess = Depends(require_permission("users.permissions")),
):
    """
    Replace a principal's role and overrides.

    ``added`` and ``removed`` are complete sets, not deltas. Send
    ``expected_version`` from the last read to reject concurrent edits.
    """
    access = await service.set_role_and_overrides(
        caller.principal_id,
        principal_id,
        payload.role,
        payload.added,
        payload.removed,
        expected_version=payload.expected_version,
        reason=payload.reason,
        context=RequestContext.from_request(request),
    )
    return _access_response(access)


@router.post(
    "/users/{principal_id}/permissions/review",
    response_model=AssignmentReviewResponse,
)
async def review_user_permissions(
    principal_id: uuid.UUID,
    payload: AssignmentReviewRequest,
    service: PermissionService = Depends(get_permission_service),
    _: PrincipalAccess = Depends(require_permission("users.permissions")),
):
    """Advisory checks on a proposed assignment. Nothing is saved."""
    current = await service.access_for(principal_id)
    if not current.is_stored:
        raise NotFoundError("Principal not found", details={"principal_id": str(principal_id)})

    overrides = PermissionOverrides.of(payload.added, payload.removed)
    unknown = service.catalog.unknown(overrides.added | overrides.removed)
    if unknown:
        raise UnknownPermission(unknown)

    role = Role.parse(payload.role)
    review = review_assignment(role, overrides, service.defaults)
    return AssignmentReviewResponse(
        is_valid=review.is_valid,
        errors=review.errors,
        warnings=review.warnings,
        suggestions=review.suggestions,
        permissions=sorted(
            resolve_effective_permissions(
                role, overrides, service.defaults, principal_ref=principal_id
            )
        ),
    )
