import uuid
from datetime import datetime

from fastapi import APIRouter, Depends, Query

from ..auth.guards import require_permission
from ..dependencies import get_audit_service
from ..errors import ValidationError
from ..models.audit_record import AuditKind
from ..schemas.audit_record import AuditHistoryResponse, AuditRecordResponse
from ..services.audit.audit_service import AuditFilters, AuditService, AuditWindow
from ..services.authz.permission_service import PrincipalAccess

router = APIRouter(tags=["audit"])


async def _collect(
    service: AuditService,
    target_id: uuid.UUID | None,
    since: datetime | None,
    window: AuditWindow | None,
    filters: AuditFilters,
) -> AuditHistoryResponse:
    if since is not None and window is not None:
        raise ValidationError("Use either 'since' or 'window', not both")
    items = [
        AuditRecordResponse.model_validate(record)
        async for record in service.history(target_id, since or window, filters)
    ]
    return AuditHistoryResponse(items=items, count=len(items))


@router.get("/users/{principal_id}/audit", response_model=AuditHistoryResponse)
async def get_user_audit(
    principal_id: uuid.UUID,
    kind: list[AuditKind] | None = Query(None, description="Only these kinds"),
    actor_id: uuid.UUID | None = Query(None, description="Only changes made by this actor"),
    since: datetime | None = Query(None, description="Oldest timestamp to include"),
    until: datetime | None = Query(None, description="Newest timestamp to include"),
    window: AuditWindow | None = Query(None, description="Relative window: 24h, 7d or 30d"),
    limit: int = Query(100, ge=1, le=500, description="Maximum records returned"),
    service: AuditService = Depends(get_audit_service),
    _: PrincipalAccess = Depends(require_permission("users.permissions")),
):
    """Audit trail of one principal, newest first."""
    filters = AuditFilters(kinds=tuple(kind or ()), actor_id=actor_id, until=until, limit=limit)
    return await _collect(service, principal_id, since, window, filters)


@router.get("/audit/users", response_model=AuditHistoryResponse)
async def list_user_audit(
    kind: list[AuditKind] | None = Query(None, description="Only these kinds"),
    actor_id: uuid.UUID | None = Query(None, description="Only changes made by this actor"),
    since: datetime | None = Query(None, description="Oldest timestamp to include"),
    until: datetime | None = Query(None, description="Newest timestamp to include"),
    window: AuditWindow | None = Query(None, description="Relative window: 24h, 7d or 30d"),
    limit: int = Query(100, ge=1, le=500, description="Maximum records returned"),
    service: AuditService = Depends(get_audit_service),
    _: PrincipalAccess = Depends(require_permission("users.permissions")),
):
    """Audit trail across all principals, newest first."""
    filters = AuditFilters(kinds=tuple(kind or ()), actor_id=actor_id, until=until, limit=limit)
    return await _collect(service, None, since, window, filters)
