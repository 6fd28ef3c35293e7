import uuid
from collections.abc import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .auth.roles import DEFAULT_ROLE_DEFAULTS, Role, RoleDefaults
from .config import settings
from .database import get_session, get_session_factory
from .errors import AuthError, InternalConfigurationError
from .services.audit.audit_service import AuditService
from .services.authz.permission_service import PermissionService


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    async for session in get_session():
        yield session


def get_db_session_factory() -> async_sessionmaker[AsyncSession]:
    return get_session_factory()


def get_role_defaults() -> RoleDefaults:
    return DEFAULT_ROLE_DEFAULTS


def get_default_role() -> Role:
    role = Role.parse(settings.default_role)
    if role is Role.UNKNOWN or role.is_administrator:
        raise InternalConfigurationError(details={"reason": "DEFAULT_ROLE is not assignable"})
    return role


async def get_current_principal_id(request: Request) -> uuid.UUID:
    """Read the authenticated principal from the upstream proxy header."""
    raw = request.headers.get(settings.principal_header)
    if raw is None or not raw.strip():
        raise AuthError("Not authenticated")
    try:
        return uuid.UUID(raw.strip())
    except ValueError:
        raise AuthError("Invalid principal identifier") from None


def get_permission_service(
    db: AsyncSession = Depends(get_db),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_db_session_factory),
    defaults: RoleDefaults = Depends(get_role_defaults),
    default_role: Role = Depends(get_default_role),
) -> PermissionService:
    return PermissionService(
        db,
        defaults=defaults,
        session_factory=session_factory,
        storage_timeout=settings.storage_timeout_seconds,
        default_role=default_role,
    )


def get_audit_service(db: AsyncSession = Depends(get_db)) -> AuditService:
    return AuditService(db, page_size=settings.audit_page_size)
