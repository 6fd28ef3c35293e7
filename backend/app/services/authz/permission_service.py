import asyncio
import logging
import uuid
from collections.abc import Awaitable, Iterable
from dataclasses import dataclass
from typing import TypeVar

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from ...auth.context import EMPTY_CONTEXT, RequestContext
from ...auth.resolver import PermissionOverrides, resolve_effective_permissions
from ...auth.roles import DEFAULT_ROLE_DEFAULTS, Role, RoleDefaults
from ...crud.principal import PrincipalRepository
from ...errors import (
    AppError,
    ConflictError,
    InternalConfigurationError,
    NotFoundError,
    PermissionDenied,
    StorageError,
    UnknownPermission,
    ValidationError,
)
from ...models.audit_record import AuditKind
from ...models.principal import Principal
from ..audit.audit_service import AuditEntry, AuditService

logger = logging.getLogger("church.authz")

DEFAULT_STORAGE_TIMEOUT_SECONDS = 2.0

T = TypeVar("T")


@dataclass(frozen=True)
class PrincipalAccess:
    """Point-in-time view of one principal's access. Never cached."""

    principal_id: uuid.UUID
    role: Role
    overrides: PermissionOverrides
    permissions: frozenset[str]
    version: int | None = None

    @property
    def is_stored(self) -> bool:
        return self.version is not None

    def snapshot(self) -> dict:
        return {
            "role": self.role.value,
            "overrides_added": sorted(self.overrides.added),
            "overrides_removed": sorted(self.overrides.removed),
            "permissions": sorted(self.permissions),
            "version": self.version,
        }


def classify_change(before: PrincipalAccess, after: PrincipalAccess) -> AuditKind:
    """Pick the audit kind for a change.

    An edit that leaves role and permissions as they were is still audited, as
    ``permissions_changed`` with matching before and after snapshots.
    """
    if before.role is not after.role:
        return AuditKind.ROLE_CHANGED
    gained = after.permissions - before.permissions
    lost = before.permissions - after.permissions
    if gained and not lost:
        return AuditKind.PERMISSION_GRANTED
    if lost and not gained:
        return AuditKind.PERMISSION_REVOKED
    return AuditKind.PERMISSIONS_CHANGED


class PermissionService:
    """Resolve, check and change what a principal may do.

    Every decision re-reads the principal from storage. Storage failures and
    timeouts while resolving resolve to denial, never to access.
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        defaults: RoleDefaults = DEFAULT_ROLE_DEFAULTS,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        storage_timeout: float = DEFAULT_STORAGE_TIMEOUT_SECONDS,
        default_role: Role = Role.MEMBER,
    ):
        self.session = session
        self.defaults = defaults
        self.catalog = defaults.catalog
        self.principal_repo = PrincipalRepository(session)
        self.audit_service = AuditService(session)
        self.session_factory = session_factory
        self.storage_timeout = storage_timeout
        self.default_role = default_role

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def _storage_call(self, awaitable: Awaitable[T], principal_id: uuid.UUID) -> T:
        try:
            return await asyncio.wait_for(awaitable, timeout=self.storage_timeout)
        except asyncio.TimeoutError as exc:
            logger.error(
                "Principal lookup timed out principal=%s timeout=%.2fs",
                principal_id,
                self.storage_timeout,
            )
            raise StorageError("Principal state could not be read") from exc
        except SQLAlchemyError as exc:
            logger.error("Principal lookup failed principal=%s", principal_id, exc_info=exc)
            raise StorageError("Principal state could not be read") from exc

    def _access_from(self, principal_id: uuid.UUID, principal: Principal | None) -> PrincipalAccess:
        if principal is None:
            # Deny-by-default for principals that were never provisioned
            return PrincipalAccess(
                principal_id=principal_id,
                role=Role.UNKNOWN,
                overrides=PermissionOverrides(),
                permissions=frozenset(),
            )
        role = Role.parse(principal.role)
        overrides = PermissionOverrides.of(principal.overrides_added, principal.overrides_removed)
        return PrincipalAccess(
            principal_id=principal_id,
            role=role,
            overrides=overrides,
            permissions=resolve_effective_permissions(
                role, overrides, self.defaults, principal_ref=principal_id
            ),
            version=principal.version,
        )

    async def access_for(self, principal_id: uuid.UUID) -> PrincipalAccess:
        """Load a principal and resolve its effective permissions.

        Raises:
            StorageError: If storage fails or times out
        """
        principal = await self._storage_call(self.principal_repo.get(principal_id), principal_id)
        return self._access_from(principal_id, principal)

    async def effective_permissions(self, principal_id: uuid.UUID) -> frozenset[str]:
        access = await self.access_for(principal_id)
        return access.permissions

    async def has_permission(self, principal_id: uuid.UUID | None, permission_name: str) -> bool:
        """Answer "does principal X hold permission P?" without raising.

        Unknown permissions, missing principals and storage failures all
        answer ``False``.
        """
        if principal_id is None or permission_name not in self.catalog:
            return False
        try:
            access = await self.access_for(principal_id)
        except StorageError:
            return False
        return permission_name in access.permissions

    # ------------------------------------------------------------------
    # Enforcement
    # ------------------------------------------------------------------

    async def authorize(
        self,
        principal_id: uuid.UUID,
        permission_name: str,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> PrincipalAccess:
        """Allow or deny one operation for one principal.

        Returns:
            PrincipalAccess: The access snapshot the decision was made on

        Raises:
            InternalConfigurationError: If the permission is not in the catalog
            StorageError: If the principal's state cannot be read
            PermissionDenied: If the principal lacks the permission
        """
        if permission_name not in self.catalog:
            logger.error(
                "Guard references permission missing from catalog permission=%s principal=%s method=%s path=%s",
                permission_name,
                principal_id,
                context.method,
                context.path,
            )
            raise InternalConfigurationError(
                details={"reason": "guard references an undefined permission"}
            )

        access = await self.access_for(principal_id)

        if permission_name in access.permissions:
            logger.debug(
                "Permission granted principal=%s permission=%s", principal_id, permission_name
            )
            return access

        logger.warning(
            "Permission denied principal=%s role=%s required=%s method=%s path=%s",
            principal_id,
            access.role.value,
            permission_name,
            context.method,
            context.path,
        )
        await self._record_denial(access, permission_name, context)
        raise PermissionDenied(required=permission_name, role=access.role.value)

    async def _record_denial(
        self,
        access: PrincipalAccess,
        permission_name: str,
        context: RequestContext,
    ) -> None:
        entry = AuditEntry(
            kind=AuditKind.ACCESS_DENIED,
            actor_id=access.principal_id,
            target_id=access.principal_id,
            required_permission=permission_name,
            after={
                "required": permission_name,
                "role": access.role.value,
                "permissions": sorted(access.permissions),
                "request_method": context.method,
                "request_path": context.path,
            },
            context=context,
        )
        session_factory = self.session_factory
        if session_factory is None:
            from ...database import get_session_factory

            session_factory = get_session_factory()
        try:
            await AuditService.record_isolated(session_factory, entry)
        except (StorageError, SQLAlchemyError):
            # The denial stands even when it cannot be recorded
            logger.exception(
                "Denial audit write failed principal=%s required=%s",
                access.principal_id,
                permission_name,
            )

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    async def ensure_principal(
        self,
        principal_id: uuid.UUID,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> PrincipalAccess:
        """Return the principal's access, provisioning it on first contact.

        A new principal gets the configured default role and no overrides.
        Creation and its audit record commit together.
        """
        access = await self.access_for(principal_id)
        if access.is_stored:
            return access

        try:
            principal = await self.principal_repo.create(principal_id, self.default_role.value)
            created = self._access_from(principal_id, principal)
            await self.audit_service.record(
                AuditEntry(
                    kind=AuditKind.PRINCIPAL_PROVISIONED,
                    actor_id=None,
                    target_id=principal_id,
                    after=created.snapshot(),
                    context=context,
                )
            )
            await self.session.commit()
        except IntegrityError:
            # A concurrent request provisioned the same principal first
            await self.session.rollback()
            return await self.access_for(principal_id)
        except StorageError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Principal provisioning failed principal=%s", principal_id, exc_info=exc)
            raise StorageError("Principal could not be provisioned") from exc

        logger.info("Provisioned principal=%s role=%s", principal_id, created.role.value)
        return created

    def _validate_request(
        self,
        role: Role | str,
        added: Iterable[str],
        removed: Iterable[str],
    ) -> tuple[Role, PermissionOverrides]:
        overrides = PermissionOverrides.of(added, removed)
        conflicts = overrides.conflicts
        if conflicts:
            raise ValidationError(
                "A permission cannot be both granted and revoked",
                details={"conflicts": sorted(conflicts)},
            )

        parsed_role = Role.parse(role)
        if parsed_role is Role.UNKNOWN:
            raise ValidationError("Unknown role", details={"role": str(getattr(role, "value", role))})

        unknown = self.catalog.unknown(overrides.added | overrides.removed)
        if unknown:
            logger.error("Override request references unknown permissions %s", sorted(unknown))
            raise UnknownPermission(unknown)
        return parsed_role, overrides

    async def set_role_and_overrides(
        self,
        actor_id: uuid.UUID | None,
        principal_id: uuid.UUID,
        role: Role | str,
        added: Iterable[str],
        removed: Iterable[str],
        *,
        expected_version: int | None = None,
        reason: str | None = None,
        context: RequestContext = EMPTY_CONTEXT,
    ) -> PrincipalAccess:
        """Atomically replace a principal's role and overrides.

        The state change and exactly one audit record commit in one
        transaction. If either fails nothing is written.
        Re-submitting the current assignment is not skipped: it still writes
        one audit record, see :func:`classify_change`.

        Args:
            actor_id: Who made the change (``None`` for the system)
            principal_id: Whose access changes
            role: New role
            added: Complete new set of granted overrides
            removed: Complete new set of revoked overrides
            expected_version: Reject the write unless the stored version matches
            reason: Free-text justification kept on the audit record
            context: Request metadata for the audit record

        Raises:
            ValidationError: Conflicting override sets or unknown role
            UnknownPermission: An override names a permission outside the catalog
            NotFoundError: The principal does not exist
            ConflictError: ``expected_version`` is stale
            StorageError: The state change or the audit write failed
        """
        new_role, overrides = self._validate_request(role, added, removed)

        try:
            principal = await self._storage_call(
                self.principal_repo.get_for_update(principal_id), principal_id
            )
            if principal is None:
                raise NotFoundError("Principal not found", details={"principal_id": str(principal_id)})
            if expected_version is not None and principal.version != expected_version:
                raise ConflictError(
                    "Principal was modified by another request",
                    details={"expected_version": expected_version, "current_version": principal.version},
                )

            before = self._access_from(principal_id, principal)
            await self.principal_repo.replace_access(
                principal,
                new_role.value,
                sorted(overrides.added),
                sorted(overrides.removed),
            )
            after = self._access_from(principal_id, principal)

            await self.audit_service.record(
                AuditEntry(
                    kind=classify_change(before, after),
                    actor_id=actor_id,
                    target_id=principal_id,
                    before=before.snapshot(),
                    after=after.snapshot(),
                    reason=reason,
                    context=context,
                )
            )
            await self.session.commit()
        except AppError:
            await self.session.rollback()
            raise
        except StaleDataError as exc:
            await self.session.rollback()
            raise ConflictError("Principal was modified by another request") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error(
                "Access change failed actor=%s principal=%s", actor_id, principal_id, exc_info=exc
            )
            raise StorageError("Access change could not be saved") from exc

        logger.info(
            "Access changed actor=%s principal=%s role=%s->%s version=%s",
            actor_id or "system",
            principal_id,
            before.role.value,
            after.role.value,
            after.version,
        )
        return after
