"""
Keep the persisted permission tables in step with the static catalog.

The in-memory catalog and role defaults are authoritative for every
decision. The ``permissions`` and ``role_permissions`` tables are a stored
copy used for joins, reporting and referential checks. Syncing:

- inserts permissions new to the catalog;
- removes permissions dropped from the catalog, unless a principal override
  still references them (refused with ``ConflictError``);
- rewrites each role's stored defaults and appends one
  ``role_defaults_changed`` audit record per role whose set changed.

Everything commits in a single transaction.
"""
import logging
from dataclasses import dataclass, field

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.roles import DEFAULT_ROLE_DEFAULTS, RoleDefaults
from ...crud.permission import PermissionRepository
from ...crud.principal import PrincipalRepository
from ...errors import AppError, ConflictError, StorageError
from ...models.audit_record import AuditKind
from ..audit.audit_service import AuditEntry, AuditService

logger = logging.getLogger("church.catalog")


@dataclass
class SyncReport:
    created: list[str] = field(default_factory=list)
    removed: list[str] = field(default_factory=list)
    roles_changed: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.removed or self.roles_changed)


class CatalogSyncService:
    def __init__(self, session: AsyncSession, defaults: RoleDefaults = DEFAULT_ROLE_DEFAULTS):
        self.session = session
        self.defaults = defaults
        self.catalog = defaults.catalog
        self.permission_repo = PermissionRepository(session)
        self.principal_repo = PrincipalRepository(session)
        self.audit_service = AuditService(session)

    async def sync(self, reason: str | None = None) -> SyncReport:
        report = SyncReport()
        try:
            stored = {permission.name: permission for permission in await self.permission_repo.list_all()}

            for definition in self.catalog.list_permissions():
                if definition.name not in stored:
                    stored[definition.name] = await self.permission_repo.create(
                        name=definition.name,
                        module=definition.module.value,
                        action=definition.action.value,
                        description=definition.description,
                    )
                    report.created.append(definition.name)

            stale = sorted(name for name in stored if name not in self.catalog)
            for name in stale:
                referencing = await self.principal_repo.list_referencing(name)
                if referencing:
                    raise ConflictError(
                        f"Permission '{name}' is still referenced by principal overrides",
                        details={
                            "permission": name,
                            "principals": sorted(str(principal.id) for principal in referencing),
                        },
                    )

            await self._sync_role_defaults(stored, report, reason or "catalog sync")

            for name in stale:
                await self.permission_repo.delete(stored[name])
                report.removed.append(name)

            await self.session.commit()
        except AppError:
            await self.session.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Catalog sync failed", exc_info=exc)
            raise StorageError("Catalog could not be synchronised") from exc

        if report.changed:
            logger.info(
                "Catalog synced created=%s removed=%s roles_changed=%s",
                report.created,
                report.removed,
                report.roles_changed,
            )
        return report

    async def _sync_role_defaults(self, stored: dict, report: SyncReport, reason: str) -> None:
        stored_roles = await self.permission_repo.list_role_names()
        # The administrator grant is computed, never stored
        roles = [role for role in self.defaults.roles() if not role.is_administrator]
        role_values = {role.value for role in roles}

        for role_value in sorted(stored_roles - role_values):
            await self._replace_role(role_value, frozenset(), stored, report, reason)

        for role in roles:
            await self._replace_role(
                role.value, self.defaults.defaults_for(role), stored, report, reason
            )

    async def _replace_role(
        self,
        role_value: str,
        wanted: frozenset[str],
        stored: dict,
        report: SyncReport,
        reason: str,
    ) -> None:
        current = await self.permission_repo.get_role_permission_names(role_value)
        if current == wanted:
            return

        for name in sorted(current - wanted):
            await self.permission_repo.remove_from_role(role_value, stored[name].id)
        for name in sorted(wanted - current):
            await self.permission_repo.assign_to_role(role_value, stored[name].id)

        await self.audit_service.record(
            AuditEntry(
                kind=AuditKind.ROLE_DEFAULTS_CHANGED,
                actor_id=None,
                before={"role": role_value, "permissions": sorted(current)},
                after={"role": role_value, "permissions": sorted(wanted)},
                reason=reason,
            )
        )
        report.roles_changed.append(role_value)
