import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.permission import Permission
from ..models.role_permission import RolePermission


class PermissionRepository:
    """Persisted mirror of the permission catalog and role defaults."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        name: str,
        module: str,
        action: str,
        description: str | None = None,
    ) -> Permission:
        permission = Permission(
            name=name,
            module=module,
            action=action,
            description=description,
        )
        self.session.add(permission)
        await self.session.flush()
        return permission

    async def list_all(self) -> list[Permission]:
        result = await self.session.execute(select(Permission).order_by(Permission.name))
        return list(result.scalars().all())

    async def delete(self, permission: Permission) -> None:
        await self.session.delete(permission)
        await self.session.flush()

    async def get_role_permission_names(self, role: str) -> set[str]:
        result = await self.session.execute(
            select(Permission.name)
            .join(RolePermission, RolePermission.permission_id == Permission.id)
            .where(RolePermission.role == role)
        )
        return set(result.scalars().all())

    async def list_role_names(self) -> set[str]:
        result = await self.session.execute(select(RolePermission.role).distinct())
        return set(result.scalars().all())

    async def assign_to_role(self, role: str, permission_id: uuid.UUID) -> RolePermission:
        role_permission = RolePermission(role=role, permission_id=permission_id)
        self.session.add(role_permission)
        await self.session.flush()
        return role_permission

    async def remove_from_role(self, role: str, permission_id: uuid.UUID) -> None:
        result = await self.session.execute(
            select(RolePermission).where(
                RolePermission.role == role,
                RolePermission.permission_id == permission_id,
            )
        )
        role_permission = result.scalar_one_or_none()
        if role_permission:
            await self.session.delete(role_permission)
            await self.session.flush()
