import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.principal import Principal


class PrincipalRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, principal_id: uuid.UUID) -> Principal | None:
        result = await self.session.execute(
            select(Principal)
            .where(Principal.id == principal_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, principal_id: uuid.UUID) -> Principal | None:
        result = await self.session.execute(
            select(Principal)
            .where(Principal.id == principal_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create(self, principal_id: uuid.UUID, role: str) -> Principal:
        principal = Principal(
            id=principal_id,
            role=role,
            overrides_added=[],
            overrides_removed=[],
        )
        self.session.add(principal)
        await self.session.flush()
        return principal

    async def replace_access(
        self,
        principal: Principal,
        role: str,
        added: list[str],
        removed: list[str],
    ) -> Principal:
        principal.role = role
        principal.overrides_added = added
        principal.overrides_removed = removed
        await self.session.flush()
        return principal

    async def list_referencing(self, permission_name: str) -> list[Principal]:
        """Principals whose overrides mention ``permission_name``."""
        result = await self.session.execute(select(Principal))
        return [
            principal
            for principal in result.scalars().all()
            if permission_name in (principal.overrides_added or [])
            or permission_name in (principal.overrides_removed or [])
        ]
