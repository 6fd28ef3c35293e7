import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.audit_record import AuditRecord


class AuditRecordRepository:
    """Append and read audit records. There is no update or delete."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        *,
        actor_id: uuid.UUID | None,
        actor_type: str,
        kind: str,
        target_id: uuid.UUID | None = None,
        required_permission: str | None = None,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        reason: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> AuditRecord:
        record = AuditRecord(
            actor_id=actor_id,
            actor_type=actor_type,
            kind=kind,
            target_id=target_id,
            required_permission=required_permission,
            before=before,
            after=after,
            reason=reason,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.session.add(record)
        await self.session.flush()
        return record

    async def list_page(
        self,
        *,
        target_id: uuid.UUID | None = None,
        actor_id: uuid.UUID | None = None,
        kinds: list[str] | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        after_key: tuple[datetime, int] | None = None,
        limit: int = 100,
    ) -> list[AuditRecord]:
        """One newest-first page, continuing strictly below ``after_key``."""
        query = select(AuditRecord)

        conditions = []
        if target_id is not None:
            conditions.append(AuditRecord.target_id == target_id)
        if actor_id is not None:
            conditions.append(AuditRecord.actor_id == actor_id)
        if kinds:
            conditions.append(AuditRecord.kind.in_(kinds))
        if since is not None:
            conditions.append(AuditRecord.created_at >= since)
        if until is not None:
            conditions.append(AuditRecord.created_at <= until)
        if after_key is not None:
            created_at, record_id = after_key
            conditions.append(
                or_(
                    AuditRecord.created_at < created_at,
                    and_(AuditRecord.created_at == created_at, AuditRecord.id < record_id),
                )
            )

        if conditions:
            query = query.where(and_(*conditions))

        query = query.order_by(AuditRecord.created_at.desc(), AuditRecord.id.desc()).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())
