import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ...auth.context import EMPTY_CONTEXT, RequestContext
from ...crud.audit_record import AuditRecordRepository
from ...errors import StorageError
from ...models.audit_record import AuditKind, AuditRecord

logger = logging.getLogger("church.audit")


class AuditWindow(str, Enum):
    """Relative time windows offered by the audit trail screen."""

    LAST_DAY = "24h"
    LAST_WEEK = "7d"
    LAST_MONTH = "30d"

    def since(self, now: datetime | None = None) -> datetime:
        now = now or datetime.now(timezone.utc)
        return now - _WINDOW_SPANS[self]


_WINDOW_SPANS = {
    AuditWindow.LAST_DAY: timedelta(days=1),
    AuditWindow.LAST_WEEK: timedelta(days=7),
    AuditWindow.LAST_MONTH: timedelta(days=30),
}


@dataclass(frozen=True)
class AuditEntry:
    """A record to append. ``actor_id`` of ``None`` means the system acted."""

    kind: AuditKind
    actor_id: uuid.UUID | None
    target_id: uuid.UUID | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    required_permission: str | None = None
    reason: str | None = None
    context: RequestContext = EMPTY_CONTEXT

    @property
    def actor_type(self) -> str:
        return "system" if self.actor_id is None else "user"


@dataclass(frozen=True)
class AuditFilters:
    kinds: tuple[AuditKind, ...] = field(default_factory=tuple)
    actor_id: uuid.UUID | None = None
    until: datetime | None = None
    limit: int | None = None


class AuditService:
    """Append-only audit trail of access changes and denials."""

    def __init__(self, session: AsyncSession, page_size: int = 100):
        self.session = session
        self.audit_repo = AuditRecordRepository(session)
        self.page_size = page_size

    async def record(self, entry: AuditEntry) -> AuditRecord:
        """Append ``entry`` inside the caller's transaction.

        The caller commits or rolls back. Nothing is visible to other
        sessions until that commit.

        Raises:
            StorageError: If the insert fails
        """
        try:
            return await self.audit_repo.append(
                actor_id=entry.actor_id,
                actor_type=entry.actor_type,
                kind=entry.kind.value,
                target_id=entry.target_id,
                required_permission=entry.required_permission,
                before=entry.before,
                after=entry.after,
                reason=entry.reason,
                ip_address=entry.context.ip_address,
                user_agent=entry.context.user_agent,
            )
        except SQLAlchemyError as exc:
            logger.error(
                "Audit append failed kind=%s actor=%s target=%s",
                entry.kind.value,
                entry.actor_id or "system",
                entry.target_id,
                exc_info=exc,
            )
            raise StorageError("Audit record could not be written") from exc

    @staticmethod
    async def record_isolated(
        session_factory: async_sessionmaker[AsyncSession],
        entry: AuditEntry,
    ) -> AuditRecord:
        """Append and commit ``entry`` in a session of its own.

        Used for denial records so they never share a transaction with the
        request's business work.
        """
        async with session_factory() as audit_session:
            record = await AuditService(audit_session).record(entry)
            try:
                await audit_session.commit()
            except SQLAlchemyError as exc:
                await audit_session.rollback()
                raise StorageError("Audit record could not be written") from exc
            return record

    async def history(
        self,
        target_id: uuid.UUID | None,
        since: datetime | AuditWindow | None = None,
        filters: AuditFilters | None = None,
    ) -> AsyncIterator[AuditRecord]:
        """Yield matching records newest first, fetched lazily page by page.

        Args:
            target_id: Principal whose access changed, or ``None`` for all
            since: Lower bound on ``created_at`` or a relative window
            filters: Kind, actor, upper bound and total limit
        """
        filters = filters or AuditFilters()
        if isinstance(since, AuditWindow):
            since = since.since()

        remaining = filters.limit
        after_key: tuple[datetime, int] | None = None
        kinds = [kind.value for kind in filters.kinds] or None

        while remaining is None or remaining > 0:
            page_size = self.page_size if remaining is None else min(self.page_size, remaining)
            try:
                page = await self.audit_repo.list_page(
                    target_id=target_id,
                    actor_id=filters.actor_id,
                    kinds=kinds,
                    since=since,
                    until=filters.until,
                    after_key=after_key,
                    limit=page_size,
                )
            except SQLAlchemyError as exc:
                logger.error("Audit history query failed target=%s", target_id, exc_info=exc)
                raise StorageError("Audit history could not be read") from exc

            for record in page:
                yield record
            if remaining is not None:
                remaining -= len(page)
            if len(page) < page_size:
                return
            last = page[-1]
            after_key = (last.created_at, last.id)
