import uuid
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    event,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from .base import Base


class AuditKind(str, Enum):
    ROLE_CHANGED = "role_changed"
    PERMISSION_GRANTED = "permission_granted"
    PERMISSION_REVOKED = "permission_revoked"
    PERMISSIONS_CHANGED = "permissions_changed"
    ACCESS_DENIED = "access_denied"
    PRINCIPAL_PROVISIONED = "principal_provisioned"
    ROLE_DEFAULTS_CHANGED = "role_defaults_changed"


ALLOWED_ACTOR_TYPES = frozenset({"user", "system"})


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditRecord(Base):
    __tablename__ = "audit_records"

    # Monotonic sequence, tie-breaker for records sharing a timestamp
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, server_default=func.now(), nullable=False
    )
    actor_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    actor_type: Mapped[str] = mapped_column(String(20), nullable=False)
    target_id: Mapped[uuid.UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    required_permission: Mapped[str | None] = mapped_column(String(100))
    before: Mapped[dict | None] = mapped_column(JSON)
    after: Mapped[dict | None] = mapped_column(JSON)
    reason: Mapped[str | None] = mapped_column(Text)
    ip_address: Mapped[str | None] = mapped_column(String(45))
    user_agent: Mapped[str | None] = mapped_column(Text)

    __table_args__ = (
        CheckConstraint("actor_type IN ('user', 'system')", name="valid_actor_type"),
        Index("ix_audit_records_target_created", "target_id", "created_at"),
    )

    @validates("actor_type")
    def validate_actor_type(self, key: str, value: str) -> str:
        if value not in ALLOWED_ACTOR_TYPES:
            raise ValueError(
                f"Invalid actor_type '{value}'. "
                f"Must be one of: {', '.join(sorted(ALLOWED_ACTOR_TYPES))}"
            )
        return value

    @validates("kind")
    def validate_kind(self, key: str, value: str) -> str:
        return AuditKind(value).value


class AuditImmutableError(RuntimeError):
    """Raised when code attempts to modify or remove a stored audit record."""


@event.listens_for(AuditRecord, "before_update")
def _reject_update(mapper, connection, target: AuditRecord) -> None:
    raise AuditImmutableError(f"Audit record {target.id} is append-only")


@event.listens_for(AuditRecord, "before_delete")
def _reject_delete(mapper, connection, target: AuditRecord) -> None:
    raise AuditImmutableError(f"Audit record {target.id} is append-only")
