import uuid
from datetime import datetime
from typing import Any

from pydantic import BaseModel


class AuditRecordResponse(BaseModel):
    id: int
    created_at: datetime
    actor_id: uuid.UUID | None
    actor_type: str
    target_id: uuid.UUID | None
    kind: str
    required_permission: str | None = None
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None
    reason: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None

    class Config:
        from_attributes = True


class AuditHistoryResponse(BaseModel):
    items: list[AuditRecordResponse]
    count: int
