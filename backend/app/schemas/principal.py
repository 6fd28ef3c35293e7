import uuid

from pydantic import BaseModel, Field


class PrincipalAccessResponse(BaseModel):
    principal_id: uuid.UUID
    role: str
    overrides_added: list[str]
    overrides_removed: list[str]
    permissions: list[str]
    version: int | None = None


class AccessUpdate(BaseModel):
    role: str = Field(..., min_length=1, max_length=50)
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)
    expected_version: int | None = Field(None, ge=1)
    reason: str | None = Field(None, max_length=500)


class AssignmentReviewRequest(BaseModel):
    role: str = Field(..., min_length=1, max_length=50)
    added: list[str] = Field(default_factory=list)
    removed: list[str] = Field(default_factory=list)


class AssignmentReviewResponse(BaseModel):
    is_valid: bool
    errors: list[str]
    warnings: list[str]
    suggestions: list[str]
    permissions: list[str]
