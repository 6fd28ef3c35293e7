from pydantic import BaseModel, Field


class PermissionResponse(BaseModel):
    name: str = Field(..., min_length=3, max_length=100)
    module: str
    action: str
    description: str


class PermissionCatalogResponse(BaseModel):
    items: list[PermissionResponse]
    total: int
