from pydantic import BaseModel


class RoleResponse(BaseModel):
    name: str
    display_name: str
    is_administrator: bool
    permission_count: int


class RolePermissionsResponse(BaseModel):
    role: str
    display_name: str
    permissions: list[str]
