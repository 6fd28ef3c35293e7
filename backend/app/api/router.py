from fastapi import APIRouter

from . import audit, permissions

router = APIRouter(prefix="/api")

_authz_routers = [
    permissions.router,
    audit.router,
]

for _router in _authz_routers:
    router.include_router(_router)
