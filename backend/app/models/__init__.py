from .base import Base
from .principal import Principal
from .permission import Permission
from .role_permission import RolePermission
from .audit_record import AuditImmutableError, AuditKind, AuditRecord

__all__ = [
    "Base",
    "Principal",
    "Permission",
    "RolePermission",
    "AuditRecord",
    "AuditKind",
    "AuditImmutableError",
]
