from typing import Any

from fastapi import status


class AppError(Exception):
    code: str = "APP_ERROR"
    message: str = "Application error"
    status_code: int = status.HTTP_400_BAD_REQUEST
    details: Any | None = None

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Any | None = None,
    ):
        if message is not None:
            self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        if details is not None:
            self.details = details

        super().__init__(self.message)


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    message = "Validation error"
    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundError(AppError):
    code = "NOT_FOUND"
    message = "Resource not found"
    status_code = status.HTTP_404_NOT_FOUND


class AuthError(AppError):
    code = "AUTH_ERROR"
    message = "Authentication failed"
    status_code = status.HTTP_401_UNAUTHORIZED


class PermissionDenied(AppError):
    """The principal does not hold the permission an operation requires.

    Only the required permission name and the principal's role are
    exposed to the caller.
    """

    code = "PERMISSION_DENIED"
    message = "Insufficient permissions"
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, required: str, role: str):
        self.required = required
        self.role = role
        super().__init__(details={"required": required, "role": role})


class ConflictError(AppError):
    code = "CONFLICT_ERROR"
    message = "Resource conflict"
    status_code = status.HTTP_409_CONFLICT


class UnknownPermission(AppError):
    code = "UNKNOWN_PERMISSION"
    message = "Unknown permission"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, names: str | list[str] | tuple[str, ...] | set[str] | frozenset[str]):
        if isinstance(names, str):
            names = [names]
        self.names = tuple(sorted(names))
        super().__init__(
            f"Unknown permission(s): {', '.join(self.names)}",
            details={"permissions": list(self.names)},
        )


class InternalError(AppError):
    code = "INTERNAL_ERROR"
    message = "Internal server error"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR


class InternalConfigurationError(InternalError):
    code = "CONFIGURATION_ERROR"
    message = "Server authorization configuration error"


class DuplicatePermission(InternalConfigurationError):
    code = "DUPLICATE_PERMISSION"
    message = "Duplicate permission in catalog"


class StorageError(AppError):
    code = "STORAGE_ERROR"
    message = "Storage unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


ERROR_CODE_BY_STATUS: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ValidationError.code,
    status.HTTP_401_UNAUTHORIZED: AuthError.code,
    status.HTTP_403_FORBIDDEN: PermissionDenied.code,
    status.HTTP_404_NOT_FOUND: NotFoundError.code,
    status.HTTP_409_CONFLICT: ConflictError.code,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ValidationError.code,
    status.HTTP_503_SERVICE_UNAVAILABLE: StorageError.code,
}


def error_payload(
    code: str,
    message: str,
    details: Any | None = None,
) -> dict[str, Any]:
    return {"error": {"code": code, "message": message, "details": details}}


def permission_denied_payload(exc: PermissionDenied) -> dict[str, Any]:
    payload = error_payload(exc.code, exc.message, exc.details)
    payload["required"] = exc.required
    payload["role"] = exc.role
    return payload


def resolve_error_code(status_code: int) -> str:
    if status_code in ERROR_CODE_BY_STATUS:
        return ERROR_CODE_BY_STATUS[status_code]
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        return InternalError.code
    return "UNKNOWN_ERROR"
