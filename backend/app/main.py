import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from .api.router import router as api_router
from .auth.guards import check_enforcement_coverage
from .config import settings
from .database import dispose_engine, get_engine
from .errors import (
    AppError,
    AuthError,
    ConflictError,
    InternalConfigurationError,
    InternalError,
    NotFoundError,
    PermissionDenied,
    StorageError,
    ValidationError,
    error_payload,
    permission_denied_payload,
    resolve_error_code,
)

log_level_name = os.getenv("LOG_LEVEL", "INFO").upper()


def _resolve_log_level(value: str) -> int:
    level = logging.getLevelName(value)
    return level if isinstance(level, int) else logging.INFO


log_level = _resolve_log_level(log_level_name)

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=log_level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )
logger = logging.getLogger("church")
logger.setLevel(log_level)


SAFE_HTTP_MESSAGES: dict[int, str] = {
    status.HTTP_400_BAD_REQUEST: ValidationError.message,
    status.HTTP_401_UNAUTHORIZED: AuthError.message,
    status.HTTP_403_FORBIDDEN: PermissionDenied.message,
    status.HTTP_404_NOT_FOUND: NotFoundError.message,
    status.HTTP_409_CONFLICT: ConflictError.message,
    status.HTTP_422_UNPROCESSABLE_ENTITY: ValidationError.message,
    status.HTTP_503_SERVICE_UNAVAILABLE: StorageError.message,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application")
    if settings.debug:
        logger.warning("DEBUG=true, do not use in production")

    problems = check_enforcement_coverage(app)
    if problems:
        raise InternalConfigurationError(
            "Route guards do not match the enforcement matrix",
            details={"problems": problems},
        )

    yield

    await dispose_engine()


class OptionsPreflightMiddleware(BaseHTTPMiddleware):
    """
    Answer OPTIONS preflight requests before they reach CORSMiddleware.

    Every preflight gets a 204; only allowed origins get CORS headers.
    """

    def __init__(self, app, allowed_origins: list[str]):
        super().__init__(app)
        self.allowed_origins = set(allowed_origins)

    async def dispatch(self, request: Request, call_next):
        if request.method == "OPTIONS":
            origin = request.headers.get("origin")
            response = Response(status_code=status.HTTP_204_NO_CONTENT)

            if origin and origin in self.allowed_origins:
                response.headers["Access-Control-Allow-Origin"] = origin
                response.headers["Access-Control-Allow-Credentials"] = "true"
                response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, PATCH, DELETE, OPTIONS, HEAD"

                requested_headers = request.headers.get("access-control-request-headers")
                if requested_headers:
                    response.headers["Access-Control-Allow-Headers"] = requested_headers
                else:
                    response.headers["Access-Control-Allow-Headers"] = (
                        f"content-type, {settings.principal_header.lower()}"
                    )

                response.headers["Access-Control-Max-Age"] = "600"
                response.headers["Vary"] = "Origin"

            return response

        return await call_next(request)


def _log_error(request: Request, status_code: int, code: str, message: str, exc: Exception | None = None) -> None:
    request_id = request.headers.get("x-request-id")
    log_message = f"[{code}] path={request.url.path} request_id={request_id or 'n/a'} message={message}"
    if status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
        logger.error(log_message, exc_info=exc)
    else:
        logger.warning(log_message)


def _extract_canonical_error(detail: object) -> dict[str, object] | None:
    if not isinstance(detail, dict):
        return None
    error = detail.get("error")
    if not isinstance(error, dict):
        return None
    if not isinstance(error.get("code"), str) or not isinstance(
        error.get("message"), str
    ):
        return None
    if "details" not in error:
        return {"error": {**error, "details": None}}
    return detail


async def handle_app_error(request: Request, exc: AppError) -> JSONResponse:
    _log_error(request, exc.status_code, exc.code, exc.message, exc)
    if isinstance(exc, PermissionDenied):
        return JSONResponse(status_code=exc.status_code, content=permission_denied_payload(exc))
    # Server-side faults never expose internal state
    details = None if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR else exc.details
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(exc.code, exc.message, details),
    )


async def handle_http_exception(
    request: Request, exc: HTTPException | StarletteHTTPException
) -> JSONResponse:
    payload = _extract_canonical_error(exc.detail)
    if payload is not None:
        error = payload["error"]
        code = error.get("code", resolve_error_code(exc.status_code))
        message = error.get("message", "")
        _log_error(request, exc.status_code, str(code), str(message))
        return JSONResponse(status_code=exc.status_code, content=payload)
    safe_message = SAFE_HTTP_MESSAGES.get(
        exc.status_code,
        InternalError.message if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR else "Request failed",
    )
    detail = exc.detail
    detail_message = detail if isinstance(detail, str) else ""
    log_message = detail_message.strip() or safe_message
    code = resolve_error_code(exc.status_code)
    _log_error(request, exc.status_code, code, log_message)
    return JSONResponse(
        status_code=exc.status_code,
        content=error_payload(code, safe_message),
    )


async def handle_request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    message = "Request validation failed"
    _log_error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, ValidationError.code, message)
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=error_payload(ValidationError.code, message, jsonable_errors(exc)),
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict[str, object]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


async def handle_sqlalchemy_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    _log_error(
        request,
        StorageError.status_code,
        StorageError.code,
        "Unhandled storage error",
        exc,
    )
    return JSONResponse(
        status_code=StorageError.status_code,
        content=error_payload(StorageError.code, StorageError.message),
    )


async def handle_unhandled_exception(
    request: Request, exc: Exception
) -> JSONResponse:
    _log_error(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        InternalError.code,
        InternalError.message,
        exc,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=error_payload(InternalError.code, InternalError.message),
    )


def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, debug=settings.debug, lifespan=lifespan)

    # CORSMiddleware is added first so it runs after the preflight shortcut
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"],
        allow_headers=["*"],
    )
    app.add_middleware(OptionsPreflightMiddleware, allowed_origins=settings.allowed_origins)

    app.include_router(api_router)

    app.add_exception_handler(AppError, handle_app_error)
    app.add_exception_handler(HTTPException, handle_http_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_request_validation_error)
    app.add_exception_handler(SQLAlchemyError, handle_sqlalchemy_error)
    app.add_exception_handler(Exception, handle_unhandled_exception)

    @app.get("/health", tags=["health"])
    async def healthcheck() -> Response:
        try:
            async with get_engine().connect() as connection:
                await connection.execute(text("SELECT 1"))
        except SQLAlchemyError as exc:
            logger.error("Healthcheck database query failed: %s", exc)
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"status": "error"}
            )

        logger.debug("Healthcheck passed")
        return JSONResponse(status_code=status.HTTP_200_OK, content={"status": "ok"})

    return app


app = create_app()
