import json
import os
import threading
from urllib.parse import urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .auth.roles import Role


load_dotenv()

ALLOWED_DATABASE_SCHEMES = frozenset({"postgresql+asyncpg", "sqlite+aiosqlite"})


def _parse_bool(name: str, raw: str) -> bool:
    normalized = raw.strip().lower()
    if normalized in {"1", "true", "yes", "on"}:
        return True
    if normalized in {"0", "false", "no", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value")


def _parse_origins(raw_allowed_origins: str) -> list[str]:
    # Support both CSV format and JSON array format
    allowed_origins: list[str] = []
    if raw_allowed_origins.startswith("["):
        try:
            parsed_list = json.loads(raw_allowed_origins)
        except json.JSONDecodeError as exc:
            raise ValueError(f"ALLOWED_ORIGINS JSON is malformed: {exc}") from exc
        if not isinstance(parsed_list, list):
            raise ValueError("ALLOWED_ORIGINS JSON must be an array")
        allowed_origins = [
            origin.strip() for origin in parsed_list if isinstance(origin, str) and origin.strip()
        ]
    else:
        allowed_origins = [
            origin.strip() for origin in raw_allowed_origins.split(",") if origin.strip()
        ]

    if not allowed_origins:
        raise ValueError("ALLOWED_ORIGINS must contain at least one origin")

    if "*" in allowed_origins:
        raise ValueError(
            "ALLOWED_ORIGINS cannot contain '*' when credentialed requests are used"
        )

    for origin in allowed_origins:
        parsed = urlparse(origin)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ValueError(
                "ALLOWED_ORIGINS must contain valid http/https origins with host"
            )
    return allowed_origins


class Settings(BaseModel):
    app_name: str = Field(default="Church Management Backend")
    debug: bool = Field(default=False)
    database_url: str = Field(default="")
    allowed_origins: list[str] = Field(default_factory=list)
    db_pool_size: int = Field(default=5)
    db_max_overflow: int = Field(default=10)
    db_pool_recycle: int = Field(default=1800)
    db_pool_pre_ping: bool = Field(default=True)
    principal_header: str = Field(default="X-Principal-Id")
    default_role: str = Field(default="member")
    storage_timeout_seconds: float = Field(default=2.0)
    mirror_max_age_seconds: int = Field(default=300)
    audit_page_size: int = Field(default=100)

    @classmethod
    def from_env(cls) -> "Settings":
        raw_allowed_origins = os.getenv("ALLOWED_ORIGINS", "").strip()
        if not raw_allowed_origins:
            raise ValueError("ALLOWED_ORIGINS environment variable must be set")
        allowed_origins = _parse_origins(raw_allowed_origins)

        database_url = os.getenv("DATABASE_URL", "").strip()
        if not database_url:
            raise ValueError("DATABASE_URL environment variable must be set")

        parsed_db = urlparse(database_url)
        if parsed_db.scheme not in ALLOWED_DATABASE_SCHEMES:
            raise ValueError(
                "DATABASE_URL must start with one of: "
                + ", ".join(f"'{scheme}://'" for scheme in sorted(ALLOWED_DATABASE_SCHEMES))
            )
        if parsed_db.scheme == "postgresql+asyncpg" and not parsed_db.hostname:
            raise ValueError("DATABASE_URL must include hostname")

        db_pool_size = int(os.getenv("DB_POOL_SIZE", cls.model_fields["db_pool_size"].default))
        if db_pool_size <= 0:
            raise ValueError("DB_POOL_SIZE must be greater than 0")

        db_max_overflow = int(
            os.getenv("DB_MAX_OVERFLOW", cls.model_fields["db_max_overflow"].default)
        )
        if db_max_overflow < 0:
            raise ValueError("DB_MAX_OVERFLOW must be greater than or equal to 0")

        db_pool_recycle = int(
            os.getenv("DB_POOL_RECYCLE", cls.model_fields["db_pool_recycle"].default)
        )
        if db_pool_recycle <= 0:
            raise ValueError("DB_POOL_RECYCLE must be greater than 0")

        db_pool_pre_ping = _parse_bool(
            "DB_POOL_PRE_PING",
            os.getenv("DB_POOL_PRE_PING", str(cls.model_fields["db_pool_pre_ping"].default)),
        )

        principal_header = os.getenv(
            "PRINCIPAL_HEADER", cls.model_fields["principal_header"].default
        ).strip()
        if not principal_header:
            raise ValueError("PRINCIPAL_HEADER must not be empty")

        storage_timeout = float(
            os.getenv(
                "STORAGE_TIMEOUT_SECONDS",
                cls.model_fields["storage_timeout_seconds"].default,
            )
        )
        if storage_timeout <= 0:
            raise ValueError("STORAGE_TIMEOUT_SECONDS must be greater than 0")

        mirror_max_age = int(
            os.getenv("MIRROR_MAX_AGE_SECONDS", cls.model_fields["mirror_max_age_seconds"].default)
        )
        if mirror_max_age <= 0:
            raise ValueError("MIRROR_MAX_AGE_SECONDS must be greater than 0")

        audit_page_size = int(
            os.getenv("AUDIT_PAGE_SIZE", cls.model_fields["audit_page_size"].default)
        )
        if not 1 <= audit_page_size <= 1000:
            raise ValueError("AUDIT_PAGE_SIZE must be between 1 and 1000")

        default_role = os.getenv("DEFAULT_ROLE", cls.model_fields["default_role"].default).strip()
        parsed_role = Role.parse(default_role)
        if parsed_role is Role.UNKNOWN or parsed_role.is_administrator:
            raise ValueError("DEFAULT_ROLE must name a non-administrator role")

        return cls(
            app_name=os.getenv("APP_NAME", cls.model_fields["app_name"].default),
            debug=os.getenv("DEBUG", "false").lower() == "true",
            database_url=database_url,
            allowed_origins=allowed_origins,
            db_pool_size=db_pool_size,
            db_max_overflow=db_max_overflow,
            db_pool_recycle=db_pool_recycle,
            db_pool_pre_ping=db_pool_pre_ping,
            principal_header=principal_header,
            default_role=parsed_role.value,
            storage_timeout_seconds=storage_timeout,
            mirror_max_age_seconds=mirror_max_age,
            audit_page_size=audit_page_size,
        )


# Settings are built on first access so that importing the package does not
# require a fully populated environment.
_settings_instance: Settings | None = None
_settings_lock = threading.Lock()


def get_settings() -> Settings:
    """Get settings instance, creating it on first access.

    Uses double-checked locking so concurrent first accesses build a
    single instance.

    Raises:
        ValueError: If required environment variables are missing or invalid
    """
    global _settings_instance

    if _settings_instance is not None:
        return _settings_instance

    with _settings_lock:
        if _settings_instance is None:
            _settings_instance = Settings.from_env()

    return _settings_instance


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings_instance
    with _settings_lock:
        _settings_instance = None


class _SettingsProxy:
    """Proxy to defer settings creation until first attribute access."""

    def __getattr__(self, name: str):
        return getattr(get_settings(), name)


settings = _SettingsProxy()  # type: ignore[assignment]
