import os
from dataclasses import dataclass, field

# System routes and static asset names that user mappings must never shadow.
DEFAULT_RESERVED_PATHS = (
    "login",
    "admin",
    "__total_count",
    "admin.html",
    "login.html",
    "daisyui@5.css",
    "tailwindcss@4.js",
    "qr-code-styling.js",
    "zxing.js",
    "robots.txt",
    "wechat.svg",
    "favicon.svg",
    "api",
    "health",
    "docs",
    "redoc",
    "openapi.json",
)


def _csv(value: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in value.split(",") if part.strip())


@dataclass(frozen=True)
class Settings:
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./shortlink.db")
    legacy_redis_url: str = os.getenv("LEGACY_REDIS_URL", "redis://localhost:6379/0")
    base_url: str = os.getenv("BASE_URL", "http://localhost:8000")
    admin_password: str = os.getenv("ADMIN_PASSWORD", "")
    reserved_paths: frozenset[str] = field(
        default_factory=lambda: frozenset(
            DEFAULT_RESERVED_PATHS + _csv(os.getenv("EXTRA_RESERVED_PATHS", ""))
        )
    )
    default_page_size: int = int(os.getenv("DEFAULT_PAGE_SIZE", "10"))
    max_page_size: int = int(os.getenv("MAX_PAGE_SIZE", "100"))
    cleanup_batch_size: int = int(os.getenv("CLEANUP_BATCH_SIZE", "100"))
    cleanup_interval_seconds: int = int(os.getenv("CLEANUP_INTERVAL_SECONDS", "3600"))
    migrate_scan_count: int = int(os.getenv("MIGRATE_SCAN_COUNT", "1000"))
    expiry_timezone: str = os.getenv("EXPIRY_TIMEZONE", "UTC")
    expiring_window_days: int = int(os.getenv("EXPIRING_WINDOW_DAYS", "3"))
    auth_cookie_max_age: int = int(os.getenv("AUTH_COOKIE_MAX_AGE", "86400"))
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
