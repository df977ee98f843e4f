import os

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, model_validator

load_dotenv()


_TRUTHY_VALUES = {"1", "true", "yes", "on"}
_MB = 1024 * 1024


def _env_bool(name: str, default: str = "") -> bool:
    return os.getenv(name, default).lower() in _TRUTHY_VALUES


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    database_url: str | None = os.getenv("DATABASE_URL")
    db_pool_size: int = int(os.getenv("DB_POOL_SIZE", "5"))
    db_max_overflow: int = int(os.getenv("DB_MAX_OVERFLOW", "10"))
    db_pool_timeout: int = int(os.getenv("DB_POOL_TIMEOUT", "30"))
    db_pool_recycle: int = int(os.getenv("DB_POOL_RECYCLE", "1800"))

    # Runtime flags
    testing: bool = _env_bool("TESTING")
    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = _env_bool("LOG_JSON")

    # Filesystem layout
    users_path: str = os.getenv("USERS_PATH", "/app/users")
    host_users_path: str = os.getenv("HOST_USERS_PATH", "/opt/dployr/users")
    upload_max_bytes: int = int(os.getenv("UPLOAD_MAX_BYTES", str(100 * _MB)))

    # Git
    git_clone_timeout_seconds: int = int(os.getenv("GIT_CLONE_TIMEOUT", "120"))
    git_pull_timeout_seconds: int = int(os.getenv("GIT_PULL_TIMEOUT", "60"))
    git_status_timeout_seconds: int = int(os.getenv("GIT_STATUS_TIMEOUT", "5"))

    # Archive ingestion limits
    archive_max_entry_bytes: int = int(os.getenv("ARCHIVE_MAX_ENTRY_BYTES", str(500 * _MB)))
    archive_max_total_bytes: int = int(os.getenv("ARCHIVE_MAX_TOTAL_BYTES", str(1024 * _MB)))
    archive_max_compression_ratio: int = int(os.getenv("ARCHIVE_MAX_COMPRESSION_RATIO", "100"))

    # Container runtime
    docker_binary: str = os.getenv("DOCKER_BINARY", "docker")

    # Deploy notifications
    notification_webhook_url: str | None = os.getenv("NOTIFICATION_WEBHOOK_URL") or None
    notification_webhook_secret: str | None = os.getenv("NOTIFICATION_WEBHOOK_SECRET") or None

    # Webhook endpoint rate limit
    webhook_rate_limit_requests: int = int(os.getenv("WEBHOOK_RATE_LIMIT_REQUESTS", "60"))
    webhook_rate_limit_window_seconds: int = int(os.getenv("WEBHOOK_RATE_LIMIT_WINDOW", "60"))

    @model_validator(mode="after")
    def require_database_url_when_not_testing(self) -> "Settings":
        if not self.testing and not (self.database_url and self.database_url.strip()):
            raise ValueError("DATABASE_URL must be set when TESTING is false")
        return self


settings = Settings()
