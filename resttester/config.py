import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

from resttester.core.errors import ConfigError


def _load_dotenv() -> None:
    # Prefer the .env next to this file, then the cwd-based default
    load_dotenv(dotenv_path=Path(__file__).resolve().parent / ".env", override=False)
    load_dotenv(override=False)


def _optional_float(name: str) -> float | None:
    raw = os.environ.get(name, "").strip()
    return float(raw) if raw else None


def _split_csv(raw: str) -> tuple[str, ...]:
    return tuple(item.strip() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class DatabaseConfig:
    name: str = "db"
    allow_empty_password: bool = False
    # None falls back to Config.change_visibility_lag_seconds
    change_visibility_lag_seconds: float | None = None

    def validate(self) -> None:
        if not self.name or self.name.startswith("_") or "/" in self.name:
            raise ConfigError(f"Invalid database name: {self.name!r}")
        if self.change_visibility_lag_seconds is not None and self.change_visibility_lag_seconds < 0:
            raise ConfigError("change_visibility_lag_seconds must be >= 0")


@dataclass(frozen=True)
class Config:
    # Backing store
    database_url: str = "sqlite+pysqlite:///:memory:"
    bucket_prefix: str = "resttester_bucket"

    # Dispatch
    base_url: str = "http://localhost"
    default_user_password: str = "letmein"

    # Polling
    retry_max_attempts: int = 20
    retry_initial_delay_seconds: float = 0.01
    retry_backoff_factor: float = 2.0
    retry_max_delay_seconds: float | None = None
    retry_timeout_seconds: float | None = None

    # Backend convergence
    change_visibility_lag_seconds: float = 0.0

    # Public surface CORS
    cors_origins: tuple[str, ...] = ("http://example.com", "*", "http://staging.example.com")
    cors_max_age: int = 1728000

    # Logging
    log_level: str = "INFO"
    log_format: str = "text"
    log_file_path: str | None = None

    def validate(self) -> None:
        if "://" not in self.database_url:
            raise ConfigError("DATABASE_URL must be an SQLAlchemy URL such as 'sqlite+pysqlite:///:memory:'")

        if not self.bucket_prefix:
            raise ConfigError("BUCKET_PREFIX must not be empty")

        if not (self.base_url.startswith("http://") or self.base_url.startswith("https://")):
            raise ConfigError("BASE_URL must start with 'http://' or 'https://'")

        if self.retry_max_attempts < 1 or self.retry_max_attempts > 100:
            raise ConfigError("RETRY_MAX_ATTEMPTS must be between 1 and 100")

        if self.retry_initial_delay_seconds < 0:
            raise ConfigError("RETRY_INITIAL_DELAY_SECONDS must be >= 0")

        if self.retry_backoff_factor < 1:
            raise ConfigError("RETRY_BACKOFF_FACTOR must be >= 1")

        if (
            self.retry_max_delay_seconds is not None
            and self.retry_max_delay_seconds < self.retry_initial_delay_seconds
        ):
            raise ConfigError("RETRY_MAX_DELAY_SECONDS must be >= RETRY_INITIAL_DELAY_SECONDS")

        if self.retry_timeout_seconds is not None and self.retry_timeout_seconds <= 0:
            raise ConfigError("RETRY_TIMEOUT_SECONDS must be > 0")

        if self.change_visibility_lag_seconds < 0:
            raise ConfigError("CHANGE_VISIBILITY_LAG_SECONDS must be >= 0")

        if self.cors_max_age < 0:
            raise ConfigError("CORS_MAX_AGE must be >= 0")

        if self.log_level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ConfigError("LOG_LEVEL must be DEBUG, INFO, WARNING, ERROR, or CRITICAL")

        if self.log_format not in {"json", "text"}:
            raise ConfigError("LOG_FORMAT must be 'json' or 'text'")

    def get_database_url(self, bucket_name: str) -> str:
        return self.database_url.replace("{bucket}", bucket_name)

    def lag_for(self, database_config: DatabaseConfig) -> float:
        if database_config.change_visibility_lag_seconds is not None:
            return database_config.change_visibility_lag_seconds
        return self.change_visibility_lag_seconds


def load_config() -> Config:
    _load_dotenv()

    config = Config(
        database_url=os.environ.get("RESTTESTER_DATABASE_URL", "sqlite+pysqlite:///:memory:").strip(),
        bucket_prefix=os.environ.get("RESTTESTER_BUCKET_PREFIX", "resttester_bucket"),
        base_url=os.environ.get("RESTTESTER_BASE_URL", "http://localhost"),
        default_user_password=os.environ.get("RESTTESTER_DEFAULT_USER_PASSWORD", "letmein"),
        retry_max_attempts=int(os.environ.get("RESTTESTER_RETRY_MAX_ATTEMPTS", "20")),
        retry_initial_delay_seconds=float(os.environ.get("RESTTESTER_RETRY_INITIAL_DELAY_SECONDS", "0.01")),
        retry_backoff_factor=float(os.environ.get("RESTTESTER_RETRY_BACKOFF_FACTOR", "2.0")),
        retry_max_delay_seconds=_optional_float("RESTTESTER_RETRY_MAX_DELAY_SECONDS"),
        retry_timeout_seconds=_optional_float("RESTTESTER_RETRY_TIMEOUT_SECONDS"),
        change_visibility_lag_seconds=float(os.environ.get("RESTTESTER_CHANGE_VISIBILITY_LAG_SECONDS", "0")),
        cors_origins=_split_csv(
            os.environ.get("RESTTESTER_CORS_ORIGINS", "http://example.com,*,http://staging.example.com")
        ),
        cors_max_age=int(os.environ.get("RESTTESTER_CORS_MAX_AGE", "1728000")),
        log_level=os.environ.get("RESTTESTER_LOG_LEVEL", "INFO").upper(),
        log_format=os.environ.get("RESTTESTER_LOG_FORMAT", "text"),
        log_file_path=os.environ.get("RESTTESTER_LOG_FILE_PATH") or None,
    )

    config.validate()
    return config
