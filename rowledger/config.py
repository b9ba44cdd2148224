from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()

_TRUE_VALUES = {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    migrations_dir: str
    max_import_retries: int
    retry_backoff_seconds: float
    record_skipped_rows: bool
    schedule_hour_utc: int
    schedule_minute_utc: int


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUE_VALUES


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "rowledger"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./rowledger.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        migrations_dir=os.getenv("MIGRATIONS_DIR", "./migrations"),
        max_import_retries=int(os.getenv("MAX_IMPORT_RETRIES", "2")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1")),
        record_skipped_rows=_env_flag("RECORD_SKIPPED_ROWS", "true"),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "2")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
    )
