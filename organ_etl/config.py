from dataclasses import dataclass
import os

from dotenv import load_dotenv


load_dotenv()


@dataclass(frozen=True)
class Settings:
    app_name: str
    database_url: str
    log_level: str
    input_dir: str
    centers_file: str
    donors_file: str
    recipients_file: str
    warning_error_rate: float
    max_workers: int
    max_run_retries: int
    retry_backoff_seconds: float
    stale_run_minutes: int
    executed_by: str
    schedule_hour_utc: int
    schedule_minute_utc: int


def get_settings() -> Settings:
    return Settings(
        app_name=os.getenv("APP_NAME", "organ_etl"),
        database_url=os.getenv("DATABASE_URL", "sqlite:///./organ_etl.db"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        input_dir=os.getenv("INPUT_DIR", "./data/input"),
        centers_file=os.getenv("CENTERS_FILE", "transplant_centers.csv"),
        donors_file=os.getenv("DONORS_FILE", "donors.csv"),
        recipients_file=os.getenv("RECIPIENTS_FILE", "recipients.csv"),
        warning_error_rate=float(os.getenv("WARNING_ERROR_RATE", "25")),
        max_workers=int(os.getenv("MAX_WORKERS", "2")),
        max_run_retries=int(os.getenv("MAX_RUN_RETRIES", "0")),
        retry_backoff_seconds=float(os.getenv("RETRY_BACKOFF_SECONDS", "1")),
        stale_run_minutes=int(os.getenv("STALE_RUN_MINUTES", "120")),
        executed_by=os.getenv("EXECUTED_BY") or os.getenv("USER", "etl"),
        schedule_hour_utc=int(os.getenv("SCHEDULE_HOUR_UTC", "2")),
        schedule_minute_utc=int(os.getenv("SCHEDULE_MINUTE_UTC", "0")),
    )
