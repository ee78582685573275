"""Application configuration managed via environment variables."""
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = "HabitStory Scheduling Backend"
    debug: bool = False
    log_level: str = "INFO"
    database_url: str = "postgresql+psycopg2://habitstory@localhost:5432/habitstory"
    opik_enabled: bool = False
    opik_api_key: str | None = None
    opik_project: str = "habitstory"

    # Shared secret presented by the external timer as a bearer token.
    cron_secret: str | None = None

    # Standalone worker process (used when no external timer service exists).
    scheduler_enabled: bool = False
    scheduler_timezone: str = "UTC"
    schedule_job_minute: int = 5
    streak_job_hour: int = 0
    streak_job_minute: int = 30
    jobs_run_on_startup: bool = False

    schedule_days_ahead: int = 3
    schedule_job_min_interval_hours: float = 0.9
    streak_job_min_interval_hours: float = 23
    job_running_grace_minutes: int = 60
    batch_max_workers: int = 1

    # Callers retry a job that failed on a transient I/O error, with exponential backoff.
    job_max_retries: int = 3
    job_retry_initial_delay_seconds: float = 1.0
    job_retry_max_delay_seconds: float = 30.0

    streak_broken_threshold: int = 3
    habit_reminders_enabled: bool = False
    notifications_enabled: bool = False
    notifications_provider: str = "noop"


@lru_cache
def get_settings() -> Settings:
    """Return a cached Settings instance."""
    return Settings()


settings = get_settings()
