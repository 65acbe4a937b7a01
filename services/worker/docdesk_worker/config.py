import os
from dataclasses import dataclass


@dataclass
class Settings:
    redis_url: str

    api_base: str | None
    ingest_token: str | None
    api_timeout_seconds: float

    reminder_hour: int
    reminder_timezone: str


def get_settings() -> Settings:
    return Settings(
        redis_url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
        api_base=os.getenv("API_BASE"),
        ingest_token=os.getenv("WORKER_INGEST_TOKEN"),
        api_timeout_seconds=float(os.getenv("API_TIMEOUT_SECONDS", "300")),
        reminder_hour=int(os.getenv("REMINDER_HOUR", "9")),
        reminder_timezone=os.getenv("REMINDER_TIMEZONE", "Asia/Kolkata"),
    )
