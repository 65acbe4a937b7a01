import os
from dataclasses import dataclass


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass
class Settings:
    database_url: str
    redis_url: str | None
    frontend_url: str

    s3_bucket: str
    aws_key: str | None
    aws_secret: str | None
    aws_region: str | None
    s3_endpoint: str | None
    mock_storage: bool
    signed_url_ttl_seconds: int

    whatsapp_phone_number_id: str | None
    whatsapp_access_token: str | None
    whatsapp_api_version: str

    upload_token_ttl_days: int
    default_max_uploads: int
    max_file_size_bytes: int
    max_whatsapp_file_size_bytes: int

    issuance_batch_size: int
    notify_batch_size: int
    notify_batch_delay: float
    reminder_batch_size: int
    reminder_batch_delay: float
    notify_dispatch: str

    worker_ingest_token: str | None
    log_level: str


def get_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./dev.db"),
        redis_url=os.getenv("REDIS_URL") or None,
        frontend_url=os.getenv("FRONTEND_URL", "http://localhost:4200").rstrip("/"),
        s3_bucket=os.getenv("S3_BUCKET", ""),
        aws_key=os.getenv("AWS_ACCESS_KEY_ID"),
        aws_secret=os.getenv("AWS_SECRET_ACCESS_KEY"),
        aws_region=os.getenv("AWS_REGION"),
        s3_endpoint=os.getenv("S3_ENDPOINT"),
        mock_storage=_env_bool("MOCK_STORAGE"),
        signed_url_ttl_seconds=int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600")),
        whatsapp_phone_number_id=os.getenv("WHATSAPP_PHONE_NUMBER_ID"),
        whatsapp_access_token=os.getenv("WHATSAPP_ACCESS_TOKEN"),
        whatsapp_api_version=os.getenv("WHATSAPP_API_VERSION", "v18.0"),
        upload_token_ttl_days=int(os.getenv("UPLOAD_TOKEN_TTL_DAYS", "7")),
        default_max_uploads=int(os.getenv("DEFAULT_MAX_UPLOADS", "20")),
        max_file_size_bytes=int(os.getenv("MAX_FILE_SIZE_BYTES", str(50 * 1024 * 1024))),
        max_whatsapp_file_size_bytes=int(os.getenv("MAX_WHATSAPP_FILE_SIZE_BYTES", str(25 * 1024 * 1024))),
        issuance_batch_size=int(os.getenv("ISSUANCE_BATCH_SIZE", "50")),
        notify_batch_size=int(os.getenv("NOTIFY_BATCH_SIZE", "10")),
        notify_batch_delay=float(os.getenv("NOTIFY_BATCH_DELAY", "1.0")),
        reminder_batch_size=int(os.getenv("REMINDER_BATCH_SIZE", "5")),
        reminder_batch_delay=float(os.getenv("REMINDER_BATCH_DELAY", "2.0")),
        notify_dispatch=os.getenv("NOTIFY_DISPATCH", "inline").lower(),
        worker_ingest_token=os.getenv("WORKER_INGEST_TOKEN") or None,
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
