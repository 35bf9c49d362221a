import json
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]

PUSH_DELIVERY_MODES = ("webpush", "log")


class Settings(BaseSettings):
    database_url: str
    secret_key: str
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    refresh_token_expire_minutes: int = 60 * 24 * 30
    allowed_origins: list[str] = DEFAULT_ALLOWED_ORIGINS
    admin_emails: list[str] = []
    auto_create_tables: bool = False
    auto_run_migrations: bool = False
    log_level: str = "INFO"

    app_base_url: str = "http://localhost:5173"
    app_timezone: str = "Europe/Paris"

    push_delivery_mode: str = "webpush"
    vapid_public_key: str | None = None
    vapid_private_key: str | None = None
    vapid_subject: str = "mailto:admin@example.org"
    push_ttl_seconds: int = 60 * 60 * 24
    push_timeout_seconds: float = 10.0
    push_max_parallel: int = 10

    proposal_max_recipients: int = 10

    # `allowed_origins` and `admin_emails` accept comma-separated strings or JSON lists; disable
    # pydantic-settings JSON decoding so the validators can handle both formats.
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
        enable_decoding=False,
        env_ignore_empty=True,
    )

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def parse_allowed_origins(cls, value):
        if value is None or value == "":
            return list(DEFAULT_ALLOWED_ORIGINS)

        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return [origin for origin in parsed if origin]
            except json.JSONDecodeError:
                pass

            parsed = [origin.strip() for origin in value.split(",")]
            return [origin for origin in parsed if origin]

        if isinstance(value, (list, tuple)):
            return [origin for origin in value if origin]

        raise ValueError("allowed_origins must be a list or comma-separated string")

    @field_validator("admin_emails", mode="before")
    @classmethod
    def parse_admin_emails(cls, value):
        if value is None or value == "":
            return []

        if isinstance(value, str):
            try:
                parsed = json.loads(value)
                if isinstance(parsed, list):
                    return [str(email).strip().lower() for email in parsed if str(email).strip()]
            except json.JSONDecodeError:
                pass

            parsed = [email.strip().lower() for email in value.split(",")]
            return [email for email in parsed if email]

        if isinstance(value, (list, tuple)):
            return [str(email).strip().lower() for email in value if str(email).strip()]

        raise ValueError("admin_emails must be a list or comma-separated string")

    @field_validator("push_delivery_mode", mode="before")
    @classmethod
    def parse_push_delivery_mode(cls, value):
        if value is None or value == "":
            return "webpush"
        mode = str(value).strip().lower()
        if mode not in PUSH_DELIVERY_MODES:
            raise ValueError(f"push_delivery_mode must be one of {', '.join(PUSH_DELIVERY_MODES)}")
        return mode

    @field_validator("app_timezone")
    @classmethod
    def parse_app_timezone(cls, value: str) -> str:
        value = value.strip()
        try:
            ZoneInfo(value)
        except (ZoneInfoNotFoundError, ValueError) as exc:
            raise ValueError(f"unknown timezone: {value}") from exc
        return value

    @field_validator("push_max_parallel", "proposal_max_recipients")
    @classmethod
    def must_be_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


settings = Settings()
