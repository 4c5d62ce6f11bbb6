from urllib.parse import urlsplit

from pydantic import AliasChoices, AnyUrl, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def site_origin(url: str | None) -> str | None:
    """Return ``scheme://host[:port]`` for an http(s) URL, dropping default ports."""
    parts = urlsplit((url or "").strip())
    if parts.scheme not in ("http", "https") or not parts.hostname:
        return None
    default_port = 443 if parts.scheme == "https" else 80
    if parts.port and parts.port != default_port:
        return f"{parts.scheme}://{parts.hostname}:{parts.port}"
    return f"{parts.scheme}://{parts.hostname}"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=(".env", "../.env"), extra="ignore")

    # Database
    database_url: AnyUrl | None = None
    supabase_db_url: AnyUrl | None = None
    db_pool_min_size: int = 1
    db_pool_max_size: int = 10

    # Supabase auth, admin API and storage
    supabase_url: AnyUrl | None = Field(
        default=None,
        validation_alias=AliasChoices("SUPABASE_URL", "NEXT_PUBLIC_SUPABASE_URL"),
    )
    supabase_service_role_key: str | None = None
    supabase_jwt_secret: str | None = None
    supabase_jwt_audience: str = "authenticated"

    # Public site, used for checkout redirects and invitation links
    site_url: str = Field(
        default="http://localhost:3000",
        validation_alias=AliasChoices("SITE_URL", "NEXT_PUBLIC_SITE_URL"),
    )
    checkout_success_url: str | None = None
    checkout_cancel_url: str | None = None

    # Stripe
    stripe_secret_key: str | None = None
    stripe_webhook_secret: str | None = None

    # Training rules
    team_seat_threshold: int = Field(default=2, ge=2)
    course_invitation_ttl_days: int = Field(default=7, ge=1)
    default_passing_score: int = Field(default=80, ge=0, le=100)

    # Email (Resend)
    resend_api_key: str | None = None
    resend_api_url: str = "https://api.resend.com/emails"
    email_sender: str = "Evergreen Comply <support@evergreencomply.com>"

    # Video
    video_bucket: str = "course-videos"
    video_url_ttl_seconds: int = 3600
    video_pending_grace_minutes: int = 30

    cors_allow_origins: list[str] = ["http://localhost:3000"]
    cors_allow_origin_regex: str | None = r"http://(localhost|127\.0\.0\.1)(:\d+)?"

    sentry_dsn: str | None = None
    sentry_traces_sample_rate: float = 0.0
    log_level: str = "INFO"

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value):
        if isinstance(value, str):
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        return value

    @model_validator(mode="after")
    def _resolve_derived(self):
        if self.database_url is None:
            if self.supabase_db_url is None:
                raise ValueError("DATABASE_URL or SUPABASE_DB_URL is required")
            self.database_url = self.supabase_db_url

        origin = site_origin(self.site_url)
        if origin and origin not in {o.rstrip("/").lower() for o in self.cors_allow_origins}:
            self.cors_allow_origins.append(origin)
        return self

    @property
    def site_base_url(self) -> str:
        return (self.site_url or "").rstrip("/")


settings = Settings()
