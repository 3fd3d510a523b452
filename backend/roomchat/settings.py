"""Settings for the roomchat backend with observability configuration."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _env_field(default, *env_names: str):
    if env_names:
        alias = AliasChoices(*env_names) if len(env_names) > 1 else env_names[0]
        return Field(default=default, validation_alias=alias)
    return Field(default=default)


class Settings(BaseSettings):
    redis_url: str = _env_field("redis://localhost:6379/0", "REDIS_URL")
    secret_key: str = _env_field(..., "SECRET_KEY", "JWT_SECRET")
    environment: str = _env_field("production", "ENV", "APP_ENV", "ENVIRONMENT")

    # Relay
    auth_cookie_name: str = _env_field("jwt", "AUTH_COOKIE_NAME")
    # Per-subscriber buffer before a lagging socket starts dropping old entries
    room_channel_capacity: int = _env_field(1000, "ROOM_CHANNEL_CAPACITY")
    room_name_max_length: int = _env_field(128, "ROOM_NAME_MAX_LENGTH")
    history_key_prefix: str = _env_field("room:", "HISTORY_KEY_PREFIX")

    obs_enabled: bool = _env_field(True, "OBS_ENABLED")
    obs_metrics_public: bool = _env_field(False, "OBS_METRICS_PUBLIC")
    obs_log_level: str = _env_field("INFO", "LOG_LEVEL")
    obs_log_sampling_rate_info: float = _env_field(1.0, "LOG_SAMPLING_RATE_INFO")
    obs_admin_token: Optional[str] = _env_field(None, "OBS_ADMIN_TOKEN")
    service_name: str = _env_field("roomchat-api", "SERVICE_NAME")
    git_commit: str = _env_field("unknown", "GIT_COMMIT", "COMMIT_SHA", "SOURCE_VERSION")

    cors_allow_origins: Any = _env_field((), "CORS_ALLOW_ORIGINS")

    # Environment helpers
    def is_prod(self) -> bool:
        return self.environment.lower() in ("prod", "production", "live")

    def is_dev(self) -> bool:
        return self.environment.lower() in ("dev", "development")

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("cors_allow_origins", mode="before")
    def _split_cors(cls, value):  # type: ignore[override]
        if value in (None, ""):
            return ()
        if isinstance(value, str):
            return tuple(part.strip() for part in value.split(",") if part.strip())
        if isinstance(value, (list, tuple, set)):
            return tuple(str(item).strip() for item in value if str(item).strip())
        return ()

    @field_validator("obs_log_level", mode="after")
    def _normalise_level(cls, value: str) -> str:  # type: ignore[override]
        return value.upper()


settings = Settings()

