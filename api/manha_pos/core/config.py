from functools import lru_cache
from typing import Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic_settings import BaseSettings, SettingsConfigDict

from manha_pos.core.errors import ConfigurationError

PLACEHOLDER_PREFIXES = ("YOUR_", "your-", "change-me")


class Settings(BaseSettings):
    database_url: str = "sqlite:///./manha_pos.db"
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expires_minutes: int = 1440
    app_namespace: str = "manha-pos-v1"
    collection_scope: Literal["public", "user"] = "public"
    security_pin: str = "1234"
    default_customer_name: str = "Walk-in Customer"
    report_timezone: str = "UTC"
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", env_prefix="MANHA_POS_"
    )

    def collection_path(self, name: str, uid: str | None = None) -> str:
        if self.collection_scope == "user":
            if not uid:
                raise ConfigurationError("User-scoped collections need a signed-in user")
            return f"artifacts/{self.app_namespace}/users/{uid}/{name}"
        return f"artifacts/{self.app_namespace}/public/data/{name}"


def ensure_configured(settings: Settings) -> None:
    """Reject missing or placeholder backend credentials before anything connects."""
    for field in ("database_url", "jwt_secret", "app_namespace"):
        value = (getattr(settings, field) or "").strip()
        if not value or value.startswith(PLACEHOLDER_PREFIXES):
            raise ConfigurationError(
                f"Setup required: set MANHA_POS_{field.upper()} to a real value"
            )
    if not settings.security_pin.isdigit() or len(settings.security_pin) != 4:
        raise ConfigurationError("Setup required: MANHA_POS_SECURITY_PIN must be 4 digits")
    try:
        ZoneInfo(settings.report_timezone)
    except (ZoneInfoNotFoundError, ValueError, OSError) as exc:
        raise ConfigurationError(
            f"Setup required: MANHA_POS_REPORT_TIMEZONE is not a known timezone: {settings.report_timezone!r}"
        ) from exc


@lru_cache
def get_settings() -> Settings:
    return Settings()
