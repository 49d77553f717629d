"""Runtime configuration for the coordinator.

Values are read from ``AUTOFLOW_*`` environment variables (or a ``.env``
file) once, at import time. Tests and embedding applications can build
their own ``CoordinatorSettings``.
"""

import logging
from typing import Annotated, Any

from pydantic import AliasChoices, field_validator
from pydantic import Field as PydanticField
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict
from tzlocal import get_localzone_name

logger = logging.getLogger(__name__)

DEFAULT_API_BASE_URL = "http://localhost:4000/api"
FALLBACK_TIMEZONE = "UTC"


def sanitize_base_url(raw: str | None) -> str:
    """Strip trailing slashes; empty values fall back to the default base."""
    if raw is None or raw.strip() == "":
        return DEFAULT_API_BASE_URL
    sanitized = raw.strip().rstrip("/")
    return sanitized or DEFAULT_API_BASE_URL


def local_timezone() -> str:
    """IANA name of the host's zone, ``UTC`` when it cannot be determined."""
    try:
        return get_localzone_name() or FALLBACK_TIMEZONE
    except (LookupError, ValueError) as e:
        logger.warning(f"Could not determine local timezone, using UTC: {e}")
        return FALLBACK_TIMEZONE


class CoordinatorSettings(BaseSettings):
    """Settings shared by the client, the coordinator and the polling loop."""

    model_config = SettingsConfigDict(
        env_prefix="AUTOFLOW_",
        env_file=".env",
        extra="ignore",
        populate_by_name=True,
    )

    api_base_url: str = DEFAULT_API_BASE_URL
    api_token: str | None = None
    require_auth: bool = False
    request_timeout: float = 30.0
    poll_interval: float = 30.0
    revert_delay: float = 6.5
    timezone: str = PydanticField(
        default_factory=local_timezone,
        validation_alias=AliasChoices("timezone", "AUTOFLOW_TIMEZONE", "TZ"),
    )
    history_limit: int = 25
    hidden_codes: Annotated[list[str], NoDecode] = ["VPE"]
    log_level: str = PydanticField(
        default="INFO",
        validation_alias=AliasChoices("log_level", "AUTOFLOW_LOG_LEVEL", "LOG_LEVEL"),
    )

    @field_validator("api_base_url", mode="before")
    @classmethod
    def _clean_base_url(cls, value: Any) -> str:
        return sanitize_base_url(value)

    @field_validator("api_token", mode="before")
    @classmethod
    def _blank_token_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("hidden_codes", mode="before")
    @classmethod
    def _split_codes(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.split(",")
        if isinstance(value, (list, tuple)):
            return [str(code).strip().upper() for code in value if str(code).strip()]
        return value

    @field_validator("log_level")
    @classmethod
    def _upper_level(cls, value: str) -> str:
        return value.upper()


settings = CoordinatorSettings()
