from pathlib import Path
from typing import List
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables with validation.
    """
    # Application settings
    PROJECT_NAME: str = "AI Calendar API"
    API_V1_PREFIX: str = "/api/v1"
    ENVIRONMENT: str = "development"  # development, staging, production, test

    # Logging settings
    LOG_LEVEL: str = "INFO"
    AUDIT_LOG_PATH: str = "./logs/audit.log"

    # Gemini API settings
    GEMINI_API_KEY: str = ""
    GEMINI_MODEL: str = "gemini-2.0-flash"
    GEMINI_TEMPERATURE: float = 1.0
    GEMINI_TOP_P: float = 0.9
    GEMINI_TOP_K: int = 40
    GEMINI_MAX_OUTPUT_TOKENS: int = 2048

    # Event defaults
    DEFAULT_TIMEZONE: str = "UTC"
    DEFAULT_EVENT_DURATION_HOURS: float = 1.0
    DEFAULT_EVENT_COLOR: str = "bg-blue-500"
    MAX_AI_EVENTS: int = 50

    # Conflict detection
    CONFLICT_BUFFER_MINUTES: int = 15
    WORKING_HOURS_START: int = 9
    WORKING_HOURS_END: int = 18

    # Calendar context
    CONTEXT_CACHE_SECONDS: int = 300
    CONTEXT_WINDOW_DAYS: int = 30
    CONTEXT_MAX_EVENTS: int = 100

    # Request limits
    MAX_TEXT_LENGTH: int = 10000
    MAX_RAW_RESPONSE_LENGTH: int = 100000
    MAX_IMAGE_BYTES: int = 5 * 1024 * 1024
    DEFAULT_LANGUAGE: str = "it"
    SUPPORTED_LANGUAGES: List[str] = ["en", "it", "es", "fr", "de", "pt"]

    @field_validator("AUDIT_LOG_PATH")
    @classmethod
    def validate_audit_log_path(cls, v: str) -> str:
        """Validate the audit log path exists or can be created"""
        if not v:
            return v
        log_dir = Path(v).parent
        if not log_dir.exists():
            try:
                log_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise ValueError(f"Failed to create log directory: {e}")
        return v

    @field_validator("DEFAULT_TIMEZONE")
    @classmethod
    def validate_default_timezone(cls, v: str) -> str:
        """The fallback timezone must be a known IANA zone"""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone '{v}': {e}")
        return v

    @field_validator("WORKING_HOURS_START", "WORKING_HOURS_END")
    @classmethod
    def validate_working_hour(cls, v: int) -> int:
        if not 0 <= v <= 24:
            raise ValueError("Working hours must be between 0 and 24")
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",  # Ignore extra fields in the environment
    )


settings = Settings()
