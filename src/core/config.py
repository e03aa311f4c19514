# core/config.py
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Service settings, read from the environment or a local .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    DATABASE_URL: str = "sqlite:///./ffc_engine.db"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # X-API-Key guard; empty disables it
    API_KEY: str = ""

    # Signing key for per-action and download tokens
    SECRET_KEY: str = "change-me"
    TOKEN_ALGORITHM: str = "HS256"
    ACTION_TOKEN_TTL_SECONDS: int = Field(default=900, gt=0)

    # URL-safe base64 Fernet key; empty means encryption is not configured
    ENCRYPTION_KEY: str = ""
    HASH_SALT: str = ""

    MANAGER_ROLES: list[str] = Field(default_factory=lambda: ["administrator"])

    EXPORT_BATCH_SIZE: int = Field(default=100, gt=0)
    EXPORT_KEYS_BATCH_SIZE: int = Field(default=500, gt=0)
    EXPORT_JOB_TTL_SECONDS: int = Field(default=3600, gt=0)
    EXPORT_TMP_DIR: str = "./var/ffc-tmp"

    # Server-side budget for one start/batch/run call
    CALL_TIME_BUDGET_SECONDS: float = Field(default=25.0, gt=0)


settings = Settings()
