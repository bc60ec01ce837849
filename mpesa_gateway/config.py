from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

# Force-load .env from the project root before any settings are read
BASE_DIR = Path(__file__).resolve().parent.parent
load_dotenv(dotenv_path=BASE_DIR / ".env")

MPESA_BASE_URLS = {
    "sandbox": "https://sandbox.safaricom.co.ke",
    "production": "https://api.safaricom.co.ke",
}


class Settings(BaseSettings):
    """Process-wide configuration, built once at start-up and never mutated."""

    mpesa_shortcode: str
    mpesa_passkey: str
    mpesa_consumer_key: str
    mpesa_consumer_secret: str
    mpesa_callback_url: str
    mpesa_env: str = "sandbox"
    mpesa_timeout: float = Field(default=30.0, gt=0)
    mpesa_timezone: str = "Africa/Nairobi"

    shopify_webhook_secret: str
    jwt_secret: Optional[str] = None

    database_url: str = "sqlite:///./mpesa_gateway.db"

    log_level: str = "INFO"
    log_json: bool = True

    model_config = SettingsConfigDict(case_sensitive=False, extra="ignore", frozen=True)

    @field_validator("mpesa_env")
    @classmethod
    def validate_mpesa_env(cls, v: str) -> str:
        v = v.lower()
        if v not in MPESA_BASE_URLS:
            raise ValueError(f"MPESA_ENV must be one of {sorted(MPESA_BASE_URLS)}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v.upper()

    @property
    def mpesa_base_url(self) -> str:
        return MPESA_BASE_URLS[self.mpesa_env]

    @property
    def is_production(self) -> bool:
        return self.mpesa_env == "production"


@lru_cache()
def get_settings() -> Settings:
    return Settings()
