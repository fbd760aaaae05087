import os
from typing import List, Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from errors import ConfigurationError

# env var -> Settings field
REQUIRED_ENV_VARS = {
    "RAZORPAY_KEY_ID": "razorpay_key_id",
    "RAZORPAY_KEY_SECRET": "razorpay_key_secret",
    "RAZORPAY_WEBHOOK_SECRET": "razorpay_webhook_secret",
    "NOTION_API_KEY": "notion_api_key",
    "NOTION_DATABASE_ID": "notion_database_id",
    "APP_URL": "app_url",
}

DEFAULT_CORS_ORIGINS = ["http://localhost:3000", "http://localhost:3001", "http://localhost:5000"]


class Settings(BaseModel):
    razorpay_key_id: str
    razorpay_key_secret: str
    razorpay_webhook_secret: str
    notion_api_key: str
    notion_database_id: str
    app_url: str

    environment: str = "development"
    database_url: str = "sqlite:///./bookings.db"
    cors_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_CORS_ORIGINS))
    log_level: str = "INFO"
    default_currency: str = "INR"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "Settings":
        """
        Build settings from the process environment (after loading .env files).
        Raises ConfigurationError naming every missing required variable.
        """
        if environ is None:
            load_env_files()
            environ = os.environ

        missing = [name for name in REQUIRED_ENV_VARS if not environ.get(name)]
        if missing:
            raise ConfigurationError(
                "Missing required environment variables: " + ", ".join(missing),
                missing=missing,
            )

        values = {field: environ[name] for name, field in REQUIRED_ENV_VARS.items()}
        values["environment"] = environ.get("APP_ENV", "development")
        if environ.get("DATABASE_URL"):
            values["database_url"] = environ["DATABASE_URL"]
        if environ.get("CORS_ORIGINS"):
            values["cors_origins"] = [o.strip() for o in environ["CORS_ORIGINS"].split(",") if o.strip()]
        if environ.get("LOG_LEVEL"):
            values["log_level"] = environ["LOG_LEVEL"].upper()
        if environ.get("DEFAULT_CURRENCY"):
            values["default_currency"] = environ["DEFAULT_CURRENCY"].upper()
        return cls(**values)


def load_env_files():
    env = os.getenv("APP_ENV", "development")
    load_dotenv(".env.production" if env == "production" else ".env.development")
    load_dotenv()
