from pathlib import Path

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # project root
ENV_PATH = BASE_DIR / ".env"

# load .env into the process environment before Settings reads it
load_dotenv(dotenv_path=ENV_PATH)


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        extra="ignore",
        case_sensitive=False,
    )

    DATABASE_URL: str
    DB_ECHO: bool = False
    DB_CREATE_ALL: bool = False

    JWT_SECRET: str
    JWT_ACCESS_MINUTES: int = 30
    JWT_REFRESH_DAYS: int = 14
    JWT_ALG: str = "HS256"

    STRIPE_SECRET_KEY: str = ""
    STRIPE_WEBHOOK_SECRET: str = ""
    STRIPE_SUCCESS_URL: str = "http://localhost:5173/orders?status=success"
    STRIPE_CANCEL_URL: str = "http://localhost:5173/orders?status=cancel"
    PAYMENT_CURRENCY: str = "ron"
    # Stripe accepts 30 minutes to 24 hours
    CHECKOUT_SESSION_MINUTES: int = 60

    UPLOAD_DIR: str = str(BASE_DIR / "uploads")
    STATIC_URL_PREFIX: str = "/static"

    CORS_ORIGINS: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    ]

    LOG_LEVEL: str = "INFO"


settings = Settings()
