from decimal import Decimal
from pathlib import Path

from fastapi import Request
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


_PROJECT_ROOT = Path(__file__).resolve().parents[2]


class Settings(BaseSettings):
    """
    App configuration.

    This project uses `config.env` (non-dot env file) because some environments
    block creating `.env*` files. If you do have a `.env`, it will also be read.
    """

    model_config = SettingsConfigDict(
        # Prefer reading env files from the repository root, regardless of CWD.
        env_file=(
            str(_PROJECT_ROOT / "config.env"),
            str(_PROJECT_ROOT / ".env"),
            "config.env",
            ".env",
        ),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    db_host: str = Field(default="localhost", validation_alias="DB_HOST")
    db_port: int = Field(default=5432, validation_alias="DB_PORT")
    db_user: str = Field(default="pos", validation_alias="DB_USER")
    db_password: str = Field(default="pos", validation_alias="DB_PASSWORD")
    db_name: str = Field(default="pos", validation_alias="DB_NAME")
    # Full SQLAlchemy URL, wins over the DB_* parts when set (e.g. sqlite for local runs)
    database_url_override: str = Field(default="", validation_alias="DATABASE_URL")

    secret_key: str = Field(default="CHANGE_THIS_IN_PRODUCTION", validation_alias="SECRET_KEY")
    algorithm: str = Field(default="HS256", validation_alias="ALGORITHM")
    access_token_expire_minutes: int = Field(default=30, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

    # Empty REDIS_URL disables pub/sub; events are then only logged
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    events_channel: str = Field(default="orderflow:events", validation_alias="EVENTS_CHANNEL")

    # Business rules
    tax_rate: Decimal = Field(default=Decimal("0.07"), validation_alias="TAX_RATE")
    business_timezone: str = Field(default="Asia/Bangkok", validation_alias="BUSINESS_TIMEZONE")
    low_stock_threshold: int = Field(default=10, validation_alias="LOW_STOCK_THRESHOLD")
    strict_stock_quantity: bool = Field(default=False, validation_alias="STRICT_STOCK_QUANTITY")
    undo_payment_window_minutes: int = Field(default=2, validation_alias="UNDO_PAYMENT_WINDOW_MINUTES")

    # CORS configuration
    cors_origins: str = Field(
        default="http://localhost:4200",
        validation_alias="CORS_ORIGINS"
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def database_url(self) -> str:
        if self.database_url_override:
            return self.database_url_override
        # SQLModel uses SQLAlchemy under the hood; this uses the psycopg driver (v3).
        return (
            f"postgresql+psycopg://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


settings = Settings()


def get_settings(request: Request) -> Settings:
    """FastAPI dependency: the settings the running app was started with."""
    return request.app.state.settings
