"""
Configuration management with environment variable support and validation.

Settings are grouped per concern (engine, store, API, logging), validated
by Pydantic, and read from the environment (a local `.env` file is loaded
first when present).
"""

import os
from functools import lru_cache
from typing import Literal, Optional, cast
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

from .engine.population import DEFAULT_MIN_OBSERVATIONS
from .engine.statistics_engine import DEFAULT_MINUTES_PER_READING

# Load environment variables from .env file
load_dotenv()


class EngineConfig(BaseModel):
    """Statistics engine settings."""

    minutes_per_reading: float = Field(
        default=DEFAULT_MINUTES_PER_READING, gt=0.0,
        description="Wear time each sensor reading stands for",
    )
    min_observations_per_user: int = Field(
        default=DEFAULT_MIN_OBSERVATIONS, ge=1,
        description="Users with fewer observations are left out of population averages",
    )
    max_concurrent_users: int = Field(
        default=8, gt=0, description="Users fetched and computed concurrently per request"
    )
    display_timezone: Optional[str] = Field(
        default=None, description="IANA zone for hour-of-day bucketing (system local if unset)"
    )

    @field_validator("display_timezone")
    def validate_timezone(cls, v):
        if v in (None, ""):
            return None
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v

    def tzinfo(self) -> Optional[ZoneInfo]:
        return ZoneInfo(self.display_timezone) if self.display_timezone else None


class StoreConfig(BaseModel):
    """Document store configuration."""

    data_path: str = Field(default="./data/biodash.json", description="JSON document file")


class APIConfig(BaseModel):
    """API server configuration."""

    host: str = Field(default="0.0.0.0", description="API server host")
    port: int = Field(default=8000, gt=0, lt=65536, description="API server port")
    allowed_origins: list[str] = Field(
        default_factory=lambda: ["http://localhost:3000"], description="Allowed origins for CORS"
    )


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    format: Literal["json", "console"] = Field(default="json", description="Logging format")


class AppConfig(BaseModel):
    """Main application configuration combining all subsystems."""

    environment: Literal["development", "staging", "production"] = Field(
        default="development", description="Environment"
    )
    engine: EngineConfig = Field(default_factory=EngineConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    api: APIConfig = Field(default_factory=APIConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config_from_env() -> AppConfig:
    """Load configuration from environment variables with validation."""

    def _env_to_literal(val: str) -> Literal["development", "staging", "production"]:
        v = val.strip().lower()
        if v in {"dev", "development"}:
            return "development"
        if v in {"stage", "staging"}:
            return "staging"
        return "production"

    def _level_to_literal(val: str) -> Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
        v = val.strip().upper()
        return cast(
            Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
            v if v in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"} else "INFO",
        )

    environment = _env_to_literal(os.getenv("ENVIRONMENT", "development"))

    engine_config = EngineConfig(
        minutes_per_reading=float(
            os.getenv("MINUTES_PER_READING", str(DEFAULT_MINUTES_PER_READING))
        ),
        min_observations_per_user=int(
            os.getenv("MIN_OBSERVATIONS_PER_USER", str(DEFAULT_MIN_OBSERVATIONS))
        ),
        max_concurrent_users=int(os.getenv("MAX_CONCURRENT_USERS", "8")),
        display_timezone=os.getenv("DISPLAY_TIMEZONE") or None,
    )

    store_config = StoreConfig(
        data_path=os.getenv("BIODASH_DATA_PATH", "./data/biodash.json"),
    )

    api_config = APIConfig(
        host=os.getenv("API_HOST", "0.0.0.0"),
        port=int(os.getenv("API_PORT", "8000")),
        allowed_origins=[
            origin.strip()
            for origin in os.getenv("API_ALLOWED_ORIGINS", "http://localhost:3000").split(",")
            if origin.strip()
        ],
    )

    logging_config = LoggingConfig(
        level=_level_to_literal(os.getenv("LOG_LEVEL", "INFO")),
        format="console" if environment == "development" else "json",
    )

    return AppConfig(
        environment=environment,
        engine=engine_config,
        store=store_config,
        api=api_config,
        logging=logging_config,
    )


@lru_cache
def get_config() -> AppConfig:
    """Get cached application configuration."""
    return load_config_from_env()
