"""Environment-driven configuration with Pydantic v2."""

from typing import Literal, Optional
from pathlib import Path
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Engine settings driven entirely by environment variables."""

    # Database Configuration
    database_url: str = Field(default="sqlite+aiosqlite:///./data/workflows.db", env="DATABASE_URL")
    database_echo: bool = Field(default=False, env="DATABASE_ECHO")

    # Logging
    log_level: str = Field(default="INFO", env="LOG_LEVEL")
    log_format: Literal["json", "console"] = Field(default="json", env="LOG_FORMAT")
    log_file: Optional[str] = Field(default=None, env="LOG_FILE")

    # Scheduler
    scheduler_tick_seconds: int = Field(default=60, env="SCHEDULER_TICK_SECONDS", ge=1)
    scheduler_timezone: str = Field(default="UTC", env="SCHEDULER_TIMEZONE")

    # Execution Engine
    retry_base_delay: float = Field(default=1.0, env="RETRY_BASE_DELAY", ge=0.0, le=60.0)
    max_retry_attempts: int = Field(default=3, env="MAX_RETRY_ATTEMPTS", ge=0, le=10)
    default_max_iterations: int = Field(default=100, env="DEFAULT_MAX_ITERATIONS", ge=1)

    # Integrations
    webhook_timeout: int = Field(default=30, env="WEBHOOK_TIMEOUT", ge=1, le=300)
    email_service: str = Field(default="smtp", env="EMAIL_SERVICE")
    slack_default_username: str = Field(default="Workflow Bot", env="SLACK_DEFAULT_USERNAME")

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v):
        """Ensure database directory exists for SQLite."""
        if v and v.startswith("sqlite"):
            if ":///" in v:
                db_path = v.split("///")[1]
                if db_path and db_path != ":memory:":
                    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        return v

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "forbid",
        "env_parse_none_str": "none",
    }
