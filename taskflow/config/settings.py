import os
from pathlib import Path

from loguru import logger
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_data_dir() -> Path:
    """Return the per-user data directory for the local store."""
    if os.name == "nt":
        base = os.getenv("LOCALAPPDATA", os.path.expanduser("~\\AppData\\Local"))
    else:
        base = os.getenv("XDG_DATA_HOME", os.path.expanduser("~/.local/share"))
    return Path(base) / "taskflow"


def get_database_url() -> str:
    """Get database URL, using absolute path for SQLite to avoid path resolution issues."""
    db_url = os.getenv("TASKFLOW_DATABASE_URL", "")
    if db_url:
        logger.info(f"Using TASKFLOW_DATABASE_URL from environment: {db_url}")
        return db_url

    data_dir = get_data_dir()
    data_dir.mkdir(parents=True, exist_ok=True)
    abs_path = (data_dir / "taskflow.db").resolve()
    db_url = f"sqlite:///{abs_path}"
    logger.debug(f"Using default database path: {db_url}")
    return db_url


class Settings(BaseSettings):
    database_url: str = Field(
        default_factory=get_database_url,
        validation_alias="TASKFLOW_DATABASE_URL",
    )
    log_level: str = Field(default="INFO", validation_alias="TASKFLOW_LOG_LEVEL")
    log_file: str | None = Field(default=None, validation_alias="TASKFLOW_LOG_FILE")
    timezone: str | None = Field(
        default=None,
        validation_alias="TASKFLOW_TIMEZONE",
        description="IANA timezone for calendar-day boundaries; device-local when unset",
    )
    tick_interval_seconds: float = Field(
        default=0.1,
        gt=0,
        validation_alias="TASKFLOW_TICK_INTERVAL_SECONDS",
        description="Foreground timer interval used by the pomodoro runner",
    )
    default_work_minutes: int = Field(default=20, validation_alias="TASKFLOW_DEFAULT_WORK_MINUTES")
    default_relax_minutes: int = Field(default=3, validation_alias="TASKFLOW_DEFAULT_RELAX_MINUTES")
    work_minutes_min: int = Field(default=3, validation_alias="TASKFLOW_WORK_MINUTES_MIN")
    work_minutes_max: int = Field(default=45, validation_alias="TASKFLOW_WORK_MINUTES_MAX")
    relax_minutes_min: int = Field(default=1, validation_alias="TASKFLOW_RELAX_MINUTES_MIN")
    relax_minutes_max: int = Field(default=5, validation_alias="TASKFLOW_RELAX_MINUTES_MAX")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, value: str) -> str:
        """Validate that log level is one of the standard logging levels."""
        valid_levels = {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}
        upper_value = value.upper()
        if upper_value not in valid_levels:
            logger.warning(f"Invalid TASKFLOW_LOG_LEVEL '{value}'. Valid levels are: {', '.join(sorted(valid_levels))}. Defaulting to INFO.")
            return "INFO"
        return upper_value

    @model_validator(mode="after")
    def validate_duration_ranges(self) -> "Settings":
        """Defaults must sit inside the allowed work/relax ranges."""
        if not self.work_minutes_min <= self.default_work_minutes <= self.work_minutes_max:
            raise ValueError(
                f"default_work_minutes={self.default_work_minutes} outside "
                f"{self.work_minutes_min}-{self.work_minutes_max}"
            )
        if not self.relax_minutes_min <= self.default_relax_minutes <= self.relax_minutes_max:
            raise ValueError(
                f"default_relax_minutes={self.default_relax_minutes} outside "
                f"{self.relax_minutes_min}-{self.relax_minutes_max}"
            )
        return self


settings = Settings()
