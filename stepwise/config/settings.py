"""
Runner settings.

Values come from the environment (and a ``.env`` file in the working
directory), validated once and cached for the process.
"""

import math
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from stepwise.core.interfaces import ConfigProvider
from stepwise.core.types import BrowserName

MIN_STEP_TIMEOUT_SECONDS = 1
MAX_STEP_TIMEOUT_SECONDS = 120

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
LOG_FORMATS = ("json", "text")
WAIT_STATES = ("load", "domcontentloaded", "networkidle", "commit")

SQLITE_URL_PREFIX = "sqlite:///"


class Settings(BaseSettings):
    """Runner settings read from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Runs
    default_browser: BrowserName = Field(
        default=BrowserName.CHROMIUM, description="Browser used when none is requested"
    )
    step_timeout_seconds: int = Field(
        default=10, description="Time allowed for each step (seconds)"
    )
    continue_on_failure: bool = Field(
        default=False, description="Keep executing steps after a failed step"
    )

    # Browser
    browser_headless: bool = Field(
        default=True, description="Launch browsers without a window"
    )
    browser_viewport_width: int = Field(default=1280, ge=320)
    browser_viewport_height: int = Field(default=720, ge=240)
    navigation_wait_until: str = Field(
        default="domcontentloaded",
        description="Load state awaited by page navigations",
    )

    # Records and artifacts
    data_dir: Path = Field(
        default=Path("data"), description="Root for runner data"
    )
    artifacts_dir: Path = Field(
        default=Path("data/artifacts"), description="Screenshot artifacts root"
    )
    database_url: str = Field(
        default=f"{SQLITE_URL_PREFIX}data/stepwise.sqlite",
        description="SQLAlchemy URL of the record store",
    )
    thumbnail_max_size: int = Field(
        default=320, ge=32, le=2048, description="Longest edge of step thumbnails (px)"
    )
    enable_sample_project_seed: bool = Field(
        default=False, description="Seed the sample project on startup"
    )

    # Logs
    log_level: str = Field(default="INFO")
    log_format: str = Field(default="json", description="json or text")
    log_file: Optional[str] = Field(
        default=None, description="Also write logs to this file"
    )

    @field_validator("step_timeout_seconds", mode="before")
    @classmethod
    def clamp_step_timeout(cls, v: Any) -> int:
        """Round half-up and clamp into [1, 120] seconds."""
        try:
            value = float(v)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid step timeout: {v}")
        if not math.isfinite(value):
            raise ValueError(f"Invalid step timeout: {v}")
        rounded = int(math.floor(value + 0.5))
        return max(MIN_STEP_TIMEOUT_SECONDS, min(MAX_STEP_TIMEOUT_SECONDS, rounded))

    @field_validator("navigation_wait_until")
    @classmethod
    def validate_wait_until(cls, v: str) -> str:
        if v not in WAIT_STATES:
            raise ValueError(f"Invalid navigation wait state: {v}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in LOG_LEVELS:
            raise ValueError(f"Invalid log level: {v}")
        return level

    @field_validator("log_format")
    @classmethod
    def validate_log_format(cls, v: str) -> str:
        if v not in LOG_FORMATS:
            raise ValueError(f"Invalid log format: {v}")
        return v

    @property
    def step_timeout_ms(self) -> int:
        return self.step_timeout_seconds * 1000

    @property
    def sqlite_path(self) -> Optional[Path]:
        """File behind a SQLite ``database_url``; None for other backends and in-memory."""
        if not self.database_url.startswith(SQLITE_URL_PREFIX):
            return None
        raw = self.database_url[len(SQLITE_URL_PREFIX):]
        if not raw or raw == ":memory:":
            return None
        return Path(raw)

    def create_directories(self) -> None:
        """Make the data, artifacts and database directories."""
        targets = [self.data_dir, self.artifacts_dir]
        if self.sqlite_path is not None:
            targets.append(self.sqlite_path.parent)
        for target in targets:
            target.mkdir(parents=True, exist_ok=True)


class ConfigManager(ConfigProvider):
    """Key-based access to a settings instance."""

    def __init__(self, settings: Optional[Settings] = None) -> None:
        self.settings = settings or get_settings()

    def get(self, key: str, default: Any = None) -> Any:
        return getattr(self.settings, key, default)

    def get_required(self, key: str) -> Any:
        if not hasattr(self.settings, key):
            raise KeyError(f"Required configuration key not found: {key}")
        return getattr(self.settings, key)

    def get_all(self) -> Dict[str, Any]:
        return self.settings.model_dump(mode="json")


@lru_cache()
def get_settings() -> Settings:
    """Load settings once per process and create their directories."""
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    settings = Settings()
    settings.create_directories()
    return settings
