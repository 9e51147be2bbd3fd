"""Configuration management for tabula.

Settings are read from the environment (prefix ``TABULA_``) and validated with
pydantic-settings. ``ConfigManager`` caches the loaded config for the process.
"""

import sys
from pathlib import Path
from typing import Literal, Optional

from loguru import logger
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["test", "dev", "user"]


class TabulaConfig(BaseSettings):
    """Runtime configuration for a tabula engine."""

    env: Environment = Field(default="dev", description="Environment name")

    home: Path = Field(
        default_factory=lambda: Path.home() / ".tabula",
        description="Directory holding the database file and logs",
    )

    database_name: str = Field(default="tabula.db", description="SQLite database file name")

    log_level: str = Field(default="INFO", description="Minimum log level")

    log_to_file: bool = Field(default=False, description="Also write logs under home/logs")

    serialize_writes: bool = Field(
        default=True,
        description="Serialize mutations per table so uniqueness and lookup checks cannot race",
    )

    default_page_size: int = Field(
        default=50,
        ge=1,
        le=500,
        description="Default --take for record queries issued from the command line",
    )

    search_enabled: bool = Field(
        default=True,
        description="Maintain the full-text record index and allow fullText queries",
    )

    model_config = SettingsConfigDict(
        env_prefix="TABULA_",
        extra="ignore",
    )

    @property
    def database_path(self) -> Path:
        """Path of the SQLite database file."""
        return self.home / self.database_name

    @property
    def is_test_env(self) -> bool:
        return self.env == "test"


class ConfigManager:
    """Loads and caches the process configuration."""

    _config: Optional[TabulaConfig] = None

    @property
    def config(self) -> TabulaConfig:
        if ConfigManager._config is None:
            ConfigManager._config = TabulaConfig()
        return ConfigManager._config

    def reset(self) -> None:
        """Drop the cached config so the next access re-reads the environment."""
        ConfigManager._config = None


def init_logging(config: TabulaConfig) -> None:
    """Configure loguru sinks for the given config."""
    logger.remove()
    logger.add(sys.stderr, level=config.log_level, backtrace=False, diagnose=False)

    if config.log_to_file:
        log_dir = config.home / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_dir / "tabula.log",
            level=config.log_level,
            rotation="10 MB",
            retention="10 days",
            enqueue=True,
        )

    logger.debug(f"Logging initialized (env={config.env}, level={config.log_level})")
