"""Configuration management for the launcher daemon."""

from pathlib import Path
from typing import Optional

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator


DEFAULT_CONFIG_LOCATIONS = (
    Path("quicklaunch.yaml"),
    Path.home() / ".config" / "quicklaunch" / "config.yaml",
    Path("/etc/quicklaunch/config.yaml"),
)


class StoreConfig(BaseModel):
    db_filename: str = "launcher.duckdb"


class LaunchConfig(BaseModel):
    feedback_delay_ms: int = 200
    hide_after_launch: bool = True

    @field_validator('feedback_delay_ms')
    @classmethod
    def validate_delay(cls, v: int) -> int:
        if v < 0:
            raise ValueError("feedback_delay_ms must not be negative")
        return v


class ReconcileConfig(BaseModel):
    max_persist_attempts: int = 3
    list_retries: int = 2
    retry_base_delay: float = 0.2

    @field_validator('max_persist_attempts')
    @classmethod
    def validate_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_persist_attempts must be at least 1")
        return v

    @field_validator('list_retries')
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("list_retries must not be negative")
        return v

    @field_validator('retry_base_delay')
    @classmethod
    def validate_base_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("retry_base_delay must not be negative")
        return v


class SearchConfig(BaseModel):
    max_results: int = 20
    detect_running: bool = True
    web_search_url: str = "https://www.google.com/search?q={query}"

    @field_validator('web_search_url')
    @classmethod
    def validate_search_url(cls, v: str) -> str:
        if "{query}" not in v:
            raise ValueError("web_search_url must contain a {query} placeholder")
        return v


class ApiConfig(BaseModel):
    host: str = "localhost"
    port: int = 8765

    @field_validator('port')
    @classmethod
    def validate_port(cls, v: int) -> int:
        if not 0 < v < 65536:
            raise ValueError("port must be between 1 and 65535")
        return v


class LoggingConfig(BaseModel):
    level: str = "INFO"
    file_level: str = "DEBUG"
    rotation: str = "1 day"
    retention: str = "7 days"


class Config(BaseModel):
    """Main configuration for the launcher daemon."""

    data_dir: Path = Field(default_factory=lambda: Path.home() / ".local" / "share" / "quicklaunch")
    store: StoreConfig = Field(default_factory=StoreConfig)
    launch: LaunchConfig = Field(default_factory=LaunchConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    search: SearchConfig = Field(default_factory=SearchConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator('data_dir')
    @classmethod
    def validate_data_dir(cls, v: Path) -> Path:
        if isinstance(v, str):
            v = Path(v)
        v = v.expanduser().resolve()
        if not v.exists():
            logger.info(f"Data directory does not exist, creating: {v}")
            v.mkdir(parents=True, exist_ok=True)
        return v

    @property
    def db_path(self) -> Path:
        return self.data_dir / self.store.db_filename

    @property
    def api_url(self) -> str:
        return f"http://{self.api.host}:{self.api.port}"

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "Config":
        """
        Load configuration from YAML file.

        An explicit path must exist. Without one, the default locations are
        searched and built-in defaults are used when none is found.
        """
        if config_path is None:
            for candidate in DEFAULT_CONFIG_LOCATIONS:
                if candidate.exists():
                    config_path = candidate
                    break
            else:
                logger.info("No config file found, using defaults")
                return cls()

        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        logger.info(f"Loading config from: {config_path}")
        with open(config_path, 'r') as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    def save(self, config_path: Path) -> None:
        """Save configuration to YAML file."""
        config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(config_path, 'w') as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, default_flow_style=False)
