"""Configuration management with YAML and environment variable support"""

import os
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict


class BaseConfigSection(BaseSettings):
    """Base class for config sections.

    Source priority, highest first:
    1. Environment variables
    2. Init kwargs (YAML data)
    3. Default values
    """

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        """Customize settings source priority: env vars > init kwargs > defaults."""
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


class ServerConfig(BaseConfigSection):
    """HTTP server configuration"""

    host: str = "0.0.0.0"  # nosec B104 - containerized deployment
    port: int = 8000

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_SERVER_")


class DownloadsConfig(BaseConfigSection):
    """Admission queue and download workspace configuration"""

    max_parallel: int = 3
    max_queued: int = 50
    work_dir: str = "/tmp/bot_downloads"  # nosec B108 - scratch space, wiped at startup
    progress_step: float = 5.0  # percentage points between progress updates
    min_height: int = 360
    max_height: int = 1080
    flow_ttl: int = 24  # hours - time to keep finished flows

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_DOWNLOADS_")

    @field_validator("max_parallel")
    @classmethod
    def validate_max_parallel(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_parallel must be at least 1")
        return v

    @field_validator("max_queued")
    @classmethod
    def validate_max_queued(cls, v: int) -> int:
        if v < 0:
            raise ValueError("max_queued must not be negative")
        return v

    @model_validator(mode="after")
    def validate_window(self) -> "DownloadsConfig":
        if self.min_height > self.max_height:
            raise ValueError("min_height must not exceed max_height")
        return self


class FetcherConfig(BaseConfigSection):
    """External media tool configuration"""

    binary: str = "yt-dlp"
    cookie_path: str = "./youtube_cookies.txt"
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"
    metadata_timeout: int = 60  # seconds
    tool_timeout: int = 10

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_FETCHER_")


class SessionsConfig(BaseConfigSection):
    """Session store configuration"""

    ttl_days: int = 7
    sweep_interval: int = 3600  # seconds
    memory_size: int = 1024  # in-process cache capacity

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_SESSIONS_")

    @field_validator("ttl_days")
    @classmethod
    def validate_ttl(cls, v: int) -> int:
        if v < 1:
            raise ValueError("ttl_days must be at least 1")
        return v


class DatabaseConfig(BaseConfigSection):
    """Durable store configuration"""

    url: str = "sqlite+aiosqlite:///./clipvault.db"
    echo: bool = False

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_DATABASE_")


class DeliveryConfig(BaseConfigSection):
    """Delivery channel configuration"""

    bot_token: str = ""
    api_root: str = "https://api.telegram.org"
    archive_chat_id: str = ""
    signature: Optional[str] = None
    timeout: int = 600  # seconds, uploads can be large

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_DELIVERY_")


class LoggingConfig(BaseConfigSection):
    """Logging configuration"""

    level: str = "INFO"
    format: str = "json"

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_LOGGING_")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return v_upper

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        v_lower = v.lower()
        if v_lower not in ("json", "console"):
            raise ValueError("format must be 'json' or 'console'")
        return v_lower


class MonitoringConfig(BaseConfigSection):
    """Monitoring configuration"""

    metrics_enabled: bool = True

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_MONITORING_")


class TestingConfig(BaseConfigSection):
    """Test mode configuration"""

    __test__ = False  # not a pytest test class

    test_mode: bool = False

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_TESTING_")


class Config(BaseSettings):
    """Main application configuration"""

    server: ServerConfig = Field(default_factory=ServerConfig)
    downloads: DownloadsConfig = Field(default_factory=DownloadsConfig)
    fetcher: FetcherConfig = Field(default_factory=FetcherConfig)
    sessions: SessionsConfig = Field(default_factory=SessionsConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    testing: TestingConfig = Field(default_factory=TestingConfig)

    model_config = SettingsConfigDict(env_prefix="CLIPVAULT_")


class ConfigService:
    """Service for loading and managing configuration"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.getenv("CLIPVAULT_CONFIG", "config.yaml")
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from YAML file with environment variable overrides.

        Each section resolves env vars first, then YAML values, then defaults.
        """
        config_data: Dict[str, Any] = {}

        if os.path.exists(self.config_path):
            with open(self.config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f)
                if yaml_data:
                    config_data = yaml_data

        self._config = Config(
            server=ServerConfig(**config_data.get("server", {})),
            downloads=DownloadsConfig(**config_data.get("downloads", {})),
            fetcher=FetcherConfig(**config_data.get("fetcher", {})),
            sessions=SessionsConfig(**config_data.get("sessions", {})),
            database=DatabaseConfig(**config_data.get("database", {})),
            delivery=DeliveryConfig(**config_data.get("delivery", {})),
            logging=LoggingConfig(**config_data.get("logging", {})),
            monitoring=MonitoringConfig(**config_data.get("monitoring", {})),
            testing=TestingConfig(**config_data.get("testing", {})),
        )

        return self._config

    def validate(self) -> bool:
        """Validate cross-section requirements of the loaded configuration"""
        if self._config is None:
            raise ValueError("Configuration not loaded. Call load() first.")

        if self._config.testing.test_mode:
            return True

        if not self._config.delivery.bot_token:
            raise ValueError("delivery.bot_token must be configured")
        if not self._config.delivery.archive_chat_id:
            raise ValueError("delivery.archive_chat_id must be configured")

        return True

    @property
    def config(self) -> Config:
        """Get the loaded configuration"""
        if self._config is None:
            raise ValueError("Configuration not loaded. Call load() first.")
        return self._config
