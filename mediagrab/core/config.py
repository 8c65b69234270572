"""Configuration management with YAML and environment variable support"""

import os
from typing import Any, Dict, List, Optional, Tuple, Type

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

TWO_GIB = 2 * 1024 * 1024 * 1024


class BaseConfigSection(BaseSettings):
    """Base class for all config sections with correct environment variable precedence.

    This class customizes the settings source priority to ensure that:
    1. Environment variables have highest priority
    2. Init kwargs (YAML data) have second priority
    3. Default values have lowest priority

    This allows environment variables to override YAML configuration as expected.
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
    """Server configuration"""

    host: str = (
        "0.0.0.0"  # nosec B104 - Intentional binding to all interfaces for containerized deployment
    )
    port: int = 8000
    cors_origins: List[str] = Field(default_factory=lambda: ["*"])

    model_config = SettingsConfigDict(env_prefix="APP_SERVER_")


class HttpConfig(BaseConfigSection):
    """Outbound HTTP client configuration"""

    timeout: float = 20.0  # seconds
    user_agent: str = DEFAULT_USER_AGENT

    model_config = SettingsConfigDict(env_prefix="APP_HTTP_")


class EnrichmentConfig(BaseConfigSection):
    """Post-resolution enrichment configuration"""

    caption_timeout: float = 10.0  # seconds
    size_probe_timeout: float = 3.0  # seconds, per probe request
    size_probe_enabled: bool = True

    model_config = SettingsConfigDict(env_prefix="APP_ENRICHMENT_")


class RemoteServiceConfig(BaseConfigSection):
    """Remote transcoding service configuration"""

    base_url: str = "http://localhost:8080"
    poll_interval: float = 3.0  # seconds
    poll_deadline: float = 1800.0  # seconds, overall
    request_timeout: float = 30.0

    model_config = SettingsConfigDict(env_prefix="APP_REMOTE_")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class MetadataFallbackConfig(BaseConfigSection):
    """Metadata aggregator configuration"""

    base_url: str = "https://backend1.tioo.eu.org"
    enabled: bool = True

    model_config = SettingsConfigDict(env_prefix="APP_METADATA_FALLBACK_")

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")


class YouTubeConfig(BaseConfigSection):
    """YouTube resolver configuration"""

    innertube_key: str = ""
    client_version: str = "2.20241210.00.00"
    # Deployments that cannot run native tooling send YouTube to the remote
    # service before the rest of the chain.
    remote_first: bool = False

    model_config = SettingsConfigDict(env_prefix="APP_YOUTUBE_")


class YtDlpConfig(BaseConfigSection):
    """yt-dlp subprocess configuration"""

    binary: str = "yt-dlp"
    timeout: float = 120.0
    retry_attempts: int = 3
    retry_backoff: List[int] = Field(default_factory=lambda: [2, 4, 8])

    model_config = SettingsConfigDict(env_prefix="APP_YTDLP_")


class DownloadsConfig(BaseConfigSection):
    """Download delivery configuration"""

    max_file_size: int = TWO_GIB  # bytes, direct proxy cap
    default_audio_format: str = "mp3"
    default_audio_bitrate: int = 320
    chunk_size: int = 65536

    model_config = SettingsConfigDict(env_prefix="APP_DOWNLOADS_")

    @field_validator("max_file_size")
    @classmethod
    def validate_max_file_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("max_file_size must be positive")
        return v


class BatchConfig(BaseConfigSection):
    """Batch resolution configuration"""

    max_concurrent: int = 3
    max_urls: int = 50

    model_config = SettingsConfigDict(env_prefix="APP_BATCH_")

    @field_validator("max_concurrent")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent must be at least 1")
        return v


class LoggingConfig(BaseConfigSection):
    """Logging configuration"""

    level: str = "INFO"
    format: str = "json"

    model_config = SettingsConfigDict(env_prefix="APP_LOGGING_")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"level must be one of {valid_levels}")
        return v_upper


class MonitoringConfig(BaseConfigSection):
    """Monitoring configuration"""

    metrics_enabled: bool = True

    model_config = SettingsConfigDict(env_prefix="APP_MONITORING_")


class Config(BaseSettings):
    """Main application configuration"""

    server: ServerConfig = Field(default_factory=ServerConfig)
    http: HttpConfig = Field(default_factory=HttpConfig)
    enrichment: EnrichmentConfig = Field(default_factory=EnrichmentConfig)
    remote: RemoteServiceConfig = Field(default_factory=RemoteServiceConfig)
    metadata_fallback: MetadataFallbackConfig = Field(default_factory=MetadataFallbackConfig)
    youtube: YouTubeConfig = Field(default_factory=YouTubeConfig)
    ytdlp: YtDlpConfig = Field(default_factory=YtDlpConfig)
    downloads: DownloadsConfig = Field(default_factory=DownloadsConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="APP_")


class ConfigService:
    """Service for loading and managing configuration"""

    SECTIONS: Dict[str, Type[BaseConfigSection]] = {
        "server": ServerConfig,
        "http": HttpConfig,
        "enrichment": EnrichmentConfig,
        "remote": RemoteServiceConfig,
        "metadata_fallback": MetadataFallbackConfig,
        "youtube": YouTubeConfig,
        "ytdlp": YtDlpConfig,
        "downloads": DownloadsConfig,
        "batch": BatchConfig,
        "logging": LoggingConfig,
        "monitoring": MonitoringConfig,
    }

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.environ.get("APP_CONFIG_PATH", "config.yaml")
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from YAML file with environment variable overrides.

        Thanks to BaseConfigSection.settings_customise_sources(), environment variables
        automatically take precedence over YAML values, which in turn take precedence
        over defaults.
        """
        config_data: Dict[str, Any] = {}

        if os.path.exists(self.config_path):
            with open(self.config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f)
                if yaml_data:
                    config_data = yaml_data

        sections = {
            name: section_cls(**(config_data.get(name) or {}))
            for name, section_cls in self.SECTIONS.items()
        }

        self._config = Config(**sections)
        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration"""
        if self._config is None:
            raise ValueError("Configuration not loaded. Call load() first.")
        return self._config
