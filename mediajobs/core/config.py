"""Configuration management with YAML and environment variable support"""

import os
from typing import Any, Dict, List, Optional, Tuple, Type

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
)


class BaseConfigSection(BaseSettings):
    """Base class for all config sections with correct environment variable precedence.

    Environment variables win over init kwargs (YAML data), which win over defaults.
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

    host: str = "0.0.0.0"  # nosec B104 - containerized deployment
    port: int = 8000

    model_config = SettingsConfigDict(env_prefix="APP_SERVER_")


class TimeoutsConfig(BaseConfigSection):
    """Subprocess timeout configuration (seconds)"""

    extraction: int = 600
    post_processing: int = 120
    probe: int = 10
    check: int = 5

    model_config = SettingsConfigDict(env_prefix="APP_TIMEOUTS_")


class StorageConfig(BaseConfigSection):
    """Output directory and artifact lifetime configuration"""

    output_dir: str = "/app/downloads"
    artifact_ttl: float = 0  # hours, 0 keeps artifacts until restart
    sweep_interval: int = 300  # seconds
    stale_file_age: int = 3600  # seconds

    model_config = SettingsConfigDict(env_prefix="APP_STORAGE_")

    @field_validator("artifact_ttl")
    @classmethod
    def validate_ttl(cls, v: float) -> float:
        if v < 0:
            raise ValueError("artifact_ttl must be zero (disabled) or positive")
        return v

    @field_validator("sweep_interval")
    @classmethod
    def validate_sweep_interval(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("sweep_interval must be positive")
        return v


class DownloadsConfig(BaseConfigSection):
    """Worker pool configuration"""

    max_concurrent: int = 3
    queue_size: int = 100  # 0 = unlimited
    poll_interval: float = 1.0
    recency_window: int = 60  # seconds, fallback file discovery

    model_config = SettingsConfigDict(env_prefix="APP_DOWNLOADS_")

    @field_validator("max_concurrent")
    @classmethod
    def validate_max_concurrent(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_concurrent must be at least 1")
        return v


class ExtractionConfig(BaseConfigSection):
    """Extraction tool (yt-dlp) configuration"""

    binary: str = "yt-dlp"
    audio_quality: str = "192K"
    user_agent: str = DEFAULT_USER_AGENT
    sleep_interval: int = 1
    max_sleep_interval: int = 5
    source_url_template: str = "https://www.youtube.com/watch?v={id}"

    model_config = SettingsConfigDict(env_prefix="APP_EXTRACTION_")

    @field_validator("source_url_template")
    @classmethod
    def validate_url_template(cls, v: str) -> str:
        if "{id}" not in v:
            raise ValueError("source_url_template must contain the {id} placeholder")
        return v


class PostProcessingConfig(BaseConfigSection):
    """Tagging tool (ffmpeg) configuration"""

    binary: str = "ffmpeg"
    probe_binary: str = "ffprobe"
    embed_thumbnail: bool = True

    model_config = SettingsConfigDict(env_prefix="APP_POSTPROCESSING_")


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


class SecurityConfig(BaseConfigSection):
    """Security configuration"""

    cors_origins: List[str] = Field(default_factory=lambda: ["*"])
    allow_degraded_start: bool = False

    model_config = SettingsConfigDict(env_prefix="APP_SECURITY_")


class MonitoringConfig(BaseConfigSection):
    """Monitoring configuration"""

    metrics_enabled: bool = True

    model_config = SettingsConfigDict(env_prefix="APP_MONITORING_")


class Config(BaseSettings):
    """Main application configuration"""

    server: ServerConfig = Field(default_factory=ServerConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    downloads: DownloadsConfig = Field(default_factory=DownloadsConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    postprocessing: PostProcessingConfig = Field(default_factory=PostProcessingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    model_config = SettingsConfigDict(env_prefix="APP_")


class ConfigService:
    """Service for loading and managing configuration"""

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = config_path or os.environ.get("APP_CONFIG_FILE", "config.yaml")
        self._config: Optional[Config] = None

    def load(self) -> Config:
        """Load configuration from YAML file with environment variable overrides.

        BaseConfigSection.settings_customise_sources() makes environment variables
        take precedence over YAML values, which take precedence over defaults.
        """
        config_data: Dict[str, Any] = {}

        if os.path.exists(self.config_path):
            with open(self.config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f)
                if yaml_data:
                    config_data = yaml_data

        self._config = Config(
            server=ServerConfig(**config_data.get("server", {})),
            timeouts=TimeoutsConfig(**config_data.get("timeouts", {})),
            storage=StorageConfig(**config_data.get("storage", {})),
            downloads=DownloadsConfig(**config_data.get("downloads", {})),
            extraction=ExtractionConfig(**config_data.get("extraction", {})),
            postprocessing=PostProcessingConfig(**config_data.get("postprocessing", {})),
            logging=LoggingConfig(**config_data.get("logging", {})),
            security=SecurityConfig(**config_data.get("security", {})),
            monitoring=MonitoringConfig(**config_data.get("monitoring", {})),
        )

        return self._config

    @property
    def config(self) -> Config:
        """Get the loaded configuration"""
        if self._config is None:
            raise ValueError("Configuration not loaded. Call load() first.")
        return self._config
