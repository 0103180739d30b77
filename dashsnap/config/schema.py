"""Configuration schema using Pydantic."""

from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class TargetConfig(BaseModel):
    """Dashboard application being captured."""

    url: str = "http://homeassistant:8123"
    token: str = ""
    client_side_routing: bool = True
    header_height: int = 56

    @field_validator("url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class BrowserConfig(BaseModel):
    """Headless Chromium configuration."""

    executable_path: str | None = None
    headless: bool = True
    low_end_device_mode: bool = False
    extra_args: list[str] = Field(default_factory=list)
    navigation_timeout_ms: int = 30000
    load_timeout_ms: int = 10000
    stable_timeout_ms: int = 5000
    restart_after_captures: int = 100
    shutdown_timeout_s: float = 30.0
    debug_responses: bool = False


class HealthConfig(BaseModel):
    """Browser health thresholds."""

    max_failures: int = 3
    stale_after_s: float = 300.0


class RecoveryConfig(BaseModel):
    """Browser recovery retry policy."""

    max_attempts: int = 5
    backoff_base_s: float = 1.0
    backoff_max_s: float = 30.0
    ping_timeout_s: float = 2.0


class SchedulerConfig(BaseModel):
    """Capture scheduler configuration."""

    schedules_file: str = "~/.dashsnap/schedules.json"
    output_dir: str = "~/.dashsnap/output"
    reload_interval_s: float = 60.0
    max_retries: int = 3
    retry_delay_s: float = 5.0
    retention_multiplier: int = 2
    fallback_delay_ms: int = 500
    cold_start_extra_wait_ms: int = 2500
    default_wait_ms: int = 500


class ServerConfig(BaseModel):
    """HTTP server configuration."""

    host: str = "0.0.0.0"
    port: int = 10000


class LoggingConfig(BaseModel):
    """Log sink configuration."""

    level: str = "INFO"
    file: str | None = None
    rotation: str = "10 MB"
    retention: int = 3


class Config(BaseSettings):
    """Root configuration for dashsnap."""

    model_config = SettingsConfigDict(
        env_prefix="DASHSNAP_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    target: TargetConfig = Field(default_factory=TargetConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    health: HealthConfig = Field(default_factory=HealthConfig)
    recovery: RecoveryConfig = Field(default_factory=RecoveryConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    server: ServerConfig = Field(default_factory=ServerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def schedules_path(self) -> Path:
        """Get expanded schedules file path."""
        return Path(self.scheduler.schedules_file).expanduser()

    @property
    def output_path(self) -> Path:
        """Get expanded screenshot output directory."""
        return Path(self.scheduler.output_dir).expanduser()
