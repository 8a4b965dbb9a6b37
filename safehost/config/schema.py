"""Configuration schema using Pydantic."""

from __future__ import annotations

from pathlib import Path

from pydantic import BaseModel, Field


class RateLimitConfig(BaseModel):
    """Per-operation attempt ceiling."""

    max_requests: int = Field(default=10, ge=1)
    window_seconds: int = Field(default=60, ge=1)


class PrivilegeConfig(BaseModel):
    """Privilege probe settings."""

    cache_ttl_seconds: float = Field(default=300.0, ge=0)
    sudo_probe_timeout: float = Field(default=3.0, gt=0)
    command_probe_timeout: float = Field(default=10.0, gt=0)
    network_probe_url: str = "https://www.google.com"
    network_probe_timeout: float = Field(default=5.0, gt=0)


class ExecutionConfig(BaseModel):
    """Timeouts for supervised work and shell commands."""

    timeout_seconds: float = Field(default=300.0, gt=0)
    command_timeout_seconds: float = Field(default=30.0, gt=0)


class SanitizerConfig(BaseModel):
    """Limits and allow-lists used by the sanitizer."""

    free_text_max_length: int = Field(default=1000, ge=1)
    system_config_dirs: list[str] = Field(
        default_factory=lambda: [
            "/etc/docker",
            "/etc/nginx",
            "/etc/postgresql",
            "/etc/redis",
            "/etc/systemd/system",
        ]
    )
    extra_allowed_dirs: list[str] = Field(default_factory=list)


class LoggingConfig(BaseModel):
    """Loguru sinks and on-disk log housekeeping."""

    level: str = "INFO"
    console: bool = True
    file: bool = True
    rotation: str = "100 MB"
    max_log_bytes: int = 100 * 1024 * 1024
    event_rotate_bytes: int = 5 * 1024 * 1024
    event_archives: int = 3


class Config(BaseModel):
    """Root configuration for safehost."""

    state_dir: str = "~/.safehost"
    production: bool = False
    rate_limit: RateLimitConfig = Field(default_factory=RateLimitConfig)
    privileges: PrivilegeConfig = Field(default_factory=PrivilegeConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)
    sanitizer: SanitizerConfig = Field(default_factory=SanitizerConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @property
    def state_path(self) -> Path:
        """Get expanded state directory path."""
        return Path(self.state_dir).expanduser()

    @property
    def backup_dir(self) -> Path:
        return self.state_path / "backups"

    @property
    def log_dir(self) -> Path:
        return self.state_path / "logs"

    @property
    def temp_dir(self) -> Path:
        return self.state_path / "temp"

    @property
    def event_log_path(self) -> Path:
        return self.log_dir / "events.jsonl"

    @property
    def report_path(self) -> Path:
        return self.state_path / "safety-report.json"

    @property
    def emergency_report_path(self) -> Path:
        return self.state_path / "emergency-report.json"
