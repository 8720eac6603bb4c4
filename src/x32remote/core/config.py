"""
Configuration Management for X32 Remote.

Uses Pydantic Settings for type-safe configuration with environment
variable support and YAML file loading. The mixer never persists these
values itself; they are handed in at construction or connect time.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from x32remote.osc.transport import format_address, is_valid_address

DEFAULT_CONSOLE_PORT = 10023


class ConnectionConfig(BaseModel):
    """Network endpoints and deadlines."""
    remote_host: str = "192.168.0.64"
    remote_port: int = Field(default=DEFAULT_CONSOLE_PORT, ge=0, le=65535)
    local_port: int = Field(default=DEFAULT_CONSOLE_PORT, ge=0, le=65535)
    monitor_port: int = Field(default=10024, ge=0, le=65535)  # Level monitor's own socket
    dial_attempts: int = Field(default=5, ge=1)
    dial_retry_delay_s: float = Field(default=0.25, ge=0.0)
    send_timeout_s: float = Field(default=4.0, gt=0.0)
    receive_timeout_s: float = Field(default=4.0, gt=0.0)

    @field_validator("remote_host")
    @classmethod
    def check_remote_host(cls, value: str) -> str:
        value = value.strip()
        if not value or not is_valid_address(format_address(value, DEFAULT_CONSOLE_PORT)):
            raise ValueError(f"remote_host must be an IP address, got {value!r}")
        return value

    @model_validator(mode="after")
    def check_distinct_ports(self) -> "ConnectionConfig":
        # Both sockets cannot bind the same UDP port on one host
        if self.local_port and self.local_port == self.monitor_port:
            raise ValueError("monitor_port must differ from local_port")
        return self

    @property
    def remote_address(self) -> str:
        return format_address(self.remote_host, self.remote_port)


class FadeConfig(BaseModel):
    """Fade resolution and motion detection."""
    resolution: int = Field(default=1024, gt=0)
    motion_sample_interval_s: float = Field(default=0.1, ge=0.0)
    failure_limit: int = Field(default=10, ge=1)


class MonitorConfig(BaseModel):
    """Level monitor polling."""
    refresh_hz: float = Field(default=24.0, gt=0.0)
    freshness_s: float = Field(default=1.0, gt=0.0)  # is_active() window

    @property
    def interval_s(self) -> float:
        return 1.0 / self.refresh_hz


class Settings(BaseSettings):
    """
    Main application settings.

    Can be configured via:
    - Environment variables (prefixed with X32_, nested with __)
    - YAML config file
    - Direct instantiation
    """

    model_config = SettingsConfigDict(env_prefix="X32_", env_nested_delimiter="__")

    connection: ConnectionConfig = Field(default_factory=ConnectionConfig)
    fade: FadeConfig = Field(default_factory=FadeConfig)
    monitor: MonitorConfig = Field(default_factory=MonitorConfig)

    # Debug
    debug: bool = False
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def check_log_level(cls, value: str) -> str:
        value = value.strip().upper()
        if value not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level {value!r}")
        return value

    @classmethod
    def from_yaml(cls, path: Path) -> "Settings":
        """Load settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls(**data)

    def to_yaml(self, path: Path) -> None:
        """Save settings to a YAML file."""
        with open(path, "w") as f:
            yaml.dump(self.model_dump(), f, default_flow_style=False)
