"""Runtime settings read from environment variables."""

import os
from pathlib import Path

from pydantic import BaseModel, Field

from .constants import (
    DEFAULT_AUTO_LOG_HOURS,
    DEFAULT_DATA_DIR,
    DEFAULT_PORT,
    DEFAULT_SENSOR_TIMEOUT_SECONDS,
    DEFAULT_SERVER_URL,
)


class Settings(BaseModel):
    """Server, storage and sensor configuration.

    Environment variables:
        SOURDOUGH_PORT, SOURDOUGH_DATA_DIR, SOURDOUGH_SERVER_URL,
        ECOBEE_URL, ECOBEE_TOKEN, ECOBEE_ENTITY,
        SOURDOUGH_SENSOR_TIMEOUT, SOURDOUGH_AUTO_LOG_HOURS
    """

    port: int = Field(default=DEFAULT_PORT, ge=0, le=65535)
    data_dir: Path = Path(DEFAULT_DATA_DIR)
    server_url: str = DEFAULT_SERVER_URL

    sensor_url: str | None = None
    sensor_token: str | None = None
    sensor_entity: str | None = None
    sensor_timeout: float = Field(default=DEFAULT_SENSOR_TIMEOUT_SECONDS, gt=0)

    auto_log_interval_hours: float = Field(default=DEFAULT_AUTO_LOG_HOURS, gt=0)

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "Settings":
        """Build settings from the environment, ignoring unset or empty variables."""
        env = os.environ if environ is None else environ
        mapping = {
            "port": "SOURDOUGH_PORT",
            "data_dir": "SOURDOUGH_DATA_DIR",
            "server_url": "SOURDOUGH_SERVER_URL",
            "sensor_url": "ECOBEE_URL",
            "sensor_token": "ECOBEE_TOKEN",
            "sensor_entity": "ECOBEE_ENTITY",
            "sensor_timeout": "SOURDOUGH_SENSOR_TIMEOUT",
            "auto_log_interval_hours": "SOURDOUGH_AUTO_LOG_HOURS",
        }
        values = {field: env[var] for field, var in mapping.items() if env.get(var)}
        return cls(**values)

    @property
    def sensor_enabled(self) -> bool:
        return bool(self.sensor_url and self.sensor_token and self.sensor_entity)
