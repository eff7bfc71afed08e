"""Ambient temperature client for a thermostat exposed through Home Assistant."""

import logging

import requests

from .constants import DEFAULT_SENSOR_TIMEOUT_SECONDS
from .errors import SensorError

logger = logging.getLogger(__name__)


class AmbientSensor:
    """Reads the kitchen temperature from the Home Assistant state API.

    The sensor is optional: it is enabled only when base URL, token and
    entity ID are all configured. Every request carries a short timeout so a
    slow or unreachable thermostat cannot hold up event logging.
    """

    def __init__(
        self,
        base_url: str | None = None,
        token: str | None = None,
        entity_id: str | None = None,
        timeout: float = DEFAULT_SENSOR_TIMEOUT_SECONDS,
    ):
        """Initialize the sensor client.

        Args:
            base_url: Home Assistant base URL (e.g. "http://localhost:8123")
            token: Long-lived access token
            entity_id: Temperature sensor entity (e.g. "sensor.kitchen_temperature")
            timeout: Request timeout in seconds
        """
        self.base_url = (base_url or "").rstrip("/")
        self.token = token or ""
        self.entity_id = entity_id or ""
        self.timeout = timeout

    @property
    def enabled(self) -> bool:
        return bool(self.base_url and self.token and self.entity_id)

    def read_fahrenheit(self) -> float | None:
        """Fetch the current temperature in Fahrenheit.

        Returns:
            The reading, or None if the sensor is not configured.

        Raises:
            SensorError: request failed, timed out, or returned an unusable state
        """
        if not self.enabled:
            return None

        url = f"{self.base_url}/api/states/{self.entity_id}"
        headers = {
            "Authorization": f"Bearer {self.token}",
            "Content-Type": "application/json",
        }

        try:
            response = requests.get(url, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise SensorError(f"failed to fetch temperature: {e}") from e

        if response.status_code != 200:
            raise SensorError(f"unexpected status code: {response.status_code}")

        try:
            state = response.json()["state"]
            return float(state)
        except (ValueError, KeyError, TypeError) as e:
            raise SensorError(f"failed to parse temperature: {e}") from e
