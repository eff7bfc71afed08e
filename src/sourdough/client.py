"""HTTP client for the bake logger API, used by the CLI."""

import mimetypes
from pathlib import Path
from typing import Any

import requests

from .constants import DEFAULT_SERVER_URL
from .errors import SourdoughError
from .models import Bake, BakeSummary, Event


class ClientError(SourdoughError):
    """The server could not be reached or rejected the request."""


class BakeClient:
    """Thin wrapper over the server's JSON API."""

    def __init__(self, server_url: str = DEFAULT_SERVER_URL, timeout: float = 10.0):
        self.server_url = server_url.rstrip("/")
        self.timeout = timeout

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.server_url}{path}"
        try:
            response = requests.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise ClientError(
                f"Failed to connect to server: {e}\nMake sure the server is running on {self.server_url}"
            ) from e

        try:
            data = response.json()
        except ValueError:
            data = None

        if response.status_code != 200:
            message = data.get("error") if isinstance(data, dict) else None
            raise ClientError(message or response.text.strip() or f"HTTP {response.status_code}")
        return data

    def start(self, temp_f: float | None = None) -> Event:
        params = {"temp": temp_f} if temp_f is not None else None
        data = self._request("POST", "/loaf/start", params=params)
        return Event.model_validate(data["event"])

    def log(
        self,
        kind: str,
        temp_f: float | None = None,
        dough_temp_f: float | None = None,
        note: str | None = None,
    ) -> Event:
        params = {"temp": temp_f, "dough_temp": dough_temp_f, "note": note}
        params = {k: v for k, v in params.items() if v is not None}
        data = self._request("POST", f"/log/{kind}", params=params)
        return Event.model_validate(data["event"])

    def temperature(self, value_f: float, reading: str = "kitchen") -> Event:
        data = self._request("POST", f"/log/temp/{value_f:g}", params={"type": reading})
        return Event.model_validate(data["event"])

    def note(self, text: str, dough_temp_f: float | None = None, image: Path | None = None) -> Event:
        if image is None:
            payload = {"note": text}
            if dough_temp_f is not None:
                payload["dough_temp"] = dough_temp_f
            data = self._request("POST", "/log/note", json=payload)
        else:
            content_type = mimetypes.guess_type(image.name)[0] or "application/octet-stream"
            form = {"note": text}
            if dough_temp_f is not None:
                form["dough_temp"] = str(dough_temp_f)
            with open(image, "rb") as f:
                data = self._request(
                    "POST", "/log/note", data=form, files={"image": (image.name, f, content_type)}
                )
        return Event.model_validate(data["event"])

    def complete(self, assessment: dict) -> Event:
        data = self._request("POST", "/log/loaf-complete", json={"assessment": assessment})
        return Event.model_validate(data["event"])

    def status(self) -> Bake:
        return Bake.model_validate(self._request("GET", "/status"))

    def bake(self, identity: str) -> Bake:
        return Bake.model_validate(self._request("GET", f"/api/bake/{identity}"))

    def history(self) -> list[BakeSummary]:
        return [BakeSummary.model_validate(s) for s in self._request("GET", "/api/bakes")]

    def delete(self, identity: str) -> None:
        self._request("DELETE", f"/api/bake/{identity}")
