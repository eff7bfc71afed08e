"""HTTP JSON API for the bake logger.

One thread per request (ThreadingHTTPServer) plus a background thread that
auto-logs the kitchen temperature while a bake is open. All of them share a
single BakeEngine/BakeStore.
"""

import json
import logging
import mimetypes
import signal
import sys
import threading
from email.parser import BytesParser
from email.policy import default as default_policy
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path
from urllib.parse import parse_qs, unquote, urlsplit

from .config import Settings
from .engine import BakeEngine
from .errors import (
    BakeNotFoundError,
    InvalidEventError,
    SessionAlreadyOpenError,
    StorageError,
    ValidationError,
)
from .models import MILESTONE_KINDS

logger = logging.getLogger(__name__)


def setup_logging(data_dir: Path, level: int = logging.INFO) -> None:
    """Log to <data_dir>/sourdough.log and stderr."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    try:
        data_dir.mkdir(parents=True, exist_ok=True)
        handlers.insert(0, logging.FileHandler(data_dir / "sourdough.log"))
    except OSError:
        pass  # the store reports the directory problem itself

    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers,
    )


class HTTPError(Exception):
    """Request failure with an HTTP status."""

    def __init__(self, status: int, message: str):
        self.status = status
        super().__init__(message)


def _parse_temp(value: str | None, name: str = "temperature") -> float | None:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except ValueError:
        raise HTTPError(HTTPStatus.BAD_REQUEST, f"Invalid {name} value: {value}") from None


class BakeRequestHandler(BaseHTTPRequestHandler):
    """Routes requests to the engine attached to the server."""

    server_version = "sourdough"

    @property
    def engine(self) -> BakeEngine:
        return self.server.engine  # type: ignore[attr-defined]

    def log_message(self, format, *args):
        logger.info(f"{self.address_string()} {format % args}")

    # --- Plumbing ---

    def do_GET(self):
        self._dispatch("GET")

    def do_POST(self):
        self._dispatch("POST")

    def do_DELETE(self):
        self._dispatch("DELETE")

    def _dispatch(self, method: str) -> None:
        url = urlsplit(self.path)
        self.query = {k: v[-1] for k, v in parse_qs(url.query).items()}
        parts = [unquote(p) for p in url.path.strip("/").split("/") if p]

        try:
            self._route(method, parts)
        except HTTPError as e:
            self._send_json({"error": str(e)}, e.status)
        except (ValidationError, SessionAlreadyOpenError, InvalidEventError) as e:
            self._send_json({"error": str(e)}, HTTPStatus.BAD_REQUEST)
        except BakeNotFoundError as e:
            self._send_json({"error": str(e)}, HTTPStatus.NOT_FOUND)
        except StorageError as e:
            logger.error(f"{method} {url.path} failed: {e}")
            self._send_json({"error": str(e)}, HTTPStatus.INTERNAL_SERVER_ERROR)

    def _route(self, method: str, parts: list[str]) -> None:
        head = parts[0] if parts else ""

        if parts == ["health"]:
            self._allow(method, "GET")
            return self._send_json({"status": "ok"})

        if parts in (["loaf", "start"], ["bake", "start"]):
            self._allow(method, "GET", "POST")
            return self._start()

        if head == "log":
            self._allow(method, "GET", "POST")
            return self._log(method, parts[1:])

        if parts == ["status"]:
            self._allow(method, "GET")
            return self._send_json(self.engine.current_bake().to_dict())

        if parts == ["api", "bakes"]:
            self._allow(method, "GET")
            return self._send_json([s.to_dict() for s in self.engine.summaries()])

        if parts == ["api", "bake", "current"]:
            self._allow(method, "GET")
            return self._send_json(self.engine.display_bake().to_dict())

        if len(parts) == 3 and parts[:2] == ["api", "bake"]:
            return self._bake(method, parts[2])

        if len(parts) == 3 and parts[:2] == ["api", "events"]:
            self._allow(method, "DELETE")
            return self._delete_event(parts[2])

        if len(parts) == 3 and head == "images":
            self._allow(method, "GET")
            return self._image(parts[1], parts[2])

        raise HTTPError(HTTPStatus.NOT_FOUND, "Not found")

    def _allow(self, method: str, *allowed: str) -> None:
        if method not in allowed:
            raise HTTPError(HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed")

    def _read_body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length > 0 else b""

    def _read_json(self) -> dict | None:
        body = self._read_body()
        if not body.strip():
            return None
        try:
            data = json.loads(body)
        except json.JSONDecodeError:
            raise HTTPError(HTTPStatus.BAD_REQUEST, "Invalid JSON body")
        if not isinstance(data, dict):
            raise HTTPError(HTTPStatus.BAD_REQUEST, "Invalid JSON body")
        return data

    def _read_form(self) -> dict[str, tuple[bytes, str | None]]:
        """Parse a multipart/form-data body into name -> (payload, file content type)."""
        content_type = self.headers.get("Content-Type", "")
        body = self._read_body()
        message = BytesParser(policy=default_policy).parsebytes(
            f"Content-Type: {content_type}\r\n\r\n".encode() + body
        )
        if not message.is_multipart():
            raise HTTPError(HTTPStatus.BAD_REQUEST, "Invalid form body")

        fields = {}
        for part in message.iter_parts():
            name = part.get_param("name", header="content-disposition")
            if not name:
                continue
            payload = part.get_payload(decode=True) or b""
            file_type = part.get_content_type() if part.get_filename() else None
            fields[name] = (payload, file_type)
        return fields

    def _send_json(self, data, status: int = HTTPStatus.OK) -> None:
        body = json.dumps(data, default=str).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    # --- Handlers ---

    def _start(self) -> None:
        event = self.engine.start_session(temp_f=_parse_temp(self.query.get("temp")))
        self._send_json({"status": "loaf started", "event": event.to_dict()})

    def _log(self, method: str, parts: list[str]) -> None:
        if not parts:
            raise HTTPError(HTTPStatus.BAD_REQUEST, "Event type required")
        kind = parts[0]

        if kind == "note":
            self._allow(method, "POST")
            event = self._log_note()
        elif kind == "temp":
            if len(parts) < 2:
                raise HTTPError(HTTPStatus.BAD_REQUEST, "Temperature value required")
            value = _parse_temp(parts[1])
            # "oven" readings go to oven_temp_f; older logs kept them in temp_f
            event = self.engine.log_temperature(value, self.query.get("type") or "kitchen")
        elif kind in MILESTONE_KINDS:
            event = self._log_milestone(method, kind)
        else:
            raise HTTPError(HTTPStatus.BAD_REQUEST, f"Invalid event type: {kind}")

        self._send_json({"status": "logged", "event": event.to_dict()})

    def _log_milestone(self, method: str, kind: str):
        temp = _parse_temp(self.query.get("temp"))
        ambient, oven = temp, None
        if kind in ("oven-in", "remove-lid"):
            # temp on these routes is the oven setting, not the kitchen
            ambient, oven = None, temp

        assessment = None
        if kind == "loaf-complete" and method == "POST":
            body = self._read_json()
            if body is not None:
                assessment = body.get("assessment")
                if assessment is not None and not isinstance(assessment, dict):
                    raise HTTPError(HTTPStatus.BAD_REQUEST, "Invalid assessment")

        return self.engine.log_event(
            kind,
            ambient_temp_f=ambient,
            dough_temp_f=_parse_temp(self.query.get("dough_temp"), "dough temperature"),
            oven_temp_f=oven,
            note=self.query.get("note"),
            assessment=assessment,
        )

    def _log_note(self):
        content_type = self.headers.get("Content-Type", "")
        image, image_type = None, None

        if content_type.startswith("multipart/form-data"):
            form = self._read_form()
            note = form.get("note", (b"", None))[0].decode("utf-8", errors="replace")
            dough_temp = form.get("dough_temp", (b"", None))[0].decode("utf-8", errors="replace")
            if "image" in form:
                image, image_type = form["image"]
        else:
            body = self._read_json() or {}
            note = str(body.get("note") or "")
            dough_temp = body.get("dough_temp")
            if dough_temp is not None:
                dough_temp = str(dough_temp)

        return self.engine.log_note(
            note,
            dough_temp_f=_parse_temp(dough_temp, "dough temperature"),
            image=image,
            content_type=image_type,
        )

    def _bake(self, method: str, identity: str) -> None:
        if method == "GET":
            bake = self.engine.bake(identity)
            if not bake.events:
                raise HTTPError(HTTPStatus.NOT_FOUND, "Bake not found")
            return self._send_json(bake.to_dict())
        if method == "DELETE":
            self.engine.delete_bake(identity)
            return self._send_json({"status": "deleted", "date": identity})
        raise HTTPError(HTTPStatus.METHOD_NOT_ALLOWED, "Method not allowed")

    def _delete_event(self, index: str) -> None:
        try:
            idx = int(index)
        except ValueError:
            raise HTTPError(HTTPStatus.BAD_REQUEST, f"Invalid event index: {index}")
        # an unencoded "+" in the offset arrives as a space
        timestamp = (self.query.get("timestamp") or "").strip().replace(" ", "+")
        if not timestamp:
            raise HTTPError(HTTPStatus.BAD_REQUEST, "timestamp is required")
        removed = self.engine.delete_event(idx, timestamp)
        self._send_json({"status": "deleted", "event": removed.to_dict()})

    def _image(self, identity: str, filename: str) -> None:
        path = self.engine.image_path(identity, filename)
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            raise HTTPError(HTTPStatus.NOT_FOUND, "Image not found")
        except OSError as e:
            raise StorageError(f"failed to read image: {e}", path=path, operation="read_image") from e

        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", mimetypes.guess_type(path.name)[0] or "application/octet-stream")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)


class BakeHTTPServer(ThreadingHTTPServer):
    """Threaded HTTP server carrying the shared engine."""

    daemon_threads = True

    def __init__(self, address: tuple[str, int], engine: BakeEngine):
        self.engine = engine
        super().__init__(address, BakeRequestHandler)


class TemperatureScheduler:
    """Calls engine.auto_log_temperature() every `interval` seconds on a daemon thread."""

    def __init__(self, engine: BakeEngine, interval: float):
        self.engine = engine
        self.interval = interval
        self._stopped = threading.Event()
        self._thread = threading.Thread(target=self._run, name="auto-temperature", daemon=True)

    def start(self) -> None:
        logger.info(f"Automatic temperature logging enabled (every {self.interval / 3600:g} hours)")
        self._thread.start()

    def stop(self) -> None:
        self._stopped.set()
        self._thread.join(timeout=5)

    def _run(self) -> None:
        while not self._stopped.wait(self.interval):
            self.engine.auto_log_temperature()


def main():
    """Entry point for the HTTP server."""
    settings = Settings.from_env()
    setup_logging(settings.data_dir)

    try:
        engine = BakeEngine.from_settings(settings)
    except StorageError as e:
        logger.error(f"Failed to initialize storage: {e}")
        sys.exit(1)

    scheduler = None
    if engine.sensor.enabled:
        logger.info(f"Sensor integration enabled: {settings.sensor_url} ({settings.sensor_entity})")
        scheduler = TemperatureScheduler(engine, settings.auto_log_interval_hours * 3600)
        scheduler.start()
    else:
        logger.info("Sensor integration disabled (set ECOBEE_URL, ECOBEE_TOKEN and ECOBEE_ENTITY to enable)")

    server = BakeHTTPServer(("", settings.port), engine)
    signal.signal(signal.SIGTERM, lambda _signum, _frame: sys.exit(0))

    logger.info(f"Starting sourdough server on port {settings.port}, data directory: {settings.data_dir}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    finally:
        logger.info("Shutting down server...")
        if scheduler is not None:
            scheduler.stop()
        server.server_close()


if __name__ == "__main__":
    main()
