"""Event ingestion listener.

  POST /log_event   {"type", "timestamp", "source"?, "path"?, "data"?}
                    → 202 (empty body)
                    → 400 {"error": "Missing required fields: type and timestamp"}
                    → 400 {"error": "Invalid JSON payload"}
  anything else     → 404 {"error": "Not Found"}

The server runs in its own thread. Accepted events are handed to a ``submit``
callable and acknowledged right away; the daemon passes a callable that
marshals the event onto the event loop, so the queue is only ever touched
from the loop thread.
"""

from __future__ import annotations

import errno
import json
import logging
import threading
from dataclasses import dataclass
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import TYPE_CHECKING, Any

from genie_journal.models import Event, ValidationError

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

logger = logging.getLogger("genie_journal.api")

DEFAULT_HOST = "127.0.0.1"
DEFAULT_BASE_PORT = 3000
MAX_PORT_RETRIES = 100
PORT_ANNOUNCE_PREFIX = "JOURNAL_DAEMON_PORT:"


class BindError(OSError):
    """No port could be bound within the retry budget."""


@dataclass(frozen=True)
class PortRetryPolicy:
    """Sequential port scan: base, base+step, ... for max_attempts ports."""

    base_port: int = DEFAULT_BASE_PORT
    max_attempts: int = MAX_PORT_RETRIES
    step: int = 1

    def ports(self) -> Iterator[int]:
        for i in range(self.max_attempts):
            port = self.base_port + i * self.step
            if port > 65535:
                return
            yield port


# ---------------------------------------------------------------------------
# HTTP handler
# ---------------------------------------------------------------------------


class IngressServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address: tuple[str, int], submit: Callable[[Event], None]) -> None:
        super().__init__(address, EventIngressHandler)
        self.submit = submit


class EventIngressHandler(BaseHTTPRequestHandler):
    server: IngressServer

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        """Suppress default access log output."""

    def _send_json(self, data: dict[str, Any] | None, status: int) -> None:
        body = json.dumps(data).encode() if data is not None else b""
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        if self.command != "HEAD":
            self.wfile.write(body)

    def _send_error(self, status: int, message: str) -> None:
        self._send_json({"error": message}, status)

    def _not_found(self) -> None:
        self._send_error(404, "Not Found")

    do_GET = do_HEAD = do_PUT = do_DELETE = do_PATCH = do_OPTIONS = _not_found

    def send_error(self, code: int, message: str | None = None, explain: str | None = None) -> None:
        # Methods without a do_* handler land here as 501.
        if code == 501:
            self._not_found()
            return
        super().send_error(code, message, explain)

    def do_POST(self) -> None:
        if self.path != "/log_event":
            self._not_found()
            return
        try:
            length = int(self.headers.get("Content-Length", 0) or 0)
        except ValueError:
            length = -1
        if length < 0:
            self._send_error(400, "Invalid JSON payload")
            return
        raw = self.rfile.read(length) if length else b""
        try:
            payload = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._send_error(400, "Invalid JSON payload")
            return
        try:
            event = Event.from_payload(payload)
        except ValidationError as exc:
            self._send_error(400, str(exc))
            return
        self.server.submit(event)
        self._send_json(None, 202)


# ---------------------------------------------------------------------------
# Listener
# ---------------------------------------------------------------------------


def bind_server(
    submit: Callable[[Event], None],
    policy: PortRetryPolicy,
    host: str = DEFAULT_HOST,
) -> IngressServer:
    """Bind on the first free port the policy yields. Raises BindError."""
    for port in policy.ports():
        try:
            return IngressServer((host, port), submit)
        except OSError as exc:
            if exc.errno != errno.EADDRINUSE:
                raise
            logger.warning("Port %d in use, trying next...", port)
    msg = f"Could not find an available port after {policy.max_attempts} retries."
    raise BindError(msg)


class EventIngress:
    """Owns the ingestion server and its serving thread."""

    def __init__(
        self,
        submit: Callable[[Event], None],
        policy: PortRetryPolicy | None = None,
        host: str = DEFAULT_HOST,
    ) -> None:
        self.submit = submit
        self.policy = policy or PortRetryPolicy()
        self.host = host
        self._server: IngressServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int | None:
        return self._server.server_address[1] if self._server is not None else None

    def start(self) -> int:
        """Bind, start serving in a background thread and return the bound port."""
        self._server = bind_server(self.submit, self.policy, self.host)
        self._thread = threading.Thread(
            target=self._server.serve_forever, name="genie-journal-api", daemon=True,
        )
        self._thread.start()
        port = self._server.server_address[1]
        logger.info("event ingress listening on %s:%d", self.host, port)
        return port

    def stop(self) -> None:
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        if self._thread is not None:
            self._thread.join(timeout=5)
        self._server = None
        self._thread = None


def announce_port(port: int) -> None:
    """Single stdout line for a parent process to capture."""
    print(f"{PORT_ANNOUNCE_PREFIX}{port}", flush=True)
