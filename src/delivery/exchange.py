"""Per-request views over the http.server handler.

`Request` is the read side handed to collaborators; `Response` is the
write side owned by exactly one request. Both wrap a single
BaseHTTPRequestHandler instance and never outlive it.
"""

import logging
import socket
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

logger = logging.getLogger(__name__)


class ResponseFinishedError(RuntimeError):
    """Raised when a finished response is mutated."""


@dataclass
class AccessRecord:
    """Transaction data collected for the access log."""

    time_date: str
    method: str
    url: str
    address: str
    status_code: Optional[int] = None
    started: float = field(default_factory=time.monotonic)
    finished: Optional[float] = None

    @property
    def duration_ms(self) -> float:
        """Elapsed milliseconds, up to now if still in flight."""
        end = self.finished if self.finished is not None else time.monotonic()
        return (end - self.started) * 1000.0


class Request:
    """Read-only view of an incoming request."""

    def __init__(
        self,
        method: str,
        path: str,
        headers,
        client_address=None,
        sock: Optional[socket.socket] = None,
        rfile=None,
    ):
        self.method = method
        self.path = path
        self.headers = headers
        self.client_address = client_address
        self.socket = sock
        self._rfile = rfile

    @classmethod
    def from_handler(cls, handler) -> "Request":
        """Build a request view from a BaseHTTPRequestHandler."""
        return cls(
            method=handler.command,
            path=handler.path,
            headers=handler.headers,
            client_address=handler.client_address,
            sock=getattr(handler, "connection", None),
            rfile=handler.rfile,
        )

    @property
    def remote_address(self) -> str:
        if self.client_address:
            return str(self.client_address[0])
        return ""

    def header(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Case-insensitive header lookup."""
        if self.headers is None:
            return default
        return self.headers.get(name, default)

    def read_body(self, limit: int) -> bytes:
        """Read up to Content-Length bytes (capped at limit)."""
        if self._rfile is None:
            return b""
        try:
            length = int(self.header("Content-Length", "0") or 0)
        except ValueError:
            return b""
        if length <= 0:
            return b""
        return self._rfile.read(min(length, limit))


class Response:
    """Write side of a single request.

    Headers set through `set_header` before `write_head` are merged into the
    head; headers passed to `write_head` win on conflict.
    """

    def __init__(self, handler, request: Optional[Request] = None):
        self._handler = handler
        self.headers: dict = {}
        self.headers_sent = False
        self.finished = False
        self.status_code: Optional[int] = None
        self.served_with: Optional[str] = None
        now = datetime.now()
        self.log = AccessRecord(
            time_date=now.strftime("%H:%M:%S %a %b %d %Y"),
            method=request.method if request else "",
            url=request.path if request else "",
            address=request.remote_address if request else "",
        )

    def _check_open(self):
        if self.finished:
            raise ResponseFinishedError("response already finished")

    def set_header(self, key: str, value: str):
        """Queue a header for the response head."""
        self._check_open()
        if self.headers_sent:
            raise ResponseFinishedError("headers already sent")
        self.headers[key] = value

    def write_head(self, code: int, headers: Optional[dict] = None):
        """Send the status line and merged headers."""
        self._check_open()
        merged = dict(self.headers)
        merged.update(headers or {})
        self._handler.send_response(code)
        for key, value in merged.items():
            if value is None:
                continue
            self._handler.send_header(key, str(value))
        self._handler.end_headers()
        self.headers_sent = True
        self.status_code = code
        self.log.status_code = code

    def write(self, chunk: bytes):
        self._check_open()
        if chunk:
            self._handler.wfile.write(chunk)

    def end(self):
        """Flush and mark the response finished."""
        if self.finished:
            return
        try:
            self._handler.wfile.flush()
        except OSError as e:
            logger.debug("Flush failed for %s: %s", self.log.url, e)
        finally:
            self.finished = True
            self.log.finished = time.monotonic()
