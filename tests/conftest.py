"""Shared pytest fixtures for delivery tests."""

import io
import shutil
import subprocess
import sys
from email.message import Message
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from config import ServerConfig, Ports  # noqa: E402
from delivery.exchange import Request, Response  # noqa: E402


class FakeHandler:
    """Stands in for BaseHTTPRequestHandler in unit tests."""

    def __init__(self, fail_on_write=False):
        self.status = None
        self.sent_headers = []
        self.wfile = _FailingWriter() if fail_on_write else io.BytesIO()
        self.headers_ended = False

    def send_response(self, code, message=None):
        self.status = code

    def send_header(self, key, value):
        self.sent_headers.append((key, value))

    def end_headers(self):
        self.headers_ended = True

    def header(self, name):
        for key, value in self.sent_headers:
            if key.lower() == name.lower():
                return value
        return None

    @property
    def body(self):
        return self.wfile.getvalue()


class _FailingWriter(io.BytesIO):
    def write(self, data):
        raise BrokenPipeError("client went away")


class MockParser:
    """Resolves every request to a fresh allowed resource."""

    def __init__(self, resource_factory=None):
        self.resource_factory = resource_factory

    def parse(self, request, response, callback):
        from delivery.resource import Resource
        resource = self.resource_factory() if self.resource_factory else Resource(type="text/html")
        callback(resource, request, response)


class MockRouter:
    """Replies with a fixed result."""

    def __init__(self, error=False, body="dummy response"):
        self.error = error
        self.body = body
        self.loaded = []

    def load(self, resource, reply):
        self.loaded.append(resource)
        reply(self.error, self.body)

    def last(self):
        return "last page"


class MockOutput:
    def __init__(self):
        self.printed = []
        self.logged = []

    def print(self, message):
        self.printed.append(message)

    def log(self, response, resource):
        self.logged.append((response.log.status_code, resource))


class MockSessions:
    def __init__(self):
        self.started = 0
        self.created = 0
        self.data = {}

    def start(self, request, response, resource):
        self.started += 1
        resource.session_id = "test-session"

    def create(self, response, resource):
        self.created += 1
        resource.session_id = "new-session"

    def get(self, session_id, key):
        return self.data.get((session_id, key))

    def set(self, session_id, key, value):
        self.data[(session_id, key)] = value


def make_request(method="GET", path="/", headers=None, body=b"", sock=None):
    """Build a Request with an email.message-style header map."""
    message = Message()
    for key, value in (headers or {}).items():
        message[key] = value
    if body:
        message["Content-Length"] = str(len(body))
    return Request(
        method=method,
        path=path,
        headers=message,
        client_address=("127.0.0.1", 50000),
        sock=sock,
        rfile=io.BytesIO(body),
    )


@pytest.fixture
def fake_handler():
    return FakeHandler()


@pytest.fixture
def make_response():
    """Factory returning (response, handler) pairs."""
    def _make(request=None, fail_on_write=False):
        handler = FakeHandler(fail_on_write=fail_on_write)
        return Response(handler, request or make_request()), handler
    return _make


@pytest.fixture
def doc_root(tmp_path):
    """Document root with a few static files."""
    root = tmp_path / "public"
    (root / "scripts").mkdir(parents=True)
    (root / "styles").mkdir()
    (root / "index.html").write_text("<html><body>home</body></html>")
    (root / "scripts" / "app.js").write_text("console.log('hello');\n" * 50)
    (root / "styles" / "site.css").write_text("body { margin: 0; }\n")
    (tmp_path / "secret.txt").write_text("outside the root")
    return root


@pytest.fixture
def server_config(doc_root):
    """ServerConfig bound to loopback with OS-assigned ports."""
    return ServerConfig(
        host="127.0.0.1",
        ports=Ports(http=0, https=0),
        root=doc_root,
        reply_timeout=2.0,
    )


@pytest.fixture
def tls_material(tmp_path):
    """Throwaway self-signed key/cert pair."""
    if shutil.which("openssl") is None:
        pytest.skip("openssl binary not available")
    cert_path = tmp_path / "server.crt"
    key_path = tmp_path / "server.key"
    subprocess.run(
        [
            "openssl", "req",
            "-x509", "-nodes",
            "-newkey", "rsa:2048",
            "-keyout", str(key_path),
            "-out", str(cert_path),
            "-days", "1",
            "-subj", "/CN=localhost",
        ],
        check=True,
        capture_output=True,
    )
    return cert_path, key_path
