"""Tests for delivery/httpd.py - listeners and end-to-end delivery."""

import gzip
import http.client
import socket
import threading
import time

import pytest

from conftest import MockOutput, MockParser, MockRouter

from config import ExtensionRule

from delivery.cache import compute_etag
from delivery.httpd import BACKLOG, DeliveryHTTPServer, Listener, ListenerState, Server, create_server
from delivery.resource import Resource
from delivery.router import StaticRouter


def _get(port, path="/", method="GET", headers=None):
    conn = http.client.HTTPConnection("127.0.0.1", port, timeout=5)
    try:
        conn.request(method, path, headers=headers or {})
        resp = conn.getresponse()
        return resp.status, dict(resp.getheaders()), resp.read()
    finally:
        conn.close()


@pytest.fixture
def running(server_config):
    """Factory for started servers, stopped after the test."""
    servers = []

    def _start(**kwargs):
        kwargs.setdefault("parser", MockParser())
        kwargs.setdefault("router", MockRouter())
        kwargs.setdefault("output", MockOutput())
        server = Server(server_config, **kwargs)
        assert server.start()
        servers.append(server)
        return server

    yield _start
    for server in servers:
        server.stop()


class TestServerInit:
    """Tests for Server construction."""

    def test_backlog(self):
        assert DeliveryHTTPServer.request_queue_size == BACKLOG == 511

    def test_defaults(self, server_config):
        server = create_server(server_config)
        assert isinstance(server.router, StaticRouter)
        assert server.sessions is not None
        assert server.pipeline.reply_timeout == server_config.reply_timeout
        assert server.listeners == []

    def test_collaborators_kept(self, server_config):
        router = MockRouter()
        output = MockOutput()
        server = Server(server_config, parser=MockParser(), router=router, output=output)
        assert server.router is router
        assert server.pipeline.output is output


class TestServerLifecycle:
    """Tests for start/stop."""

    def test_plain_only_without_ssl(self, running):
        server = running()
        assert server.http_listener.state is ListenerState.LISTENING
        assert server.https_listener is None
        assert server.http_listener.port != 0

    def test_startup_messages(self, server_config, running):
        server_config.dev = True
        server = running()
        printed = server.output.printed
        assert printed[0] == "Development mode on"
        assert "Initializing server..." in printed
        assert f"Listening on {server.http_listener.url}" in printed

    def test_stop_callback_once(self, running):
        server = running()
        calls = []
        server.stop(lambda: calls.append(1))

        assert calls == [1]
        assert server.http_listener.state is ListenerState.STOPPED
        assert not server.listening

    def test_stop_releases_port(self, running):
        server = running()
        port = server.http_listener.port
        server.stop()
        with pytest.raises(OSError):
            socket.create_connection(("127.0.0.1", port), timeout=1).close()

    def test_stop_twice(self, running):
        server = running()
        calls = []
        server.stop(lambda: calls.append("a"))
        server.stop(lambda: calls.append("b"))
        assert calls == ["a", "b"]

    def test_start_twice_keeps_listener(self, running, caplog):
        """A second start leaves the bound listener in place."""
        server = running()
        listener = server.http_listener
        port = listener.port

        with caplog.at_level("WARNING", logger="delivery.httpd"):
            assert server.start() is True

        assert server.http_listener is listener
        assert listener.port == port
        assert "already started" in caplog.text
        assert _get(port)[0] == 200

    def test_restart_after_stop(self, running):
        server = running()
        server.stop()
        assert server.start() is True
        assert _get(server.http_listener.port)[0] == 200

    def test_port_in_use(self, server_config, caplog):
        """An occupied port is reported and leaves the listener stopped."""
        blocker = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        blocker.bind(("127.0.0.1", 0))
        blocker.listen(1)
        server_config.ports.http = blocker.getsockname()[1]
        server = Server(server_config, parser=MockParser(), router=MockRouter(), output=MockOutput())
        try:
            with caplog.at_level("ERROR", logger="delivery.httpd"):
                assert server.start() is False
            assert server.http_listener.state is ListenerState.STOPPED
            assert "address already in use" in caplog.text
            server.stop()
        finally:
            blocker.close()

    def test_serve_forever_requires_start(self, server_config):
        with pytest.raises(RuntimeError):
            Server(server_config, parser=MockParser(), router=MockRouter()).serve_forever()

    def test_serve_forever_returns_after_stop(self, running):
        server = running()
        worker = threading.Thread(target=server.serve_forever)
        worker.start()
        time.sleep(0.2)
        server.stop()
        worker.join(5)
        assert not worker.is_alive()


class TestListener:
    """Tests for a single Listener."""

    def test_url(self):
        assert Listener("https", "127.0.0.1", 8443).url == "https://127.0.0.1:8443/"

    def test_close_unstarted(self):
        listener = Listener("http", "127.0.0.1", 0)
        listener.close()
        assert listener.state is ListenerState.STOPPED


class TestDelivery:
    """End-to-end requests over a real socket."""

    def test_get_root(self, running):
        server = running()
        status, headers, body = _get(server.http_listener.port)

        assert status == 200
        assert body == b"dummy response"
        assert headers["Content-Type"] == "text/html; charset=utf-8"
        assert "Content-Encoding" not in headers

    def test_access_log(self, running):
        server = running()
        _get(server.http_listener.port, "/somewhere")
        assert server.output.logged[0][0] == 200

    def test_router_error(self, running):
        server = running(router=MockRouter(error=True))
        status, _, _ = _get(server.http_listener.port)
        assert status == 404

    def test_head(self, running):
        server = running()
        status, _, body = _get(server.http_listener.port, method="HEAD")
        assert status == 200
        assert body == b""

    def test_gzip_negotiated(self, server_config, running):
        server_config.gzip = True
        server = running()
        status, headers, body = _get(
            server.http_listener.port, headers={"Accept-Encoding": "gzip, deflate"}
        )
        assert status == 200
        assert headers["Content-Encoding"] == "gzip"
        assert gzip.decompress(body) == b"dummy response"

    def test_not_modified(self, running, doc_root):
        """Matching If-None-Match gives an empty 304 without encoding."""
        path = doc_root / "index.html"

        def factory():
            return Resource(filename="index.html", file_path=path, ext="html",
                            type="text/html", static=True, encoding="gzip")

        server = running(parser=MockParser(factory))
        tag = compute_etag(factory()).value

        status, headers, body = _get(server.http_listener.port, headers={"If-None-Match": tag})

        assert status == 304
        assert body == b""
        assert "Content-Encoding" not in headers
        assert server.router.loaded == []

    def test_static_file_with_defaults(self, server_config, running, doc_root):
        """The default parser and router serve files from the root."""
        server = running(parser=None, router=None)
        status, headers, body = _get(server.http_listener.port, "/styles/site.css")

        assert status == 200
        assert body == (doc_root / "styles" / "site.css").read_bytes()
        assert headers["Content-Type"] == "text/css"
        assert headers["Etag"].startswith('"')
        assert "Set-Cookie" not in headers

    def test_disallowed_dir_leaks_no_metadata(self, server_config, running, doc_root):
        """A file outside its extension's dirs is a bare 404, even on replay."""
        server_config.extensions["js"] = ExtensionRule("application/javascript", dirs=["/scripts"])
        (doc_root / "private").mkdir()
        (doc_root / "private" / "x.js").write_text("secret()")
        server = running(parser=None, router=None)
        port = server.http_listener.port

        status, headers, body = _get(port, "/private/x.js")
        assert status == 404
        assert body == b""
        assert "Etag" not in headers
        assert "Last-Modified" not in headers

        stolen = Resource(filename="x.js", file_path=doc_root / "private" / "x.js", static=True)
        tag = compute_etag(stolen).value
        status, _, _ = _get(port, "/private/x.js", headers={"If-None-Match": tag})
        assert status == 404

    def test_session_cookie_only_when_written(self, running):
        """Pages that store session data get a cookie; others do not."""
        router = StaticRouter()

        @router.page("/login")
        def login(env):
            env.session.set("user", "ada")
            return "welcome"

        @router.page("/about")
        def about(env):
            return "about"

        server = running(parser=None, router=router)
        port = server.http_listener.port

        _, about_headers, _ = _get(port, "/about")
        status, login_headers, body = _get(port, "/login")

        assert "Set-Cookie" not in about_headers
        assert status == 200
        assert body == b"welcome"
        assert login_headers["Set-Cookie"].startswith("sid=")
        assert len(server.sessions) == 1

    def test_default_stack_rejects_traversal(self, running):
        server = running(parser=None, router=None)
        status, _, body = _get(server.http_listener.port, "/../secret.txt")
        assert status == 404
        assert b"outside" not in body

    def test_concurrent_requests_isolated(self, running):
        """Parallel requests each get their own status and headers."""

        class EchoRouter(MockRouter):
            def load(self, resource, reply):
                if resource.url is not None and resource.url.path == "/moved":
                    resource.env.redirect("/target")
                reply(False, resource.url.path if resource.url else "")

        server = running(parser=None, router=EchoRouter())
        port = server.http_listener.port
        results = {}

        def fetch(path):
            results[path] = _get(port, path)

        threads = [threading.Thread(target=fetch, args=(p,)) for p in ("/moved", "/stay")]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)

        moved_status, moved_headers, _ = results["/moved"]
        stay_status, stay_headers, stay_body = results["/stay"]
        assert moved_status == 302
        assert moved_headers["Location"] == "/target"
        assert stay_status == 200
        assert "Location" not in stay_headers
        assert stay_body == b"/stay"
