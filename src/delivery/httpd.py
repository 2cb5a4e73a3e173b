"""Delivery server.

One plain HTTP listener plus, when TLS material is configured, one HTTPS
listener on a second port. Every accepted connection runs through the
request pipeline on its own thread; the server itself keeps no
per-request state.
"""

import enum
import errno
import logging
import signal
import ssl
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Callable, Optional

from delivery.exchange import Request, Response
from delivery.output import Output
from delivery.parser import ResourceParser
from delivery.pipeline import Pipeline
from delivery.respond import NOT_FOUND
from delivery.router import StaticRouter
from delivery.sessions import SessionStore
from delivery.tls import TLSConfig

logger = logging.getLogger(__name__)

BACKLOG = 511
SERVER_VERSION = "delivery/1.0.0"
HANDLER_TIMEOUT = 60
CLOSE_TIMEOUT = 5.0


class ListenerState(enum.Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    LISTENING = "listening"


class DeliveryHandler(BaseHTTPRequestHandler):
    """Hands every request to the server's pipeline."""

    server_version = SERVER_VERSION
    timeout = HANDLER_TIMEOUT

    def setup(self):
        super().setup()
        # Handshake here so a slow TLS client only stalls its own thread
        if isinstance(self.connection, ssl.SSLSocket):
            self.connection.do_handshake()

    def log_message(self, format: str, *args):
        """Override to use Python logging."""
        logger.debug("%s - %s", self.address_string(), format % args)

    def do_GET(self):
        self._dispatch()

    def do_HEAD(self):
        self._dispatch()

    def do_POST(self):
        self._dispatch()

    def do_PUT(self):
        self._dispatch()

    def do_PATCH(self):
        self._dispatch()

    def do_DELETE(self):
        self._dispatch()

    def do_OPTIONS(self):
        self._dispatch()

    def _dispatch(self):
        request = Request.from_handler(self)
        response = Response(self, request)
        try:
            self.server.pipeline.handle(request, response)
        except Exception:
            logger.exception("Unhandled error for %s %s", self.command, self.path)
            if not response.headers_sent and not response.finished:
                try:
                    response.write_head(NOT_FOUND, {"Content-Type": "text/plain; charset=utf-8"})
                except OSError:
                    pass
            response.end()


class DeliveryHTTPServer(ThreadingHTTPServer):
    """Threaded listener bound to a pipeline, optionally speaking TLS."""

    request_queue_size = BACKLOG
    daemon_threads = True
    # A second server on a bound port must fail with EADDRINUSE
    allow_reuse_port = False

    def __init__(self, address, handler_class, pipeline: Pipeline, ssl_context=None):
        self.pipeline = pipeline
        self.ssl_context = ssl_context
        super().__init__(address, handler_class)

    def get_request(self):
        sock, addr = super().get_request()
        if self.ssl_context is not None:
            sock = self.ssl_context.wrap_socket(
                sock, server_side=True, do_handshake_on_connect=False
            )
        return sock, addr

    def handle_error(self, request, client_address):
        # Dropped connections and failed handshakes end up here
        logger.warning("Connection error from %s", client_address[0], exc_info=True)


class Listener:
    """One bound socket and the thread serving it."""

    def __init__(self, protocol: str, host: str, port: int, ssl_context=None):
        self.protocol = protocol
        self.host = host
        self.port = port
        self.ssl_context = ssl_context
        self.state = ListenerState.STOPPED
        self.httpd: Optional[DeliveryHTTPServer] = None
        self.thread: Optional[threading.Thread] = None

    @property
    def url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}/"

    def start(self, pipeline: Pipeline) -> bool:
        """Bind and start serving; False if the bind failed."""
        self.state = ListenerState.STARTING
        try:
            self.httpd = DeliveryHTTPServer(
                (self.host, self.port), DeliveryHandler, pipeline, self.ssl_context
            )
        except OSError as e:
            self.state = ListenerState.STOPPED
            if e.errno == errno.EADDRINUSE:
                logger.error(
                    "Cannot start %s server (address already in use): %s:%d",
                    self.protocol, self.host, self.port,
                )
            else:
                logger.error("Cannot start %s server on %s:%d: %s", self.protocol, self.host, self.port, e)
            return False

        self.port = self.httpd.server_address[1]
        self.thread = threading.Thread(
            target=self.httpd.serve_forever,
            name=f"{self.protocol}-listener",
            daemon=True,
        )
        self.thread.start()
        self.state = ListenerState.LISTENING
        return True

    def close(self):
        """Stop serving and release the socket."""
        if self.httpd is None:
            self.state = ListenerState.STOPPED
            return
        try:
            self.httpd.shutdown()
            self.httpd.server_close()
            if self.thread is not None:
                self.thread.join(CLOSE_TIMEOUT)
        finally:
            self.httpd = None
            self.thread = None
            self.state = ListenerState.STOPPED
            logger.debug("Closed %s listener", self.protocol)


class Server:
    """Plain + optional TLS delivery server."""

    def __init__(
        self,
        config,
        parser=None,
        router=None,
        sessions=None,
        output=None,
    ):
        """Initialize server.

        Args:
            config: ServerConfig (host, ports, ssl, dev/gzip modes, ...)
            parser: Request parser (default: ResourceParser over config.root)
            router: Content router (default: StaticRouter)
            sessions: Session handler (default: in-memory SessionStore)
            output: Operator/access log sink (default: logging-backed Output)
        """
        self.config = config
        self.parser = parser if parser is not None else ResourceParser(config)
        self.router = router if router is not None else StaticRouter()
        if sessions is None:
            sessions = SessionStore(config.session.cookie, config.session.ttl)
        self.sessions = sessions
        self.output = output if output is not None else Output()
        self.pipeline = Pipeline.from_config(
            config, self.parser, self.router, self.sessions, self.output
        )
        self.http_listener: Optional[Listener] = None
        self.https_listener: Optional[Listener] = None
        self.tls_config: Optional[TLSConfig] = None
        self._stopped = threading.Event()

    @property
    def listeners(self) -> list:
        return [listener for listener in (self.http_listener, self.https_listener) if listener is not None]

    @property
    def listening(self) -> bool:
        return any(listener.state is ListenerState.LISTENING for listener in self.listeners)

    def start(self) -> bool:
        """Bind the plain listener and, with TLS material, the secure one.

        A failing listener is reported and left stopped; the other one is
        unaffected.

        Returns:
            True if at least one listener is up
        """
        if self.listening:
            logger.warning("Server already started")
            return True
        self._stopped.clear()
        if self.config.dev:
            self.output.print("Development mode on")
        self.output.print("Initializing server...")

        self.http_listener = Listener("http", self.config.host, self.config.ports.http)
        self._start_listener(self.http_listener)

        if self.config.ssl is not None:
            context = self._load_tls()
            if context is not None:
                self.https_listener = Listener(
                    "https", self.config.host, self.config.ports.https, context
                )
                self._start_listener(self.https_listener)

        if not self.listening:
            logger.error("No listener could be started")
        return self.listening

    def _load_tls(self) -> Optional[ssl.SSLContext]:
        try:
            self.tls_config = TLSConfig.from_paths(self.config.ssl.cert, self.config.ssl.key)
            context = self.tls_config.create_context()
        except (OSError, ValueError) as e:
            logger.error("TLS listener disabled, cannot load key/cert: %s", e)
            self.tls_config = None
            return None
        logger.info("Certificate fingerprint: %s", self.tls_config.fingerprint)
        return context

    def _start_listener(self, listener: Listener):
        if listener.start(self.pipeline):
            self.output.print(f"Listening on {listener.url}")

    def stop(self, callback: Optional[Callable[[], None]] = None):
        """Close all active listeners, then call callback once.

        Each listener closes on its own thread; the call returns after all
        of them are done.
        """
        closers = []
        for listener in self.listeners:
            if listener.state is ListenerState.STOPPED:
                continue
            thread = threading.Thread(
                target=self._close_listener,
                args=(listener,),
                name=f"{listener.protocol}-close",
            )
            thread.start()
            closers.append(thread)
        for thread in closers:
            thread.join()
        self._stopped.set()
        if callback is not None:
            callback()

    def _close_listener(self, listener: Listener):
        try:
            listener.close()
        except Exception:
            logger.exception("Failed to close %s listener", listener.protocol)

    def serve_forever(self):
        """Block until interrupted, then stop."""
        if not self.listening:
            raise RuntimeError("Server not started")
        self._setup_signal_handlers()
        try:
            while not self._stopped.wait(0.5):
                pass
        except KeyboardInterrupt:
            logger.info("Shutdown requested")
        finally:
            self.stop()

    def _setup_signal_handlers(self):
        """SIGTERM ends serve_forever; only possible from the main thread."""
        if threading.current_thread() is not threading.main_thread():
            return

        def handle_sigterm(signum, frame):
            logger.info("Received SIGTERM")
            self._stopped.set()

        signal.signal(signal.SIGTERM, handle_sigterm)


def create_server(
    config,
    parser=None,
    router=None,
    sessions=None,
    output=None,
) -> Server:
    """Create a server instance (not yet started)."""
    return Server(config, parser=parser, router=router, sessions=sessions, output=output)
