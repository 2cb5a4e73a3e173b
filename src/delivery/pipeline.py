"""Request pipeline.

Orders the stages for one request:

    parse -> environment -> session start -> cache check -> router -> respond

Collaborator callbacks are modelled as single-fire `Reply` handles. The
handler thread waits on the handle and does all the writing itself, so a
collaborator may answer from another thread without touching the socket.
"""

import logging
import threading
import traceback
from typing import Optional

from delivery.cache import is_unchanged
from delivery.collaborators import Output, Parser, Router, SessionHandler
from delivery.environment import build_environment
from delivery.exchange import Request, Response
from delivery.resource import Resource
from delivery.respond import NOT_MODIFIED, ResponseWriter

logger = logging.getLogger(__name__)

DEFAULT_REPLY_TIMEOUT = 30.0


class Reply:
    """Single-fire completion handle.

    The first call wins; later calls are ignored with a warning. `cancel`
    consumes the handle without a result (used on timeout or failure).
    """

    def __init__(self, label: str = ""):
        self.label = label
        self.args: tuple = ()
        self.cancelled = False
        self._fired = False
        self._lock = threading.Lock()
        self._done = threading.Event()

    def __call__(self, *args) -> bool:
        with self._lock:
            if self._fired:
                logger.warning("Duplicate reply for %s ignored", self.label)
                return False
            self._fired = True
            self.args = args
        self._done.set()
        return True

    def cancel(self) -> bool:
        """Consume the handle; False if a result already arrived."""
        with self._lock:
            if self._fired:
                return False
            self._fired = True
            self.cancelled = True
        self._done.set()
        return True

    @property
    def fired(self) -> bool:
        return self._fired

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._done.wait(timeout)

    def outcome(self) -> tuple:
        """(error, body) as handed back by a router."""
        error = self.args[0] if len(self.args) > 0 else False
        body = self.args[1] if len(self.args) > 1 else None
        return error, body


class Pipeline:
    """Runs every request through the delivery stages."""

    def __init__(
        self,
        parser: Parser,
        router: Router,
        sessions: Optional[SessionHandler] = None,
        output: Optional[Output] = None,
        writer: Optional[ResponseWriter] = None,
        reply_timeout: float = DEFAULT_REPLY_TIMEOUT,
    ):
        self.parser = parser
        self.router = router
        self.sessions = sessions
        self.output = output
        self.writer = writer or ResponseWriter(output)
        self.reply_timeout = reply_timeout

    @classmethod
    def from_config(cls, config, parser, router, sessions=None, output=None) -> "Pipeline":
        writer = ResponseWriter(
            output,
            dev_mode=config.dev,
            gzip_mode=config.gzip,
            chunk_size=config.chunk_size,
        )
        return cls(
            parser,
            router,
            sessions=sessions,
            output=output,
            writer=writer,
            reply_timeout=config.reply_timeout,
        )

    def handle(self, request: Request, response: Response) -> None:
        """Resolve the request and deliver it."""
        parsed = Reply(f"parse {request.method} {request.path}")
        try:
            self.parser.parse(request, response, parsed)
        except Exception:
            self._print_exception(f"Parser failed for {request.method} {request.path}")
            parsed.cancel()

        if not parsed.wait(self.reply_timeout) and parsed.cancel():
            logger.warning("Parser never resolved %s %s", request.method, request.path)
        if parsed.cancelled or not parsed.args or parsed.args[0] is None:
            self.writer.respond(response, Resource(), error=True)
            return

        self.deliver(parsed.args[0], request, response)

    def deliver(self, resource: Resource, request: Request, response: Response) -> None:
        """Run a resolved resource through cache check, router and writer."""
        build_environment(resource, request, response, self.sessions)

        if self.sessions is not None:
            try:
                self.sessions.start(request, response, resource)
            except Exception:
                self._print_exception(f"Session start failed for {request.path}")

        if is_unchanged(request, resource):
            resource.status_code = NOT_MODIFIED
            self.writer.respond(response, resource)
            return

        reply = Reply(f"{request.method} {request.path}")
        try:
            self.router.load(resource, reply)
            response.served_with = self.router.last()
        except Exception:
            self._print_exception(f"Router failed for {request.method} {request.path}")
            if reply.cancel():
                self.writer.respond(response, resource, error=True)
                return

        if not reply.wait(self.reply_timeout) and reply.cancel():
            logger.warning(
                "No reply for %s %s after %.1fs", request.method, request.path, self.reply_timeout
            )
            self.writer.respond(response, resource, error=True)
            return

        error, body = reply.outcome()
        self.writer.respond(response, resource, error, body)

    def _print_exception(self, message: str):
        if self.output is None:
            logger.exception(message)
            return
        self.output.print(f"{message}\n{traceback.format_exc()}")
