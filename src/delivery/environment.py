"""Per-request environment construction.

The environment is the context object handed to content producers: request
metadata plus a small set of capabilities bound to the live response
(set a header, redirect, force a status code) and a session facade.
"""

import logging
import socket
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, Callable, Optional

from delivery.exchange import Request, Response, ResponseFinishedError
from delivery.resource import Resource, URLInfo

logger = logging.getLogger(__name__)

REDIRECT_CODE = 302

FAMILY_NAMES = {
    socket.AF_INET: "IPv4",
    socket.AF_INET6: "IPv6",
}


@dataclass(frozen=True)
class Connection:
    """Socket-level details of the client connection."""

    address: str
    family: str
    local: str


class SessionFacade:
    """Session accessors scoped to one client session.

    Without a live session, the first `set` opens one through `create`.
    """

    def __init__(self, store, session_id: Optional[str], create: Optional[Callable[[], str]] = None):
        self._store = store
        self._session_id = session_id
        self._create = create

    def get(self, key: str) -> Any:
        if self._store is None or self._session_id is None:
            return None
        return self._store.get(self._session_id, key)

    def set(self, key: str, value: Any) -> None:
        if self._store is None:
            logger.debug("Session set(%s) dropped: no session store", key)
            return
        if self._session_id is None:
            if self._create is None:
                logger.debug("Session set(%s) dropped: no active session", key)
                return
            self._session_id = self._create()
        self._store.set(self._session_id, key, value)


class Environment:
    """Context for a single request.

    Owns an exclusive reference to its response and resource, so mutations
    made by one request can never reach another in-flight response.
    """

    def __init__(
        self,
        resource: Resource,
        request: Request,
        response: Response,
        sessions=None,
    ):
        self._resource = resource
        self._response = response
        self._sessions = sessions
        self.method = request.method
        self.headers = _headers_view(request.headers)
        self.type = resource.type
        self.connection = make_connection(request)
        self.url = make_url(resource)

    @property
    def session(self) -> SessionFacade:
        # Bound lazily: the session store assigns the id after the build.
        return SessionFacade(self._sessions, self._resource.session_id, self._open_session)

    def _open_session(self) -> str:
        self._check_open()
        self._sessions.create(self._response, self._resource)
        return self._resource.session_id

    @property
    def closed(self) -> bool:
        return self._response.finished

    def _check_open(self):
        if self._response.finished:
            raise ResponseFinishedError(
                f"environment for {self._response.log.url} used after response finished"
            )

    def set_header(self, key: str, value: str) -> None:
        self._check_open()
        self._response.set_header(key, value)

    def redirect(self, location: str, code: int = REDIRECT_CODE) -> None:
        """Set Location, then the redirect status code."""
        self.set_header("Location", location)
        self.set_status_code(code)

    def set_status_code(self, code: int) -> None:
        self._check_open()
        self._resource.status_code = code


def _headers_view(headers) -> MappingProxyType:
    """Read-only mapping of lower-cased header names."""
    if headers is None:
        return MappingProxyType({})
    return MappingProxyType({k.lower(): v for k, v in headers.items()})


def make_connection(request: Optional[Request]) -> Optional[Connection]:
    """Connection details, or None when the transport exposes no socket."""
    if request is None or request.socket is None:
        return None
    sock = request.socket
    try:
        remote = sock.getpeername()
        local = sock.getsockname()
    except (OSError, AttributeError):
        return None
    family_name = FAMILY_NAMES.get(getattr(sock, "family", None), "")
    return Connection(
        address=str(remote[0]) if isinstance(remote, tuple) else str(remote),
        family=family_name,
        local=str(local[0]) if isinstance(local, tuple) else str(local),
    )


def make_url(resource: Optional[Resource]) -> Optional[URLInfo]:
    if resource is None or resource.url is None:
        return None
    return resource.url


def build_environment(
    resource: Optional[Resource],
    request: Request,
    response: Response,
    sessions=None,
) -> None:
    """Attach a fresh Environment to `resource.env`.

    A missing resource means the parser failed upstream; nothing is built.
    """
    if resource is None:
        logger.debug("No resource for %s %s, skipping environment", request.method, request.path)
        return
    resource.env = Environment(resource, request, response, sessions)
