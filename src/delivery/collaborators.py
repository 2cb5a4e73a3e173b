"""Contracts for the components the delivery pipeline calls into.

The pipeline only depends on these shapes; default implementations live in
parser.py, router.py, sessions.py and output.py.
"""

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from delivery.exchange import Request, Response
from delivery.resource import Resource

ReplyCallback = Callable[..., None]
ResourceCallback = Callable[[Optional[Resource], Request, Response], None]


@runtime_checkable
class Parser(Protocol):
    """Turns a raw request into a Resource."""

    def parse(self, request: Request, response: Response, callback: ResourceCallback) -> None:
        """Invoke callback(resource, request, response) exactly once."""
        ...


@runtime_checkable
class Router(Protocol):
    """Produces content for a resource."""

    def load(self, resource: Resource, reply: ReplyCallback) -> None:
        """Hand content back via reply(error, body), sync or async."""
        ...

    def last(self) -> Optional[str]:
        """Identifier of the content source used most recently."""
        ...


@runtime_checkable
class SessionHandler(Protocol):
    """Key/value session storage scoped per client session."""

    def start(self, request: Request, response: Response, resource: Resource) -> None:
        ...

    def create(self, response: Response, resource: Resource) -> None:
        ...

    def get(self, session_id: str, key: str) -> Any:
        ...

    def set(self, session_id: str, key: str, value: Any) -> None:
        ...


@runtime_checkable
class Output(Protocol):
    """Operator messages and access log sink."""

    def print(self, message: str) -> None:
        ...

    def log(self, response: Response, resource: Resource) -> None:
        ...
