"""Delivery server package.

Accepts HTTP(S) connections, resolves each request to a resource,
validates conditional requests, dispatches to a content router and writes
back an encoded, fully-headered response.
"""

__version__ = "1.0.0"

from delivery.httpd import (
    Server,
    Listener,
    ListenerState,
    create_server,
    BACKLOG,
)
from delivery.tls import (
    TLSConfig,
    get_cert_fingerprint,
)
from delivery.pipeline import (
    Pipeline,
    Reply,
)
from delivery.resource import (
    Resource,
    URLInfo,
)
from delivery.exchange import (
    Request,
    Response,
    ResponseFinishedError,
)

__all__ = [
    "__version__",
    # Server
    "Server",
    "Listener",
    "ListenerState",
    "create_server",
    "BACKLOG",
    # TLS
    "TLSConfig",
    "get_cert_fingerprint",
    # Pipeline
    "Pipeline",
    "Reply",
    "Resource",
    "URLInfo",
    "Request",
    "Response",
    "ResponseFinishedError",
]
