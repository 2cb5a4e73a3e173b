"""Default content router.

Static resources are read from disk; dynamic resources are looked up by
exact URL path in a table of page callables. A page receives the request
environment and returns the body (str or bytes).
"""

import logging
import threading
from typing import Callable, Optional

from delivery.resource import Resource

logger = logging.getLogger(__name__)


class StaticRouter:
    """Serves files and registered pages."""

    def __init__(self, pages: Optional[dict] = None):
        self.pages: dict = dict(pages or {})
        self._local = threading.local()

    def add_page(self, path: str, page: Callable) -> None:
        self.pages[path] = page

    def page(self, path: str):
        """Decorator form of add_page."""
        def decorator(func):
            self.add_page(path, func)
            return func
        return decorator

    def last(self) -> Optional[str]:
        """Content source used by the most recent load on this thread."""
        return getattr(self._local, "last", None)

    def load(self, resource: Resource, reply) -> None:
        if resource.static:
            self._load_file(resource, reply)
        else:
            self._load_page(resource, reply)

    def _load_file(self, resource: Resource, reply):
        self._local.last = f"static:{resource.filename}"
        if not resource.allowed or resource.file_path is None:
            reply(True, None)
            return
        try:
            data = resource.file_path.read_bytes()
        except OSError as e:
            logger.debug("Cannot read %s: %s", resource.file_path, e)
            reply(True, None)
            return
        reply(False, data)

    def _load_page(self, resource: Resource, reply):
        path = resource.url.path if resource.url else "/"
        self._local.last = f"page:{path}"
        page = self.pages.get(path)
        if page is None:
            reply(True, None)
            return
        reply(False, page(resource.env))
