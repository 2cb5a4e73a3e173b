"""Default request parser.

Maps a request path onto a Resource using the configured extension map:

- paths ending in a known extension are static files under the document
  root, allowed only from the directories listed for that extension
- paths without an extension are dynamic pages handled by the router
- "/" and trailing-slash paths resolve to the index file
"""

import logging
from pathlib import PurePosixPath
from urllib.parse import parse_qs, unquote, urlsplit

from delivery.resource import DEFAULT_TYPE, Resource, URLInfo

logger = logging.getLogger(__name__)

PAGE_TYPE = "text/html"
BODY_METHODS = ("POST", "PUT", "PATCH")


def split_url(raw: str) -> tuple:
    """Return (URLInfo, filename) for a request target."""
    parts = urlsplit(raw)
    path = unquote(parts.path) or "/"
    segments = [s for s in path.split("/") if s]
    if path.endswith("/") or not segments:
        dirs, filename = segments, ""
    else:
        dirs, filename = segments[:-1], segments[-1]
    url = URLInfo(
        path=parts.path or "/",
        dirs=dirs,
        search=f"?{parts.query}" if parts.query else "",
        query=parse_qs(parts.query),
    )
    return url, filename


def dir_allowed(url_dir: str, allowed_dirs) -> bool:
    """True if url_dir equals or sits beneath one of allowed_dirs."""
    for allowed in allowed_dirs:
        prefix = allowed.rstrip("/") + "/"
        if url_dir == allowed or url_dir.startswith(prefix):
            return True
    return False


class ResourceParser:
    """Resolves requests against the document root and extension map."""

    def __init__(self, config):
        self.config = config
        self.root = config.root.resolve()

    def parse(self, request, response, callback) -> None:
        callback(self.resolve(request), request, response)

    def resolve(self, request) -> Resource:
        url, filename = split_url(request.path)
        if not filename:
            filename = self.config.index

        ext = PurePosixPath(filename).suffix.lstrip(".").lower()
        resource = Resource(filename=filename, ext=ext, url=url)

        if request.method in BODY_METHODS:
            resource.body = request.read_body(self.config.max_body)

        if not ext:
            resource.type = PAGE_TYPE
            resource.static = False
            return resource

        resource.static = True
        rule = self.config.extensions.get(ext)
        if rule is None:
            logger.debug("Unknown extension '%s' for %s", ext, url.path)
            resource.type = DEFAULT_TYPE
            resource.allowed = False
            return resource

        resource.type = rule.type
        resource.expires = rule.expires

        file_path = self.root.joinpath(*url.dirs, filename).resolve()
        if not file_path.is_relative_to(self.root):
            logger.warning("Rejected path outside root: %s", url.path)
            resource.allowed = False
            return resource

        url_dir = "/" + "/".join(file_path.parent.relative_to(self.root).parts)
        resource.allowed = dir_allowed(url_dir, rule.dirs)
        if not resource.allowed:
            logger.debug("Extension '%s' not allowed in %s", ext, url_dir)
            return resource
        resource.file_path = file_path
        return resource
