"""Response header synthesis."""

from delivery.cache import compute_etag, last_modified
from delivery.resource import DEFAULT_TYPE, Resource

SOURCEMAP_DIR = "/scripts-maps/"
SCRIPT_EXTENSIONS = ("js",)


def cache_control(resource: Resource) -> str:
    """`public`/`private`, plus max-age when the resource expires."""
    value = "public" if resource.static is True else "private"
    if resource.expires is not None:
        value += f", max-age={resource.expires}"
    return value


def build_headers(resource: Resource, dev_mode: bool = False) -> dict:
    """Build the response header set for a resource.

    Lookups that fail (missing file, no path) drop only their own header.
    """
    head = {}
    if resource.encoding:
        head["Content-Encoding"] = resource.encoding
    head["Content-Type"] = resource.type or DEFAULT_TYPE
    head["Cache-Control"] = cache_control(resource)

    if resource.static is True:
        modified = last_modified(resource)
        if modified.available:
            head["Last-Modified"] = modified.value
        tag = compute_etag(resource)
        if tag.available:
            head["Etag"] = tag.value
    else:
        head["Content-Type"] += "; charset=utf-8"

    if resource.ext in SCRIPT_EXTENSIONS and dev_mode:
        head["x-sourcemap"] = f"{SOURCEMAP_DIR}{resource.filename}.map"
    return head
