"""Conditional-request validation.

Entity tags are derived on demand from the file modification time and the
resource filename; nothing is persisted. Filesystem lookups return a
`Validator` outcome instead of raising, so callers decide how to degrade.
"""

import hashlib
import logging
import os
from dataclasses import dataclass
from email.utils import formatdate
from typing import Optional

from delivery.resource import Resource

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Validator:
    """Result of a cache-validator lookup: a value, or the reason there is none."""

    value: Optional[str] = None
    error: Optional[OSError] = None

    @property
    def available(self) -> bool:
        return self.value is not None


def _stat_mtime_ns(resource: Resource) -> int:
    if resource is None or resource.file_path is None:
        raise FileNotFoundError("resource has no file path")
    if not resource.allowed:
        raise PermissionError(f"{resource.filename} is not served")
    return os.stat(resource.file_path).st_mtime_ns


def last_modified(resource: Resource) -> Validator:
    """HTTP-date of the resource file's modification time."""
    try:
        mtime_ns = _stat_mtime_ns(resource)
    except OSError as e:
        logger.debug("No Last-Modified for %s: %s", getattr(resource, "filename", None), e)
        return Validator(error=e)
    return Validator(value=formatdate(mtime_ns / 1e9, usegmt=True))


def compute_etag(resource: Resource) -> Validator:
    """Quoted md5 of modification time plus filename."""
    try:
        mtime_ns = _stat_mtime_ns(resource)
    except OSError as e:
        logger.debug("No Etag for %s: %s", getattr(resource, "filename", None), e)
        return Validator(error=e)
    digest = hashlib.md5(f"{mtime_ns}{resource.filename}".encode("utf-8")).hexdigest()
    return Validator(value=f'"{digest}"')


def is_unchanged(request, resource: Resource) -> bool:
    """True when the client's If-None-Match equals the current tag exactly."""
    presented = request.header("If-None-Match")
    if presented is None:
        return False
    tag = compute_etag(resource)
    if not tag.available:
        return False
    return presented == tag.value
