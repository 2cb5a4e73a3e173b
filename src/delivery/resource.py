"""Resource data model.

A Resource is the unit of delivery: what a single request resolves to,
plus the metadata the response pipeline needs (type, caching policy,
status override, encoding). One instance per request, never shared.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

DEFAULT_TYPE = "application/octet-stream"


@dataclass
class URLInfo:
    """Decomposed request URL."""

    path: str
    dirs: list = field(default_factory=list)
    search: str = ""
    query: dict = field(default_factory=dict)


@dataclass
class Resource:
    """A resolved request target.

    Created by the parser, mutated by the environment hooks, the router and
    the cache validator, discarded once the response is finished.
    """

    filename: str = ""
    file_path: Optional[Path] = None
    ext: str = ""
    type: str = DEFAULT_TYPE
    static: bool = False
    allowed: bool = True
    expires: Optional[int] = None
    status_code: Optional[int] = None
    encoding: Optional[str] = None
    url: Optional[URLInfo] = None
    body: bytes = b""
    session_id: Optional[str] = None
    env: Any = field(default=None, repr=False)
