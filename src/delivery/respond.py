"""Response writing: status selection, content encoding, body streaming.

`ResponseWriter.respond` is the single terminal operation for a request.
It never raises into the request handler; transport and encoder failures
are logged and the connection is simply finished.
"""

import logging
import zlib
from typing import Iterable, Iterator, Optional

from delivery.exchange import Response
from delivery.headers import build_headers
from delivery.resource import Resource

logger = logging.getLogger(__name__)

OK = 200
NOT_MODIFIED = 304
NOT_FOUND = 404

DEFAULT_CHUNK_SIZE = 16384
SUPPORTED_ENCODINGS = ("gzip", "deflate")

# zlib wbits: +16 selects the gzip container, plain MAX_WBITS the zlib one
GZIP_WBITS = 16 + zlib.MAX_WBITS
DEFLATE_WBITS = zlib.MAX_WBITS


def select_status(resource: Optional[Resource], error) -> int:
    """Pick the status code.

    No error and no override -> 200; error and no override -> 404;
    an override always wins.
    """
    status_code = resource.status_code if resource is not None else None
    if not error and status_code is None:
        return OK
    if status_code is None:
        return NOT_FOUND
    return status_code


def negotiate_encoding(accept_encoding: Optional[str]) -> Optional[str]:
    """Choose gzip or deflate from an Accept-Encoding header value."""
    if not accept_encoding:
        return None
    offered = {}
    for part in accept_encoding.split(","):
        token, _, params = part.strip().partition(";")
        name = token.strip().lower()
        if not name:
            continue
        quality = 1.0
        for param in params.split(";"):
            key, _, value = param.strip().partition("=")
            if key.strip().lower() == "q":
                try:
                    quality = float(value)
                except ValueError:
                    quality = 0.0
        offered[name] = quality
    for candidate in SUPPORTED_ENCODINGS:
        if offered.get(candidate, offered.get("*", 0.0)) > 0:
            return candidate
    return None


def make_compressor(encoding: Optional[str]):
    """zlib compressor for the encoding, or None for identity."""
    if encoding == "gzip":
        return zlib.compressobj(wbits=GZIP_WBITS)
    if encoding == "deflate":
        return zlib.compressobj(wbits=DEFLATE_WBITS)
    return None


def to_bytes(body) -> Optional[bytes]:
    if body is None:
        return None
    if isinstance(body, bytes):
        return body
    if isinstance(body, (bytearray, memoryview)):
        return bytes(body)
    return str(body).encode("utf-8")


def iter_chunks(payload: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Iterator[bytes]:
    """One-shot chunk stream over a body."""
    view = memoryview(payload)
    for start in range(0, len(view), chunk_size):
        yield bytes(view[start:start + chunk_size])


def encode_chunks(chunks: Iterable[bytes], encoding: Optional[str]) -> Iterator[bytes]:
    """Pass chunks through the compressor selected by encoding."""
    compressor = make_compressor(encoding)
    if compressor is None:
        yield from chunks
        return
    for chunk in chunks:
        data = compressor.compress(chunk)
        if data:
            yield data
    yield compressor.flush()


class ResponseWriter:
    """Writes status, headers and body for one finished request."""

    def __init__(
        self,
        output=None,
        dev_mode: bool = False,
        gzip_mode: bool = False,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ):
        self.output = output
        self.dev_mode = dev_mode
        self.gzip_mode = gzip_mode
        self.chunk_size = chunk_size

    def respond(
        self,
        response: Response,
        resource: Optional[Resource],
        error=False,
        body=None,
    ) -> None:
        """Finish the response and hand it to the access log."""
        if response.finished:
            logger.warning("Response for %s already finished, ignoring", response.log.url)
            return
        if resource is None:
            resource = Resource()

        try:
            payload = to_bytes(body)
        except ValueError as e:
            self._report(f"Cannot encode body for {response.log.url}: {e}")
            error, payload = True, None
        code = select_status(resource, error)

        if payload and resource.encoding is None and self.gzip_mode:
            resource.encoding = negotiate_encoding(_accept_encoding(resource))

        head = build_headers(resource, dev_mode=self.dev_mode)
        if not payload:
            head.pop("Content-Encoding", None)

        try:
            response.write_head(code, head)
            if payload and response.log.method != "HEAD":
                self._stream(response, resource, payload)
        except OSError as e:
            self._report(f"Failed writing response for {response.log.url}: {e}")
        finally:
            response.end()

        if self.output is not None:
            try:
                self.output.log(response, resource)
            except Exception:
                logger.exception("Access logging failed for %s", response.log.url)

    def _stream(self, response: Response, resource: Resource, payload: bytes):
        chunks = iter_chunks(payload, self.chunk_size)
        try:
            for piece in encode_chunks(chunks, resource.encoding):
                response.write(piece)
        except (OSError, zlib.error) as e:
            self._report(
                f"Streaming {response.log.url} ({resource.encoding or 'identity'}) failed: {e}"
            )

    def _report(self, message: str):
        if self.output is None:
            logger.warning(message)
            return
        try:
            self.output.print(message)
        except Exception:
            logger.exception("Output sink failed: %s", message)


def _accept_encoding(resource: Resource) -> Optional[str]:
    env = resource.env
    if env is None:
        return None
    return env.headers.get("accept-encoding")
