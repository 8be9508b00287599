"""A minimal plain-HTTP client transport.

It sends a GET request as-is and parses the response head by hand: no
protocol negotiation, no compression and no chunked bodies. A chunked
response body is passed through undecoded.
"""

import logging
import re
from collections.abc import Iterator
from typing import BinaryIO

import httpx

from phrasewatch.transport.dialer import Connection, Dialer
from phrasewatch.transport.errors import (
    MalformedResponseError,
    UnexpectedEOFError,
    UnsupportedRequestError,
)

logger = logging.getLogger(__name__)

DEFAULT_PORTS = {"http": 80}
MAX_LINE_LENGTH = 64 * 1024
HTTP_VERSION_RE = re.compile(r"HTTP/(\d+)\.(\d+)")


class LimitedBodyStream(httpx.SyncByteStream):
    """Response body limited to ``content_length`` bytes (unlimited if None)."""

    def __init__(
        self,
        reader: BinaryIO,
        conn: Connection,
        content_length: int | None,
        chunk_size: int = 64 * 1024,
    ):
        self.content_length = content_length
        self._reader = reader
        self._conn = conn
        self._chunk_size = chunk_size

    def __iter__(self) -> Iterator[bytes]:
        remaining = self.content_length
        while remaining is None or remaining > 0:
            size = self._chunk_size if remaining is None else min(self._chunk_size, remaining)
            try:
                chunk = self._reader.read1(size)
            except OSError as e:
                raise httpx.ReadError(f"error reading body from {self._conn.address}: {e}") from e
            if not chunk:
                break
            if remaining is not None:
                remaining -= len(chunk)
            yield chunk

    def close(self) -> None:
        try:
            self._reader.close()
        finally:
            self._conn.close()


def parse_http_version(version: str) -> tuple[int, int] | None:
    """Parse ``HTTP/major.minor``; None if it is not a valid version."""
    match = HTTP_VERSION_RE.fullmatch(version)
    if not match:
        return None
    major, minor = int(match.group(1)), int(match.group(2))
    if major > 1_000_000 or minor > 1_000_000:
        return None
    return major, minor


def _read_line(reader: BinaryIO) -> str:
    raw = reader.readline(MAX_LINE_LENGTH + 1)
    if not raw:
        raise UnexpectedEOFError("unexpected EOF while reading response head")
    if len(raw) > MAX_LINE_LENGTH:
        raise MalformedResponseError("response head line too long")
    return raw.rstrip(b"\r\n").decode("latin-1")


def read_headers(reader: BinaryIO) -> list[tuple[str, str]]:
    """Read ``Name: value`` lines up to the blank line, unfolding continuations."""
    headers: list[tuple[str, str]] = []
    while True:
        line = _read_line(reader)
        if not line:
            return headers

        if line[0] in " \t":
            if not headers:
                raise MalformedResponseError(f"malformed header initial line: {line!r}")
            name, value = headers[-1]
            continuation = line.strip(" \t")
            headers[-1] = (name, f"{value} {continuation}")
            continue

        name, sep, value = line.partition(":")
        if not sep or not name or name != name.rstrip(" \t"):
            raise MalformedResponseError(f"malformed header line: {line!r}")
        headers.append((name, value.strip(" \t")))


def read_response_head(reader: BinaryIO) -> tuple[str, int, str, list[tuple[str, str]]]:
    """
    Parse a status line and header block.

    Returns:
        (http_version, status_code, reason_phrase, headers)
    """
    line = _read_line(reader)
    version, sep, rest = line.partition(" ")
    if not sep:
        raise MalformedResponseError(f"malformed HTTP response: {line!r}")

    status = rest.lstrip(" ")
    code, _, reason = status.partition(" ")
    if len(code) != 3 or not (code.isascii() and code.isdigit()):
        raise MalformedResponseError(f"malformed HTTP status code: {code!r}")

    if parse_http_version(version) is None:
        raise MalformedResponseError(f"malformed HTTP version: {version!r}")

    return version, int(code), reason, read_headers(reader)


class SimpleTransport(httpx.BaseTransport):
    """Fetches a single resource over plain HTTP, as simply as possible."""

    def __init__(self, dialer: Dialer | None = None):
        self._dialer = dialer or Dialer()

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        if request.method != "GET":
            raise UnsupportedRequestError(
                f"request method not supported by SimpleTransport (expected GET, got {request.method})",
                request=request,
            )
        scheme = request.url.scheme
        if scheme not in DEFAULT_PORTS:
            raise UnsupportedRequestError(
                f"URL scheme not supported by SimpleTransport (expected http, got {scheme})",
                request=request,
            )

        host = request.url.host
        port = request.url.port or DEFAULT_PORTS[scheme]
        try:
            conn = self._dialer.dial(host, port)
        except OSError as e:
            raise httpx.ConnectError(f"error connecting to {host}:{port}: {e}", request=request) from e

        try:
            conn.sendall(_serialize_request(request))
        except OSError as e:
            conn.close()
            raise httpx.WriteError(f"error sending request for {request.url}: {e}", request=request) from e

        reader = conn.makefile("rb")
        try:
            version, status_code, reason, headers = read_response_head(reader)
            content_length = _content_length(headers)
        except httpx.TransportError as e:
            reader.close()
            conn.close()
            e.request = request
            raise
        except OSError as e:
            reader.close()
            conn.close()
            raise httpx.ReadError(f"error reading response from {host}:{port}: {e}", request=request) from e

        # Body length travels with the stream; trailers are not supported
        headers = [
            (name, value)
            for name, value in headers
            if name.lower() not in ("content-length", "trailer")
        ]

        logger.debug(f"GET {request.url} -> {status_code} ({version})")
        return httpx.Response(
            status_code,
            headers=headers,
            stream=LimitedBodyStream(reader, conn, content_length),
            request=request,
            extensions={
                "http_version": version.encode("ascii"),
                "reason_phrase": reason.encode("latin-1"),
            },
        )


def _serialize_request(request: httpx.Request) -> bytes:
    target = request.url.raw_path.decode("ascii")
    lines = [f"{request.method} {target} HTTP/1.1".encode("ascii")]
    lines.extend(name + b": " + value for name, value in request.headers.raw)
    return b"\r\n".join(lines) + b"\r\n\r\n" + request.read()


def _content_length(headers: list[tuple[str, str]]) -> int | None:
    for name, value in headers:
        if name.lower() == "content-length":
            if not (value.isascii() and value.isdigit()):
                raise MalformedResponseError(f"invalid Content-Length: {value!r}")
            return int(value)
    return None
