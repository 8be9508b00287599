"""Reading response bodies with transport-level compression removed."""

import gzip
import io
import logging
import zlib
from collections.abc import Iterable

import httpx

logger = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
READ_CHUNK_SIZE = 64 * 1024


def response_content(response: httpx.Response) -> bytes:
    """
    Read the body of a response and close it.

    gzip-encoded bodies are read in full, decompressed, and the
    ``Content-Encoding`` header is removed. Errors reading the compressed body
    or starting the decompressor raise ``httpx.DecodingError``. An error in the
    last read stage only ends the content early: some servers report errors
    after delivering a complete, usable payload.
    """
    url = response.request.url
    try:
        if response.headers.get("Content-Encoding") != "gzip":
            return _read_tolerant(response.iter_raw(), url)

        try:
            compressed = b"".join(response.iter_raw())
        except (httpx.TransportError, OSError) as e:
            raise httpx.DecodingError(
                f"error reading gzipped content for {url}: {e}", request=response.request
            ) from e

        if not compressed:
            return b""

        if not compressed.startswith(GZIP_MAGIC):
            raise httpx.DecodingError(
                f"could not create gzip decoder for {url}: not a gzip stream",
                request=response.request,
            )
        del response.headers["Content-Encoding"]

        with gzip.GzipFile(fileobj=io.BytesIO(compressed)) as gz:
            return _read_tolerant(iter(lambda: gz.read(READ_CHUNK_SIZE), b""), url)
    finally:
        response.close()


def _read_tolerant(chunks: Iterable[bytes], url: httpx.URL) -> bytes:
    content = bytearray()
    try:
        for chunk in chunks:
            content.extend(chunk)
    except (httpx.TransportError, OSError, EOFError, zlib.error) as e:
        logger.debug(f"Ignoring read error after {len(content)} bytes of {url}: {e}")
    return bytes(content)
