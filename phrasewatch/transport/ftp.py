"""FTP downloads exposed through the httpx transport interface.

The transfer runs on a background thread and reports progress on a status
queue. A watcher thread turns the terminal status into end-of-stream (or an
error) on a pipe whose read end is the response body.
"""

import ftplib
import logging
import mimetypes
import posixpath
import queue
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

import httpx

from phrasewatch.transport.errors import UnsupportedRequestError
from phrasewatch.transport.pipe import PipeBodyStream, PipeWriter, pipe

logger = logging.getLogger(__name__)

_MIME_TYPES = mimetypes.MimeTypes()


class TransferStatus(str, Enum):
    """Signals emitted on a transfer's status stream."""

    CONNECTING = "connecting"
    TRANSFERRING = "transferring"
    COMPLETED = "completed"
    ERROR = "error"


class TransferState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class TransferHandle:
    """
    Channels of an asynchronous transfer.

    ``status`` carries ``TransferStatus`` values; ``None`` marks the end of the
    stream. After ``ERROR`` the exception is available on ``errors``.
    """

    status: "queue.Queue[TransferStatus | None]" = field(default_factory=queue.Queue)
    errors: "queue.Queue[BaseException]" = field(default_factory=queue.Queue)


TransferStarter = Callable[[str, PipeWriter], TransferHandle]


def split_ftp_path(path: str) -> tuple[str, int, str]:
    """Split ``host[:port]/remote/path`` into its parts."""
    netloc, _, remote_path = path.partition("/")
    host, port = netloc, ftplib.FTP_PORT
    name, sep, port_text = netloc.rpartition(":")
    if sep and port_text.isdigit():
        host, port = name, int(port_text)
    if not host:
        raise ValueError(f"no host in FTP path {path!r}")
    return host, port, "/" + remote_path


class FTPTransfer:
    """Anonymous binary FTP download run on a daemon thread."""

    def __init__(
        self,
        timeout: float = 30.0,
        user: str = "anonymous",
        password: str = "anonymous@",
    ):
        self.timeout = timeout
        self.user = user
        self.password = password

    def start(self, path: str, writer: PipeWriter) -> TransferHandle:
        host, port, remote_path = split_ftp_path(path)
        handle = TransferHandle()
        thread = threading.Thread(
            target=self._run,
            args=(host, port, remote_path, writer, handle),
            name=f"ftp-{host}",
            daemon=True,
        )
        thread.start()
        return handle

    def _run(
        self,
        host: str,
        port: int,
        remote_path: str,
        writer: PipeWriter,
        handle: TransferHandle,
    ) -> None:
        handle.status.put(TransferStatus.CONNECTING)
        try:
            with ftplib.FTP(timeout=self.timeout) as ftp:
                ftp.connect(host, port)
                ftp.login(self.user, self.password)
                handle.status.put(TransferStatus.TRANSFERRING)
                ftp.retrbinary(f"RETR {remote_path}", writer.write)
        except (ftplib.Error, OSError, EOFError, ValueError) as e:
            handle.errors.put(e)
            handle.status.put(TransferStatus.ERROR)
            return
        handle.status.put(TransferStatus.COMPLETED)


class TransferWatcher:
    """Closes the pipe writer once the transfer reaches a terminal status."""

    def __init__(self, handle: TransferHandle, writer: PipeWriter, url: httpx.URL):
        self.state = TransferState.RUNNING
        self._handle = handle
        self._writer = writer
        self._url = url

    def run(self) -> None:
        try:
            while self.state is TransferState.RUNNING:
                status = self._handle.status.get()
                if status is TransferStatus.COMPLETED:
                    self._finish(TransferState.COMPLETED)
                elif status is TransferStatus.ERROR:
                    error = self._handle.errors.get()
                    logger.warning(f"FTP: error downloading {self._url}: {error}")
                    self._finish(TransferState.FAILED, error)
                elif status is None:
                    self._finish(
                        TransferState.FAILED,
                        EOFError("transfer status stream ended without completing"),
                    )
        finally:
            if self.state is TransferState.RUNNING:
                self._finish(
                    TransferState.FAILED, RuntimeError("transfer watcher stopped")
                )

    def _finish(self, state: TransferState, error: BaseException | None = None) -> None:
        self.state = state
        self._writer.close(error)


def content_type_for(path: str) -> str | None:
    """MIME type for the path's extension from the built-in table."""
    ext = posixpath.splitext(path)[1]
    if not ext:
        return None
    types = _MIME_TYPES.types_map[True]
    return types.get(ext) or types.get(ext.lower())


class FTPTransport(httpx.BaseTransport):
    """Fetches files via FTP. Only GET is supported."""

    def __init__(self, start_transfer: TransferStarter | None = None):
        self._start_transfer = start_transfer or FTPTransfer().start

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        if request.method != "GET":
            return httpx.Response(405, request=request)

        url = request.url
        netloc = url.host if url.port is None else f"{url.host}:{url.port}"
        full_path = netloc + url.path

        reader, writer = pipe()
        try:
            handle = self._start_transfer(full_path, writer)
        except ValueError as e:
            reader.close()
            raise UnsupportedRequestError(f"invalid FTP URL {url}: {e}", request=request) from e
        except BaseException:
            reader.close()
            raise

        watcher = TransferWatcher(handle, writer, url)
        threading.Thread(target=watcher.run, name="ftp-watcher", daemon=True).start()

        headers = {}
        content_type = content_type_for(url.path)
        if content_type:
            headers["Content-Type"] = content_type

        return httpx.Response(
            200,
            headers=headers,
            stream=PipeBodyStream(reader),
            request=request,
            extensions={"http_version": b"HTTP/1.1"},
        )
