"""Tests for the FTP transport, its watcher and the in-memory pipe."""

import ftplib
import threading
from unittest.mock import MagicMock, Mock, patch

import httpx
import pytest

from phrasewatch.transport.errors import UnsupportedRequestError
from phrasewatch.transport.ftp import (
    FTPTransfer,
    FTPTransport,
    TransferHandle,
    TransferState,
    TransferStatus,
    TransferWatcher,
    content_type_for,
    split_ftp_path,
)
from phrasewatch.transport.pipe import PipeBodyStream, pipe


def scripted_transfer(chunks, error=None, terminal=True):
    """Transfer starter writing ``chunks`` on a thread, then signalling."""
    calls = []

    def start(path, writer):
        calls.append(path)
        handle = TransferHandle()

        def run():
            handle.status.put(TransferStatus.TRANSFERRING)
            for chunk in chunks:
                writer.write(chunk)
            if error is not None:
                handle.errors.put(error)
                handle.status.put(TransferStatus.ERROR)
            elif terminal:
                handle.status.put(TransferStatus.COMPLETED)
            else:
                handle.status.put(None)

        threading.Thread(target=run, daemon=True).start()
        return handle

    start.calls = calls
    return start


class TestFTPTransport:
    """Tests for the transport interface."""

    def test_completed_transfer_delivers_all_bytes_in_order(self):
        start = scripted_transfer([b"first ", b"second ", b"third"])
        with httpx.Client(transport=FTPTransport(start)) as client:
            response = client.get("ftp://ftp.example.com/pub/readme.txt")

        assert response.status_code == 200
        assert response.http_version == "HTTP/1.1"
        assert response.content == b"first second third"
        assert response.headers["Content-Type"] == "text/plain"
        assert start.calls == ["ftp.example.com/pub/readme.txt"]

    def test_port_is_kept_in_path(self):
        start = scripted_transfer([b""])
        with httpx.Client(transport=FTPTransport(start)) as client:
            client.get("ftp://ftp.example.com:2121/file")
        assert start.calls == ["ftp.example.com:2121/file"]

    def test_error_surfaces_on_read(self):
        error = ftplib.error_perm("550 No such file")
        start = scripted_transfer([b"partial"], error=error)
        transport = FTPTransport(start)

        response = transport.handle_request(httpx.Request("GET", "ftp://ftp.example.com/missing.bin"))
        received = []
        with pytest.raises(ftplib.error_perm, match="550"):
            for chunk in response.stream:
                received.append(chunk)

        assert b"".join(received) == b"partial"

    def test_error_is_logged(self, caplog):
        start = scripted_transfer([], error=OSError("connection reset"))
        transport = FTPTransport(start)

        response = transport.handle_request(httpx.Request("GET", "ftp://ftp.example.com/a"))
        with pytest.raises(OSError):
            list(response.stream)

        assert "FTP: error downloading ftp://ftp.example.com/a" in caplog.text

    def test_status_stream_ending_early_fails(self):
        start = scripted_transfer([b"data"], terminal=False)
        response = FTPTransport(start).handle_request(httpx.Request("GET", "ftp://h/f"))

        with pytest.raises(EOFError):
            list(response.stream)

    def test_non_get_is_405_without_transfer(self):
        start = Mock()
        with httpx.Client(transport=FTPTransport(start)) as client:
            response = client.request("PUT", "ftp://ftp.example.com/upload.txt", content=b"x")

        assert response.status_code == 405
        assert response.content == b""
        start.assert_not_called()

    def test_unknown_extension_has_no_content_type(self):
        start = scripted_transfer([b"x"])
        with httpx.Client(transport=FTPTransport(start)) as client:
            response = client.get("ftp://ftp.example.com/data.unknownext")
        assert "Content-Type" not in response.headers

    def test_invalid_path_is_a_transport_error(self):
        def start(path, writer):
            raise ValueError(f"no host in FTP path {path!r}")

        with pytest.raises(UnsupportedRequestError, match="invalid FTP URL") as exc_info:
            FTPTransport(start).handle_request(httpx.Request("GET", "ftp://h/f"))

        assert isinstance(exc_info.value, httpx.TransportError)
        assert isinstance(exc_info.value.__cause__, ValueError)

    def test_other_start_failures_propagate(self):
        def start(path, writer):
            raise RuntimeError("no threads left")

        with pytest.raises(RuntimeError):
            FTPTransport(start).handle_request(httpx.Request("GET", "ftp://h/f"))


class TestTransferWatcher:
    """Tests for the watcher's state machine."""

    def test_completed(self):
        reader, writer = pipe()
        handle = TransferHandle()
        handle.status.put(TransferStatus.CONNECTING)
        handle.status.put(TransferStatus.COMPLETED)

        watcher = TransferWatcher(handle, writer, httpx.URL("ftp://h/f"))
        watcher.run()

        assert watcher.state is TransferState.COMPLETED
        assert writer.closed
        assert reader.read() == b""

    def test_failed(self):
        reader, writer = pipe()
        handle = TransferHandle()
        error = ftplib.error_temp("421 Service not available")
        handle.errors.put(error)
        handle.status.put(TransferStatus.ERROR)

        watcher = TransferWatcher(handle, writer, httpx.URL("ftp://h/f"))
        watcher.run()

        assert watcher.state is TransferState.FAILED
        with pytest.raises(ftplib.error_temp):
            reader.read()


class TestFTPTransfer:
    """Tests for the ftplib-backed transfer primitive."""

    def test_successful_download(self):
        reader, writer = pipe()
        with patch("phrasewatch.transport.ftp.ftplib.FTP") as ftp_class:
            ftp = MagicMock()
            ftp_class.return_value.__enter__.return_value = ftp
            ftp.retrbinary.side_effect = lambda cmd, callback: callback(b"file body")

            handle = FTPTransfer(timeout=5).start("ftp.example.com/pub/f.txt", writer)
            statuses = [handle.status.get(timeout=5) for _ in range(3)]

        assert statuses == [
            TransferStatus.CONNECTING,
            TransferStatus.TRANSFERRING,
            TransferStatus.COMPLETED,
        ]
        ftp.connect.assert_called_once_with("ftp.example.com", 21)
        ftp.login.assert_called_once_with("anonymous", "anonymous@")
        assert ftp.retrbinary.call_args.args[0] == "RETR /pub/f.txt"
        assert reader.read() == b"file body"

    def test_login_failure(self):
        _, writer = pipe()
        with patch("phrasewatch.transport.ftp.ftplib.FTP") as ftp_class:
            ftp = MagicMock()
            ftp_class.return_value.__enter__.return_value = ftp
            ftp.login.side_effect = ftplib.error_perm("530 Login incorrect")

            handle = FTPTransfer().start("ftp.example.com/f", writer)
            statuses = [handle.status.get(timeout=5) for _ in range(2)]

        assert statuses == [TransferStatus.CONNECTING, TransferStatus.ERROR]
        assert isinstance(handle.errors.get(timeout=5), ftplib.error_perm)

    def test_split_ftp_path(self):
        assert split_ftp_path("ftp.example.com/pub/a.txt") == ("ftp.example.com", 21, "/pub/a.txt")
        assert split_ftp_path("host:2121/a") == ("host", 2121, "/a")
        with pytest.raises(ValueError):
            split_ftp_path("/no/host")

    def test_content_type_for(self):
        assert content_type_for("/a/b.html") == "text/html"
        assert content_type_for("/a/B.TXT") == "text/plain"
        assert content_type_for("/a/noext") is None


class TestPipe:
    """Tests for the in-memory pipe."""

    def test_eof_after_buffered_data(self):
        reader, writer = pipe()
        writer.write(b"abc")
        writer.close()

        assert reader.read() == b"abc"
        assert reader.read() == b""

    def test_error_after_buffered_data(self):
        reader, writer = pipe()
        writer.write(b"abc")
        writer.close(RuntimeError("boom"))

        assert reader.read(2) == b"ab"
        assert reader.read() == b"c"
        with pytest.raises(RuntimeError, match="boom"):
            reader.read()

    def test_close_only_once(self):
        reader, writer = pipe()
        assert writer.close(RuntimeError("first")) is True
        assert writer.close() is False
        with pytest.raises(RuntimeError, match="first"):
            reader.read()

    def test_write_after_reader_closed(self):
        reader, writer = pipe()
        reader.close()
        with pytest.raises(BrokenPipeError):
            writer.write(b"data")

    def test_writer_blocks_until_drained(self):
        reader, writer = pipe(limit=4)
        payload = bytes(range(256)) * 4

        def produce():
            writer.write(payload)
            writer.close()

        thread = threading.Thread(target=produce, daemon=True)
        thread.start()
        received = b"".join(PipeBodyStream(reader, chunk_size=3))
        thread.join(timeout=5)

        assert received == payload
