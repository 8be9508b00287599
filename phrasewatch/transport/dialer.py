"""Shared TCP dial policy for every transport."""

import logging
import socket
import ssl
import threading
from dataclasses import dataclass

import httpx
from cryptography import x509

from phrasewatch.config import Settings
from phrasewatch.transport.verification import peer_certificates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DialerConfig:
    """Connection policy shared by all transports built from one configuration."""

    connect_timeout: float = 30.0
    keep_alive: float = 30.0
    dual_stack: bool = True
    tls_handshake_timeout: float = 10.0
    max_conns_per_host: int = 8
    http2: bool = True
    user_agent: str = "phrasewatch/0.1"

    @classmethod
    def from_settings(cls, settings: Settings) -> "DialerConfig":
        return cls(
            connect_timeout=settings.connect_timeout,
            keep_alive=settings.keep_alive,
            tls_handshake_timeout=settings.tls_handshake_timeout,
            max_conns_per_host=settings.max_conns_per_host,
            http2=settings.http2,
            user_agent=settings.user_agent,
        )


class Connection:
    """A dialed TCP connection holding one of its host's connection slots."""

    def __init__(self, sock: socket.socket, address: str, slot: threading.Semaphore):
        self.sock = sock
        self.address = address
        self._slot = slot
        self._closed = False
        self._lock = threading.Lock()

    def sendall(self, data: bytes) -> None:
        self.sock.sendall(data)

    def makefile(self, mode: str = "rb"):
        return self.sock.makefile(mode)

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        try:
            self.sock.close()
        finally:
            self._slot.release()

    def __enter__(self) -> "Connection":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()


class Dialer:
    """
    Dials TCP connections with the configured timeouts and keep-alive.

    Concurrent connections to one ``host:port`` are bounded by
    ``max_conns_per_host``; a slot is held until the connection is closed.
    """

    def __init__(self, config: DialerConfig | None = None):
        self.config = config or DialerConfig()
        self._lock = threading.Lock()
        self._slots: dict[str, threading.BoundedSemaphore] = {}

    @property
    def socket_options(self) -> list[tuple[int, int, int]]:
        """Socket options applied to every dialed connection."""
        interval = max(1, int(self.config.keep_alive))
        options = [(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)]
        # Keep-alive tuning constants are platform specific
        if hasattr(socket, "TCP_KEEPIDLE"):
            options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, interval))
        if hasattr(socket, "TCP_KEEPINTVL"):
            options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, interval))
        return options

    @property
    def timeout(self) -> httpx.Timeout:
        """Timeouts for httpx transports: only connection setup is bounded."""
        return httpx.Timeout(None, connect=self.config.connect_timeout)

    @property
    def limits(self) -> httpx.Limits:
        return httpx.Limits(
            max_connections=self.config.max_conns_per_host,
            max_keepalive_connections=self.config.max_conns_per_host,
        )

    def _slot(self, address: str) -> threading.BoundedSemaphore:
        with self._lock:
            slot = self._slots.get(address)
            if slot is None:
                slot = threading.BoundedSemaphore(self.config.max_conns_per_host)
                self._slots[address] = slot
            return slot

    def dial(self, host: str, port: int) -> Connection:
        """Open a TCP connection to host:port."""
        address = f"{host}:{port}"
        slot = self._slot(address)
        if not slot.acquire(timeout=self.config.connect_timeout):
            raise TimeoutError(f"no free connection slot for {address}")

        try:
            if self.config.dual_stack:
                sock = socket.create_connection(
                    (host, port), timeout=self.config.connect_timeout
                )
            else:
                sock = self._dial_ipv4(host, port)
            for level, option, value in self.socket_options:
                sock.setsockopt(level, option, value)
            sock.settimeout(None)
        except BaseException:
            slot.release()
            raise

        return Connection(sock, address, slot)

    def _dial_ipv4(self, host: str, port: int) -> socket.socket:
        family, kind, proto, _, sockaddr = socket.getaddrinfo(
            host, port, socket.AF_INET, socket.SOCK_STREAM
        )[0]
        sock = socket.socket(family, kind, proto)
        try:
            sock.settimeout(self.config.connect_timeout)
            sock.connect(sockaddr)
        except BaseException:
            sock.close()
            raise
        return sock

    def fetch_peer_chain(
        self, host: str, port: int = 443, server_name: str | None = None
    ) -> list[x509.Certificate]:
        """
        Perform an unverified TLS handshake and return the presented chain.

        The certificates are returned leaf first. The handshake is bounded by
        ``tls_handshake_timeout``.
        """
        context = ssl.create_default_context()
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE

        conn = self.dial(host, port)
        try:
            conn.sock.settimeout(self.config.tls_handshake_timeout)
            with context.wrap_socket(
                conn.sock, server_hostname=server_name or host
            ) as tls_sock:
                chain = peer_certificates(tls_sock)
        finally:
            conn.close()

        logger.debug(f"Fetched {len(chain)} certificate(s) from {host}:{port}")
        return chain
