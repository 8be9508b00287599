"""Pytest configuration and shared fixtures."""

import http.server
import ipaddress
import socket
import ssl
import threading
from collections.abc import Callable, Generator
from datetime import UTC, datetime, timedelta

import httpx
import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
)
from cryptography.x509.oid import NameOID


def make_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


def make_cert(
    common_name: str,
    *,
    key: ec.EllipticCurvePrivateKey | None = None,
    sans: tuple[str, ...] | None = None,
    issuer: x509.Certificate | None = None,
    issuer_key: ec.EllipticCurvePrivateKey | None = None,
    not_before: datetime | None = None,
    not_after: datetime | None = None,
    ca: bool = False,
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Build a certificate; self-signed unless ``issuer`` is given."""
    key = key or make_key()
    now = datetime.now(UTC)
    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer.subject if issuer else subject)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before or now - timedelta(days=1))
        .not_valid_after(not_after or now + timedelta(days=90))
        .add_extension(x509.BasicConstraints(ca=ca, path_length=None), critical=True)
    )

    names: list[x509.GeneralName] = []
    for san in sans if sans is not None else (common_name,):
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(san)))
        except ValueError:
            names.append(x509.DNSName(san))
    if names:
        builder = builder.add_extension(x509.SubjectAlternativeName(names), critical=False)

    cert = builder.sign(issuer_key or key, hashes.SHA256())
    return cert, key


@pytest.fixture
def cert_factory() -> Callable[..., tuple[x509.Certificate, ec.EllipticCurvePrivateKey]]:
    return make_cert


class FakeSSLObject:
    """Stands in for ``ssl.SSLObject`` when only the peer chain is needed."""

    def __init__(self, chain: list[x509.Certificate]):
        self._ders = [cert.public_bytes(Encoding.DER) for cert in chain]

    def get_unverified_chain(self) -> list[bytes]:
        return list(self._ders)

    def getpeercert(self, binary_form: bool = False):
        return self._ders[0] if self._ders else None


class _CertificateObject:
    """Like ``_ssl.Certificate``: ``public_bytes()`` returns PEM text."""

    def __init__(self, cert: x509.Certificate):
        self._cert = cert

    def public_bytes(self) -> str:
        return self._cert.public_bytes(Encoding.PEM).decode("ascii")


class LowLevelSSLObject:
    """
    Like the ``_ssl._SSLSocket`` httpcore exposes: the chain holds certificate
    objects and ``getpeercert`` only takes a positional flag.
    """

    def __init__(self, chain: list[x509.Certificate], with_chain_api: bool = True):
        self._chain = chain
        if not with_chain_api:
            self.get_unverified_chain = None

    def get_unverified_chain(self):
        return [_CertificateObject(cert) for cert in self._chain]

    def getpeercert(self, der=False, /):
        if not self._chain:
            return None
        return self._chain[0].public_bytes(Encoding.DER) if der else {}


class FakeNetworkStream:
    def __init__(self, ssl_object):
        self._ssl_object = ssl_object

    def get_extra_info(self, info: str):
        return self._ssl_object if info == "ssl_object" else None


class ChainTransport(httpx.BaseTransport):
    """Returns a canned response as if served over TLS with ``chain``."""

    def __init__(self, chain: list[x509.Certificate] | None = None, body: bytes = b"ok"):
        self.chain = chain or []
        self.body = body
        self.requests: list[httpx.Request] = []
        self.responses: list[httpx.Response] = []

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        extensions = {}
        if self.chain:
            extensions["network_stream"] = FakeNetworkStream(FakeSSLObject(self.chain))
        response = httpx.Response(
            200,
            stream=httpx.ByteStream(self.body),
            request=request,
            extensions=extensions,
        )
        self.responses.append(response)
        return response


@pytest.fixture
def chain_transport() -> Callable[..., ChainTransport]:
    return ChainTransport


class OneShotServer:
    """TCP server that answers a single connection with canned bytes."""

    def __init__(self, response: bytes):
        self.response = response
        self.request = b""
        self._sock = socket.create_server(("127.0.0.1", 0))
        self.host, self.port = self._sock.getsockname()[:2]
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    def _serve(self) -> None:
        conn, _ = self._sock.accept()
        with conn:
            conn.settimeout(5)
            while b"\r\n\r\n" not in self.request:
                data = conn.recv(4096)
                if not data:
                    break
                self.request += data
            conn.sendall(self.response)

    def close(self) -> None:
        self._thread.join(timeout=5)
        self._sock.close()


@pytest.fixture
def http_server() -> Generator[Callable[[bytes], OneShotServer], None, None]:
    servers: list[OneShotServer] = []

    def start(response: bytes) -> OneShotServer:
        server = OneShotServer(response)
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.close()


class _OKHandler(http.server.BaseHTTPRequestHandler):
    def do_GET(self):
        body = b"ok"
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


class TLSServer:
    """HTTPS server on 127.0.0.1 presenting ``cert``."""

    def __init__(self, cert: x509.Certificate, key: ec.EllipticCurvePrivateKey, directory):
        certfile = directory / f"{cert.serial_number}.crt"
        keyfile = directory / f"{cert.serial_number}.key"
        certfile.write_bytes(cert.public_bytes(Encoding.PEM))
        keyfile.write_bytes(key.private_bytes(Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()))

        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        context.load_cert_chain(certfile, keyfile)

        self._server = http.server.ThreadingHTTPServer(("127.0.0.1", 0), _OKHandler)
        self._server.daemon_threads = True
        self._server.socket = context.wrap_socket(self._server.socket, server_side=True)
        self.host, self.port = self._server.server_address[:2]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()

    @property
    def url(self) -> str:
        return f"https://{self.host}:{self.port}/"

    def close(self) -> None:
        self._server.shutdown()
        self._server.server_close()
        self._thread.join(timeout=5)


@pytest.fixture
def tls_server(tmp_path) -> Generator[Callable[..., TLSServer], None, None]:
    servers: list[TLSServer] = []

    def start(cert: x509.Certificate, key: ec.EllipticCurvePrivateKey) -> TLSServer:
        server = TLSServer(cert, key, tmp_path)
        servers.append(server)
        return server

    yield start

    for server in servers:
        server.close()
