"""Builds the transports and client from one dialer configuration."""

import logging
import ssl
import urllib.request

import certifi
import httpx

from phrasewatch.transport.dialer import Dialer, DialerConfig
from phrasewatch.transport.ftp import FTPTransport
from phrasewatch.transport.pinning import CertificateSubstitutionTransport
from phrasewatch.transport.simple import SimpleTransport
from phrasewatch.transport.verification import CertificateVerifier

logger = logging.getLogger(__name__)

# Only gzip is reversed by response_content
ACCEPT_ENCODING = "gzip"


def verifying_context() -> ssl.SSLContext:
    return ssl.create_default_context(cafile=certifi.where())


def unverified_context() -> ssl.SSLContext:
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def environment_proxies() -> dict[str, str | None]:
    """
    Proxy routing from ``HTTP_PROXY``, ``HTTPS_PROXY``, ``ALL_PROXY`` and
    ``NO_PROXY``, as httpx mount patterns for the http and https schemes.

    A ``None`` value marks hosts that are reached directly.
    """
    proxies = urllib.request.getproxies()
    no_proxy = proxies.get("no", "")
    if no_proxy.strip() == "*":
        return {}

    routes: dict[str, str | None] = {}
    for scheme in ("http", "https"):
        proxy = proxies.get(scheme) or proxies.get("all")
        if proxy:
            routes[f"{scheme}://"] = proxy
    if not routes:
        return routes

    for host in no_proxy.split(","):
        host = host.strip().lstrip(".")
        if not host:
            continue
        for scheme in ("http", "https"):
            routes[f"{scheme}://{host}"] = None
            routes[f"{scheme}://*.{host}"] = None
    return routes


class TransportFactory:
    """
    Owns a ``Dialer`` and creates transports sharing its policy.

    Each call returns a new transport; nothing here is process-global.
    Proxies are resolved from the environment once, when the factory is built,
    unless ``proxies`` is given.
    """

    def __init__(
        self,
        config: DialerConfig | None = None,
        proxies: dict[str, str | None] | None = None,
    ):
        self.config = config or DialerConfig()
        self.dialer = Dialer(self.config)
        self.proxies = environment_proxies() if proxies is None else proxies

    def standard_transport(self, proxy: str | None = None) -> httpx.HTTPTransport:
        """HTTP/2-capable transport verifying certificates against system roots."""
        return self._http_transport(verifying_context(), proxy)

    def insecure_transport(self, proxy: str | None = None) -> httpx.HTTPTransport:
        """HTTP/2-capable transport that accepts any server certificate."""
        return self._http_transport(unverified_context(), proxy)

    def _http_transport(self, context: ssl.SSLContext, proxy: str | None) -> httpx.HTTPTransport:
        return httpx.HTTPTransport(
            verify=context,
            http2=self.config.http2,
            limits=self.dialer.limits,
            socket_options=self.dialer.socket_options,
            proxy=proxy,
        )

    def proxy_for(self, url: httpx.URL) -> str | None:
        """Proxy URL for requests to ``url``, or None to connect directly."""
        prefix = f"{url.scheme}://"
        for pattern, proxy in self.proxies.items():
            if proxy is not None:
                continue
            if pattern == prefix + url.host:
                return None
            if pattern.startswith(prefix + "*.") and url.host.endswith(pattern[len(prefix) + 1 :]):
                return None
        return self.proxies.get(prefix)

    def simple_transport(self) -> SimpleTransport:
        return SimpleTransport(self.dialer)

    def ftp_transport(self) -> FTPTransport:
        return FTPTransport()

    def pinned_transport(
        self,
        host: str,
        port: int = 443,
        verifier: CertificateVerifier | None = None,
    ) -> CertificateSubstitutionTransport:
        """
        Capture the chain ``host`` presents now and return a transport that
        rejects later connections presenting an unrelated identity.
        """
        chain = self.dialer.fetch_peer_chain(host, port, server_name=host)
        if not chain:
            raise httpx.ConnectError(f"{host}:{port} presented no certificate")
        logger.info(f"Captured trust anchor for {host}:{port} ({len(chain)} certificate(s))")

        proxy = self.proxy_for(httpx.URL(scheme="https", host=host, port=port))
        return CertificateSubstitutionTransport(
            self.insecure_transport(proxy), host, chain, verifier=verifier
        )

    def client(self, transport: httpx.BaseTransport | None = None, **kwargs) -> httpx.Client:
        """
        ``httpx.Client`` using ``transport`` (the standard transport by
        default) with ``ftp://`` URLs routed to the FTP transport.

        With the default transport, environment proxies are mounted per
        scheme, and hosts listed in ``NO_PROXY`` are reached directly.
        """
        mounts: dict[str, httpx.BaseTransport] = {}
        if transport is None:
            transport = self.standard_transport()
            for pattern, proxy in self.proxies.items():
                mounts[pattern] = self.standard_transport(proxy)
        mounts["ftp://"] = self.ftp_transport()
        mounts.update(kwargs.pop("mounts", {}))

        return httpx.Client(
            transport=transport,
            mounts=mounts,
            timeout=self.dialer.timeout,
            headers={"User-Agent": self.config.user_agent, "Accept-Encoding": ACCEPT_ENCODING},
            trust_env=True,
            **kwargs,
        )
