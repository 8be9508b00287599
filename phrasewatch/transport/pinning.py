"""Detection of a TLS certificate substituted for the one seen earlier."""

import logging
import ssl
from collections.abc import Sequence
from dataclasses import dataclass

import httpx
from cryptography import x509

from phrasewatch.transport.errors import CertificateChangedError
from phrasewatch.transport.verification import (
    CertificateVerifier,
    VerificationOutcome,
    peer_certificates,
    public_key_bytes,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TrustAnchor:
    """
    Baseline identity captured from the first connection to a server.

    ``original_chain[0]`` is the leaf. The expected outcomes record how the
    original leaf verified against the system roots and against its own chain,
    so later certificates can be judged by whether they verify the same way.
    """

    original_chain: tuple[x509.Certificate, ...]
    original_server_name: str
    original_trust_pool: tuple[x509.Certificate, ...]
    expected_default_outcome: VerificationOutcome
    expected_self_outcome: VerificationOutcome

    @classmethod
    def capture(
        cls,
        server_name: str,
        chain: Sequence[x509.Certificate],
        verifier: CertificateVerifier,
    ) -> "TrustAnchor":
        if not chain:
            raise ValueError("a trust anchor needs at least one certificate")

        chain = tuple(chain)
        leaf = chain[0]
        return cls(
            original_chain=chain,
            original_server_name=server_name,
            original_trust_pool=chain,
            expected_default_outcome=verifier.verify(
                leaf, hostname=server_name, intermediates=chain[1:]
            ),
            expected_self_outcome=verifier.verify(
                leaf, hostname=server_name, roots=chain
            ),
        )

    @property
    def leaf(self) -> x509.Certificate:
        return self.original_chain[0]


def response_peer_chain(response: httpx.Response) -> list[x509.Certificate]:
    """Certificates presented on the connection that produced ``response``."""
    stream = response.extensions.get("network_stream")
    if stream is None:
        return []
    ssl_object = stream.get_extra_info("ssl_object")
    if ssl_object is None:
        return []
    return peer_certificates(ssl_object)


class CertificateSubstitutionTransport(httpx.BaseTransport):
    """
    Wraps a non-verifying transport and checks every server certificate
    against a trust anchor.

    A certificate is accepted at the first check that passes:

    1. its public key is the original leaf's key;
    2. it verifies against the system roots the way the original did;
    3. it verifies against the original chain the way the original did;
    4. after a move to another host, checks 2 and 3 pass for the original
       server name.

    Anything else closes the response and raises ``CertificateChangedError``.
    """

    def __init__(
        self,
        transport: httpx.BaseTransport,
        server_name: str,
        original_chain: Sequence[x509.Certificate],
        verifier: CertificateVerifier | None = None,
    ):
        self._transport = transport
        self._verifier = verifier or CertificateVerifier()
        self.anchor = TrustAnchor.capture(server_name, original_chain, self._verifier)
        self._original_key = public_key_bytes(self.anchor.leaf)

        logger.info(
            f"Trust anchor for {server_name}: default={self.anchor.expected_default_outcome}, "
            f"self={self.anchor.expected_self_outcome}"
        )

    def handle_request(self, request: httpx.Request) -> httpx.Response:
        if request.url.scheme == "http":
            request.url = request.url.copy_with(scheme="https")

        response = self._transport.handle_request(request)

        try:
            chain = response_peer_chain(response)
        except (ValueError, TypeError, ssl.SSLError) as e:
            logger.debug(f"Cannot read peer certificates from {request.url.host}: {e}")
            chain = []

        if chain and self.accepts(chain, request.url.host):
            return response

        response.close()
        logger.warning(
            f"Rejected certificate for {request.url.host} "
            f"(anchored to {self.anchor.original_server_name})"
        )
        raise CertificateChangedError(
            "server certificate changed; can't verify the new certificate",
            request=request,
        )

    def accepts(self, chain: Sequence[x509.Certificate], host: str) -> bool:
        """Decide whether a newly presented chain is consistent with the anchor."""
        leaf = chain[0]

        # Same key, e.g. a renewed certificate
        if public_key_bytes(leaf) == self._original_key:
            return True

        intermediates = list(chain[1:])
        hostnames = [host]
        if host != self.anchor.original_server_name:
            hostnames.append(self.anchor.original_server_name)

        for hostname in hostnames:
            outcome = self._verifier.verify(
                leaf, hostname=hostname, intermediates=intermediates
            )
            if outcome.equivalent(self.anchor.expected_default_outcome):
                return True

            outcome = self._verifier.verify(
                leaf,
                hostname=hostname,
                intermediates=intermediates,
                roots=self.anchor.original_trust_pool,
            )
            if outcome.equivalent(self.anchor.expected_self_outcome):
                return True

        return False

    def close(self) -> None:
        self._transport.close()
