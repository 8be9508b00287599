"""Certificate chain verification reduced to outcome categories."""

import ipaddress
import logging
import ssl
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

import certifi
from cryptography import x509
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat
from cryptography.x509.oid import ExtensionOID
from cryptography.x509.verification import PolicyBuilder, Store, VerificationError

logger = logging.getLogger(__name__)


class VerificationFailureKind(str, Enum):
    """Coarse reason a certificate failed verification."""

    EXPIRED = "expired"
    NOT_YET_VALID = "not_yet_valid"
    HOSTNAME_MISMATCH = "hostname_mismatch"
    UNKNOWN_AUTHORITY = "unknown_authority"


@dataclass(frozen=True)
class VerificationOutcome:
    """Success (``kind is None``) or a failure category."""

    kind: VerificationFailureKind | None = None

    @property
    def ok(self) -> bool:
        return self.kind is None

    def equivalent(self, other: "VerificationOutcome") -> bool:
        """Both succeeded, or both failed for the same reason."""
        return self.kind == other.kind

    def __str__(self) -> str:
        return "success" if self.ok else self.kind.value


SUCCESS = VerificationOutcome()


@lru_cache(maxsize=1)
def default_roots() -> tuple[x509.Certificate, ...]:
    """System default trusted roots (the certifi bundle)."""
    pem = Path(certifi.where()).read_bytes()
    return tuple(x509.load_pem_x509_certificates(pem))


def public_key_bytes(cert: x509.Certificate) -> bytes:
    """DER-encoded SubjectPublicKeyInfo of a certificate."""
    return cert.public_key().public_bytes(
        Encoding.DER, PublicFormat.SubjectPublicKeyInfo
    )


def peer_certificates(ssl_object: Any) -> list[x509.Certificate]:
    """
    Return the chain presented on a TLS connection, leaf first.

    Works with ``ssl.SSLSocket``, ``ssl.SSLObject`` and the low-level
    ``_ssl._SSLSocket`` that httpcore exposes as ``ssl_object``. The full
    unverified chain is only exposed by newer interpreters; otherwise the
    leaf certificate alone is returned.
    """
    ders: list[bytes] = []
    get_chain = getattr(ssl_object, "get_unverified_chain", None)
    if get_chain is not None:
        ders = [_der_bytes(cert) for cert in get_chain() or []]
    if not ders:
        # The low-level object only takes the flag positionally
        leaf = ssl_object.getpeercert(True)
        if leaf:
            ders = [leaf]
    return [x509.load_der_x509_certificate(der) for der in ders]


def _der_bytes(cert: Any) -> bytes:
    if isinstance(cert, bytes):
        return cert
    # _ssl.Certificate from the low-level socket object; public_bytes() defaults to PEM
    return ssl.PEM_cert_to_DER_cert(cert.public_bytes())


def _matches_pattern(hostname: str, pattern: str) -> bool:
    """Check if hostname matches a certificate DNS name (including wildcards)."""
    if not pattern:
        return False

    if hostname == pattern:
        return True

    # Wildcard only matches one level
    if pattern.startswith("*."):
        suffix = pattern[2:]
        if hostname.endswith(suffix) and len(hostname) > len(suffix):
            prefix = hostname[: -(len(suffix) + 1)]
            if prefix and "." not in prefix:
                return True

    return False


def matches_hostname(cert: x509.Certificate, hostname: str) -> bool:
    """Check hostname against the certificate's subject alternative names."""
    try:
        sans = cert.extensions.get_extension_for_oid(
            ExtensionOID.SUBJECT_ALTERNATIVE_NAME
        ).value
    except x509.ExtensionNotFound:
        return False

    hostname = hostname.rstrip(".").lower()
    try:
        ip = ipaddress.ip_address(hostname.strip("[]"))
    except ValueError:
        ip = None

    if ip is not None:
        return ip in sans.get_values_for_type(x509.IPAddress)

    return any(
        _matches_pattern(hostname, name.lower())
        for name in sans.get_values_for_type(x509.DNSName)
    )


def _subject_name(hostname: str) -> x509.GeneralName:
    try:
        return x509.IPAddress(ipaddress.ip_address(hostname.strip("[]")))
    except ValueError:
        return x509.DNSName(hostname.rstrip(".").lower())


class CertificateVerifier:
    """
    Verifies a leaf certificate and reports the outcome category.

    Checks run in a fixed order so equal inputs always produce the same
    category: validity period, hostname, then chain building to a root.
    """

    def __init__(self, clock: Callable[[], datetime] | None = None):
        self._clock = clock or (lambda: datetime.now(UTC))

    def verify(
        self,
        leaf: x509.Certificate,
        *,
        hostname: str,
        intermediates: Sequence[x509.Certificate] = (),
        roots: Sequence[x509.Certificate] | None = None,
    ) -> VerificationOutcome:
        """
        Verify ``leaf`` for ``hostname``.

        Args:
            leaf: Certificate presented by the server.
            hostname: Name the certificate must be valid for.
            intermediates: Untrusted certificates usable for chain building.
            roots: Trusted root set; defaults to the system roots.
        """
        now = self._clock()

        if now > leaf.not_valid_after_utc:
            return VerificationOutcome(VerificationFailureKind.EXPIRED)
        if now < leaf.not_valid_before_utc:
            return VerificationOutcome(VerificationFailureKind.NOT_YET_VALID)

        if hostname and not matches_hostname(leaf, hostname):
            return VerificationOutcome(VerificationFailureKind.HOSTNAME_MISMATCH)

        trusted = list(default_roots() if roots is None else roots)
        if leaf in trusted:
            return SUCCESS
        if not trusted:
            return VerificationOutcome(VerificationFailureKind.UNKNOWN_AUTHORITY)

        try:
            verifier = (
                PolicyBuilder()
                .store(Store(trusted))
                .time(now.astimezone(UTC).replace(tzinfo=None))
                .build_server_verifier(_subject_name(hostname))
            )
        except ValueError as e:
            logger.debug(f"Cannot build verifier for {hostname!r}: {e}")
            return VerificationOutcome(VerificationFailureKind.HOSTNAME_MISMATCH)

        try:
            verifier.verify(leaf, list(intermediates))
        except VerificationError as e:
            logger.debug(f"Chain verification failed for {hostname}: {e}")
            return VerificationOutcome(VerificationFailureKind.UNKNOWN_AUTHORITY)

        return SUCCESS
