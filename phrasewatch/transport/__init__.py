"""
Transports for fetching documents.

- SimpleTransport: minimal plain-HTTP GET client
- FTPTransport: FTP downloads behind the httpx transport interface
- CertificateSubstitutionTransport: rejects substituted TLS certificates
- TransportFactory: builds all of them from one DialerConfig
"""

from phrasewatch.transport.dialer import Dialer, DialerConfig
from phrasewatch.transport.errors import (
    CertificateChangedError,
    MalformedResponseError,
    UnexpectedEOFError,
    UnsupportedRequestError,
)
from phrasewatch.transport.factory import TransportFactory
from phrasewatch.transport.ftp import FTPTransport
from phrasewatch.transport.pinning import CertificateSubstitutionTransport, TrustAnchor
from phrasewatch.transport.simple import SimpleTransport

__all__ = [
    "CertificateChangedError",
    "CertificateSubstitutionTransport",
    "Dialer",
    "DialerConfig",
    "FTPTransport",
    "MalformedResponseError",
    "SimpleTransport",
    "TransportFactory",
    "TrustAnchor",
    "UnexpectedEOFError",
    "UnsupportedRequestError",
]
