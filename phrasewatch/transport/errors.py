"""Transport error types.

All of them derive from ``httpx.TransportError`` so a caller can handle a failed
round trip from any transport in one place.
"""

import httpx


class UnsupportedRequestError(httpx.UnsupportedProtocol):
    """The transport cannot serve this method or URL scheme."""


class MalformedResponseError(httpx.RemoteProtocolError):
    """The server sent a response head that could not be parsed."""


class UnexpectedEOFError(httpx.RemoteProtocolError):
    """The connection ended before the response head was complete."""


class CertificateChangedError(httpx.TransportError):
    """The server presented a certificate that could not be reconciled with the trust anchor."""
