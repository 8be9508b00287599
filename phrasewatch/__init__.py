"""
Phrasewatch - document retrieval with certificate-substitution detection
and phrase tallying.

Fetches content over HTTP, HTTP/2 over TLS and FTP, rejects servers whose TLS
identity changed in an unexplained way, and counts known phrases in the
normalized text for scoring (e.g. to detect injected third-party content).
"""

__version__ = "0.1.0"

from phrasewatch.config import settings

__all__ = ["settings"]
