"""Fetching a single document and scanning it."""

import asyncio
import logging

import httpx

from phrasewatch.config import Settings
from phrasewatch.content.decompress import response_content
from phrasewatch.content.phrases import load_rules
from phrasewatch.content.scan import ScanContext, ScanSession, scan_content
from phrasewatch.scorer.linear_scorer import LinearScorer
from phrasewatch.transport.dialer import DialerConfig
from phrasewatch.transport.factory import TransportFactory

logger = logging.getLogger(__name__)


class DocumentFetcher:
    """
    Retrieves a URL and scans its content for phrases.

    Which URLs to fetch, retries and persistence are left to the caller.
    Transport failures propagate as ``httpx.TransportError`` subclasses.
    """

    def __init__(self, session: ScanSession, client: httpx.Client | None = None):
        self.session = session
        self.client = client or TransportFactory().client()

    @classmethod
    def from_settings(cls, settings: Settings) -> "DocumentFetcher":
        rules = load_rules(settings.rules_path) if settings.rules_path else []
        session = ScanSession(rules, LinearScorer(settings.scorer_config_path))
        factory = TransportFactory(DialerConfig.from_settings(settings))
        return cls(session, factory.client())

    def fetch(self, url: str) -> ScanContext:
        """Fetch ``url``, then decompress, normalize, tally and score its content."""
        request = self.client.build_request("GET", url)
        response = self.client.send(request, stream=True)

        content = response_content(response)
        ctx = ScanContext(
            url=str(response.url),
            content=content,
            content_type=response.headers.get("Content-Type", ""),
        )
        scan_content(ctx, self.session)

        logger.info(f"Fetched {ctx.url} ({response.status_code}, {len(content)} bytes): score {ctx.score}")
        return ctx

    async def afetch(self, url: str) -> ScanContext:
        """Run ``fetch`` in the default executor."""
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.fetch, url)

    def close(self) -> None:
        self.client.close()
