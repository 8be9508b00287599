"""Scanning a document's content for phrases and scoring it."""

import logging
import threading
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from email.message import Message

from phrasewatch.content.normalize import FALLBACK_CHARSET, decode_content, normalized_runes
from phrasewatch.content.phrases import PhraseMatcher, PhraseRule
from phrasewatch.scorer.linear_scorer import LinearScorer
from phrasewatch.scorer.protocol import ScorerProtocol, ScoringResult

logger = logging.getLogger(__name__)


@dataclass
class ScanContext:
    """Per-document scan state."""

    url: str
    content: bytes
    content_type: str = ""
    charset: str = ""
    tally: Counter[str] = field(default_factory=Counter)
    score: float = 0.0
    scoring: ScoringResult | None = None

    def find_charset(self) -> None:
        """Take the charset from the Content-Type parameter, else UTF-8."""
        message = Message()
        message["Content-Type"] = self.content_type or "application/octet-stream"
        self.charset = message.get_content_charset() or FALLBACK_CHARSET


class ScanSession:
    """
    Rule table, scorer and running tally shared by the documents of one
    scanning session. Safe to use from several threads.
    """

    def __init__(self, rules: Iterable[PhraseRule], scorer: ScorerProtocol | None = None):
        self.matcher = PhraseMatcher(rules)
        self.scorer = scorer or LinearScorer()
        self.documents = 0
        self._tally: Counter[str] = Counter()
        self._lock = threading.Lock()

    def record(self, tally: Mapping[str, int]) -> None:
        """Add one scan's counts to the session tally."""
        with self._lock:
            self._tally.update(tally)
            self.documents += 1

    @property
    def tally(self) -> Counter[str]:
        """Snapshot of the session tally."""
        with self._lock:
            return Counter(self._tally)


def scan_content(ctx: ScanContext, session: ScanSession) -> None:
    """Scan the content of a document for phrases, and update its counts and score."""
    if not ctx.charset:
        ctx.find_charset()

    text = decode_content(ctx.content, ctx.charset, ctx.content_type, ctx.url)

    scanner = session.matcher.scanner()
    for rune in normalized_runes(text):
        if rune < "\x80":
            scanner.scan_byte(ord(rune))
        else:
            scanner.scan_bytes(rune.encode("utf-8"))

    ctx.tally.update(scanner.tally)
    session.record(scanner.tally)

    ctx.scoring = session.scorer.calculate_score(ctx.tally)
    ctx.score = ctx.scoring.score
    logger.debug(f"Scanned {ctx.url}: {sum(scanner.tally.values())} phrase matches, score {ctx.score}")
