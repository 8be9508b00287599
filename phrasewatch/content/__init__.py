"""
Content pipeline: decompression, character normalization and phrase tallying.
"""

from phrasewatch.content.decompress import response_content
from phrasewatch.content.normalize import normalize_text, word_rune
from phrasewatch.content.phrases import PhraseMatcher, PhraseRule, PhraseScanner, load_rules
from phrasewatch.content.scan import ScanContext, ScanSession, scan_content

__all__ = [
    "PhraseMatcher",
    "PhraseRule",
    "PhraseScanner",
    "ScanContext",
    "ScanSession",
    "load_rules",
    "normalize_text",
    "response_content",
    "scan_content",
    "word_rune",
]
