"""
Character normalization for phrase matching.

Content is decoded with its charset (HTML entities resolved when the content
is HTML) and reduced to "word runes": lower-cased word characters, with every
run of punctuation and whitespace collapsed to a single space. The stream is
bracketed by one space on each side so phrases at the edges of a document
match the same way as phrases inside it.
"""

import codecs
import html
import logging
import unicodedata
from collections.abc import Iterable, Iterator

logger = logging.getLogger(__name__)

SEPARATOR = " "
FALLBACK_CHARSET = "utf-8"
REPLACEMENT_CHARACTER = "\ufffd"


def word_rune(ch: str) -> str:
    """
    Canonical form of one character, lower-cased.

    Punctuation, whitespace, control characters, math and modifier symbols
    (including markup characters such as ``<`` and ``=``) and U+FFFD become
    SEPARATOR. Letters, digits, combining marks and other symbols stay part
    of a word.
    """
    category = unicodedata.category(ch)
    if ch == REPLACEMENT_CHARACTER or category[0] in "PZC" or category in ("Sm", "Sk"):
        return SEPARATOR
    lowered = ch.lower()
    # Some characters lower-case to several code points; keep those as-is
    return lowered if len(lowered) == 1 else ch


def get_decoder(charset: str, url: str | None = None) -> codecs.IncrementalDecoder:
    """
    Incremental decoder for ``charset``, or UTF-8 if it is not supported.

    Invalid byte sequences decode to U+FFFD.
    """
    try:
        # Also rejects non-text codecs such as base64
        b"".decode(charset)
        decoder_class = codecs.getincrementaldecoder(charset)
    except LookupError:
        logger.warning(f"Unsupported charset ({charset}) on {url}")
        decoder_class = codecs.getincrementaldecoder(FALLBACK_CHARSET)
    return decoder_class(errors="replace")


def decode_content(
    content: bytes,
    charset: str,
    content_type: str = "",
    url: str | None = None,
) -> str:
    """
    Decode document bytes to text.

    An incomplete multi-byte sequence at the end of ``content`` is treated as
    the end of input. Shift sequences of stateful encodings produce no text.
    """
    decoder = get_decoder(charset, url)
    # final=False leaves a truncated trailing sequence undecoded
    text = decoder.decode(content, final=False)
    if "html" in content_type:
        text = html.unescape(text)
    return text


def normalized_runes(text: Iterable[str]) -> Iterator[str]:
    """Yield the bracketed word-rune stream for ``text``."""
    yield SEPARATOR
    prev = SEPARATOR
    for ch in text:
        rune = word_rune(ch)
        if rune == SEPARATOR and prev == SEPARATOR:
            continue
        prev = rune
        yield rune
    if prev != SEPARATOR:
        yield SEPARATOR


def normalize_text(text: str) -> str:
    return "".join(normalized_runes(text))


def normalize_pattern(pattern: str) -> str:
    """
    Normalize a phrase pattern with the same rules as content, without
    adding brackets. A leading or trailing separator is kept, so
    ``" buy now "`` only matches the whole words.
    """
    runes: list[str] = []
    for ch in pattern:
        rune = word_rune(ch)
        if rune == SEPARATOR and runes and runes[-1] == SEPARATOR:
            continue
        runes.append(rune)
    return "".join(runes)
