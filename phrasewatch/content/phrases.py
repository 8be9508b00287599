"""Phrase rules and the streaming multi-pattern matcher that tallies them."""

import logging
from collections import Counter, deque
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import yaml

from phrasewatch.content.normalize import normalize_pattern

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PhraseRule:
    """A phrase to count, identified by ``id`` in the tally."""

    id: str
    pattern: str


def load_rules(path: str | Path) -> list[PhraseRule]:
    """
    Load phrase rules from YAML.

    Accepts either a mapping ``rules: {id: pattern}`` or a list
    ``rules: [{id: ..., pattern: ...}]``.
    """
    with open(path, encoding="utf-8") as f:
        config = yaml.safe_load(f) or {}

    raw_rules = config.get("rules", {})
    if isinstance(raw_rules, dict):
        rules = [PhraseRule(str(k), str(v)) for k, v in raw_rules.items()]
    else:
        rules = [PhraseRule(str(r["id"]), str(r["pattern"])) for r in raw_rules]

    logger.info(f"Loaded {len(rules)} phrase rules from {path}")
    return rules


class PhraseMatcher:
    """
    Aho-Corasick automaton over the UTF-8 bytes of normalized patterns.

    Built once from the rule table and only read afterwards, so one matcher
    can serve any number of concurrent scans. Every rule whose pattern ends
    at a position is reported, including overlapping and nested matches.
    """

    def __init__(self, rules: Iterable[PhraseRule]):
        self._goto: list[dict[int, int]] = [{}]
        self._fail: list[int] = [0]
        self._out: list[tuple[str, ...]] = [()]

        for rule in rules:
            self._add(rule)
        self._link()

    def _add(self, rule: PhraseRule) -> None:
        pattern = normalize_pattern(rule.pattern).encode("utf-8")
        if not pattern:
            logger.warning(f"Skipping phrase rule {rule.id!r} with an empty pattern")
            return

        state = 0
        for byte in pattern:
            nxt = self._goto[state].get(byte)
            if nxt is None:
                nxt = len(self._goto)
                self._goto.append({})
                self._fail.append(0)
                self._out.append(())
                self._goto[state][byte] = nxt
            state = nxt
        self._out[state] += (rule.id,)

    def _link(self) -> None:
        queue = deque(self._goto[0].values())
        while queue:
            state = queue.popleft()
            for byte, child in self._goto[state].items():
                queue.append(child)
                fallback = self._fail[state]
                while fallback and byte not in self._goto[fallback]:
                    fallback = self._fail[fallback]
                self._fail[child] = self._goto[fallback].get(byte, 0)
                self._out[child] += self._out[self._fail[child]]

    def step(self, state: int, byte: int) -> int:
        while state and byte not in self._goto[state]:
            state = self._fail[state]
        return self._goto[state].get(byte, 0)

    def matches(self, state: int) -> tuple[str, ...]:
        """Rule ids whose patterns end in ``state``."""
        return self._out[state]

    def scanner(self) -> "PhraseScanner":
        return PhraseScanner(self)


class PhraseScanner:
    """Per-scan matcher state and the tally it accumulates."""

    def __init__(self, matcher: PhraseMatcher):
        self._matcher = matcher
        self._state = 0
        self.tally: Counter[str] = Counter()

    def scan_byte(self, byte: int) -> None:
        self._state = self._matcher.step(self._state, byte)
        for rule_id in self._matcher.matches(self._state):
            self.tally[rule_id] += 1

    def scan_bytes(self, data: bytes) -> None:
        for byte in data:
            self.scan_byte(byte)
