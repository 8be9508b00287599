"""Protocol definition for scoring systems."""

from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass
class ScoringResult:
    """Score computed from a phrase tally."""

    score: float
    method_used: str  # Scoring method name
    rule_weights: dict[str, float] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)


@runtime_checkable
class ScorerProtocol(Protocol):
    """Protocol that all scorers must implement."""

    @property
    def name(self) -> str:
        """Scorer name for identification."""
        ...

    def calculate_score(self, tally: Mapping[str, int]) -> ScoringResult:
        """Calculate a document score from its phrase tally."""
        ...


class BaseScorer(ABC):
    """Abstract base class for scorers with common functionality."""

    def __init__(self, config_path: str | None = None):
        """
        Initialize scorer with optional configuration.

        Args:
            config_path: Path to scoring configuration file
        """
        self.config_path = config_path
        self._load_config()

    @property
    @abstractmethod
    def name(self) -> str:
        """Scorer name for identification."""
        pass

    @abstractmethod
    def _load_config(self) -> None:
        """Load scorer configuration from file or defaults."""
        pass

    @abstractmethod
    def calculate_score(self, tally: Mapping[str, int]) -> ScoringResult:
        """Calculate a document score from its phrase tally."""
        pass

    def _matched_rules(self, tally: Mapping[str, int]) -> dict[str, int]:
        """Drop rules that did not match."""
        return {rule: count for rule, count in tally.items() if count > 0}
