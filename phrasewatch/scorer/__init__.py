"""Scorers turning phrase tallies into document scores."""

from phrasewatch.scorer.linear_scorer import LinearScorer
from phrasewatch.scorer.protocol import BaseScorer, ScorerProtocol, ScoringResult

__all__ = ["BaseScorer", "LinearScorer", "ScorerProtocol", "ScoringResult"]
