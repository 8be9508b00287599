"""Linear weighted scorer for phrase tallies."""

import logging
import os
from collections.abc import Mapping

import yaml

from phrasewatch.scorer.protocol import BaseScorer, ScoringResult

logger = logging.getLogger(__name__)


class LinearScorer(BaseScorer):
    """
    Scores a document as the weighted sum of its phrase counts.

    Score = Σ(count * weight), with weights per rule id loaded from YAML
    (``scorers.linear.weights``). Negative weights mark phrases that make
    a document look more legitimate.
    """

    def __init__(self, config_path: str | None = None, default_weight: float = 1.0):
        self.default_weight = default_weight
        self.weights: dict[str, float] = {}

        # Risk thresholds
        self.thresholds = {
            "low": 10.0,
            "medium": 25.0,
            "high": 50.0,
        }

        super().__init__(config_path)

    @property
    def name(self) -> str:
        return "linear_scorer"

    def _load_config(self) -> None:
        """Load scorer configuration from YAML file."""
        if not self.config_path:
            for path in ("configs/weights.yaml", "/app/configs/weights.yaml"):
                if os.path.exists(path):
                    self.config_path = path
                    break

        if not (self.config_path and os.path.exists(self.config_path)):
            logger.info("Using default scorer configuration")
            return

        with open(self.config_path) as f:
            config = yaml.safe_load(f) or {}

        scorer_config = config.get("scorers", {}).get("linear", {})
        self.weights.update(
            {str(rule): float(weight) for rule, weight in scorer_config.get("weights", {}).items()}
        )
        if "default_weight" in scorer_config:
            self.default_weight = float(scorer_config["default_weight"])
        if "thresholds" in scorer_config:
            self.thresholds.update(scorer_config["thresholds"])

        logger.info(f"Loaded scorer config from {self.config_path}")

    def calculate_score(self, tally: Mapping[str, int]) -> ScoringResult:
        """Calculate the weighted sum of matched phrase counts."""
        matched = self._matched_rules(tally)

        score = 0.0
        rule_weights = {}
        contributions = {}
        for rule, count in matched.items():
            weight = self.weights.get(rule, self.default_weight)
            contribution = count * weight
            score += contribution

            rule_weights[rule] = weight
            contributions[rule] = {
                "count": count,
                "weight": weight,
                "contribution": contribution,
            }

        return ScoringResult(
            score=score,
            method_used=self.name,
            rule_weights=rule_weights,
            details={
                "matched_rules": len(matched),
                "rule_contributions": contributions,
                "risk_level": self._get_risk_level(score),
                "scoring_method": "weighted_sum",
            },
        )

    def _get_risk_level(self, score: float) -> str:
        """Get risk level based on score and thresholds."""
        if score >= self.thresholds["high"]:
            return "high"
        elif score >= self.thresholds["medium"]:
            return "medium"
        elif score >= self.thresholds["low"]:
            return "low"
        else:
            return "very_low"
