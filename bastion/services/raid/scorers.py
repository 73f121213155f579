"""
Bastion - Raid Scorers
======================

Interchangeable scorers mapping RaidFeatures to a confidence in [0, 1].

DESIGN:
    The scoring maths lives in pure functions (rule_score, logistic_score)
    so it can be tested without any detector state. Scorer classes only
    bind those functions to their parameters.

    Every scorer answers score(features) with a float. Rule weights are
    per community, so the detector hands FallbackScorer a RuleScorer built
    from the community config on each call. FallbackScorer tries the
    learned model when one is loaded and uses the rule scorer on any
    failure; a broken model file never turns detection off.

Author: Bastion Maintainers
"""

import json
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Tuple, Union

from bastion.core.config import RaidWeights
from bastion.core.exceptions import ScorerUnavailableError
from bastion.core.logger import logger
from bastion.services.raid.features import RaidFeatures


FEATURE_COUNT = 6


# =============================================================================
# Pure Scoring Functions
# =============================================================================

def rule_score(features: RaidFeatures, weights: RaidWeights) -> float:
    """Weighted sum of the signals that crossed their cut-off, capped at 1."""
    score = 0.0
    if features.join_count > weights.join_burst_count:
        score += weights.join_rate
    if features.account_age_days < weights.new_account_days:
        score += weights.account_age
    if features.membership_age_hours < weights.new_member_hours:
        score += weights.membership_age
    if features.avatar_similarity > weights.avatar_cutoff:
        score += weights.avatar
    if features.name_pattern > weights.name_pattern_cutoff:
        score += weights.name_pattern
    return min(1.0, round(score, 6))


@dataclass(frozen=True)
class LearnedModel:
    """Logistic regression parameters over RaidFeatures.as_vector()."""
    weights: Tuple[float, ...]
    bias: float
    means: Tuple[float, ...]
    stds: Tuple[float, ...]


def logistic_score(features: RaidFeatures, model: LearnedModel) -> float:
    """Standardize the vector, then apply the logistic function."""
    z = model.bias
    for value, weight, mean, std in zip(features.as_vector(), model.weights, model.means, model.stds):
        z += weight * ((value - mean) / (std or 1.0))
    if z >= 0:
        return 1.0 / (1.0 + math.exp(-z))
    ez = math.exp(z)
    return ez / (1.0 + ez)


def load_model(path: Union[str, Path]) -> LearnedModel:
    """
    Load a model file.

    Expected JSON:
        {"weights": [6 floats], "bias": float,
         "normalization": {"means": [6 floats], "stds": [6 floats]}}

    Raises:
        ScorerUnavailableError: Missing file, bad JSON, or wrong shape.
    """
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
        norm = raw.get("normalization", {})
        model = LearnedModel(
            weights=_vector(raw["weights"]),
            bias=float(raw.get("bias", 0.0)),
            means=_vector(norm.get("means", [0.0] * FEATURE_COUNT)),
            stds=_vector(norm.get("stds", [1.0] * FEATURE_COUNT)),
        )
    except (OSError, ValueError, KeyError, TypeError, AttributeError) as e:
        raise ScorerUnavailableError(f"Cannot load raid model {path}: {e}") from e
    return model


def _vector(values: Sequence[float]) -> Tuple[float, ...]:
    vector = tuple(float(v) for v in values)
    if len(vector) != FEATURE_COUNT:
        raise ValueError(f"expected {FEATURE_COUNT} values, got {len(vector)}")
    return vector


# =============================================================================
# Scorer Interface
# =============================================================================

class RaidScorer(ABC):
    """Maps features to a raid confidence between 0 and 1."""

    name: str = "abstract"

    @abstractmethod
    def score(self, features: RaidFeatures) -> float:
        ...


class RuleScorer(RaidScorer):
    """rule_score() bound to one set of weights and cut-offs."""

    name = "rule_based"

    def __init__(self, weights: Optional[RaidWeights] = None) -> None:
        self.weights = weights or RaidWeights()

    def score(self, features: RaidFeatures) -> float:
        return rule_score(features, self.weights)


class LearnedScorer(RaidScorer):
    """Scores with a pre-trained logistic model."""

    name = "learned"

    def __init__(self, model: LearnedModel) -> None:
        self.model = model

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "LearnedScorer":
        return cls(load_model(path))

    def score(self, features: RaidFeatures) -> float:
        value = logistic_score(features, self.model)
        if math.isnan(value) or not 0.0 <= value <= 1.0:
            raise ScorerUnavailableError(f"Model produced invalid score {value}")
        return value


# =============================================================================
# Fallback
# =============================================================================

class FallbackScorer(RaidScorer):
    """
    Learned scorer with unconditional rule-based fallback.

    Attributes:
        primary: Learned scorer, or None when no model is loaded.
        fallback: Rule scorer used whenever the primary is missing or fails.
        last_method: Name of the scorer that produced the last score.
    """

    name = "fallback"

    def __init__(
        self,
        primary: Optional[RaidScorer] = None,
        fallback: Optional[RaidScorer] = None,
    ) -> None:
        self.primary = primary
        self.fallback = fallback or RuleScorer()
        self.primary_failures = 0
        self.last_method = self.method

    @classmethod
    def from_model_path(cls, path: Optional[str]) -> "FallbackScorer":
        """Build from an optional model file, logging when it cannot be used."""
        if not path:
            return cls()
        try:
            primary = LearnedScorer.from_file(path)
        except ScorerUnavailableError as e:
            logger.warning("Learned Raid Scorer Unavailable", [
                ("Path", path),
                ("Error", str(e)[:100]),
                ("Using", RuleScorer.name),
            ])
            return cls()

        logger.tree("Learned Raid Scorer Loaded", [
            ("Path", path),
            ("Fallback", RuleScorer.name),
        ], emoji="🧠")
        return cls(primary=primary)

    @property
    def method(self) -> str:
        """Scorer that answers when nothing fails."""
        return self.primary.name if self.primary else self.fallback.name

    def score(self, features: RaidFeatures, fallback: Optional[RaidScorer] = None) -> float:
        """
        Score features.

        Args:
            features: Features of the join being scored.
            fallback: Replaces the default fallback for this call, e.g. a
                RuleScorer carrying one community's weights.
        """
        if self.primary is not None:
            try:
                value = self.primary.score(features)
                self.last_method = self.primary.name
                return value
            except Exception as e:
                self.primary_failures += 1
                logger.warning("Learned Raid Scorer Failed", [
                    ("Error", str(e)[:100]),
                    ("Type", type(e).__name__),
                    ("Failures", str(self.primary_failures)),
                ])

        rules = fallback or self.fallback
        self.last_method = rules.name
        return rules.score(features)


__all__ = [
    "rule_score",
    "logistic_score",
    "load_model",
    "LearnedModel",
    "RaidScorer",
    "RuleScorer",
    "LearnedScorer",
    "FallbackScorer",
]
