"""
Bastion - Raid Detection Package
================================

Join-burst detection with a rule-based scorer and an optional learned one.

Author: Bastion Maintainers
"""

from bastion.services.raid.detector import JOIN_SIGNAL, RaidDecision, RaidDetector
from bastion.services.raid.features import RaidFeatures, extract_features, name_pattern_score
from bastion.services.raid.scorers import (
    FallbackScorer,
    LearnedModel,
    LearnedScorer,
    RaidScorer,
    RuleScorer,
    logistic_score,
    rule_score,
)

__all__ = [
    "RaidDetector",
    "RaidDecision",
    "JOIN_SIGNAL",
    "RaidFeatures",
    "extract_features",
    "name_pattern_score",
    "RaidScorer",
    "RuleScorer",
    "LearnedScorer",
    "LearnedModel",
    "FallbackScorer",
    "rule_score",
    "logistic_score",
]
