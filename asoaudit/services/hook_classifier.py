"""
Psychological hook classification.

Categories (from the global rules): learning_educational, outcome_benefit,
status_authority, ease_of_use, time_to_result, trust_safety. Verticals add
phrases and per-category multipliers.
"""

import logging
from typing import Dict, List

from .models import Combo, RuleSet, UNCATEGORIZED_HOOK
from .pattern_classifier import Classification, PatternClassifier

logger = logging.getLogger(__name__)


class HookClassifier(PatternClassifier):
    """Labels phrases with the dominant hook category."""

    none_label = UNCATEGORIZED_HOOK

    @classmethod
    def from_rule_set(cls, rule_set: RuleSet) -> "HookClassifier":
        return cls(rule_set.hook_patterns, rule_set.hook_multipliers)

    def classify_combo(self, combo: Combo) -> Classification:
        return self.classify(combo.text)

    def scan(self, text: str) -> Dict[str, float]:
        """Field-level hook scores; catches hooks longer than any combo window."""
        return self.scores(text)

    def detected(self, text: str) -> List[str]:
        """Hook categories with a non-zero score in text, declaration order."""
        return [category for category, score in self.scan(text).items() if score > 0]
