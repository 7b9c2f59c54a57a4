"""
Intent classification for combos (informational / commercial /
transactional / navigational, or whatever categories the RuleSet declares).
"""

import logging
from collections import OrderedDict
from typing import Dict, Iterable

from .models import Combo, RuleSet, UNCLASSIFIED_INTENT
from .pattern_classifier import Classification, PatternClassifier

logger = logging.getLogger(__name__)


class IntentClassifier(PatternClassifier):
    """Labels combo text with the best-scoring intent category."""

    none_label = UNCLASSIFIED_INTENT

    @classmethod
    def from_rule_set(cls, rule_set: RuleSet) -> "IntentClassifier":
        return cls(rule_set.intent_patterns)

    def classify_combo(self, combo: Combo) -> Classification:
        return self.classify(combo.text)

    def distribution(self, combos: Iterable[Combo]) -> Dict[str, int]:
        """
        Count combos per intent, declared categories first, then unclassified.

        Combos already carrying an intent label are counted as labelled;
        unlabelled combos are classified on the fly.
        """
        counts: Dict[str, int] = OrderedDict((c, 0) for c in self.categories)
        counts[self.none_label] = 0
        for combo in combos:
            label = combo.intent or self.classify_combo(combo).category
            counts[label] = counts.get(label, 0) + 1
        return dict(counts)
