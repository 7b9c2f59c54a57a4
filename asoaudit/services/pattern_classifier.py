"""
Weighted pattern classifier shared by the intent and hook classifiers.

Each category owns an ordered list of (predicate, weight) rules. A text's
score for a category is the sum over its rules of match count × weight,
scaled by the category multiplier. The best score wins; an exact tie goes to
the category declared first. Confidence is best / sum of all scores.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Pattern, Sequence, Tuple

from .models import PatternRule
from .tokenizer import normalize_term, normalize_text

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Classification:
    """Outcome of classifying one text."""
    category: str
    confidence: float
    scores: Dict[str, float] = field(default_factory=dict)

    @property
    def matched(self) -> bool:
        return self.confidence > 0


def compile_pattern(rule: PatternRule) -> Pattern:
    """
    Literal patterns are normalized like listing tokens and match on word
    boundaries; regex patterns are used as given.

    Raises:
        ValueError: a literal with no word characters (it could never match)
        re.error: an invalid regex
    """
    if rule.regex:
        return re.compile(rule.pattern, re.IGNORECASE)
    term = normalize_term(rule.pattern)
    if not term:
        raise ValueError("literal pattern has no word characters")
    literal = re.escape(term)
    return re.compile(rf"(?<!\w){literal}(?!\w)")


class PatternClassifier:
    """Order-significant weighted classifier over category pattern lists."""

    none_label = "none"

    def __init__(
        self,
        patterns: Mapping[str, Sequence[PatternRule]],
        multipliers: Optional[Mapping[str, float]] = None,
    ):
        multipliers = multipliers or {}
        self._rules: List[Tuple[str, float, List[Tuple[Pattern, float, str]]]] = []

        for category, rules in patterns.items():
            compiled = []
            for rule in rules:
                try:
                    compiled.append((compile_pattern(rule), rule.weight, rule.pattern))
                except (re.error, ValueError) as e:
                    logger.warning(f"Skipping invalid pattern {rule.pattern!r} in {category}: {e}")
            self._rules.append((category, multipliers.get(category, 1.0), compiled))

    @property
    def categories(self) -> List[str]:
        return [category for category, _, _ in self._rules]

    def patterns_for(self, category: str) -> List[str]:
        for name, _, compiled in self._rules:
            if name == category:
                return [text for _, _, text in compiled]
        return []

    def scores(self, text: str) -> Dict[str, float]:
        """Weighted score per category, in declaration order."""
        normalized = normalize_text(text)
        result: Dict[str, float] = {}
        for category, multiplier, compiled in self._rules:
            total = 0.0
            for pattern, weight, _ in compiled:
                hits = len(pattern.findall(normalized))
                if hits:
                    total += hits * weight
            result[category] = total * multiplier
        return result

    def classify(self, text: str) -> Classification:
        scores = self.scores(text)
        total = sum(scores.values())
        if total <= 0:
            return Classification(category=self.none_label, confidence=0.0, scores=scores)

        best_category = self.none_label
        best_score = 0.0
        for category, score in scores.items():
            # Strict comparison keeps the earlier-declared category on ties
            if score > best_score:
                best_category, best_score = category, score

        return Classification(category=best_category, confidence=best_score / total, scores=scores)
