"""
Token relevance classifier.

Resolves a token to a tier 0-3. The merged RuleSet table already encodes
client > market > vertical > global precedence (later layers win during the
merge), so lookup order here is: merged table, then heuristic fallback.
"""

import logging
import re
from typing import Dict, Optional, Tuple

from .models import RuleSet

logger = logging.getLogger(__name__)

HEURISTIC_SOURCE = "heuristic"
FALLBACK_TIER = 1

_NUMERIC_RE = re.compile(r"^\d+(?:[.,]\d+)?$")


class TokenRelevanceClassifier:
    """Tier lookup over a merged RuleSet's relevance table."""

    def __init__(self, rule_set: Optional[RuleSet] = None, table: Optional[Dict[str, int]] = None):
        if rule_set is not None:
            self._table = rule_set.token_relevance
            self._sources = rule_set.token_relevance_sources
        else:
            self._table = table or {}
            self._sources = {}

    def tier(self, token: str) -> int:
        return self.resolve(token)[0]

    def resolve(self, token: str) -> Tuple[int, str]:
        """
        Resolve a token's tier and where it came from.

        Returns:
            (tier, source) where source is the layer scope that set the tier
            (global / vertical / market / client) or 'heuristic'
        """
        text = token.strip().lower()
        if len(text) < 2:
            return 0, HEURISTIC_SOURCE

        if text in self._table:
            return self._table[text], self._sources.get(text, "table")

        return self.heuristic_tier(text), HEURISTIC_SOURCE

    @staticmethod
    def heuristic_tier(text: str) -> int:
        """Numbers and single characters are noise; anything else is tier 1."""
        if len(text) < 2 or _NUMERIC_RE.match(text):
            return 0
        return FALLBACK_TIER
