"""
Tests for TokenRelevanceClassifier — table lookup, layer precedence through the
merged RuleSet, and the heuristic fallback.
"""

from asoaudit.services.ruleset_loader import normalize_layer
from asoaudit.services.ruleset_merger import merge_layers
from asoaudit.services.token_relevance import HEURISTIC_SOURCE, TokenRelevanceClassifier


def _rule_set(*documents):
    """Merge global/vertical/market/client documents in that order."""
    scopes = ["global", "vertical", "market", "client"]
    layers = [normalize_layer(doc, scope, f"{scope}_test")[0] for doc, scope in zip(documents, scopes)]
    return merge_layers(layers)


class TestHeuristic:
    """Test fallback tiers for tokens the table does not list."""

    def test_unknown_word_is_neutral(self):
        classifier = TokenRelevanceClassifier(table={})
        assert classifier.resolve("budget") == (1, HEURISTIC_SOURCE)

    def test_numbers_are_noise(self):
        classifier = TokenRelevanceClassifier()
        assert classifier.tier("2024") == 0
        assert classifier.tier("3.5") == 0

    def test_single_character_is_noise(self):
        assert TokenRelevanceClassifier(table={"x": 3}).tier("x") == 0


class TestLayerPrecedence:
    """Test that later layers win for the same token."""

    def test_vertical_overrides_global(self):
        rule_set = _rule_set(
            {"token_relevance": {"learn": 1}},
            {"token_relevance": {"learn": 3}},
        )
        classifier = TokenRelevanceClassifier(rule_set)
        assert classifier.resolve("learn") == (3, "vertical")

    def test_client_overrides_vertical(self):
        rule_set = _rule_set(
            {"token_relevance": {"learn": 1}},
            {"token_relevance": {"learn": 3}},
            {},
            {"token_relevance": {"learn": 2}},
        )
        classifier = TokenRelevanceClassifier(rule_set)
        assert classifier.resolve("learn") == (2, "client")

    def test_lookup_is_case_insensitive(self):
        rule_set = _rule_set({"token_relevance": {"Budget": 3}})
        assert TokenRelevanceClassifier(rule_set).tier("BUDGET") == 3

    def test_out_of_range_tier_is_clamped(self):
        layer, warnings = normalize_layer({"token_relevance": {"money": 7}}, "global")
        assert layer.token_relevance["money"] == 3
        assert [w.kind for w in warnings] == ["value_clamped"]
