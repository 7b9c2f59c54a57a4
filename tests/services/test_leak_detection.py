"""
Tests for leak detection — weight drift against the global baseline,
learning-vocabulary leaks into other verticals, and vertical/category
mismatch.
"""

from asoaudit.services.leak_detection import detect_vertical_mismatch
from asoaudit.services.models import Severity
from asoaudit.services.ruleset_loader import normalize_layer
from asoaudit.services.ruleset_merger import merge_layers

# Sums to 1.0; only intent_alignment moves by more than 40% (0.20 -> 0.45)
SKEWED_FAMILY_WEIGHTS = {
    "clarity_structure": 0.14,
    "keyword_architecture": 0.17,
    "hook_strength": 0.10,
    "brand_balance": 0.07,
    "psychology_alignment": 0.07,
    "intent_alignment": 0.45,
}


def _merge(global_doc, *layers):
    """layers: (scope, id, document) tuples merged after the global document."""
    stack = [normalize_layer(global_doc, "global")[0]]
    stack += [normalize_layer(doc, scope, layer_id)[0] for scope, layer_id, doc in layers]
    return merge_layers(stack)


class TestWeightDrift:
    """Test drift warnings for weight overrides."""

    def test_single_drifted_family(self):
        rule_set = _merge({}, ("vertical", "news", {"kpi_family_weights": SKEWED_FAMILY_WEIGHTS}))

        assert len(rule_set.warnings) == 1
        warning = rule_set.warnings[0]
        assert warning.kind == "weight_drift"
        assert warning.subject == "intent_alignment"
        assert warning.layer == "vertical"
        assert warning.details["drift"] == 1.25
        assert warning.details["baseline"] == 0.2

    def test_intentional_suppresses_warning(self):
        rule_set = _merge({}, ("vertical", "news", {
            "kpi_family_weights": SKEWED_FAMILY_WEIGHTS,
            "intentional": ["intent_alignment"],
        }))
        assert rule_set.warnings == []

    def test_drift_within_threshold(self):
        rule_set = _merge({}, ("vertical", "news", {"kpi_weight_multipliers": {"benefit_density": 1.2}}))
        assert rule_set.warnings == []

    def test_effective_kpi_weight_drift(self):
        rule_set = _merge({}, ("vertical", "news", {"kpi_weight_multipliers": {"title_char_usage": 2.0}}))

        assert [(w.kind, w.subject) for w in rule_set.warnings] == [("weight_drift", "title_char_usage")]
        assert rule_set.warnings[0].details["weight_kind"] == "kpi"

    def test_parent_family_marks_kpi_intentional(self):
        rule_set = _merge({}, ("vertical", "news", {
            "kpi_weight_multipliers": {"title_char_usage": 2.0},
            "intentional": ["clarity_structure"],
        }))
        assert rule_set.warnings == []

    def test_zero_baseline_always_drifts(self):
        weights = {"conversion_quality": 0.05, "intent_alignment": 0.15}
        rule_set = _merge({}, ("vertical", "news", {"kpi_family_weights": weights}))

        assert [w.subject for w in rule_set.warnings] == ["conversion_quality"]
        assert rule_set.warnings[0].details["drift"] is None

    def test_compared_against_global_baseline(self):
        # Each step is 30% of the baseline; the market step is judged on its own delta
        rule_set = _merge(
            {},
            ("vertical", "news", {"kpi_family_weights": {"intent_alignment": 0.26, "clarity_structure": 0.14}}),
            ("market", "uk", {"kpi_family_weights": {"intent_alignment": 0.32, "clarity_structure": 0.08}}),
        )
        assert rule_set.warnings == []
        assert rule_set.kpi_family_weights["intent_alignment"] == 0.32

    def test_formula_component_drift(self):
        rule_set = _merge({}, ("client", "acme", {
            "formula_component_weights": {
                "overall_score": {"title_element_score": 0.3, "subtitle_element_score": 0.7},
            },
        }))
        subjects = sorted(w.subject for w in rule_set.warnings)
        assert subjects == ["overall_score.subtitle_element_score", "overall_score.title_element_score"]
        assert all(w.layer == "client" for w in rule_set.warnings)


class TestPatternLeaks:
    """Test learning vocabulary leaking into other verticals."""

    GLOBAL = {"lexicons": {"learning_terms": ["learn", "spanish", "language"]}}

    def test_top_tier_learning_token_outside_learning_vertical(self):
        rule_set = _merge(self.GLOBAL, ("vertical", "rewards", {"token_relevance": {"spanish": 3}}))

        leaks = [w for w in rule_set.warnings if w.kind == "pattern_leak"]
        assert len(leaks) == 1
        assert leaks[0].details["tokens"] == ["spanish"]
        assert leaks[0].layer == "vertical"

    def test_learning_vertical_is_exempt(self):
        rule_set = _merge(self.GLOBAL, ("vertical", "language_learning", {"token_relevance": {"spanish": 3}}))
        assert rule_set.warnings == []

    def test_client_choice_is_not_a_leak(self):
        rule_set = _merge(
            self.GLOBAL,
            ("vertical", "rewards", {}),
            ("client", "acme", {"token_relevance": {"spanish": 3}}),
        )
        assert rule_set.warnings == []

    def test_template_wording_leak_is_info(self):
        rule_set = _merge(self.GLOBAL, ("vertical", "finance", {"recommendation_templates": {
            "copy": {
                "message": "Add a language to {field}",
                "trigger": {"missing_field": "subtitle"},
            },
        }}))
        assert [(w.kind, w.subject, w.severity) for w in rule_set.warnings] == [
            ("pattern_leak", "copy", Severity.INFO),
        ]

    def test_placeholders_ignored(self):
        rule_set = _merge(self.GLOBAL, ("vertical", "finance", {"recommendation_templates": {
            "copy": {"message": "Consider {language}", "trigger": {"missing_field": "subtitle"}},
        }}))
        assert rule_set.warnings == []


class TestVerticalMismatch:
    """Test category expectations per vertical."""

    EXPECTED = {"finance": ["finance", "business"]}

    def test_expected_category(self):
        assert detect_vertical_mismatch("finance", "Finance", self.EXPECTED) == []

    def test_unexpected_category(self):
        warnings = detect_vertical_mismatch("finance", "Games", self.EXPECTED)
        assert [(w.kind, w.severity) for w in warnings] == [("vertical_mismatch", Severity.INFO)]

    def test_no_expectations(self):
        assert detect_vertical_mismatch("dating", "Games", self.EXPECTED) == []
        assert detect_vertical_mismatch("finance", None, self.EXPECTED) == []
