"""
Tests for AuditOrchestrator — end-to-end evaluation, determinism, graceful
degradation and input validation.
"""

import random

import pytest

from asoaudit import evaluate
from asoaudit.core.config import EngineSettings
from asoaudit.core.exceptions import MalformedInputError
from asoaudit.services.audit_orchestrator import AuditOrchestrator, validate_metadata
from asoaudit.services.models import AppMetadata, FormulaStatus, RuleSet, Severity


DUOLINGO = {
    "title": "Duolingo: Language Lessons",
    "subtitle": "Learn Spanish, French & more",
    "category": "Education",
    "locale": "en-US",
}

WORDS = [
    "budget", "planner", "learn", "spanish", "fast", "secure", "free", "download",
    "best", "tracker", "daily", "easy", "photo", "editor", "2024", "pro",
]


def _random_listing(seed):
    rng = random.Random(seed)
    return {
        "title": " ".join(rng.choice(WORDS) for _ in range(4)).title(),
        "subtitle": " ".join(rng.choice(WORDS) for _ in range(5)),
        "description": ". ".join(" ".join(rng.choice(WORDS) for _ in range(8)) for _ in range(3)),
        "category": rng.choice(["Education", "Finance", "Productivity", "Games"]),
    }


def _kinds(result):
    return [w.kind for w in result.provenance.warnings]


# ============================================================================
# End to end
# ============================================================================

class TestEndToEnd:
    """Test a well-formed listing through the full pipeline."""

    def setup_method(self):
        self.result = AuditOrchestrator().evaluate(DUOLINGO, vertical="language_learning", market="us")

    def test_provenance_layers(self):
        provenance = self.result.provenance
        assert provenance.vertical_id == "language_learning"
        assert provenance.market_id == "us"
        assert provenance.layers == ["global:global", "vertical:language_learning", "market:us"]

    def test_title_char_usage(self):
        kpi = self.result.kpis["title_char_usage"]
        assert kpi.value == pytest.approx(26 / 30, abs=1e-4)
        assert kpi.normalized == pytest.approx(0.8667, abs=1e-4)

    def test_scores_in_range(self):
        for score in (self.result.title_element_score, self.result.subtitle_element_score,
                      self.result.overall_score):
            assert 0.0 <= score <= 100.0
        assert self.result.overall_score > 0

    def test_element_scores_match_formulas(self):
        assert self.result.overall_score == self.result.formulas["overall_score"].score
        assert self.result.title_element_score == self.result.formulas["title_element_score"].score

    def test_recommendations(self):
        ids = [r.id for r in self.result.recommendations]
        assert "missing_subtitle" not in ids
        assert "missing_description" in ids
        assert "missing_learning_hook" not in ids

    def test_recommendations_ranked_by_severity(self):
        ranks = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}
        severities = [ranks[r.severity] for r in self.result.recommendations]
        assert severities == sorted(severities)

    def test_no_drift_from_bundled_rules(self):
        assert "weight_drift" not in _kinds(self.result)
        assert "pattern_leak" not in _kinds(self.result)

    def test_keyword_coverage(self):
        coverage = self.result.keyword_coverage
        assert "language" in coverage["title_keywords"]
        assert "spanish" in coverage["incremental_keywords"]
        assert "language" in coverage["high_value_keywords"]

    def test_combos_labelled(self):
        for combo in self.result.combos.unique:
            assert combo.intent is not None
            assert combo.hook is not None

    def test_auto_detection_matches_explicit(self):
        detected = AuditOrchestrator().evaluate(DUOLINGO)
        assert detected.provenance.layers == self.result.provenance.layers
        assert detected.overall_score == self.result.overall_score

    def test_module_level_evaluate(self):
        result = evaluate(DUOLINGO, vertical="language_learning", market="us")
        assert result.model_dump_json() == self.result.model_dump_json()


class TestDeterminism:
    """Test that identical inputs serialize identically."""

    @pytest.mark.parametrize("seed", [1, 7, 42, 2024])
    def test_identical_json(self, seed):
        listing = _random_listing(seed)
        first = AuditOrchestrator().evaluate(listing)
        second = AuditOrchestrator().evaluate(dict(listing))
        assert first.model_dump_json() == second.model_dump_json()

    def test_result_is_frozen(self):
        result = AuditOrchestrator().evaluate(DUOLINGO)
        with pytest.raises(Exception):
            result.overall_score = 100.0


# ============================================================================
# Degradation
# ============================================================================

class TestGracefulDegradation:
    """Test partial listings and unknown layers."""

    def setup_method(self):
        self.orchestrator = AuditOrchestrator()

    def test_title_only(self):
        result = self.orchestrator.evaluate({"title": "Budget"})
        assert result.kpis["subtitle_char_usage"].available is False
        assert result.kpis["description_readability"].available is False
        assert result.recommendations[0].id == "missing_subtitle"
        assert 0.0 <= result.overall_score <= 100.0

    def test_blank_subtitle_counts_as_missing(self):
        result = self.orchestrator.evaluate({"title": "Budget Planner", "subtitle": "  "})
        assert "missing_subtitle" in [r.id for r in result.recommendations]

    def test_unknown_vertical_skipped(self):
        result = self.orchestrator.evaluate(DUOLINGO, vertical="astrology", market="us")
        assert result.provenance.vertical_id is None
        [warning] = [w for w in result.provenance.warnings if w.kind == "unknown_vertical"]
        assert warning.severity == Severity.INFO
        assert warning.subject == "astrology"

    def test_unknown_market_skipped(self):
        result = self.orchestrator.evaluate(DUOLINGO, market="atlantis")
        assert result.provenance.market_id is None
        assert "unknown_market" in _kinds(result)

    def test_auto_detect_disabled(self):
        orchestrator = AuditOrchestrator(settings=EngineSettings(auto_detect_layers=False))
        result = orchestrator.evaluate(DUOLINGO)
        assert result.provenance.layers == ["global:global"]

    def test_recommendation_limit(self):
        orchestrator = AuditOrchestrator(settings=EngineSettings(max_recommendations=1))
        result = orchestrator.evaluate({"title": "Budget"})
        assert len(result.recommendations) == 1


# ============================================================================
# Client overrides
# ============================================================================

class TestClientOverrides:
    """Test that the client layer wins over bundled layers."""

    def setup_method(self):
        self.orchestrator = AuditOrchestrator()

    def test_char_limit_override(self):
        result = self.orchestrator.evaluate(
            DUOLINGO, client_overrides={"char_limits": {"title": 50}}, client_id="acme",
        )
        assert result.kpis["title_char_usage"].value == pytest.approx(0.52)
        assert result.provenance.client_id == "acme"
        assert result.provenance.layers[-1] == "client:acme"

    def test_token_relevance_override(self):
        baseline = self.orchestrator.evaluate(DUOLINGO)
        assert "lessons" in baseline.keyword_coverage["high_value_keywords"]

        result = self.orchestrator.evaluate(DUOLINGO, client_overrides={"token_relevance": {"lessons": 0}})
        assert "lessons" not in result.keyword_coverage["high_value_keywords"]

    def test_disable_template(self):
        result = self.orchestrator.evaluate(
            DUOLINGO,
            client_overrides={"recommendation_templates": {"missing_description": {"enabled": False}}},
        )
        assert "missing_description" not in [r.id for r in result.recommendations]

    def test_invalid_family_override_falls_back(self):
        result = self.orchestrator.evaluate(
            DUOLINGO, client_overrides={"kpi_family_weights": {"intent_alignment": 0.9}},
        )
        assert "invalid_override" in _kinds(result)
        assert result.provenance.formula_status["kpi_overall_score"] == FormulaStatus.FALLBACK

    def test_empty_overrides_add_client_layer(self):
        result = self.orchestrator.evaluate(DUOLINGO, client_overrides={})
        assert result.provenance.layers[-1] == "client:client"


# ============================================================================
# Input validation
# ============================================================================

class TestInputValidation:
    """Test that malformed arguments fail before any work."""

    def setup_method(self):
        self.orchestrator = AuditOrchestrator()

    def test_non_mapping(self):
        with pytest.raises(MalformedInputError):
            self.orchestrator.evaluate("Duolingo")

    def test_missing_title(self):
        with pytest.raises(MalformedInputError) as exc_info:
            self.orchestrator.evaluate({"subtitle": "Learn"})
        assert exc_info.value.field == "title"

    def test_non_string_title(self):
        with pytest.raises(MalformedInputError):
            self.orchestrator.evaluate({"title": 5})

    def test_non_string_vertical(self):
        with pytest.raises(MalformedInputError) as exc_info:
            self.orchestrator.evaluate(DUOLINGO, vertical=5)
        assert exc_info.value.field == "vertical"

    def test_non_mapping_overrides(self):
        with pytest.raises(MalformedInputError):
            self.orchestrator.evaluate(DUOLINGO, client_overrides=["token_relevance"])

    def test_is_value_error(self):
        with pytest.raises(ValueError):
            self.orchestrator.evaluate(None)

    def test_validate_metadata_passthrough(self):
        metadata = AppMetadata(title="Budget")
        assert validate_metadata(metadata) is metadata


class TestEvaluateWithRuleSet:
    """Test scoring against a pre-merged RuleSet."""

    def setup_method(self):
        self.orchestrator = AuditOrchestrator()
        self.rule_set = self.orchestrator.resolve_rule_set(
            AppMetadata(title="x", category="Education"),
        )

    def test_matches_evaluate(self):
        direct = self.orchestrator.evaluate(DUOLINGO)
        cached = self.orchestrator.evaluate_with_rule_set(DUOLINGO, self.rule_set)
        assert cached.model_dump_json() == direct.model_dump_json()

    def test_rule_set_reused(self):
        first = self.orchestrator.evaluate_with_rule_set({"title": "Learn Spanish Fast"}, self.rule_set)
        second = self.orchestrator.evaluate_with_rule_set({"title": "Learn French Daily"}, self.rule_set)
        assert first.provenance.vertical_id == second.provenance.vertical_id == "language_learning"

    def test_rejects_non_rule_set(self):
        with pytest.raises(MalformedInputError):
            self.orchestrator.evaluate_with_rule_set(DUOLINGO, {"vertical_id": "x"})

    def test_empty_rule_set(self):
        result = self.orchestrator.evaluate_with_rule_set(DUOLINGO, RuleSet())
        assert 0.0 <= result.overall_score <= 100.0
