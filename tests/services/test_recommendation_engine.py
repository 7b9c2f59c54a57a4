"""
Tests for RecommendationEngine — trigger vocabulary, message interpolation
and ranking.
"""

import pytest

from asoaudit.services.models import (
    AppMetadata,
    FormulaResult,
    FormulaType,
    KpiResult,
    RecommendationTemplate,
    RuleSet,
    Severity,
)
from asoaudit.services.recommendation_engine import (
    RecommendationContext,
    RecommendationEngine,
    format_value,
    interpolate,
)
from asoaudit.services.tokenizer import tokenize


def _kpi(kpi_id, value, normalized=None, available=True):
    normalized = value if normalized is None else normalized
    return KpiResult(
        id=kpi_id, family_id="test", value=value, normalized=normalized,
        score=normalized * 100, weight=0.2, available=available,
    )


def _template(template_id, trigger, severity="warning", impact_weight=1.0, message=None, field=None):
    return RecommendationTemplate(
        id=template_id,
        message=message or template_id,
        severity=severity,
        trigger=trigger,
        impact_weight=impact_weight,
        field=field,
    )


def _context(**overrides):
    """Create a RecommendationContext with a short title and no subtitle."""
    defaults = {
        "metadata": AppMetadata(title="Budget Planner", category="Finance"),
        "rule_set": RuleSet(
            vertical_id="finance",
            market_id="us",
            char_limits={"title": 30, "subtitle": 30},
            lexicons={"trust_terms": ["secure", "insured"]},
        ),
        "kpis": {"title_char_usage": _kpi("title_char_usage", 0.5)},
        "listing_tokens": tokenize("Budget Planner"),
        "hook_scores": {"trust_safety": 0.0, "ease_of_use": 1.0},
        "hook_examples": {"trust_safety": ["secure", "safe"], "ease_of_use": ["easy"]},
        "app_name": "Budget Planner",
    }
    defaults.update(overrides)
    return RecommendationContext(**defaults)


def _ids(recommendations):
    return [r.id for r in recommendations]


# ============================================================================
# Triggers
# ============================================================================

class TestMetricTriggers:
    """Test kpi and formula comparisons."""

    def test_kpi_trigger_fires_with_gap(self):
        engine = RecommendationEngine([
            _template("underused", {"kpi": "title_char_usage", "op": "<", "value": 0.7}, impact_weight=0.5),
        ])
        [rec] = engine.generate(_context())
        assert rec.impact == 10.0

    def test_kpi_trigger_not_met(self):
        engine = RecommendationEngine([_template("over", {"kpi": "title_char_usage", "op": ">", "value": 1.0})])
        assert engine.generate(_context()) == []

    def test_unavailable_kpi_never_fires(self):
        kpis = {"subtitle_char_usage": _kpi("subtitle_char_usage", 0.0, available=False)}
        engine = RecommendationEngine([
            _template("sub", {"kpi": "subtitle_char_usage", "op": "<", "value": 0.7}),
        ])
        assert engine.generate(_context(kpis=kpis)) == []

    def test_unknown_kpi_never_fires(self):
        engine = RecommendationEngine([_template("x", {"kpi": "nope", "op": "<", "value": 1})])
        assert engine.generate(_context()) == []

    def test_on_score(self):
        kpis = {"hook_strength_title": _kpi("hook_strength_title", 0.1, normalized=0.1)}
        engine = RecommendationEngine([
            _template("hook", {"kpi": "hook_strength_title", "op": "<", "value": 30, "on": "score"}),
        ])
        [rec] = engine.generate(_context(kpis=kpis))
        assert rec.impact == 20.0

    def test_formula_trigger(self):
        formulas = {"overall_score": FormulaResult(
            id="overall_score", type=FormulaType.WEIGHTED_SUM, score=40.0, raw_score=40.0,
        )}
        engine = RecommendationEngine([
            _template("low_overall", {"formula": "overall_score", "op": "<", "value": 50}),
        ])
        [rec] = engine.generate(_context(formulas=formulas))
        assert rec.impact == 10.0


class TestBooleanTriggers:
    """Test field, hook and lexicon triggers."""

    def test_missing_field(self):
        engine = RecommendationEngine([
            _template("no_sub", {"missing_field": "subtitle"}, impact_weight=0.35,
                      message="Add a {field} of up to {limit} characters", field="subtitle"),
        ])
        [rec] = engine.generate(_context())
        assert rec.message == "Add a subtitle of up to 30 characters"
        assert rec.impact == 35.0

    def test_whitespace_field_counts_as_missing(self):
        metadata = AppMetadata(title="Budget Planner", subtitle="   ")
        engine = RecommendationEngine([_template("no_sub", {"missing_field": "subtitle"})])
        assert _ids(engine.generate(_context(metadata=metadata))) == ["no_sub"]

    def test_present_field(self):
        engine = RecommendationEngine([_template("has_title", {"present_field": "title"})])
        [rec] = engine.generate(_context())
        assert rec.impact == 0.0

    def test_hook_missing_uses_first_pattern(self):
        engine = RecommendationEngine([
            _template("trust", {"hook_missing": "trust_safety"}, message="Try '{missing_token}' ({hook})"),
            _template("ease", {"hook_missing": "ease_of_use"}),
        ])
        [rec] = engine.generate(_context())
        assert rec.message == "Try 'secure' (trust_safety)"

    def test_undeclared_hook_does_not_fire(self):
        engine = RecommendationEngine([_template("x", {"hook_missing": "nostalgia"})])
        assert engine.generate(_context()) == []

    def test_lexicon_absent(self):
        engine = RecommendationEngine([
            _template("trust_term", {"lexicon_absent": "trust_terms"}, message="Add '{missing_token}'"),
        ])
        [rec] = engine.generate(_context())
        assert rec.message == "Add 'secure'"

    def test_lexicon_present_does_not_fire(self):
        engine = RecommendationEngine([_template("trust_term", {"lexicon_absent": "trust_terms"})])
        tokens = tokenize("Insured Budget Planner")
        assert engine.generate(_context(listing_tokens=tokens)) == []

    def test_empty_lexicon_does_not_fire(self):
        engine = RecommendationEngine([_template("x", {"lexicon_absent": "unknown_lexicon"})])
        assert engine.generate(_context()) == []


class TestCompositeTriggers:
    """Test all / any."""

    def test_all_requires_every_child(self):
        engine = RecommendationEngine([
            _template("both", {"all": [
                {"missing_field": "subtitle"},
                {"kpi": "title_char_usage", "op": ">", "value": 1.0},
            ]}),
        ])
        assert engine.generate(_context()) == []

    def test_all_takes_max_gap(self):
        engine = RecommendationEngine([
            _template("both", {"all": [
                {"missing_field": "subtitle"},
                {"kpi": "title_char_usage", "op": "<", "value": 0.7},
            ]}, message="{field} {percent}"),
        ])
        [rec] = engine.generate(_context())
        assert rec.impact == 100.0
        assert rec.message == "subtitle 50%"

    def test_any(self):
        engine = RecommendationEngine([
            _template("either", {"any": [
                {"missing_field": "title"},
                {"kpi": "title_char_usage", "op": "<", "value": 0.7},
            ]}),
        ])
        assert _ids(engine.generate(_context())) == ["either"]


# ============================================================================
# Ranking and interpolation
# ============================================================================

class TestRanking:
    """Test severity, impact and declaration-order ranking."""

    def test_severity_then_impact_then_order(self):
        templates = [
            _template("info_big", {"missing_field": "subtitle"}, severity="info", impact_weight=5.0),
            _template("warn_small", {"missing_field": "subtitle"}, severity="warning", impact_weight=0.1),
            _template("warn_big", {"missing_field": "subtitle"}, severity="warning", impact_weight=0.5),
            _template("crit", {"missing_field": "subtitle"}, severity="critical", impact_weight=0.1),
            _template("warn_big_later", {"missing_field": "subtitle"}, severity="warning", impact_weight=0.5),
        ]
        recommendations = RecommendationEngine(templates).generate(_context())
        assert _ids(recommendations) == ["crit", "warn_big", "warn_big_later", "warn_small", "info_big"]

    def test_limit(self):
        templates = [_template(f"t{i}", {"missing_field": "subtitle"}) for i in range(5)]
        assert len(RecommendationEngine(templates, limit=2).generate(_context())) == 2

    def test_from_rule_set(self):
        template = _template("t", {"missing_field": "subtitle"}, severity="critical")
        engine = RecommendationEngine.from_rule_set(RuleSet(recommendation_templates=[template]), limit=3)
        assert engine.templates == [template]
        assert engine.limit == 3

    def test_output_fields(self):
        engine = RecommendationEngine([
            _template("t", {"missing_field": "subtitle"}, severity="critical", field="subtitle"),
        ])
        [rec] = engine.generate(_context())
        assert rec.severity == Severity.CRITICAL
        assert rec.field == "subtitle"


class TestInterpolation:
    """Test message placeholders."""

    def test_base_variables(self):
        engine = RecommendationEngine([
            _template("t", {"missing_field": "subtitle"}, message="{app_name} in {category} ({vertical}, {market})"),
        ])
        [rec] = engine.generate(_context())
        assert rec.message == "Budget Planner in Finance (finance, us)"

    def test_defaults_without_vertical(self):
        engine = RecommendationEngine([_template("t", {"missing_field": "subtitle"}, message="{vertical}/{market}")])
        [rec] = engine.generate(_context(rule_set=RuleSet()))
        assert rec.message == "general/global"

    def test_unknown_placeholder_left_as_is(self):
        assert interpolate("Hello {nobody}", {}) == "Hello {nobody}"

    @pytest.mark.parametrize("value,expected", [
        (30, "30"),
        (30.0, "30"),
        (0.8667, "0.87"),
        (0.5, "0.5"),
        ("text", "text"),
    ])
    def test_format_value(self, value, expected):
        assert format_value(value) == expected
