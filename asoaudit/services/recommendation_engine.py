"""
Recommendation Engine — evaluates data-driven templates against KPI and
formula results.

Trigger vocabulary (templates are plain data, no code runs):
    {"kpi": id, "op": "<", "value": 0.7, "on": "normalized"}   on: value|normalized|score
    {"formula": id, "op": "<", "value": 50}
    {"missing_field": "subtitle"}          field empty or absent
    {"present_field": "description"}       field has text
    {"hook_missing": "trust_safety"}       no phrase of that hook category in title/subtitle
    {"lexicon_absent": "earning_terms"}    no lexicon word in title/subtitle
    {"all": [...]} / {"any": [...]}

KPI and formula triggers never fire for unavailable inputs; a missing field
is reported by its own template instead.

Messages use plain {name} substitution: app_name, category, vertical,
market, field, limit, value, percent, threshold, missing_token, hook.

Ranking: severity (critical > warning > info), then estimated impact
descending, then template declaration order. Impact = impact_weight × gap,
where gap is the distance to the trigger threshold on a 0-100 scale and
boolean triggers count as a full 100.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

from .models import (
    AppMetadata,
    FormulaResult,
    KpiResult,
    Recommendation,
    RecommendationTemplate,
    RuleSet,
    Severity,
    Token,
)
from .scoring_utils import compare

logger = logging.getLogger(__name__)

SEVERITY_RANK = {Severity.CRITICAL: 0, Severity.WARNING: 1, Severity.INFO: 2}
FULL_GAP = 100.0

_PLACEHOLDER_RE = re.compile(r"\{(\w+)\}")


@dataclass
class RecommendationContext:
    """Read-only view of one evaluation for trigger checks and interpolation."""
    metadata: AppMetadata
    rule_set: RuleSet
    kpis: Dict[str, KpiResult] = field(default_factory=dict)
    formulas: Dict[str, FormulaResult] = field(default_factory=dict)
    listing_tokens: List[Token] = field(default_factory=list)
    hook_scores: Dict[str, float] = field(default_factory=dict)
    hook_examples: Dict[str, List[str]] = field(default_factory=dict)
    app_name: str = ""

    @property
    def token_texts(self) -> Set[str]:
        return {t.text for t in self.listing_tokens}


@dataclass
class TriggerOutcome:
    gap: float
    variables: Dict[str, Any] = field(default_factory=dict)


def format_value(value: Any) -> str:
    if isinstance(value, float):
        if value.is_integer():
            return str(int(value))
        return f"{value:.2f}".rstrip("0").rstrip(".")
    return str(value)


def interpolate(message: str, variables: Dict[str, Any]) -> str:
    """Replace {name} placeholders; unknown placeholders are left as written."""
    def _sub(match):
        name = match.group(1)
        if name in variables and variables[name] is not None:
            return format_value(variables[name])
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_sub, message)


class RecommendationEngine:
    """Walks merged templates in declaration order and ranks the ones that fire."""

    def __init__(self, templates: List[RecommendationTemplate], limit: int = 0):
        self.templates = templates
        self.limit = limit

    @classmethod
    def from_rule_set(cls, rule_set: RuleSet, limit: int = 0) -> "RecommendationEngine":
        return cls(rule_set.recommendation_templates, limit)

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def _metric(self, trigger: Dict[str, Any], context: RecommendationContext) -> Optional[TriggerOutcome]:
        on = trigger.get("on", "value")
        threshold = float(trigger["value"])

        if "kpi" in trigger:
            result = context.kpis.get(trigger["kpi"])
            if result is None or not result.available:
                return None
            observed = getattr(result, on)
        else:
            result = context.formulas.get(trigger["formula"])
            if result is None:
                return None
            observed = result.score if on != "value" else result.raw_score

        if not compare(observed, trigger["op"], threshold):
            return None

        scale = 1.0 if on == "score" or "formula" in trigger else 100.0
        gap = min(FULL_GAP, abs(threshold - observed) * scale)
        variables = {"value": observed, "threshold": threshold}
        if on != "score" and "kpi" in trigger:
            variables["percent"] = f"{observed * 100:.0f}%"
        return TriggerOutcome(gap=gap, variables=variables)

    def _check(self, trigger: Dict[str, Any], context: RecommendationContext) -> Optional[TriggerOutcome]:
        if "all" in trigger:
            outcomes = [self._check(child, context) for child in trigger["all"]]
            if any(o is None for o in outcomes):
                return None
            return self._combine(outcomes)

        if "any" in trigger:
            outcomes = [o for o in (self._check(child, context) for child in trigger["any"]) if o is not None]
            if not outcomes:
                return None
            return self._combine(outcomes)

        if "kpi" in trigger or "formula" in trigger:
            return self._metric(trigger, context)

        if "missing_field" in trigger:
            name = trigger["missing_field"]
            if context.metadata.has(name):
                return None
            return TriggerOutcome(gap=FULL_GAP, variables={"field": name})

        if "present_field" in trigger:
            name = trigger["present_field"]
            if not context.metadata.has(name):
                return None
            return TriggerOutcome(gap=0.0, variables={"field": name})

        if "hook_missing" in trigger:
            category = trigger["hook_missing"]
            if category not in context.hook_scores or context.hook_scores[category] > 0:
                return None
            examples = context.hook_examples.get(category, [])
            return TriggerOutcome(
                gap=FULL_GAP,
                variables={"hook": category, "missing_token": examples[0] if examples else category},
            )

        if "lexicon_absent" in trigger:
            words = context.rule_set.lexicon(trigger["lexicon_absent"])
            if not words or context.token_texts & set(words):
                return None
            return TriggerOutcome(gap=FULL_GAP, variables={"missing_token": words[0]})

        return None

    @staticmethod
    def _combine(outcomes: List[TriggerOutcome]) -> TriggerOutcome:
        variables: Dict[str, Any] = {}
        for outcome in outcomes:
            for key, value in outcome.variables.items():
                variables.setdefault(key, value)
        return TriggerOutcome(gap=max(o.gap for o in outcomes), variables=variables)

    # ------------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------------

    def _variables(self, template: RecommendationTemplate, context: RecommendationContext) -> Dict[str, Any]:
        variables: Dict[str, Any] = {
            "app_name": context.app_name,
            "category": context.metadata.category or "this category",
            "vertical": (context.rule_set.vertical_id or "general").replace("_", " "),
            "market": context.rule_set.market_id or "global",
        }
        if template.field:
            variables["field"] = template.field
            variables["limit"] = context.rule_set.char_limit(template.field)
        return variables

    def generate(self, context: RecommendationContext) -> List[Recommendation]:
        fired: List[Tuple[Tuple[int, float, int], Recommendation]] = []

        for index, template in enumerate(self.templates):
            outcome = self._check(template.trigger, context)
            if outcome is None:
                continue

            variables = self._variables(template, context)
            variables.update(outcome.variables)
            impact = round(template.impact_weight * outcome.gap, 2)

            recommendation = Recommendation(
                id=template.id,
                severity=template.severity,
                message=interpolate(template.message, variables),
                impact=impact,
                category=template.category,
                field=template.field,
            )
            fired.append(((SEVERITY_RANK[template.severity], -impact, index), recommendation))

        fired.sort(key=lambda item: item[0])
        recommendations = [r for _, r in fired]
        if self.limit:
            recommendations = recommendations[: self.limit]

        logger.debug(f"{len(fired)} of {len(self.templates)} recommendation templates fired")
        return recommendations
