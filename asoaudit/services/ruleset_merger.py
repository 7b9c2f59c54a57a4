"""
RuleSet Merger — folds an ordered list of RuleSetLayers into one RuleSet.

Merge rules, applied layer by layer (later layers have higher precedence):
- token_relevance, char_limits: key-by-key, last wins
- intent/hook patterns: per category; the same pattern text takes the later
  weight, new patterns append, category order is first appearance
- hook / KPI / formula multipliers: compounded (multiplied)
- kpi_family_weights, formula_component_weights: scalar last-wins, but the
  result must still sum to 1.0 ± 0.001; a layer that breaks the invariant has
  that family/formula contribution discarded (invalid_override warning)
- recommendation_templates: field-level deep merge per template id
- stopwords, brand_terms, low_value_patterns: sorted union
- lexicons: union in first-declared order

After every override layer the weights are compared with the global baseline
for drift (see leak_detection).
"""

import logging
from collections import OrderedDict
from typing import Dict, List, Mapping, Optional, Set

import numpy as np
from pydantic import ValidationError

from .formula_registry import BASE_FORMULAS, BASE_FORMULAS_BY_ID, WEIGHT_SUM_TOLERANCE, overridable_formula_weights
from .kpi_engine import effective_kpi_weights
from .kpi_registry import FAMILIES_BY_ID, KPIS_BY_ID, base_family_weights
from .leak_detection import detect_pattern_leaks, detect_weight_drift, weight_snapshot
from .models import (
    FormulaStatus,
    LayerScope,
    PatternRule,
    ProvenanceWarning,
    RecommendationTemplate,
    RuleSet,
    RuleSetLayer,
    Severity,
)

logger = logging.getLogger(__name__)

DEFAULT_CHAR_LIMITS: Dict[str, int] = {"title": 30, "subtitle": 30, "description": 4000}
DEFAULT_DRIFT_THRESHOLD = 0.40


def _sums_to_one(weights: Mapping[str, float]) -> bool:
    return abs(float(np.sum(list(weights.values()))) - 1.0) <= WEIGHT_SUM_TOLERANCE


def _merge_patterns(target: Dict[str, List[PatternRule]], source: Mapping[str, List[PatternRule]]) -> None:
    for category, rules in source.items():
        merged = target.setdefault(category, [])
        for rule in rules:
            for i, existing in enumerate(merged):
                if existing.pattern == rule.pattern:
                    merged[i] = rule
                    break
            else:
                merged.append(rule)


class _MergeState:
    """Mutable accumulator for the fold; frozen into a RuleSet at the end."""

    def __init__(self):
        self.token_relevance: Dict[str, int] = OrderedDict()
        self.token_sources: Dict[str, str] = OrderedDict()
        self.stopwords: Set[str] = set()
        self.intent_patterns: Dict[str, List[PatternRule]] = OrderedDict()
        self.hook_patterns: Dict[str, List[PatternRule]] = OrderedDict()
        self.hook_multipliers: Dict[str, float] = OrderedDict()
        self.kpi_weight_multipliers: Dict[str, float] = OrderedDict()
        self.formula_multipliers: Dict[str, float] = OrderedDict()
        self.family_weights: Dict[str, float] = base_family_weights()
        self.formula_weights: Dict[str, Dict[str, float]] = overridable_formula_weights()
        self.formula_status: Dict[str, FormulaStatus] = OrderedDict(
            (f.id, FormulaStatus.BASE) for f in BASE_FORMULAS
        )
        self.templates: Dict[str, Dict] = OrderedDict()
        self.char_limits: Dict[str, int] = dict(DEFAULT_CHAR_LIMITS)
        self.lexicons: Dict[str, List[str]] = OrderedDict()
        self.low_value_patterns: Set[str] = set()
        self.brand_terms: Set[str] = set()
        self.vertical_id: Optional[str] = None
        self.market_id: Optional[str] = None
        self.client_id: Optional[str] = None
        self.layers: List[str] = []
        self.warnings: List[ProvenanceWarning] = []

    def snapshot(self):
        return weight_snapshot(
            self.family_weights,
            effective_kpi_weights(self.kpi_weight_multipliers),
            self.formula_weights,
        )

    def warn(self, layer: RuleSetLayer, kind: str, subject: str, message: str, **details):
        logger.warning(f"[{layer.key}] {message}")
        self.warnings.append(ProvenanceWarning(
            kind=kind,
            layer=layer.scope.value,
            subject=subject,
            message=message,
            severity=Severity.WARNING,
            details=details,
        ))

    # ------------------------------------------------------------------
    # Per-key merge steps
    # ------------------------------------------------------------------

    def _compound(self, layer: RuleSetLayer, target: Dict[str, float], source: Mapping[str, float], known=None):
        for subject, multiplier in source.items():
            if known is not None and subject not in known:
                self.warn(layer, "unknown_id", subject, f"Ignoring multiplier for unknown id '{subject}'")
                continue
            target[subject] = target.get(subject, 1.0) * multiplier

    def _apply_family_weights(self, layer: RuleSetLayer):
        overrides = OrderedDict()
        for family_id, weight in layer.kpi_family_weights.items():
            if family_id not in FAMILIES_BY_ID:
                self.warn(layer, "unknown_id", family_id, f"Ignoring weight for unknown family '{family_id}'")
                continue
            overrides[family_id] = weight
        if not overrides:
            return

        candidate = OrderedDict(self.family_weights)
        candidate.update(overrides)
        if not _sums_to_one(candidate):
            total = float(np.sum(list(candidate.values())))
            self.warn(
                layer, "invalid_override", "kpi_family_weights",
                f"Family weights from {layer.key} sum to {total:.4f}; override discarded",
                weights=dict(overrides), total=round(total, 6),
            )
            self.formula_status["kpi_overall_score"] = FormulaStatus.FALLBACK
            return

        self.family_weights = candidate
        if self.formula_status["kpi_overall_score"] != FormulaStatus.FALLBACK:
            self.formula_status["kpi_overall_score"] = FormulaStatus.OVERRIDDEN

    def _apply_formula_weights(self, layer: RuleSetLayer):
        known_components = set(KPIS_BY_ID) | set(FAMILIES_BY_ID) | set(BASE_FORMULAS_BY_ID)

        for formula_id, components in layer.formula_component_weights.items():
            if formula_id not in self.formula_weights:
                self.warn(
                    layer, "invalid_override", formula_id,
                    f"Formula '{formula_id}' does not accept component weight overrides",
                )
                continue

            overrides = OrderedDict()
            for component_id, weight in components.items():
                if component_id not in known_components or component_id == formula_id:
                    self.warn(layer, "unknown_id", f"{formula_id}.{component_id}",
                              f"Ignoring unknown component '{component_id}' in '{formula_id}'")
                    continue
                overrides[component_id] = weight
            if not overrides:
                continue

            candidate = OrderedDict(self.formula_weights[formula_id])
            candidate.update(overrides)
            if not _sums_to_one(candidate):
                total = float(np.sum(list(candidate.values())))
                self.warn(
                    layer, "invalid_override", formula_id,
                    f"Component weights for '{formula_id}' from {layer.key} sum to {total:.4f}; "
                    f"override discarded",
                    weights=dict(overrides), total=round(total, 6),
                )
                self.formula_status[formula_id] = FormulaStatus.FALLBACK
                continue

            self.formula_weights[formula_id] = candidate
            if self.formula_status[formula_id] != FormulaStatus.FALLBACK:
                self.formula_status[formula_id] = FormulaStatus.OVERRIDDEN

    def apply(self, layer: RuleSetLayer):
        self.layers.append(layer.key)
        if layer.scope == LayerScope.VERTICAL:
            self.vertical_id = layer.id
        elif layer.scope == LayerScope.MARKET:
            self.market_id = layer.id

        for token, tier in layer.token_relevance.items():
            self.token_relevance[token] = tier
            self.token_sources[token] = layer.scope.value

        self.stopwords.update(layer.stopwords)
        _merge_patterns(self.intent_patterns, layer.intent_patterns)
        _merge_patterns(self.hook_patterns, layer.hook_patterns)

        self._compound(layer, self.hook_multipliers, layer.hook_multipliers)
        self._compound(layer, self.kpi_weight_multipliers, layer.kpi_weight_multipliers, KPIS_BY_ID)
        self._compound(layer, self.formula_multipliers, layer.formula_multipliers, BASE_FORMULAS_BY_ID)

        self._apply_family_weights(layer)
        self._apply_formula_weights(layer)

        for template_id, fields in layer.recommendation_templates.items():
            merged = self.templates.setdefault(template_id, {})
            merged.update(fields)

        self.char_limits.update(layer.char_limits)
        for name, words in layer.lexicons.items():
            merged = self.lexicons.setdefault(name, [])
            merged.extend(w for w in words if w not in merged)
        self.low_value_patterns.update(layer.low_value_patterns)
        self.brand_terms.update(layer.brand_terms)

    def build_templates(self) -> List[RecommendationTemplate]:
        templates: List[RecommendationTemplate] = []
        for template_id, fields in self.templates.items():
            if fields.get("enabled", True) is False:
                continue
            payload = {k: v for k, v in fields.items() if k != "id"}
            try:
                templates.append(RecommendationTemplate(id=template_id, **payload))
            except ValidationError as e:
                logger.warning(f"Dropping recommendation template {template_id}: {e.error_count()} errors")
                self.warnings.append(ProvenanceWarning(
                    kind="invalid_template",
                    subject=template_id,
                    message=f"Recommendation template '{template_id}' is invalid and was dropped",
                    severity=Severity.WARNING,
                    details={"errors": [err["msg"] for err in e.errors()]},
                ))
        return templates


def merge_layers(
    layers: List[RuleSetLayer],
    drift_threshold: float = DEFAULT_DRIFT_THRESHOLD,
    warnings: Optional[List[ProvenanceWarning]] = None,
    client_id: Optional[str] = None,
) -> RuleSet:
    """
    Fold layers (Global → Vertical → Market → Client order) into a RuleSet.

    Args:
        layers: Normalized layers in ascending precedence
        drift_threshold: Relative change that counts as drift (0.4 = 40%)
        warnings: Warnings gathered before merging (loader, normalizer)
        client_id: Identifier recorded for the client layer

    Returns:
        Read-only RuleSet with provenance and warnings
    """
    state = _MergeState()
    state.warnings.extend(warnings or [])

    baseline = None
    for layer in layers:
        before = state.snapshot()
        if baseline is None and layer.scope != LayerScope.GLOBAL:
            baseline = before

        state.apply(layer)

        if layer.scope != LayerScope.GLOBAL:
            state.warnings.extend(
                detect_weight_drift(layer, baseline, before, state.snapshot(), drift_threshold)
            )
        if layer.scope == LayerScope.CLIENT:
            state.client_id = client_id or layer.id

    templates = state.build_templates()
    lexicons = OrderedDict((name, list(words)) for name, words in state.lexicons.items())

    state.warnings.extend(detect_pattern_leaks(
        state.vertical_id, state.token_relevance, state.token_sources, lexicons, templates
    ))

    rule_set = RuleSet(
        vertical_id=state.vertical_id,
        market_id=state.market_id,
        client_id=state.client_id,
        layers=state.layers,
        token_relevance=dict(state.token_relevance),
        token_relevance_sources=dict(state.token_sources),
        stopwords=sorted(state.stopwords),
        intent_patterns=dict(state.intent_patterns),
        hook_patterns=dict(state.hook_patterns),
        hook_multipliers=dict(state.hook_multipliers),
        kpi_weight_multipliers=dict(state.kpi_weight_multipliers),
        kpi_family_weights=dict(state.family_weights),
        kpi_weights=effective_kpi_weights(state.kpi_weight_multipliers),
        formula_multipliers=dict(state.formula_multipliers),
        formula_component_weights={k: dict(v) for k, v in state.formula_weights.items()},
        formula_status=dict(state.formula_status),
        recommendation_templates=templates,
        char_limits=dict(state.char_limits),
        lexicons=dict(lexicons),
        low_value_patterns=sorted(state.low_value_patterns),
        brand_terms=sorted(state.brand_terms),
        warnings=state.warnings,
    )
    logger.info(
        f"Merged rule layers [{', '.join(state.layers)}] with {len(state.warnings)} warnings"
    )
    return rule_set
