"""
Leak detection — observational checks over rule layering.

- weight_drift: an override layer moved a family weight, an effective KPI
  weight or a formula component weight by more than the drift threshold
  relative to the global baseline, and the layer did not list it in
  `intentional`.
- pattern_leak: language-learning vocabulary scored as top tier, or quoted in
  recommendation templates, for a non-learning vertical.
- vertical_mismatch: the store category is not one the vertical expects.

None of these block evaluation; they are recorded in provenance.
"""

import logging
import re
from collections import OrderedDict
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import LayerScope, ProvenanceWarning, RecommendationTemplate, RuleSetLayer, Severity

logger = logging.getLogger(__name__)

FAMILY_WEIGHT = "kpi_family"
KPI_WEIGHT = "kpi"
FORMULA_WEIGHT = "formula_component"

LEARNING_VERTICAL = "language_learning"
LEARNING_LEXICON = "learning_terms"
TOP_TIER = 3

# (weight kind, subject id, parent id) -> weight
WeightKey = Tuple[str, str, Optional[str]]
WeightSnapshot = Dict[WeightKey, float]

_WORD_RE = re.compile(r"[a-z]+")
_PLACEHOLDER_RE = re.compile(r"\{\w+\}")


def weight_snapshot(
    family_weights: Mapping[str, float],
    kpi_weights: Mapping[str, Mapping[str, float]],
    formula_weights: Mapping[str, Mapping[str, float]],
) -> WeightSnapshot:
    """Flatten the three weight tables into one comparable mapping."""
    snapshot: WeightSnapshot = OrderedDict()
    for family_id, weight in family_weights.items():
        snapshot[(FAMILY_WEIGHT, family_id, None)] = weight
    for family_id, weights in kpi_weights.items():
        for kpi_id, weight in weights.items():
            snapshot[(KPI_WEIGHT, kpi_id, family_id)] = weight
    for formula_id, components in formula_weights.items():
        for component_id, weight in components.items():
            snapshot[(FORMULA_WEIGHT, f"{formula_id}.{component_id}", formula_id)] = weight
    return snapshot


def detect_weight_drift(
    layer: RuleSetLayer,
    baseline: WeightSnapshot,
    before: WeightSnapshot,
    after: WeightSnapshot,
    threshold: float,
) -> List[ProvenanceWarning]:
    """
    Compare the weights one layer produced against the global baseline.

    Drift is |after - before| / baseline for the weights this layer changed.
    A weight with a zero baseline drifts whenever the layer changes it.
    """
    intentional = set(layer.intentional)
    warnings: List[ProvenanceWarning] = []

    for key, current in after.items():
        kind, subject, parent = key
        previous = before.get(key, 0.0)
        delta = abs(current - previous)
        if delta < 1e-9:
            continue

        base = baseline.get(key, 0.0)
        drift = delta / base if base > 0 else None
        if drift is not None and drift <= threshold:
            continue
        if subject in intentional or (parent is not None and parent in intentional):
            logger.debug(f"{layer.key} changed {subject} intentionally")
            continue

        drift_text = f"{drift:.0%}" if drift is not None else "from a zero baseline"
        logger.warning(f"Weight drift in {layer.key}: {kind} {subject} moved {drift_text}")
        warnings.append(ProvenanceWarning(
            kind="weight_drift",
            layer=layer.scope.value,
            subject=subject,
            message=(
                f"{layer.scope.value.capitalize()} layer '{layer.id}' changed {kind} weight "
                f"'{subject}' from {previous:.3f} to {current:.3f} ({drift_text} of baseline) "
                f"without marking it intentional"
            ),
            severity=Severity.WARNING,
            details={
                "weight_kind": kind,
                "layer_id": layer.id,
                "baseline": round(base, 6),
                "before": round(previous, 6),
                "after": round(current, 6),
                "drift": round(drift, 6) if drift is not None else None,
                "threshold": threshold,
            },
        ))

    return warnings


def _message_words(message: str) -> set:
    return set(_WORD_RE.findall(_PLACEHOLDER_RE.sub(" ", message.lower())))


def detect_pattern_leaks(
    vertical_id: Optional[str],
    token_relevance: Mapping[str, int],
    token_sources: Mapping[str, str],
    lexicons: Mapping[str, Sequence[str]],
    templates: Iterable[RecommendationTemplate],
) -> List[ProvenanceWarning]:
    """Flag learning-vertical vocabulary that leaked into another vertical's rules."""
    if vertical_id == LEARNING_VERTICAL:
        return []
    learning = set(lexicons.get(LEARNING_LEXICON, []))
    if not learning:
        return []

    warnings: List[ProvenanceWarning] = []

    leaked = sorted(
        token for token in learning
        if token_relevance.get(token) == TOP_TIER and token_sources.get(token) != LayerScope.CLIENT.value
    )
    if leaked:
        warnings.append(ProvenanceWarning(
            kind="pattern_leak",
            layer=token_sources.get(leaked[0]),
            subject="token_relevance",
            message=f"Learning terms scored as top tier outside the learning vertical: {', '.join(leaked)}",
            severity=Severity.WARNING,
            details={"tokens": leaked, "vertical": vertical_id},
        ))

    for template in templates:
        overlap = sorted(_message_words(template.message) & learning)
        if overlap:
            warnings.append(ProvenanceWarning(
                kind="pattern_leak",
                subject=template.id,
                message=f"Template '{template.id}' uses learning vocabulary ({', '.join(overlap)})",
                severity=Severity.INFO,
                details={"tokens": overlap, "vertical": vertical_id},
            ))

    return warnings


def detect_vertical_mismatch(
    vertical_id: Optional[str],
    category: Optional[str],
    vertical_categories: Mapping[str, Sequence[str]],
) -> List[ProvenanceWarning]:
    """Warn when the store category is not among those expected for the vertical."""
    if not vertical_id or not category or vertical_id not in vertical_categories:
        return []

    expected = list(vertical_categories[vertical_id])
    if category.strip().lower() in expected:
        return []

    return [ProvenanceWarning(
        kind="vertical_mismatch",
        layer=LayerScope.VERTICAL.value,
        subject=vertical_id,
        message=f"Category '{category}' is unusual for vertical '{vertical_id}' (expected {', '.join(expected)})",
        severity=Severity.INFO,
        details={"category": category, "expected": expected},
    )]
