"""
Formula Registry / Evaluator — combines KPI and family scores into derived
scores (title_element_score, subtitle_element_score, overall_score, ...).

Formulas are evaluated in declaration order, so later formulas may reference
earlier results. Component ids resolve against formula results first, then
family scores, then KPI scores, all on a 0-100 scale.

Every weighted_sum formula is validated when the registry is built from a
RuleSet: component weights must sum to 1.0 ± 0.001. An overridden formula
that fails is rejected, the base formula is used instead, and a
`formula_fallback` warning is recorded. Evaluation itself never raises.
"""

import logging
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

import numpy as np

from .kpi_registry import FAMILY_DEFINITIONS
from .models import (
    FormulaComponent,
    FormulaDefinition,
    FormulaResult,
    FormulaStatus,
    FormulaType,
    KpiFamilyResult,
    KpiResult,
    ProvenanceWarning,
    RuleSet,
    Severity,
    Threshold,
)
from .scoring_utils import apply_thresholds, clamp

logger = logging.getLogger(__name__)

WEIGHT_SUM_TOLERANCE = 0.001
KPI_OVERALL_FORMULA = "kpi_overall_score"


def _components(**weights) -> Tuple[FormulaComponent, ...]:
    return tuple(FormulaComponent(id=k, weight=v) for k, v in weights.items())


# ============================================================================
# Base formulas
# ============================================================================

BASE_FORMULAS: List[FormulaDefinition] = [
    FormulaDefinition(
        id="title_element_score",
        label="Title score",
        type=FormulaType.WEIGHTED_SUM,
        components=_components(
            title_char_usage=0.25,
            title_high_value_keyword_count=0.30,
            title_combo_coverage=0.30,
            title_noise_ratio=0.15,
        ),
    ),
    FormulaDefinition(
        id="subtitle_element_score",
        label="Subtitle score",
        type=FormulaType.WEIGHTED_SUM,
        components=_components(
            subtitle_char_usage=0.20,
            subtitle_incremental_value=0.40,
            subtitle_combo_coverage=0.25,
            subtitle_complementarity=0.15,
        ),
        description="Incremental value is weighted highest: repeating the title wastes characters",
    ),
    FormulaDefinition(
        id="overall_score",
        label="Overall metadata score",
        type=FormulaType.WEIGHTED_SUM,
        components=_components(title_element_score=0.65, subtitle_element_score=0.35),
        description="Title dominates store search ranking weight",
    ),
    FormulaDefinition(
        id=KPI_OVERALL_FORMULA,
        label="KPI overall score",
        type=FormulaType.WEIGHTED_SUM,
        components=tuple(FormulaComponent(id=f.id, weight=f.weight) for f in FAMILY_DEFINITIONS),
        description="Family scores weighted by the merged family weights",
    ),
    FormulaDefinition(
        id="description_conversion_score",
        label="Description conversion score",
        type=FormulaType.WEIGHTED_SUM,
        components=_components(
            description_hook_strength=0.30,
            description_feature_mentions=0.25,
            description_cta_strength=0.20,
            description_readability=0.25,
        ),
    ),
    FormulaDefinition(
        id="discovery_dimension",
        label="Discovery footprint",
        type=FormulaType.THRESHOLD_BASED,
        source="generic_combo_count",
        thresholds=(
            Threshold(operator=">=", value=5, score=100, label="excellent"),
            Threshold(operator=">=", value=3, score=75, label="good"),
            Threshold(operator=">=", value=1, score=50, label="limited"),
            Threshold(operator="<", value=1, score=20, label="minimal"),
        ),
    ),
    FormulaDefinition(
        id="subtitle_title_balance",
        label="Subtitle to title balance",
        type=FormulaType.RATIO,
        components=_components(subtitle_element_score=1.0, title_element_score=1.0),
    ),
    FormulaDefinition(
        id="brand_balance_dimension",
        label="Brand balance",
        type=FormulaType.CUSTOM,
        components=_components(generic_combo_ratio=1.0),
    ),
]

BASE_FORMULAS_BY_ID: Dict[str, FormulaDefinition] = OrderedDict((f.id, f) for f in BASE_FORMULAS)


def overridable_formula_weights() -> Dict[str, Dict[str, float]]:
    """Component weights a rule layer may override (weighted_sum formulas except the KPI overall)."""
    return OrderedDict(
        (f.id, f.component_weights())
        for f in BASE_FORMULAS
        if f.type == FormulaType.WEIGHTED_SUM and f.id != KPI_OVERALL_FORMULA
    )


# ============================================================================
# Evaluation context + custom formulas
# ============================================================================

@dataclass
class FormulaContext:
    """Values a formula can reference, filled in as formulas evaluate."""
    kpis: Dict[str, KpiResult] = field(default_factory=dict)
    families: Dict[str, KpiFamilyResult] = field(default_factory=dict)
    results: Dict[str, FormulaResult] = field(default_factory=dict)

    def score(self, component_id: str) -> Optional[float]:
        if component_id in self.results:
            return self.results[component_id].score
        if component_id in self.families:
            return self.families[component_id].score
        if component_id in self.kpis:
            return self.kpis[component_id].score
        return None

    def raw(self, component_id: str) -> Optional[float]:
        if component_id in self.kpis:
            return self.kpis[component_id].value
        return self.score(component_id)


def brand_balance_dimension(definition: FormulaDefinition, context: FormulaContext) -> float:
    """Generic share of brand/generic combos, plus a 30 point floor when any exist."""
    kpi = context.kpis.get("generic_combo_ratio")
    if kpi is None or not kpi.available:
        return 0.0
    return min(100.0, kpi.value * 100.0 + 30.0)


CUSTOM_FORMULAS: Dict[str, Callable[[FormulaDefinition, FormulaContext], float]] = {
    "brand_balance_dimension": brand_balance_dimension,
}


# ============================================================================
# Validation
# ============================================================================

def validate_formula(definition: FormulaDefinition) -> List[str]:
    """Return a list of problems; empty means the formula is valid."""
    problems = []

    if definition.type == FormulaType.WEIGHTED_SUM:
        if not definition.components:
            problems.append("weighted_sum formula has no components")
        else:
            total = float(np.sum([c.weight for c in definition.components]))
            if abs(total - 1.0) > WEIGHT_SUM_TOLERANCE:
                problems.append(f"component weights sum to {total:.4f}, expected 1.0")
            if any(c.weight < 0 for c in definition.components):
                problems.append("negative component weight")
    elif definition.type == FormulaType.RATIO:
        if len(definition.components) != 2:
            problems.append("ratio formula needs exactly two components")
    elif definition.type == FormulaType.THRESHOLD_BASED:
        if not definition.source or not definition.thresholds:
            problems.append("threshold_based formula needs a source and thresholds")
    elif definition.type == FormulaType.CUSTOM:
        if definition.id not in CUSTOM_FORMULAS:
            problems.append(f"no custom function registered for {definition.id}")

    return problems


def _with_weights(base: FormulaDefinition, weights: Dict[str, float]) -> FormulaDefinition:
    return base.model_copy(update={
        "components": tuple(FormulaComponent(id=k, weight=v) for k, v in weights.items())
    })


# ============================================================================
# Registry
# ============================================================================

class FormulaRegistry:
    """Validated formula set for one RuleSet, plus multipliers and status."""

    def __init__(
        self,
        formulas: List[FormulaDefinition],
        multipliers: Optional[Dict[str, float]] = None,
        status: Optional[Dict[str, FormulaStatus]] = None,
        warnings: Optional[List[ProvenanceWarning]] = None,
        precision: int = 4,
    ):
        self.formulas = formulas
        self.multipliers = multipliers or {}
        self.status = status or {}
        self.warnings = warnings or []
        self.precision = precision

    @classmethod
    def from_rule_set(cls, rule_set: RuleSet, precision: int = 4) -> "FormulaRegistry":
        """
        Apply the RuleSet's component weights to the base formulas and validate.

        kpi_overall_score takes its weights from the merged family weights.
        """
        formulas: List[FormulaDefinition] = []
        status: Dict[str, FormulaStatus] = OrderedDict()
        warnings: List[ProvenanceWarning] = []

        for base in BASE_FORMULAS:
            base_problems = validate_formula(base)
            if base_problems:
                raise ValueError(f"Base formula {base.id} is invalid: {'; '.join(base_problems)}")

            if base.id == KPI_OVERALL_FORMULA:
                override = rule_set.kpi_family_weights or None
            else:
                override = rule_set.formula_component_weights.get(base.id)

            candidate = base
            if override and override != base.component_weights():
                candidate = _with_weights(base, override)

            current = rule_set.formula_status.get(base.id, FormulaStatus.BASE)
            problems = validate_formula(candidate)
            if problems:
                logger.warning(f"Rejected override for {base.id}: {'; '.join(problems)}")
                warnings.append(ProvenanceWarning(
                    kind="formula_fallback",
                    subject=base.id,
                    message=f"Formula {base.id} override rejected ({'; '.join(problems)}); using base formula",
                    severity=Severity.WARNING,
                    details={"weights": candidate.component_weights()},
                ))
                formulas.append(base)
                status[base.id] = FormulaStatus.FALLBACK
                continue

            formulas.append(candidate)
            if current == FormulaStatus.FALLBACK:
                status[base.id] = FormulaStatus.FALLBACK
            elif candidate is not base:
                status[base.id] = FormulaStatus.OVERRIDDEN
            else:
                status[base.id] = current

        for formula_id, multiplier in rule_set.formula_multipliers.items():
            if multiplier != 1.0 and status.get(formula_id) == FormulaStatus.BASE:
                status[formula_id] = FormulaStatus.OVERRIDDEN

        return cls(formulas, dict(rule_set.formula_multipliers), status, warnings, precision)

    def get(self, formula_id: str) -> Optional[FormulaDefinition]:
        for formula in self.formulas:
            if formula.id == formula_id:
                return formula
        return None

    def _raw_score(self, definition: FormulaDefinition, context: FormulaContext) -> Tuple[float, Dict[str, float]]:
        inputs: Dict[str, float] = OrderedDict()

        if definition.type == FormulaType.WEIGHTED_SUM:
            total = 0.0
            for component in definition.components:
                value = context.score(component.id)
                inputs[component.id] = value if value is not None else 0.0
                total += inputs[component.id] * component.weight
            return total, inputs

        if definition.type == FormulaType.RATIO:
            numerator_id, denominator_id = (c.id for c in definition.components)
            numerator = context.score(numerator_id) or 0.0
            denominator = context.score(denominator_id) or 0.0
            inputs[numerator_id], inputs[denominator_id] = numerator, denominator
            if denominator <= 0:
                return 0.0, inputs
            return numerator / denominator * 100.0, inputs

        if definition.type == FormulaType.THRESHOLD_BASED:
            value = context.raw(definition.source)
            inputs[definition.source] = value if value is not None else 0.0
            return apply_thresholds(definition.thresholds, inputs[definition.source]), inputs

        for component in definition.components:
            value = context.raw(component.id)
            inputs[component.id] = value if value is not None else 0.0
        return CUSTOM_FORMULAS[definition.id](definition, context), inputs

    def evaluate(
        self,
        kpis: Dict[str, KpiResult],
        families: Dict[str, KpiFamilyResult],
    ) -> Tuple[Dict[str, FormulaResult], List[ProvenanceWarning]]:
        """
        Evaluate all formulas in order.

        Returns:
            (results keyed by formula id, evaluation warnings)
        """
        context = FormulaContext(kpis=kpis, families=families)
        warnings: List[ProvenanceWarning] = []

        for definition in self.formulas:
            unknown = [
                c.id for c in definition.components if context.score(c.id) is None
            ]
            if definition.source and context.raw(definition.source) is None:
                unknown.append(definition.source)
            if unknown:
                warnings.append(ProvenanceWarning(
                    kind="unknown_component",
                    subject=definition.id,
                    message=f"Formula {definition.id} references unknown ids {unknown}; treated as 0",
                    severity=Severity.INFO,
                    details={"components": unknown},
                ))

            raw, inputs = self._raw_score(definition, context)
            multiplier = self.multipliers.get(definition.id, 1.0)
            score = clamp(raw * multiplier, 0.0, 100.0)

            context.results[definition.id] = FormulaResult(
                id=definition.id,
                type=definition.type,
                score=round(score, self.precision),
                raw_score=round(raw, self.precision),
                multiplier=round(multiplier, self.precision),
                components={k: round(v, self.precision) for k, v in inputs.items()},
                status=self.status.get(definition.id, FormulaStatus.BASE),
            )

        return dict(context.results), warnings
