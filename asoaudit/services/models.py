"""
Pydantic models for the asoaudit scoring engine.

These models provide type-safe, validated data structures for:
- Listing input (AppMetadata)
- Text analysis (Token, Combo, ComboSet)
- Scoring definitions (KpiDefinition, KpiFamilyDefinition, FormulaDefinition)
- Rule layering (PatternRule, RecommendationTemplate, RuleSetLayer, RuleSet)
- Results (KpiResult, KpiFamilyResult, FormulaResult, Recommendation, AuditResult)

All models use Pydantic v2. Value objects are frozen; results are built once per
evaluate() call and never mutated afterwards.
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator


# ============================================================================
# Enums
# ============================================================================

class TextField(str, Enum):
    """Listing text field a token or combo came from."""
    TITLE = "title"
    SUBTITLE = "subtitle"
    DESCRIPTION = "description"


class ComboType(str, Enum):
    BRANDED = "branded"
    GENERIC = "generic"
    LOW_VALUE = "low_value"


class MetricType(str, Enum):
    RATIO = "ratio"
    COUNT = "count"
    THRESHOLD = "threshold"


class Direction(str, Enum):
    HIGHER_IS_BETTER = "higher_is_better"
    LOWER_IS_BETTER = "lower_is_better"


class FormulaType(str, Enum):
    WEIGHTED_SUM = "weighted_sum"
    RATIO = "ratio"
    THRESHOLD_BASED = "threshold_based"
    CUSTOM = "custom"


class LayerScope(str, Enum):
    """Rule layers in ascending precedence."""
    GLOBAL = "global"
    VERTICAL = "vertical"
    MARKET = "market"
    CLIENT = "client"


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class FormulaStatus(str, Enum):
    BASE = "base"
    OVERRIDDEN = "overridden"
    FALLBACK = "fallback"


UNCLASSIFIED_INTENT = "unclassified"
UNCATEGORIZED_HOOK = "uncategorized"

COMPARISON_OPERATORS = ("<", "<=", ">", ">=", "==", "!=")


# ============================================================================
# Input
# ============================================================================

class AppMetadata(BaseModel):
    """
    Normalized listing text for one app.

    Supplied by a scraping collaborator; the engine never fetches or parses
    HTML. Strict mode keeps a numeric or bytes title from being coerced.
    """
    model_config = ConfigDict(strict=True, frozen=True, extra="ignore")

    title: str = Field(..., description="App title as shown in the store")
    subtitle: Optional[str] = Field(None, description="Subtitle / short description")
    description: Optional[str] = Field(None, description="Long description")
    locale: str = Field(default="en-US", description="Store locale, e.g. en-US")
    category: Optional[str] = Field(None, description="Store category, e.g. Education")
    app_name: Optional[str] = Field(None, description="Brand name, defaults to the title's brand segment")

    def text(self, field: TextField) -> str:
        return getattr(self, field.value) or ""

    def has(self, field: str) -> bool:
        value = getattr(self, field, None)
        return bool(value and value.strip())


# ============================================================================
# Text analysis
# ============================================================================

class Token(BaseModel):
    """Normalized lowercase token with its source field and relevance tier."""
    model_config = ConfigDict(frozen=True)

    text: str
    field: TextField
    position: int = Field(..., ge=0, description="Index within the field's token sequence")
    start: int = Field(..., ge=0, description="Character offset in the normalized field text")
    end: int = Field(..., ge=0)
    tier: int = Field(default=1, ge=0, le=3, description="0 = noise, 3 = highest value")
    is_stopword: bool = False


class Combo(BaseModel):
    """Contiguous token phrase extracted from the title or subtitle."""
    model_config = ConfigDict(frozen=True)

    text: str
    tokens: Tuple[str, ...]
    field: TextField
    span: Tuple[int, int] = Field(..., description="Character span (start, end) in the field text")
    position: int = Field(..., ge=0, description="Index of the first token")
    length: int = Field(..., ge=1)
    incremental: bool = Field(default=False, description="Subtitle phrase not already in the title")
    type: ComboType = ComboType.GENERIC
    relevance: float = Field(default=0.0, description="Average tier of the combo's non-stopword tokens")

    intent: Optional[str] = None
    intent_confidence: Optional[float] = None
    hook: Optional[str] = None
    hook_confidence: Optional[float] = None


class ComboSet(BaseModel):
    """Per-field combos plus the cross-field deduplicated set (title wins)."""
    model_config = ConfigDict(frozen=True)

    title: List[Combo] = Field(default_factory=list)
    subtitle: List[Combo] = Field(default_factory=list)
    unique: List[Combo] = Field(default_factory=list)

    def get(self, text: str) -> Optional[Combo]:
        for combo in self.unique:
            if combo.text == text:
                return combo
        return None

    def with_labels(self, labels: Dict[str, Dict[str, Any]]) -> "ComboSet":
        """Return a copy whose combos carry the classification labels keyed by text."""
        def _label(combos: List[Combo]) -> List[Combo]:
            return [c.model_copy(update=labels.get(c.text, {})) for c in combos]

        return ComboSet(
            title=_label(self.title),
            subtitle=_label(self.subtitle),
            unique=_label(self.unique),
        )


# ============================================================================
# Scoring definitions
# ============================================================================

class Threshold(BaseModel):
    """One `<operator> <value> -> score` step; steps are checked in order."""
    model_config = ConfigDict(frozen=True)

    operator: str
    value: float
    score: float
    label: Optional[str] = None

    @field_validator('operator')
    @classmethod
    def validate_operator(cls, v):
        if v not in COMPARISON_OPERATORS:
            raise ValueError(f"operator must be one of {COMPARISON_OPERATORS}")
        return v


class KpiFamilyDefinition(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    weight: float = Field(..., ge=0.0, le=1.0)
    description: str = ""


class KpiDefinition(BaseModel):
    """
    Declared KPI.

    `ceiling` scales ratio and count values into 0-1; threshold KPIs map the
    raw value through `thresholds`. Label and bounds are descriptive only.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    family_id: str
    weight: float = Field(..., ge=0.0, le=1.0)
    metric_type: MetricType = MetricType.RATIO
    direction: Direction = Direction.HIGHER_IS_BETTER
    ceiling: float = Field(default=1.0, gt=0.0)
    thresholds: Tuple[Threshold, ...] = ()
    label: str = ""
    min_value: float = 0.0
    max_value: Optional[float] = None
    description: str = ""


class FormulaComponent(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    weight: float = 1.0


class FormulaDefinition(BaseModel):
    """
    Declared formula.

    weighted_sum: Σ component score × weight (weights must sum to 1.0).
    ratio: first component / second component × 100.
    threshold_based: raw value of `source` mapped through `thresholds`.
    custom: named function looked up by formula id.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    label: str = ""
    type: FormulaType
    components: Tuple[FormulaComponent, ...] = ()
    thresholds: Tuple[Threshold, ...] = ()
    source: Optional[str] = None
    description: str = ""

    def component_weights(self) -> Dict[str, float]:
        return {c.id: c.weight for c in self.components}


# ============================================================================
# Rule layers
# ============================================================================

class PatternRule(BaseModel):
    """Literal phrase (word-bounded) or regex with a weight."""
    model_config = ConfigDict(frozen=True)

    pattern: str
    weight: float = Field(default=1.0, ge=0.0)
    regex: bool = False


class RecommendationTemplate(BaseModel):
    """
    Data-driven recommendation.

    The trigger is a declarative predicate, e.g.
    {"kpi": "title_char_usage", "op": "<", "value": 0.7}; see
    recommendation_engine for the full vocabulary.
    """
    model_config = ConfigDict(frozen=True)

    id: str
    message: str
    severity: Severity = Severity.INFO
    trigger: Dict[str, Any]
    category: str = "general"
    field: Optional[str] = None
    impact_weight: float = Field(default=1.0, ge=0.0)
    enabled: bool = True

    @field_validator('trigger')
    @classmethod
    def validate_trigger(cls, v):
        _check_trigger(v)
        return v


TRIGGER_KEYS = ("kpi", "formula", "missing_field", "present_field", "hook_missing",
                "lexicon_absent", "all", "any")
TRIGGER_ON_VALUES = ("value", "normalized", "score")


def _check_trigger(trigger: Any) -> None:
    if not isinstance(trigger, dict) or not trigger:
        raise ValueError("trigger must be a non-empty mapping")

    kinds = [k for k in TRIGGER_KEYS if k in trigger]
    if len(kinds) != 1:
        raise ValueError(f"trigger must have exactly one of {TRIGGER_KEYS}")
    kind = kinds[0]

    if kind in ("all", "any"):
        children = trigger[kind]
        if not isinstance(children, list) or not children:
            raise ValueError(f"'{kind}' trigger needs a non-empty list")
        for child in children:
            _check_trigger(child)
        return

    if not isinstance(trigger[kind], str) or not trigger[kind]:
        raise ValueError(f"'{kind}' trigger needs a string id")

    if kind in ("kpi", "formula"):
        if trigger.get("op") not in COMPARISON_OPERATORS:
            raise ValueError(f"'{kind}' trigger needs op in {COMPARISON_OPERATORS}")
        value = trigger.get("value")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValueError(f"'{kind}' trigger needs a numeric value")
        if trigger.get("on", "value") not in TRIGGER_ON_VALUES:
            raise ValueError(f"'on' must be one of {TRIGGER_ON_VALUES}")


class ProvenanceWarning(BaseModel):
    """Recoverable condition recorded during rule merging or evaluation."""
    model_config = ConfigDict(frozen=True)

    kind: str = Field(..., description="e.g. weight_drift, invalid_override, unknown_vertical")
    layer: Optional[str] = Field(None, description="Scope of the layer involved")
    subject: Optional[str] = Field(None, description="Family / KPI / formula / key id")
    message: str
    severity: Severity = Severity.WARNING
    details: Dict[str, Any] = Field(default_factory=dict)


class RuleSetLayer(BaseModel):
    """One normalized, immutable rule fragment (global, vertical, market or client)."""
    model_config = ConfigDict(frozen=True)

    scope: LayerScope
    id: str
    label: str = ""

    token_relevance: Dict[str, int] = Field(default_factory=dict)
    intent_patterns: Dict[str, List[PatternRule]] = Field(default_factory=dict)
    hook_patterns: Dict[str, List[PatternRule]] = Field(default_factory=dict)
    hook_multipliers: Dict[str, float] = Field(default_factory=dict)
    kpi_weight_multipliers: Dict[str, float] = Field(default_factory=dict)
    kpi_family_weights: Dict[str, float] = Field(default_factory=dict)
    formula_multipliers: Dict[str, float] = Field(default_factory=dict)
    formula_component_weights: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    recommendation_templates: Dict[str, Dict[str, Any]] = Field(default_factory=dict)
    stopwords: List[str] = Field(default_factory=list)
    char_limits: Dict[str, int] = Field(default_factory=dict)
    lexicons: Dict[str, List[str]] = Field(default_factory=dict)
    low_value_patterns: List[str] = Field(default_factory=list)
    brand_terms: List[str] = Field(default_factory=list)
    intentional: List[str] = Field(default_factory=list)

    @property
    def key(self) -> str:
        return f"{self.scope.value}:{self.id}"


class RuleSet(BaseModel):
    """
    Fully merged, effective configuration for one evaluation.

    Read-only snapshot passed by reference into every stage. Safe to cache by
    (vertical, market, client id); evaluation results do not depend on
    whether the instance is fresh or cached.
    """
    model_config = ConfigDict(frozen=True)

    vertical_id: Optional[str] = None
    market_id: Optional[str] = None
    client_id: Optional[str] = None
    layers: List[str] = Field(default_factory=list)

    token_relevance: Dict[str, int] = Field(default_factory=dict)
    token_relevance_sources: Dict[str, str] = Field(default_factory=dict)
    stopwords: List[str] = Field(default_factory=list)
    intent_patterns: Dict[str, List[PatternRule]] = Field(default_factory=dict)
    hook_patterns: Dict[str, List[PatternRule]] = Field(default_factory=dict)
    hook_multipliers: Dict[str, float] = Field(default_factory=dict)
    kpi_weight_multipliers: Dict[str, float] = Field(default_factory=dict)
    kpi_family_weights: Dict[str, float] = Field(default_factory=dict)
    kpi_weights: Dict[str, Dict[str, float]] = Field(
        default_factory=dict, description="Effective per-family KPI weights after multipliers"
    )
    formula_multipliers: Dict[str, float] = Field(default_factory=dict)
    formula_component_weights: Dict[str, Dict[str, float]] = Field(default_factory=dict)
    formula_status: Dict[str, FormulaStatus] = Field(default_factory=dict)
    recommendation_templates: List[RecommendationTemplate] = Field(default_factory=list)
    char_limits: Dict[str, int] = Field(default_factory=dict)
    lexicons: Dict[str, List[str]] = Field(default_factory=dict)
    low_value_patterns: List[str] = Field(default_factory=list)
    brand_terms: List[str] = Field(default_factory=list)
    warnings: List[ProvenanceWarning] = Field(default_factory=list)

    def lexicon(self, name: str) -> List[str]:
        return self.lexicons.get(name, [])

    def char_limit(self, field: str) -> int:
        return self.char_limits.get(field, 0)


# ============================================================================
# Results
# ============================================================================

class KpiResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    family_id: str
    value: float = Field(..., description="Raw metric value")
    normalized: float = Field(..., ge=0.0, le=1.0)
    score: float = Field(..., ge=0.0, le=100.0)
    weight: float = Field(..., description="Effective weight within the family")
    available: bool = Field(default=True, description="False when the input field was absent")


class KpiFamilyResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    label: str
    weight: float
    normalized: float
    score: float
    kpi_ids: List[str] = Field(default_factory=list)


class FormulaResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    type: FormulaType
    score: float = Field(..., ge=0.0, le=100.0)
    raw_score: float
    multiplier: float = 1.0
    components: Dict[str, float] = Field(default_factory=dict)
    status: FormulaStatus = FormulaStatus.BASE


class Recommendation(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    severity: Severity
    message: str
    impact: float = Field(..., description="Estimated score impact (impact_weight × gap)")
    category: str = "general"
    field: Optional[str] = None


class Provenance(BaseModel):
    model_config = ConfigDict(frozen=True)

    vertical_id: Optional[str] = None
    market_id: Optional[str] = None
    client_id: Optional[str] = None
    layers: List[str] = Field(default_factory=list)
    formula_status: Dict[str, FormulaStatus] = Field(default_factory=dict)
    warnings: List[ProvenanceWarning] = Field(default_factory=list)


class AuditResult(BaseModel):
    """
    Complete, immutable outcome of one evaluate() call.

    Serializes with model_dump()/model_dump_json(); identical inputs produce
    identical JSON bytes.
    """
    model_config = ConfigDict(frozen=True)

    title_element_score: float = Field(..., ge=0.0, le=100.0)
    subtitle_element_score: float = Field(..., ge=0.0, le=100.0)
    overall_score: float = Field(..., ge=0.0, le=100.0)
    kpis: Dict[str, KpiResult] = Field(default_factory=dict)
    families: Dict[str, KpiFamilyResult] = Field(default_factory=dict)
    formulas: Dict[str, FormulaResult] = Field(default_factory=dict)
    recommendations: List[Recommendation] = Field(default_factory=list)
    combos: ComboSet = Field(default_factory=ComboSet)
    keyword_coverage: Dict[str, List[str]] = Field(default_factory=dict)
    intent_distribution: Dict[str, int] = Field(default_factory=dict)
    hook_coverage: Dict[str, float] = Field(default_factory=dict)
    provenance: Provenance = Field(default_factory=Provenance)
