"""
KPI Engine — computes every registered KPI and rolls them up into families.

Each KPI is a pure function of a shared KpiInputs bundle returning a raw
value, or None when the field it needs is absent. Absent KPIs score 0 rather
than raising, so partial metadata always yields a complete result.

Family score = Σ normalized KPI × effective weight, where effective weights
are the declared weights × RuleSet multipliers, re-normalized to sum to 1.0.
"""

import logging
import math
import re
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Set, Tuple

import numpy as np

from .kpi_registry import FAMILY_DEFINITIONS, KPI_DEFINITIONS, base_family_weights, kpis_for_family
from .models import (
    AppMetadata,
    ComboSet,
    ComboType,
    Direction,
    KpiDefinition,
    KpiFamilyResult,
    KpiResult,
    MetricType,
    RuleSet,
    TextField,
    Token,
    UNCATEGORIZED_HOOK,
    UNCLASSIFIED_INTENT,
)
from .scoring_utils import apply_thresholds, clamp, safe_ratio
from .tokenizer import analyze_text, normalize_text

logger = logging.getLogger(__name__)

GAP_INTENTS = ("informational", "commercial", "transactional")
NAVIGATIONAL_INTENT = "navigational"
HIGH_VALUE_TIER = 2

_SENTENCE_END_RE = re.compile(r"[.!?]+")
_VOWEL_GROUP_RE = re.compile(r"[aeiouy]+")


# ============================================================================
# Inputs
# ============================================================================

@dataclass
class KpiInputs:
    """Everything a KPI function may read. Built once per evaluation.

    Attributes:
        metadata: Validated listing text.
        rule_set: Merged RuleSet (lexicons, char limits, categories).
        title_tokens / subtitle_tokens / description_tokens: Tokenizer output.
        combos: ComboSet with intent and hook labels applied.
        brand_tokens: Token texts treated as brand.
        hook_scores: Field-level hook scan over title + subtitle.
        intent_categories: Declared intent categories, in order.
        hook_categories: Declared hook categories, in order.
    """
    metadata: AppMetadata
    rule_set: RuleSet
    title_tokens: List[Token] = field(default_factory=list)
    subtitle_tokens: List[Token] = field(default_factory=list)
    description_tokens: List[Token] = field(default_factory=list)
    combos: ComboSet = field(default_factory=ComboSet)
    brand_tokens: Set[str] = field(default_factory=set)
    hook_scores: Dict[str, float] = field(default_factory=dict)
    intent_categories: List[str] = field(default_factory=list)
    hook_categories: List[str] = field(default_factory=list)

    @property
    def listing_tokens(self) -> List[Token]:
        return self.title_tokens + self.subtitle_tokens

    def lexicon(self, name: str) -> Set[str]:
        return set(self.rule_set.lexicon(name))


# ============================================================================
# Helpers
# ============================================================================

def high_value_keywords(tokens: List[Token]) -> List[str]:
    """Distinct non-stopword tokens of tier >= 2, first-seen order."""
    seen = OrderedDict()
    for token in tokens:
        if token.tier >= HIGH_VALUE_TIER and not token.is_stopword:
            seen.setdefault(token.text, None)
    return list(seen)


def _lexicon_count(tokens: List[Token], words: Set[str]) -> int:
    return sum(1 for t in tokens if t.text in words)


def _log_signal(count: int) -> float:
    return min(1.0, math.log(count + 1) * 0.4)


def count_syllables(word: str) -> int:
    word = word.lower()
    groups = len(_VOWEL_GROUP_RE.findall(word))
    if word.endswith("e") and not word.endswith("le") and groups > 1:
        groups -= 1
    return max(1, groups)


def flesch_reading_ease(text: str, words: List[str]) -> Optional[float]:
    """206.835 - 1.015 × words/sentence - 84.6 × syllables/word."""
    if not words:
        return None
    sentences = max(1, len([s for s in _SENTENCE_END_RE.split(text) if s.strip()]))
    syllables = sum(count_syllables(w) for w in words)
    return 206.835 - 1.015 * (len(words) / sentences) - 84.6 * (syllables / len(words))


def _hook_strength(inputs: KpiInputs, tokens: List[Token]) -> Optional[float]:
    if not tokens:
        return None
    action = _lexicon_count(tokens, inputs.lexicon("action_verbs"))
    benefit = _lexicon_count(tokens, inputs.lexicon("benefit_words"))
    density = len([t for t in tokens if t.tier >= HIGH_VALUE_TIER and not t.is_stopword]) / len(tokens)
    score = min(action * 30, 50) + min(benefit * 20, 30) + min(density * 100, 20)
    return score / 100.0


def _char_usage(inputs: KpiInputs, field: TextField) -> Optional[float]:
    text = inputs.metadata.text(field).strip()
    limit = inputs.rule_set.char_limit(field.value)
    if not text or limit <= 0:
        return None
    return len(text) / limit


def _density(tokens: List[Token]) -> Optional[float]:
    return safe_ratio(len([t for t in tokens if not t.is_stopword]), len(tokens))


def _noise(tokens: List[Token]) -> Optional[float]:
    if not tokens:
        return None
    return analyze_text(tokens).noise_ratio


def _intent_counts(inputs: KpiInputs) -> Dict[str, int]:
    counts = OrderedDict((c, 0) for c in inputs.intent_categories)
    for combo in inputs.combos.unique:
        if combo.intent and combo.intent != UNCLASSIFIED_INTENT:
            counts[combo.intent] = counts.get(combo.intent, 0) + 1
    return counts


# ============================================================================
# KPI calculators
# ============================================================================

def title_char_usage(inputs):
    return _char_usage(inputs, TextField.TITLE)


def subtitle_char_usage(inputs):
    return _char_usage(inputs, TextField.SUBTITLE)


def title_word_count(inputs):
    return len(inputs.title_tokens) if inputs.title_tokens else None


def subtitle_word_count(inputs):
    return len(inputs.subtitle_tokens) if inputs.subtitle_tokens else None


def title_token_density(inputs):
    return _density(inputs.title_tokens)


def subtitle_token_density(inputs):
    return _density(inputs.subtitle_tokens)


def title_high_value_keyword_count(inputs):
    if not inputs.title_tokens:
        return None
    return len(high_value_keywords(inputs.title_tokens))


def subtitle_high_value_incremental_keywords(inputs):
    if not inputs.subtitle_tokens:
        return None
    title = set(high_value_keywords(inputs.title_tokens))
    return len([k for k in high_value_keywords(inputs.subtitle_tokens) if k not in title])


def unique_keywords(inputs):
    if not inputs.listing_tokens:
        return None
    return len(high_value_keywords(inputs.listing_tokens))


def title_combo_coverage(inputs):
    if not inputs.title_tokens:
        return None
    return len([c for c in inputs.combos.title if c.type != ComboType.LOW_VALUE])


def subtitle_combo_coverage(inputs):
    if not inputs.subtitle_tokens:
        return None
    return len([c for c in inputs.combos.subtitle if c.type != ComboType.LOW_VALUE])


def subtitle_incremental_value(inputs):
    combos = inputs.combos.subtitle
    return safe_ratio(len([c for c in combos if c.incremental]), len(combos))


def subtitle_complementarity(inputs):
    subtitle = set(analyze_text(inputs.subtitle_tokens).keywords)
    if not subtitle:
        return None
    title = set(analyze_text(inputs.title_tokens).keywords)
    return len(subtitle - title) / len(subtitle)


def title_noise_ratio(inputs):
    return _noise(inputs.title_tokens)


def subtitle_noise_ratio(inputs):
    return _noise(inputs.subtitle_tokens)


def low_value_combo_ratio(inputs):
    combos = inputs.combos.unique
    return safe_ratio(len([c for c in combos if c.type == ComboType.LOW_VALUE]), len(combos))


def hook_strength_title(inputs):
    return _hook_strength(inputs, inputs.title_tokens)


def hook_strength_subtitle(inputs):
    return _hook_strength(inputs, inputs.subtitle_tokens)


def hook_category_coverage(inputs):
    if not inputs.hook_categories:
        return None
    present = [c for c in inputs.hook_categories if inputs.hook_scores.get(c, 0) > 0]
    return len(present) / len(inputs.hook_categories)


def hook_confidence(inputs):
    combos = inputs.combos.unique
    if not combos:
        return None
    hooked = [c.hook_confidence or 0.0 for c in combos if c.hook and c.hook != UNCATEGORIZED_HOOK]
    if not hooked:
        return 0.0
    return float(np.mean(hooked))


def brand_presence_title(inputs):
    if not inputs.title_tokens:
        return None
    return 1.0 if any(t.text in inputs.brand_tokens for t in inputs.title_tokens) else 0.0


def generic_combo_count(inputs):
    return len([c for c in inputs.combos.unique if c.type == ComboType.GENERIC])


def generic_combo_ratio(inputs):
    generic = len([c for c in inputs.combos.unique if c.type == ComboType.GENERIC])
    branded = len([c for c in inputs.combos.unique if c.type == ComboType.BRANDED])
    return safe_ratio(generic, generic + branded)


def overbranding_indicator(inputs):
    valued = [c for c in inputs.combos.unique if c.type != ComboType.LOW_VALUE]
    return safe_ratio(len([c for c in valued if c.type == ComboType.BRANDED]), len(valued))


def urgency_signal(inputs):
    if not inputs.listing_tokens:
        return None
    return _log_signal(_lexicon_count(inputs.listing_tokens, inputs.lexicon("urgency_words")))


def social_proof_signal(inputs):
    if not inputs.listing_tokens:
        return None
    return _log_signal(_lexicon_count(inputs.listing_tokens, inputs.lexicon("social_proof_words")))


def benefit_density(inputs):
    tokens = inputs.listing_tokens
    return safe_ratio(_lexicon_count(tokens, inputs.lexicon("benefit_words")), len(tokens))


def action_verb_density(inputs):
    tokens = inputs.listing_tokens
    return safe_ratio(_lexicon_count(tokens, inputs.lexicon("action_verbs")), len(tokens))


def redundancy_penalty(inputs):
    keywords = analyze_text(inputs.listing_tokens).keywords
    if not keywords:
        return None
    return (len(keywords) - len(set(keywords))) / len(keywords)


def informational_intent_coverage(inputs):
    return _intent_counts(inputs).get("informational", 0)


def commercial_intent_coverage(inputs):
    return _intent_counts(inputs).get("commercial", 0)


def transactional_intent_coverage(inputs):
    return _intent_counts(inputs).get("transactional", 0)


def navigational_noise_ratio(inputs):
    counts = _intent_counts(inputs)
    return safe_ratio(counts.get(NAVIGATIONAL_INTENT, 0), sum(counts.values()))


def intent_balance_score(inputs):
    counts = np.array(list(_intent_counts(inputs).values()), dtype=float)
    if len(counts) < 2 or counts.sum() == 0:
        return None
    probabilities = counts[counts > 0] / counts.sum()
    entropy = float(-np.sum(probabilities * np.log(probabilities)))
    return entropy / math.log(len(counts))


def intent_diversity_score(inputs):
    counts = _intent_counts(inputs)
    if not inputs.intent_categories:
        return None
    present = [c for c in inputs.intent_categories if counts.get(c, 0) > 0]
    return len(present) / len(inputs.intent_categories)


def intent_gap_index(inputs):
    counts = _intent_counts(inputs)
    missing = [c for c in GAP_INTENTS if counts.get(c, 0) == 0]
    return len(missing) / len(GAP_INTENTS)


def _first_sentence_tokens(inputs: KpiInputs) -> List[Token]:
    text = normalize_text(inputs.metadata.description)
    match = _SENTENCE_END_RE.search(text)
    cutoff = match.start() if match else len(text)
    return [t for t in inputs.description_tokens if t.end <= cutoff]


def description_hook_strength(inputs):
    if not inputs.description_tokens:
        return None
    opening = _first_sentence_tokens(inputs)
    words = inputs.lexicon("description_hook_words") | inputs.lexicon("action_verbs")
    return _lexicon_count(opening, words)


def description_feature_mentions(inputs):
    if not inputs.description_tokens:
        return None
    return _lexicon_count(inputs.description_tokens, inputs.lexicon("feature_words"))


def description_cta_strength(inputs):
    if not inputs.description_tokens:
        return None
    return _lexicon_count(inputs.description_tokens, inputs.lexicon("cta_verbs"))


def description_readability(inputs):
    words = [t.text for t in inputs.description_tokens]
    score = flesch_reading_ease(normalize_text(inputs.metadata.description), words)
    if score is None:
        return None
    return clamp(score, 0.0, 100.0) / 100.0


KPI_CALCULATORS: Dict[str, Callable[[KpiInputs], Optional[float]]] = {
    "title_char_usage": title_char_usage,
    "subtitle_char_usage": subtitle_char_usage,
    "title_word_count": title_word_count,
    "subtitle_word_count": subtitle_word_count,
    "title_token_density": title_token_density,
    "subtitle_token_density": subtitle_token_density,
    "title_high_value_keyword_count": title_high_value_keyword_count,
    "subtitle_high_value_incremental_keywords": subtitle_high_value_incremental_keywords,
    "unique_keywords": unique_keywords,
    "title_combo_coverage": title_combo_coverage,
    "subtitle_combo_coverage": subtitle_combo_coverage,
    "subtitle_incremental_value": subtitle_incremental_value,
    "subtitle_complementarity": subtitle_complementarity,
    "title_noise_ratio": title_noise_ratio,
    "subtitle_noise_ratio": subtitle_noise_ratio,
    "low_value_combo_ratio": low_value_combo_ratio,
    "hook_strength_title": hook_strength_title,
    "hook_strength_subtitle": hook_strength_subtitle,
    "hook_category_coverage": hook_category_coverage,
    "hook_confidence": hook_confidence,
    "brand_presence_title": brand_presence_title,
    "generic_combo_count": generic_combo_count,
    "generic_combo_ratio": generic_combo_ratio,
    "overbranding_indicator": overbranding_indicator,
    "urgency_signal": urgency_signal,
    "social_proof_signal": social_proof_signal,
    "benefit_density": benefit_density,
    "action_verb_density": action_verb_density,
    "redundancy_penalty": redundancy_penalty,
    "informational_intent_coverage": informational_intent_coverage,
    "commercial_intent_coverage": commercial_intent_coverage,
    "transactional_intent_coverage": transactional_intent_coverage,
    "navigational_noise_ratio": navigational_noise_ratio,
    "intent_balance_score": intent_balance_score,
    "intent_diversity_score": intent_diversity_score,
    "intent_gap_index": intent_gap_index,
    "description_hook_strength": description_hook_strength,
    "description_feature_mentions": description_feature_mentions,
    "description_cta_strength": description_cta_strength,
    "description_readability": description_readability,
}


# ============================================================================
# Normalization + weights
# ============================================================================

def normalize_kpi(definition: KpiDefinition, value: Optional[float]) -> float:
    """
    Map a raw value into 0-1 according to the definition.

    Ratio and count KPIs are divided by `ceiling`; threshold KPIs use their
    threshold steps. lower_is_better KPIs are inverted. An absent value
    (None) is always 0.
    """
    if value is None:
        return 0.0

    if definition.metric_type == MetricType.THRESHOLD:
        normalized = apply_thresholds(definition.thresholds, value)
    else:
        normalized = value / definition.ceiling

    normalized = clamp(normalized)
    if definition.direction == Direction.LOWER_IS_BETTER:
        normalized = 1.0 - normalized
    return normalized


def effective_kpi_weights(multipliers: Optional[Mapping[str, float]] = None) -> Dict[str, Dict[str, float]]:
    """
    Declared KPI weights × multipliers, re-normalized per family to sum to 1.0.

    A family whose adjusted weights sum to zero falls back to equal weights.
    """
    multipliers = multipliers or {}
    result: Dict[str, Dict[str, float]] = OrderedDict()

    for family in FAMILY_DEFINITIONS:
        kpis = kpis_for_family(family.id)
        if not kpis:
            result[family.id] = OrderedDict()
            continue

        raw = np.array([k.weight * multipliers.get(k.id, 1.0) for k in kpis], dtype=float)
        total = raw.sum()
        if total <= 0:
            raw = np.ones(len(kpis))
            total = raw.sum()
        normalized = raw / total
        result[family.id] = OrderedDict((k.id, float(w)) for k, w in zip(kpis, normalized))

    return result


class KpiEngine:
    """Evaluates every registered KPI for one listing."""

    def __init__(self, rule_set: RuleSet, precision: int = 4):
        self.rule_set = rule_set
        self.precision = precision
        self.kpi_weights = rule_set.kpi_weights or effective_kpi_weights(rule_set.kpi_weight_multipliers)
        self.family_weights = rule_set.kpi_family_weights or base_family_weights()

    def _round(self, value: float) -> float:
        return round(float(value), self.precision)

    def evaluate_kpi(self, definition: KpiDefinition, inputs: KpiInputs) -> KpiResult:
        calculator = KPI_CALCULATORS[definition.id]
        value = calculator(inputs)
        normalized = normalize_kpi(definition, value)
        weight = self.kpi_weights.get(definition.family_id, {}).get(definition.id, 0.0)

        return KpiResult(
            id=definition.id,
            family_id=definition.family_id,
            value=self._round(value if value is not None else 0.0),
            normalized=self._round(normalized),
            score=self._round(normalized * 100.0),
            weight=self._round(weight),
            available=value is not None,
        )

    def evaluate(self, inputs: KpiInputs) -> Tuple[Dict[str, KpiResult], Dict[str, KpiFamilyResult]]:
        """
        Compute all KPIs and family scores.

        Returns:
            (kpis, families), both keyed by id in registry order
        """
        kpis: Dict[str, KpiResult] = OrderedDict()
        for definition in KPI_DEFINITIONS:
            kpis[definition.id] = self.evaluate_kpi(definition, inputs)

        families: Dict[str, KpiFamilyResult] = OrderedDict()
        for family in FAMILY_DEFINITIONS:
            weights = self.kpi_weights.get(family.id, {})
            normalized = sum(kpis[kpi_id].normalized * w for kpi_id, w in weights.items() if kpi_id in kpis)
            normalized = clamp(normalized)
            families[family.id] = KpiFamilyResult(
                id=family.id,
                label=family.label,
                weight=self._round(self.family_weights.get(family.id, 0.0)),
                normalized=self._round(normalized),
                score=self._round(normalized * 100.0),
                kpi_ids=list(weights),
            )

        available = sum(1 for k in kpis.values() if k.available)
        logger.debug(f"Computed {len(kpis)} KPIs ({available} with input), {len(families)} families")
        return kpis, families
