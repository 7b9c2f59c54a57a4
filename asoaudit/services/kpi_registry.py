"""
KPI and KPI family definitions.

Family weights sum to 1.0 and KPI weights within each family sum to 1.0.
conversion_quality carries weight 0: its description KPIs are reported but do
not move the KPI overall score.
"""

from collections import OrderedDict
from typing import Dict, List

from .models import Direction, KpiDefinition, KpiFamilyDefinition, MetricType, Threshold


# ============================================================================
# Families
# ============================================================================

FAMILY_DEFINITIONS: List[KpiFamilyDefinition] = [
    KpiFamilyDefinition(
        id="clarity_structure", label="Clarity & Structure", weight=0.20,
        description="How well the title and subtitle use their character budget",
    ),
    KpiFamilyDefinition(
        id="keyword_architecture", label="Keyword Architecture", weight=0.25,
        description="High-value keywords and searchable phrase coverage",
    ),
    KpiFamilyDefinition(
        id="hook_strength", label="Hook Strength", weight=0.15,
        description="Action verbs, benefits and psychological hooks",
    ),
    KpiFamilyDefinition(
        id="brand_balance", label="Brand vs Generic Balance", weight=0.10,
        description="Share of discoverable generic phrases versus brand phrases",
    ),
    KpiFamilyDefinition(
        id="psychology_alignment", label="Psychology Alignment", weight=0.10,
        description="Urgency, social proof and benefit language",
    ),
    KpiFamilyDefinition(
        id="intent_alignment", label="Intent Alignment", weight=0.20,
        description="Coverage and balance of search intents",
    ),
    KpiFamilyDefinition(
        id="conversion_quality", label="Description Conversion", weight=0.0,
        description="Description hook, features, call to action and readability",
    ),
]


def _ratio(id, family_id, weight, label, direction=Direction.HIGHER_IS_BETTER, ceiling=1.0, **extra):
    return KpiDefinition(
        id=id, family_id=family_id, weight=weight, metric_type=MetricType.RATIO,
        direction=direction, ceiling=ceiling, label=label, max_value=1.0, **extra,
    )


def _count(id, family_id, weight, label, ceiling, direction=Direction.HIGHER_IS_BETTER, **extra):
    return KpiDefinition(
        id=id, family_id=family_id, weight=weight, metric_type=MetricType.COUNT,
        direction=direction, ceiling=ceiling, label=label, **extra,
    )


LOWER = Direction.LOWER_IS_BETTER


# ============================================================================
# KPIs
# ============================================================================

KPI_DEFINITIONS: List[KpiDefinition] = [
    # Clarity & Structure
    _ratio("title_char_usage", "clarity_structure", 0.25, "Title character usage",
           description="Characters used / title limit, capped at 1.0"),
    _ratio("subtitle_char_usage", "clarity_structure", 0.20, "Subtitle character usage",
           description="Characters used / subtitle limit, capped at 1.0"),
    KpiDefinition(
        id="title_word_count", family_id="clarity_structure", weight=0.15,
        metric_type=MetricType.THRESHOLD, label="Title word count",
        thresholds=(
            Threshold(operator=">", value=6, score=0.6, label="crowded"),
            Threshold(operator=">=", value=3, score=1.0, label="ideal"),
            Threshold(operator=">=", value=2, score=0.6, label="short"),
            Threshold(operator=">=", value=1, score=0.3, label="single word"),
        ),
        description="Three to six words reads best in search results",
    ),
    _count("subtitle_word_count", "clarity_structure", 0.10, "Subtitle word count", ceiling=4),
    _ratio("title_token_density", "clarity_structure", 0.15, "Title token density",
           description="Non-stopword tokens / all title tokens"),
    _ratio("subtitle_token_density", "clarity_structure", 0.15, "Subtitle token density"),

    # Keyword Architecture
    _count("title_high_value_keyword_count", "keyword_architecture", 0.15,
           "High-value title keywords", ceiling=3,
           description="Distinct tier >= 2 title tokens"),
    _count("subtitle_high_value_incremental_keywords", "keyword_architecture", 0.15,
           "New high-value subtitle keywords", ceiling=3,
           description="Distinct tier >= 2 subtitle tokens not in the title"),
    _count("unique_keywords", "keyword_architecture", 0.10, "Unique high-value keywords", ceiling=6,
           description="Distinct tier >= 2 tokens across title and subtitle"),
    _count("title_combo_coverage", "keyword_architecture", 0.15, "Title combo coverage", ceiling=5,
           description="Non-low-value combos in the title"),
    _count("subtitle_combo_coverage", "keyword_architecture", 0.10, "Subtitle combo coverage", ceiling=5),
    _ratio("subtitle_incremental_value", "keyword_architecture", 0.15, "Subtitle incremental value",
           description="Incremental subtitle combos / all subtitle combos"),
    _ratio("subtitle_complementarity", "keyword_architecture", 0.05, "Subtitle complementarity",
           description="Share of subtitle keywords that do not repeat title keywords"),
    _ratio("title_noise_ratio", "keyword_architecture", 0.05, "Title noise ratio", direction=LOWER),
    _ratio("subtitle_noise_ratio", "keyword_architecture", 0.05, "Subtitle noise ratio", direction=LOWER),
    _ratio("low_value_combo_ratio", "keyword_architecture", 0.05, "Low-value combo ratio", direction=LOWER),

    # Hook Strength
    _ratio("hook_strength_title", "hook_strength", 0.35, "Title hook strength",
           description="Action verbs, benefit words and keyword density"),
    _ratio("hook_strength_subtitle", "hook_strength", 0.25, "Subtitle hook strength"),
    _ratio("hook_category_coverage", "hook_strength", 0.25, "Hook category coverage",
           description="Hook categories present / hook categories declared"),
    _ratio("hook_confidence", "hook_strength", 0.15, "Hook confidence",
           description="Mean confidence of hooked combos"),

    # Brand Balance
    _ratio("brand_presence_title", "brand_balance", 0.15, "Brand present in title"),
    _count("generic_combo_count", "brand_balance", 0.25, "Generic combos", ceiling=5),
    _ratio("generic_combo_ratio", "brand_balance", 0.35, "Generic combo ratio",
           description="Generic / (generic + branded) combos"),
    _ratio("overbranding_indicator", "brand_balance", 0.25, "Overbranding", direction=LOWER,
           description="Branded combos / non-low-value combos"),

    # Psychology Alignment
    _ratio("urgency_signal", "psychology_alignment", 0.20, "Urgency signal"),
    _ratio("social_proof_signal", "psychology_alignment", 0.20, "Social proof signal"),
    _ratio("benefit_density", "psychology_alignment", 0.25, "Benefit word density", ceiling=0.25),
    _ratio("action_verb_density", "psychology_alignment", 0.20, "Action verb density", ceiling=0.25),
    _ratio("redundancy_penalty", "psychology_alignment", 0.15, "Keyword repetition", direction=LOWER,
           description="Repeated keywords / all keywords across title and subtitle"),

    # Intent Alignment
    _count("informational_intent_coverage", "intent_alignment", 0.20, "Informational combos", ceiling=2),
    _count("commercial_intent_coverage", "intent_alignment", 0.15, "Commercial combos", ceiling=2),
    _count("transactional_intent_coverage", "intent_alignment", 0.10, "Transactional combos", ceiling=2),
    _ratio("navigational_noise_ratio", "intent_alignment", 0.10, "Navigational noise", direction=LOWER),
    _ratio("intent_balance_score", "intent_alignment", 0.20, "Intent balance",
           description="Normalized Shannon entropy of the intent distribution"),
    _ratio("intent_diversity_score", "intent_alignment", 0.10, "Intent diversity",
           description="Intent categories present / declared"),
    _ratio("intent_gap_index", "intent_alignment", 0.15, "Intent gap", direction=LOWER,
           description="Missing informational/commercial/transactional intents / 3"),

    # Conversion Quality (description)
    _count("description_hook_strength", "conversion_quality", 0.30, "Description opening hook", ceiling=2),
    _count("description_feature_mentions", "conversion_quality", 0.25, "Feature mentions", ceiling=5),
    _count("description_cta_strength", "conversion_quality", 0.20, "Call to action", ceiling=2),
    _ratio("description_readability", "conversion_quality", 0.25, "Readability",
           description="Flesch reading ease / 100"),
]


KPIS_BY_ID: Dict[str, KpiDefinition] = OrderedDict((k.id, k) for k in KPI_DEFINITIONS)
FAMILIES_BY_ID: Dict[str, KpiFamilyDefinition] = OrderedDict((f.id, f) for f in FAMILY_DEFINITIONS)


def kpis_for_family(family_id: str) -> List[KpiDefinition]:
    return [k for k in KPI_DEFINITIONS if k.family_id == family_id]


def base_family_weights() -> Dict[str, float]:
    return OrderedDict((f.id, f.weight) for f in FAMILY_DEFINITIONS)
