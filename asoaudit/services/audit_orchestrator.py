"""
Audit Orchestrator — entry point of the metadata scoring engine.

Wires tokenizer → combo extraction → intent/hook classification → KPIs →
formulas → recommendations for one listing and returns an immutable
AuditResult.

Usage:
    from asoaudit import evaluate

    result = evaluate(
        {"title": "Duolingo: Language Lessons", "subtitle": "Learn Spanish, French & more",
         "category": "Education", "locale": "en-US"},
        vertical="language_learning",
        market="us",
    )
    print(result.overall_score)

evaluate() is pure and synchronous: no I/O, no shared mutable state, and two
calls with identical inputs serialize to identical JSON.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, Mapping, Optional, Union

from pydantic import ValidationError

from ..core.config import EngineSettings
from ..core.exceptions import MalformedInputError
from .combo_extractor import detect_brand_tokens, extract_combos
from .formula_registry import FormulaRegistry
from .hook_classifier import HookClassifier
from .intent_classifier import IntentClassifier
from .kpi_engine import KpiEngine, KpiInputs, high_value_keywords
from .models import AppMetadata, AuditResult, ComboSet, Provenance, RuleSet, TextField
from .recommendation_engine import RecommendationContext, RecommendationEngine
from .ruleset_loader import RuleLibrary, RuleSetLoader, default_rule_library
from .token_relevance import TokenRelevanceClassifier
from .tokenizer import analyze_text, normalize_text, tokenize

logger = logging.getLogger(__name__)


def validate_metadata(metadata: Any) -> AppMetadata:
    """
    Coerce a metadata record into AppMetadata or fail fast.

    Raises:
        MalformedInputError: not a mapping/AppMetadata, title missing or not a
            string, or an optional text field present but not a string
    """
    if isinstance(metadata, AppMetadata):
        return metadata
    if not isinstance(metadata, Mapping):
        raise MalformedInputError(
            f"metadata must be a mapping or AppMetadata, got {type(metadata).__name__}"
        )
    try:
        return AppMetadata.model_validate(dict(metadata))
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(p) for p in first.get("loc", ())) or None
        raise MalformedInputError(f"Malformed metadata: {field}: {first['msg']}", field=field) from e


def _check_optional_str(name: str, value: Any) -> None:
    if value is not None and not isinstance(value, str):
        raise MalformedInputError(f"{name} must be a string or None, got {type(value).__name__}", field=name)


def _brand_name(metadata: AppMetadata) -> str:
    if metadata.app_name:
        return metadata.app_name
    for separator in (":", " - ", "|", "–", "—"):
        if separator in metadata.title:
            return metadata.title.split(separator, 1)[0].strip()
    return metadata.title.strip()


class AuditOrchestrator:
    """
    Runs the scoring pipeline for one listing at a time.

    Holds only read-only configuration (rule library and settings), so a
    single instance can serve concurrent callers.
    """

    def __init__(self, library: Optional[RuleLibrary] = None, settings: Optional[EngineSettings] = None):
        self.library = library or default_rule_library()
        self.settings = settings or EngineSettings()
        self.loader = RuleSetLoader(self.library, drift_threshold=self.settings.drift_threshold)

    def resolve_rule_set(
        self,
        metadata: AppMetadata,
        vertical: Optional[str] = None,
        market: Optional[str] = None,
        client_overrides: Optional[Mapping[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> RuleSet:
        """Build the RuleSet for a listing, detecting vertical/market when not given."""
        if vertical is None and self.settings.auto_detect_layers:
            vertical = self.library.detect_vertical(metadata.category)
        if market is None and self.settings.auto_detect_layers:
            market = self.library.detect_market(metadata.locale)

        return self.loader.load(
            vertical=vertical,
            market=market,
            client_overrides=client_overrides,
            client_id=client_id,
            category=metadata.category,
        )

    def evaluate(
        self,
        metadata: Union[AppMetadata, Mapping[str, Any]],
        vertical: Optional[str] = None,
        market: Optional[str] = None,
        client_overrides: Optional[Mapping[str, Any]] = None,
        client_id: Optional[str] = None,
    ) -> AuditResult:
        """
        Score a listing.

        Args:
            metadata: {title, subtitle?, description?, locale, category?} or AppMetadata
            vertical: Vertical id from an upstream classifier (None = detect from category)
            market: Market id (None = detect from locale)
            client_overrides: Partial rule document for this app
            client_id: Identifier recorded in provenance for the client layer

        Returns:
            AuditResult

        Raises:
            MalformedInputError: only for malformed arguments, before any work
        """
        app = validate_metadata(metadata)
        _check_optional_str("vertical", vertical)
        _check_optional_str("market", market)
        _check_optional_str("client_id", client_id)
        if client_overrides is not None and not isinstance(client_overrides, Mapping):
            raise MalformedInputError(
                f"client_overrides must be a mapping or None, got {type(client_overrides).__name__}",
                field="client_overrides",
            )

        rule_set = self.resolve_rule_set(app, vertical, market, client_overrides, client_id)
        return self.evaluate_with_rule_set(app, rule_set)

    def evaluate_with_rule_set(
        self,
        metadata: Union[AppMetadata, Mapping[str, Any]],
        rule_set: RuleSet,
    ) -> AuditResult:
        """Score a listing against an already merged (possibly cached) RuleSet."""
        app = validate_metadata(metadata)
        if not isinstance(rule_set, RuleSet):
            raise MalformedInputError(f"rule_set must be a RuleSet, got {type(rule_set).__name__}")

        precision = self.settings.precision
        relevance = TokenRelevanceClassifier(rule_set)
        stopwords = frozenset(rule_set.stopwords)

        title_tokens = tokenize(app.title, TextField.TITLE, stopwords, relevance)
        subtitle_tokens = tokenize(app.subtitle, TextField.SUBTITLE, stopwords, relevance)
        description_tokens = tokenize(app.description, TextField.DESCRIPTION, stopwords, relevance)

        brand_tokens = detect_brand_tokens(app.title, title_tokens, app.app_name, rule_set.brand_terms)
        combos = extract_combos(
            title_tokens,
            subtitle_tokens,
            min_length=self.settings.min_combo_length,
            max_length=self.settings.max_combo_length,
            brand_tokens=brand_tokens,
            low_value_patterns=rule_set.low_value_patterns,
        )

        intent_classifier = IntentClassifier.from_rule_set(rule_set)
        hook_classifier = HookClassifier.from_rule_set(rule_set)
        combos = self._classify(combos, intent_classifier, hook_classifier, precision)

        listing_text = " ".join(t.text for t in title_tokens + subtitle_tokens)
        hook_scores = hook_classifier.scan(listing_text)

        inputs = KpiInputs(
            metadata=app,
            rule_set=rule_set,
            title_tokens=title_tokens,
            subtitle_tokens=subtitle_tokens,
            description_tokens=description_tokens,
            combos=combos,
            brand_tokens=brand_tokens,
            hook_scores=hook_scores,
            intent_categories=intent_classifier.categories,
            hook_categories=hook_classifier.categories,
        )
        kpis, families = KpiEngine(rule_set, precision).evaluate(inputs)

        registry = FormulaRegistry.from_rule_set(rule_set, precision)
        formulas, formula_warnings = registry.evaluate(kpis, families)

        recommendations = RecommendationEngine.from_rule_set(
            rule_set, self.settings.max_recommendations
        ).generate(RecommendationContext(
            metadata=app,
            rule_set=rule_set,
            kpis=kpis,
            formulas=formulas,
            listing_tokens=title_tokens + subtitle_tokens,
            hook_scores=hook_scores,
            hook_examples={c: hook_classifier.patterns_for(c) for c in hook_classifier.categories},
            app_name=_brand_name(app),
        ))

        provenance = Provenance(
            vertical_id=rule_set.vertical_id,
            market_id=rule_set.market_id,
            client_id=rule_set.client_id,
            layers=list(rule_set.layers),
            formula_status=dict(registry.status),
            warnings=list(rule_set.warnings) + registry.warnings + formula_warnings,
        )

        title_keywords = analyze_text(title_tokens).keywords
        subtitle_keywords = analyze_text(subtitle_tokens).keywords
        keyword_coverage = {
            "title_keywords": list(OrderedDict.fromkeys(title_keywords)),
            "subtitle_keywords": list(OrderedDict.fromkeys(subtitle_keywords)),
            "incremental_keywords": [
                k for k in OrderedDict.fromkeys(subtitle_keywords) if k not in set(title_keywords)
            ],
            "high_value_keywords": high_value_keywords(title_tokens + subtitle_tokens),
        }

        result = AuditResult(
            title_element_score=formulas["title_element_score"].score,
            subtitle_element_score=formulas["subtitle_element_score"].score,
            overall_score=formulas["overall_score"].score,
            kpis=kpis,
            families=families,
            formulas=formulas,
            recommendations=recommendations,
            combos=combos,
            keyword_coverage=keyword_coverage,
            intent_distribution=intent_classifier.distribution(combos.unique),
            hook_coverage={k: round(v, precision) for k, v in hook_scores.items()},
            provenance=provenance,
        )

        logger.debug(
            f"Audited '{normalize_text(app.title)}': overall={result.overall_score} "
            f"({len(recommendations)} recommendations, {len(provenance.warnings)} warnings)"
        )
        return result

    @staticmethod
    def _classify(
        combos: ComboSet,
        intent_classifier: IntentClassifier,
        hook_classifier: HookClassifier,
        precision: int,
    ) -> ComboSet:
        labels: Dict[str, Dict[str, Any]] = {}
        for combo in combos.title + combos.subtitle:
            if combo.text in labels:
                continue
            intent = intent_classifier.classify_combo(combo)
            hook = hook_classifier.classify_combo(combo)
            labels[combo.text] = {
                "intent": intent.category,
                "intent_confidence": round(intent.confidence, precision),
                "hook": hook.category,
                "hook_confidence": round(hook.confidence, precision),
            }
        return combos.with_labels(labels)


def evaluate(
    metadata: Union[AppMetadata, Mapping[str, Any]],
    vertical: Optional[str] = None,
    market: Optional[str] = None,
    client_overrides: Optional[Mapping[str, Any]] = None,
    client_id: Optional[str] = None,
    settings: Optional[EngineSettings] = None,
) -> AuditResult:
    """Evaluate a listing against the bundled rule library."""
    return AuditOrchestrator(settings=settings).evaluate(
        metadata, vertical, market, client_overrides, client_id
    )
