"""
RuleSet Loader — normalizes rule documents into layers and resolves the
Global → Vertical → Market → Client stack for one evaluation.

Rule documents come from YAML files (global, vertical and market layers) or
from the caller (client overrides). Both go through the same shape
checks: unrecognized keys and malformed entries are skipped with a
ProvenanceWarning instead of failing the evaluation.

Usage:
    from asoaudit.services.ruleset_loader import RuleSetLoader, default_rule_library

    loader = RuleSetLoader(default_rule_library())
    rule_set = loader.load(vertical="language_learning", market="us")
"""

import logging
import math
import re
from collections import OrderedDict
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..core.config import Config, load_yaml
from ..core.exceptions import RuleLibraryError
from .leak_detection import detect_vertical_mismatch
from .models import LayerScope, PatternRule, ProvenanceWarning, RuleSet, RuleSetLayer, Severity
from .ruleset_merger import merge_layers
from .tokenizer import normalize_term

logger = logging.getLogger(__name__)

MULTIPLIER_MIN = 0.5
MULTIPLIER_MAX = 2.0
MIN_TIER = 0
MAX_TIER = 3

METADATA_KEYS = ("id", "label", "description")
MULTIPLIER_KEYS = ("hook_multipliers", "kpi_weight_multipliers", "formula_multipliers")
PATTERN_KEYS = ("intent_patterns", "hook_patterns")
STRING_LIST_KEYS = ("stopwords", "low_value_patterns", "brand_terms", "intentional")
TERM_LIST_KEYS = ("stopwords", "brand_terms")
LAYER_KEYS = (
    "token_relevance",
    *PATTERN_KEYS,
    *MULTIPLIER_KEYS,
    "kpi_family_weights",
    "formula_component_weights",
    "recommendation_templates",
    *STRING_LIST_KEYS,
    "char_limits",
    "lexicons",
)


# ============================================================================
# Layer normalization
# ============================================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


class _LayerNormalizer:
    """Collects warnings while shaping one raw document into a RuleSetLayer."""

    def __init__(self, scope: LayerScope, layer_id: str):
        self.scope = scope
        self.layer_id = layer_id
        self.warnings: List[ProvenanceWarning] = []

    def warn(self, kind: str, subject: str, message: str, severity: Severity = Severity.WARNING, **details):
        logger.warning(f"[{self.scope.value}:{self.layer_id}] {message}")
        self.warnings.append(ProvenanceWarning(
            kind=kind,
            layer=self.scope.value,
            subject=subject,
            message=message,
            severity=severity,
            details=details,
        ))

    def mapping(self, key: str, value: Any) -> Optional[Mapping]:
        if not isinstance(value, Mapping):
            self.warn("invalid_override", key, f"'{key}' must be a mapping, got {type(value).__name__}")
            return None
        return value

    def token_relevance(self, value: Any) -> Dict[str, int]:
        result: Dict[str, int] = OrderedDict()
        for token, tier in (self.mapping("token_relevance", value) or {}).items():
            if not isinstance(token, str) or not token.strip() or not _is_number(tier):
                self.warn("invalid_override", "token_relevance", f"Skipping token tier {token!r}: {tier!r}")
                continue
            term = normalize_term(token)
            if not term:
                self.warn("invalid_override", "token_relevance", f"Skipping token tier {token!r}: no word characters")
                continue
            clamped = int(max(MIN_TIER, min(MAX_TIER, round(tier))))
            if clamped != tier:
                self.warn("value_clamped", term, f"Tier for {token!r} clamped to {clamped}",
                          severity=Severity.INFO, original=tier)
            result[term] = clamped
        return result

    def pattern_rule(self, key: str, category: str, entry: Any) -> Optional[PatternRule]:
        if isinstance(entry, str):
            entry = {"pattern": entry}
        if not isinstance(entry, Mapping) or not isinstance(entry.get("pattern"), str) or not entry["pattern"]:
            self.warn("invalid_override", f"{key}.{category}", f"Skipping malformed pattern {entry!r}")
            return None

        weight = entry.get("weight", 1.0)
        if not _is_number(weight) or weight < 0:
            self.warn("invalid_override", f"{key}.{category}",
                      f"Pattern {entry['pattern']!r} has invalid weight {weight!r}")
            return None

        regex = entry.get("regex") is True
        if regex:
            try:
                re.compile(entry["pattern"])
            except re.error as e:
                self.warn("invalid_override", f"{key}.{category}", f"Invalid regex {entry['pattern']!r}: {e}")
                return None
        elif not normalize_term(entry["pattern"]):
            self.warn("invalid_override", f"{key}.{category}",
                      f"Literal pattern {entry['pattern']!r} has no word characters")
            return None

        return PatternRule(pattern=entry["pattern"], weight=float(weight), regex=regex)

    def patterns(self, key: str, value: Any) -> Dict[str, List[PatternRule]]:
        result: Dict[str, List[PatternRule]] = OrderedDict()
        for category, entries in (self.mapping(key, value) or {}).items():
            if not isinstance(entries, list):
                self.warn("invalid_override", f"{key}.{category}", f"'{key}.{category}' must be a list")
                continue
            rules = [self.pattern_rule(key, category, e) for e in entries]
            result[str(category)] = [r for r in rules if r is not None]
        return result

    def multipliers(self, key: str, value: Any) -> Dict[str, float]:
        result: Dict[str, float] = OrderedDict()
        for subject, multiplier in (self.mapping(key, value) or {}).items():
            if not _is_number(multiplier) or multiplier <= 0:
                self.warn("invalid_override", str(subject), f"Skipping {key}.{subject}: {multiplier!r}")
                continue
            clamped = max(MULTIPLIER_MIN, min(MULTIPLIER_MAX, float(multiplier)))
            if clamped != multiplier:
                self.warn("value_clamped", str(subject),
                          f"{key}.{subject} clamped from {multiplier} to {clamped}",
                          severity=Severity.INFO, original=multiplier)
            result[str(subject)] = clamped
        return result

    def weights(self, key: str, value: Any) -> Dict[str, float]:
        result: Dict[str, float] = OrderedDict()
        for subject, weight in (self.mapping(key, value) or {}).items():
            if not _is_number(weight) or not 0.0 <= weight <= 1.0:
                self.warn("invalid_override", str(subject), f"Skipping {key}.{subject}: {weight!r}")
                continue
            result[str(subject)] = float(weight)
        return result

    def formula_weights(self, value: Any) -> Dict[str, Dict[str, float]]:
        result: Dict[str, Dict[str, float]] = OrderedDict()
        for formula_id, components in (self.mapping("formula_component_weights", value) or {}).items():
            weights = self.weights(f"formula_component_weights.{formula_id}", components)
            if weights:
                result[str(formula_id)] = weights
        return result

    def templates(self, value: Any) -> Dict[str, Dict[str, Any]]:
        result: Dict[str, Dict[str, Any]] = OrderedDict()
        for template_id, template in (self.mapping("recommendation_templates", value) or {}).items():
            if not isinstance(template, Mapping):
                self.warn("invalid_template", str(template_id), f"Template {template_id!r} must be a mapping")
                continue
            fields = OrderedDict()
            for name, field_value in template.items():
                if not isinstance(name, str):
                    self.warn("invalid_template", str(template_id),
                              f"Template {template_id!r}: dropping non-string field {name!r}")
                    continue
                fields[name] = field_value
            result[str(template_id)] = dict(fields)
        return result

    def string_list(self, key: str, value: Any) -> List[str]:
        if not isinstance(value, list):
            self.warn("invalid_override", key, f"'{key}' must be a list")
            return []
        items = []
        for item in value:
            if not isinstance(item, str) or not item.strip():
                self.warn("invalid_override", key, f"Skipping non-string entry {item!r} in '{key}'")
                continue
            if key in TERM_LIST_KEYS or key.startswith("lexicons."):
                term = normalize_term(item)
                if not term:
                    self.warn("invalid_override", key, f"Skipping entry {item!r} in '{key}': no word characters")
                    continue
                items.append(term)
            else:
                items.append(item.strip() if key == "low_value_patterns" else item.strip().lower())

        if key == "low_value_patterns":
            valid = []
            for pattern in items:
                try:
                    re.compile(pattern)
                    valid.append(pattern)
                except re.error as e:
                    self.warn("invalid_override", key, f"Invalid low-value pattern {pattern!r}: {e}")
            items = valid
        return items

    def char_limits(self, value: Any) -> Dict[str, int]:
        result: Dict[str, int] = OrderedDict()
        for field, limit in (self.mapping("char_limits", value) or {}).items():
            if not _is_number(limit) or limit <= 0:
                self.warn("invalid_override", str(field), f"Skipping char limit {field}: {limit!r}")
                continue
            result[str(field)] = int(limit)
        return result

    def lexicons(self, value: Any) -> Dict[str, List[str]]:
        result: Dict[str, List[str]] = OrderedDict()
        for name, words in (self.mapping("lexicons", value) or {}).items():
            result[str(name)] = self.string_list(f"lexicons.{name}", words)
        return result


def normalize_layer(
    document: Any,
    scope: Union[LayerScope, str],
    layer_id: Optional[str] = None,
) -> Tuple[RuleSetLayer, List[ProvenanceWarning]]:
    """
    Validate a raw rule document and build an immutable RuleSetLayer.

    Args:
        document: Parsed YAML/JSON mapping (None gives an empty layer)
        scope: Layer scope
        layer_id: Identifier; defaults to the document's `id` or the scope name

    Returns:
        (layer, warnings) — never raises on bad content
    """
    scope = LayerScope(scope)
    if isinstance(document, Mapping) and isinstance(document.get("id"), str):
        layer_id = layer_id or document["id"]
    layer_id = layer_id or scope.value
    normalizer = _LayerNormalizer(scope, layer_id)

    if document is None:
        return RuleSetLayer(scope=scope, id=layer_id), []
    if not isinstance(document, Mapping):
        normalizer.warn("invalid_layer", layer_id,
                        f"Rule document must be a mapping, got {type(document).__name__}; ignored")
        return RuleSetLayer(scope=scope, id=layer_id), normalizer.warnings

    fields: Dict[str, Any] = {}
    for key, value in document.items():
        if key in METADATA_KEYS:
            continue
        if key not in LAYER_KEYS:
            normalizer.warn("unrecognized_key", str(key), f"Ignoring unrecognized key '{key}'",
                            severity=Severity.INFO)
            continue

        if key == "token_relevance":
            fields[key] = normalizer.token_relevance(value)
        elif key in PATTERN_KEYS:
            fields[key] = normalizer.patterns(key, value)
        elif key in MULTIPLIER_KEYS:
            fields[key] = normalizer.multipliers(key, value)
        elif key == "kpi_family_weights":
            fields[key] = normalizer.weights(key, value)
        elif key == "formula_component_weights":
            fields[key] = normalizer.formula_weights(value)
        elif key == "recommendation_templates":
            fields[key] = normalizer.templates(value)
        elif key in STRING_LIST_KEYS:
            fields[key] = normalizer.string_list(key, value)
        elif key == "char_limits":
            fields[key] = normalizer.char_limits(value)
        elif key == "lexicons":
            fields[key] = normalizer.lexicons(value)

    label = document.get("label")
    try:
        layer = RuleSetLayer(
            scope=scope,
            id=layer_id,
            label=label if isinstance(label, str) else "",
            **fields,
        )
    except ValidationError as e:
        normalizer.warn("invalid_layer", layer_id,
                        f"Rule document failed validation ({e.error_count()} errors); ignored",
                        errors=[err["msg"] for err in e.errors()])
        layer = RuleSetLayer(scope=scope, id=layer_id)
    return layer, normalizer.warnings


# ============================================================================
# Rule library
# ============================================================================

class RuleLibrary(BaseModel):
    """Parsed, normalized rule documents available for layering. Read-only."""
    model_config = ConfigDict(frozen=True)

    global_layer: RuleSetLayer
    verticals: Dict[str, RuleSetLayer] = Field(default_factory=dict)
    markets: Dict[str, RuleSetLayer] = Field(default_factory=dict)
    category_verticals: Dict[str, str] = Field(default_factory=dict)
    vertical_categories: Dict[str, List[str]] = Field(default_factory=dict)
    locale_markets: Dict[str, str] = Field(default_factory=dict)
    warnings: List[ProvenanceWarning] = Field(default_factory=list)

    def detect_vertical(self, category: Optional[str]) -> Optional[str]:
        """Store category (e.g. 'Health & Fitness') to vertical id, if mapped."""
        if not category:
            return None
        return self.category_verticals.get(category.strip().lower())

    def detect_market(self, locale: Optional[str]) -> Optional[str]:
        """
        Locale to market id: the region part ('en-GB' -> 'gb' -> 'uk' via
        locale_markets), or the bare language ('de') when there is no region.
        """
        if not locale:
            return None
        parts = locale.replace("_", "-").strip().lower().split("-")
        region = parts[-1]
        market = self.locale_markets.get(region, region)
        return market if market in self.markets else None


def _load_layer_dir(directory: Path, scope: LayerScope, warnings: List[ProvenanceWarning]) -> Dict[str, RuleSetLayer]:
    layers: Dict[str, RuleSetLayer] = OrderedDict()
    if not directory.is_dir():
        return layers
    for path in sorted(directory.glob("*.yaml")):
        layer, layer_warnings = normalize_layer(load_yaml(path), scope, path.stem)
        layers[layer.id] = layer
        warnings.extend(layer_warnings)
    return layers


def load_rule_library(path: Optional[Union[str, Path]] = None) -> RuleLibrary:
    """
    Read a rule library directory.

    Layout:
        global.yaml          Global layer
        categories.yaml      category/locale detection maps
        verticals/<id>.yaml  Vertical layers
        markets/<id>.yaml    Market layers

    Raises:
        RuleLibraryError: directory or global.yaml missing / not a mapping
    """
    root = Path(path or Config.RULESETS_DIR)
    global_path = root / "global.yaml"
    if not global_path.is_file():
        raise RuleLibraryError(f"Rule library at {root} has no global.yaml")

    global_doc = load_yaml(global_path)
    if not isinstance(global_doc, Mapping):
        raise RuleLibraryError(f"{global_path} must contain a mapping")

    warnings: List[ProvenanceWarning] = []
    global_layer, global_warnings = normalize_layer(global_doc, LayerScope.GLOBAL, "global")
    warnings.extend(global_warnings)

    detection: Dict[str, Any] = {}
    categories_path = root / "categories.yaml"
    if categories_path.is_file():
        detection = load_yaml(categories_path)
        if not isinstance(detection, Mapping):
            raise RuleLibraryError(f"{categories_path} must contain a mapping")

    vertical_categories = {
        str(vertical): [str(c).lower() for c in categories or []]
        for vertical, categories in (detection.get("vertical_categories") or {}).items()
    }
    category_verticals = {
        str(category).lower(): str(vertical)
        for category, vertical in (detection.get("category_verticals") or {}).items()
    }

    library = RuleLibrary(
        global_layer=global_layer,
        verticals=_load_layer_dir(root / "verticals", LayerScope.VERTICAL, warnings),
        markets=_load_layer_dir(root / "markets", LayerScope.MARKET, warnings),
        category_verticals=category_verticals,
        vertical_categories=vertical_categories,
        locale_markets={str(k).lower(): str(v) for k, v in (detection.get("locale_markets") or {}).items()},
        warnings=warnings,
    )
    logger.info(
        f"Loaded rule library from {root}: {len(library.verticals)} verticals, {len(library.markets)} markets"
    )
    return library


@lru_cache(maxsize=1)
def default_rule_library() -> RuleLibrary:
    """The bundled (or ASOAUDIT_RULESETS_DIR) library, read once per process."""
    return load_rule_library()


# ============================================================================
# Loader
# ============================================================================

class RuleSetLoader:
    """Resolves and merges the layer stack for one evaluation."""

    def __init__(self, library: RuleLibrary, drift_threshold: float = 0.40):
        self.library = library
        self.drift_threshold = drift_threshold

    def _lookup(
        self,
        kind: str,
        requested: Optional[str],
        layers: Mapping[str, RuleSetLayer],
        warnings: List[ProvenanceWarning],
    ) -> Optional[RuleSetLayer]:
        if not requested:
            return None
        layer = layers.get(requested.strip().lower())
        if layer is None:
            logger.warning(f"Unknown {kind} {requested!r}; falling back to lower-precedence layers")
            warnings.append(ProvenanceWarning(
                kind=f"unknown_{kind}",
                layer=kind,
                subject=requested,
                message=f"Unknown {kind} '{requested}'; layer skipped",
                severity=Severity.INFO,
            ))
        return layer

    def load(
        self,
        vertical: Optional[str] = None,
        market: Optional[str] = None,
        client_overrides: Optional[Mapping[str, Any]] = None,
        client_id: Optional[str] = None,
        category: Optional[str] = None,
    ) -> RuleSet:
        """
        Build the effective RuleSet.

        Args:
            vertical: Vertical id; unknown ids are skipped with a warning
            market: Market id; unknown ids are skipped with a warning
            client_overrides: Partial rule document for one app
            client_id: Label for the client layer in provenance
            category: Store category, used only for the vertical mismatch check

        Returns:
            Merged, read-only RuleSet
        """
        warnings: List[ProvenanceWarning] = list(self.library.warnings)
        layers: List[RuleSetLayer] = [self.library.global_layer]

        vertical_layer = self._lookup("vertical", vertical, self.library.verticals, warnings)
        if vertical_layer is not None:
            layers.append(vertical_layer)
            warnings.extend(detect_vertical_mismatch(
                vertical_layer.id, category, self.library.vertical_categories
            ))

        market_layer = self._lookup("market", market, self.library.markets, warnings)
        if market_layer is not None:
            layers.append(market_layer)

        if client_overrides is not None:
            client_layer, client_warnings = normalize_layer(
                client_overrides, LayerScope.CLIENT, client_id or "client"
            )
            warnings.extend(client_warnings)
            layers.append(client_layer)

        return merge_layers(
            layers,
            drift_threshold=self.drift_threshold,
            warnings=warnings,
            client_id=client_id,
        )

    def available(self) -> Dict[str, List[str]]:
        return {
            "verticals": list(self.library.verticals),
            "markets": list(self.library.markets),
        }
