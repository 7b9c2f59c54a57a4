"""
Services layer for the asoaudit scoring engine.

Text analysis (tokenizer, combo extraction, intent/hook classification),
scoring (KPI engine, formula registry), rule layering (loader, merger, leak
detection) and recommendations, wired together by the audit orchestrator.
"""

from .models import (
    AppMetadata,
    AuditResult,
    Combo,
    ComboSet,
    FormulaResult,
    FormulaStatus,
    KpiFamilyResult,
    KpiResult,
    Provenance,
    ProvenanceWarning,
    Recommendation,
    RuleSet,
    RuleSetLayer,
    Severity,
    Token,
)
from .audit_orchestrator import AuditOrchestrator, evaluate, validate_metadata
from .ruleset_loader import RuleLibrary, RuleSetLoader, default_rule_library, load_rule_library, normalize_layer
from .ruleset_merger import merge_layers

__all__ = [
    "AppMetadata",
    "AuditResult",
    "Combo",
    "ComboSet",
    "FormulaResult",
    "FormulaStatus",
    "KpiFamilyResult",
    "KpiResult",
    "Provenance",
    "ProvenanceWarning",
    "Recommendation",
    "RuleSet",
    "RuleSetLayer",
    "Severity",
    "Token",
    "AuditOrchestrator",
    "evaluate",
    "validate_metadata",
    "RuleLibrary",
    "RuleSetLoader",
    "default_rule_library",
    "load_rule_library",
    "normalize_layer",
    "merge_layers",
]
