"""
asoaudit - App Store Optimization metadata scoring engine

Scores an app's store listing (title, subtitle, description) with layered,
data-driven rules (Global, Vertical, Market and Client) and returns KPIs,
formula scores, ranked recommendations and provenance.
"""

from .core.exceptions import AsoAuditError, MalformedInputError, RuleLibraryError
from .services.audit_orchestrator import AuditOrchestrator, evaluate
from .services.models import AppMetadata, AuditResult, RuleSet

__version__ = "0.1.0"

__all__ = [
    "evaluate",
    "AuditOrchestrator",
    "AppMetadata",
    "AuditResult",
    "RuleSet",
    "AsoAuditError",
    "MalformedInputError",
    "RuleLibraryError",
]
