"""Core configuration and error types for asoaudit."""

from .config import Config, EngineSettings, load_yaml
from .exceptions import AsoAuditError, MalformedInputError, RuleLibraryError

__all__ = [
    "Config",
    "EngineSettings",
    "load_yaml",
    "AsoAuditError",
    "MalformedInputError",
    "RuleLibraryError",
]
