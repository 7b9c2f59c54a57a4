"""
Exception types raised by the audit engine.

Only MalformedInputError escapes evaluate(). Everything else the engine can
recover from is reported as a ProvenanceWarning on the AuditResult.
"""


class AsoAuditError(Exception):
    """Base class for asoaudit errors."""


class MalformedInputError(AsoAuditError, ValueError):
    """The metadata record or call arguments have the wrong shape or type."""

    def __init__(self, message: str, field: str = None):
        self.field = field
        super().__init__(message)


class RuleLibraryError(AsoAuditError):
    """A rule library directory could not be read at construction time."""
