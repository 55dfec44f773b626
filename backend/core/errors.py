"""Exceptions raised by the report engine's service layer."""


class ReportEngineError(RuntimeError):
    """Base class for errors surfaced to API callers."""


class RemoteCallError(ReportEngineError):
    """The report backend could not be reached or answered success=false."""


class PermissionDenied(ReportEngineError):
    """The session lacks the capability required for a mutating action."""


class ConfigNotFound(ReportEngineError):
    """No chart configuration exists with the requested id."""


class ConfirmationRequired(ReportEngineError):
    """A destructive action was attempted without explicit confirmation."""
