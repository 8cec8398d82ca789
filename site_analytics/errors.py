class AnalyticsError(Exception):
    """Base class for failures surfaced to API callers."""


class ValidationError(AnalyticsError):
    pass


class FunnelValidationError(ValidationError):
    pass


class AuthorizationError(AnalyticsError):
    pass


class EvaluationError(AnalyticsError):
    """Event store failure, timeout or a pattern that cannot be compiled."""


class PatternError(EvaluationError):
    pass


class EvaluationCancelled(EvaluationError):
    pass


class EnrichmentFailure(AnalyticsError):
    """Best-effort detail computation failed; base counts are still valid."""
