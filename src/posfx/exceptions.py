"""Custom exceptions for the exchange-rate engine.

Every error the engine raises derives from RateEngineError so callers at
the UI/automation edge can catch one type.
"""


class RateEngineError(Exception):
    """Base exception for all rate engine errors."""


class SourceError(RateEngineError):
    """Raised when a single rate provider cannot deliver a valid rate."""

    def __init__(self, source_id: str, reason: str) -> None:
        super().__init__(f"{source_id}: {reason}")
        self.source_id = source_id
        self.reason = reason


class FallbackExhaustedError(RateEngineError):
    """Raised when every source in a fallback chain failed."""

    def __init__(self, errors: dict[str, str]) -> None:
        if errors:
            detail = "; ".join(f"{src}: {why}" for src, why in errors.items())
            message = f"All exchange rate sources failed ({detail})"
        else:
            message = "No exchange rate sources to try"
        super().__init__(message)
        self.errors = errors


class InvalidRateError(RateEngineError):
    """Raised when a rate is non-numeric, non-positive or outside the sane bounds."""


class RecordNotFoundError(RateEngineError):
    """Raised when a referenced record does not exist."""
