"""Custom exception classes for the application.

HTTP errors are raised by the API layer directly. Categorisation errors are
plain exceptions raised by the services; ``fincat.main`` maps them to
responses so callers can branch on the kind of failure.
"""

from fastapi import HTTPException, status


class NotFoundError(HTTPException):
    def __init__(self, resource: str = "Resource"):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"{resource} not found",
        )


class ForbiddenError(HTTPException):
    def __init__(self, detail: str = "You don't have permission to access this resource"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
        )


class ValidationError(HTTPException):
    def __init__(self, detail: str = "Validation error"):
        super().__init__(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=detail,
        )


# ── Categorisation errors ─────────────────────────


class CategorisationError(Exception):
    """Base class for rule and AI categorisation failures."""


class DuplicateRuleError(CategorisationError):
    """An active rule already exists for this (pattern, match_type)."""

    def __init__(self, existing_rule):
        self.existing_rule = existing_rule
        super().__init__(
            f"Pattern already exists: {existing_rule.pattern!r} ({existing_rule.match_type})"
        )


class InvalidPatternError(CategorisationError):
    def __init__(self, pattern: str, reason: str):
        self.pattern = pattern
        self.reason = reason
        super().__init__(f"Invalid pattern {pattern!r}: {reason}")


class AICategorisationError(CategorisationError):
    """Failure of the AI fallback. ``code`` tells callers what went wrong."""

    code: str = "api_error"
    retryable: bool = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class AIApiError(AICategorisationError):
    code = "api_error"
    retryable = True


class AITimeoutError(AICategorisationError):
    code = "timeout"
    retryable = True


class AIParseError(AICategorisationError):
    code = "parse_error"

    def __init__(self, message: str, raw: str = ""):
        super().__init__(message)
        self.raw = raw


class AIInvalidResponseError(AICategorisationError):
    code = "invalid_response"


class RateLimitedError(AICategorisationError):
    code = "rate_limited"

    def __init__(self, remaining: int, daily_limit: int):
        super().__init__(
            f"AI categorisation daily limit reached ({daily_limit} calls per day)"
        )
        self.remaining = remaining
        self.daily_limit = daily_limit


class AIConfigurationError(AICategorisationError):
    """The AI call cannot be built, e.g. there are no categories to choose from."""

    code = "configuration"
