"""Custom exceptions for the link finder."""


class SixDegreesError(Exception):
    """Base exception for all link finder errors."""


class BadRequest(SixDegreesError):
    """Errors reported back to the caller as a bad request."""


class InvalidQuery(BadRequest):
    """Missing or degenerate search parameters."""


class BudgetUnavailable(InvalidQuery):
    """Raised when a search is started with no remote calls left to spend."""

    def __init__(self, message: str = "Rate limit exceeded."):
        super().__init__(message)


class CollaboratorFailure(BadRequest):
    """The remote lookup or the connection cache failed during a search."""
