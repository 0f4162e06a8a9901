"""Exception hierarchy for the digest pipeline."""

from __future__ import annotations


class ContentIntelError(Exception):
    """Base class for all pipeline errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class NotFoundError(ContentIntelError):
    """A digest, draft or source id that does not exist."""


class InvalidActionError(ContentIntelError):
    """An operator action the current state does not permit.

    Raised before any state is mutated, so the caller can report the
    reason and nothing needs to be rolled back.
    """


class BudgetError(ContentIntelError):
    """The fixed prompt frame alone exceeds the configured token budget."""


class FetchError(ContentIntelError):
    """A source could not be fetched or parsed."""

    def __init__(self, message: str, source: str | None = None, **kwargs: object) -> None:
        super().__init__(message, dict(kwargs))
        self.source = source


class DeliveryError(ContentIntelError):
    """The document service or messaging relay rejected a request."""
