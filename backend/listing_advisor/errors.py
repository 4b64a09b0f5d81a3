"""Failure taxonomy for the listing analysis pipeline.

Every error the pipeline raises is a ListingAdvisorError. The orchestrator
stamps ``step`` and ``external_id`` on the way out so API handlers and logs
can say which stage failed for which item.
"""

from __future__ import annotations

from typing import Literal

UpstreamKind = Literal["not_found", "unauthorized", "rate_limited", "unknown"]
RecommendationKind = Literal["empty_response", "malformed_json", "missing_field", "provider_error"]


class ListingAdvisorError(Exception):
    """Base class for all pipeline failures."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.step: str | None = None
        self.external_id: str | None = None

    def with_context(self, *, step: str, external_id: str | None) -> ListingAdvisorError:
        self.step = step
        self.external_id = external_id
        return self


class ValidationError(ListingAdvisorError):
    """Caller supplied an empty or malformed identifier."""


class NotAuthenticated(ListingAdvisorError):
    """No bearer token (or seller id) is available for the request."""

    def __init__(self, message: str = "Not authenticated with MercadoLibre") -> None:
        super().__init__(message)


class UpstreamError(ListingAdvisorError):
    """The MercadoLibre API could not serve the request."""

    def __init__(
        self,
        kind: UpstreamKind,
        message: str,
        *,
        status_code: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind: UpstreamKind = kind
        self.status_code = status_code

    @classmethod
    def from_status(cls, status_code: int, message: str) -> UpstreamError:
        if status_code == 404:
            kind: UpstreamKind = "not_found"
        elif status_code in (401, 403):
            kind = "unauthorized"
        elif status_code == 429:
            kind = "rate_limited"
        else:
            kind = "unknown"
        return cls(kind, message, status_code=status_code)


class PersistenceError(ListingAdvisorError):
    """A storage write failed."""

    def __init__(self, operation: str, cause: BaseException) -> None:
        super().__init__(f"Failed to {operation}: {cause}")
        self.operation = operation
        self.cause = cause


class RecommendationError(ListingAdvisorError):
    """The LLM call failed or returned a payload outside the contract."""

    def __init__(self, kind: RecommendationKind, message: str) -> None:
        super().__init__(message)
        self.kind: RecommendationKind = kind


class AlreadyInProgress(ListingAdvisorError):
    """Another analysis for the same item is already running."""

    def __init__(self, key: str) -> None:
        super().__init__(f"Analysis for {key} is already in progress")
        self.key = key
