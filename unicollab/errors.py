"""Error taxonomy shared by collaborators and services.

Collaborator adapters raise these errors. Service operations catch them and
hand them back inside an :class:`Outcome` so nothing escapes into the view
layer as an uncaught fault.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Generic, TypeVar

T = TypeVar("T")


class CollabError(RuntimeError):
    """Base class for every recoverable failure surfaced by the core."""

    default_message = "Something went wrong"

    def __init__(self, message: str | None = None, *, code: str | None = None, status_code: int | None = None) -> None:
        self.message = message or self.default_message
        self.code = code
        self.status_code = status_code
        super().__init__(self.message)


class AuthError(CollabError):
    """Credential or sign-up validation failure."""

    default_message = "Authentication failed"


class DomainNotAllowed(AuthError):
    """The email address does not belong to an approved university domain."""

    default_message = "Email must be from an approved university domain"

    def __init__(self, allowed_domains: list[str] | tuple[str, ...], message: str | None = None) -> None:
        self.allowed_domains = tuple(allowed_domains)
        if message is None:
            message = f"Email must be from an approved university domain ({', '.join(self.allowed_domains)})."
        super().__init__(message, code="domain_not_allowed")


class ProfileFetchError(CollabError):
    """Loading the profile row for an authenticated identity failed."""

    default_message = "Failed to load profile"


class QueryError(CollabError):
    """A data-query call failed or was rejected by the backend."""

    default_message = "Request failed"


class UploadError(CollabError):
    """Uploading a file to storage failed or the file was rejected."""

    default_message = "Failed to upload file"


class RealtimeHydrationError(CollabError):
    """Enriching a pushed record with sender details failed."""

    default_message = "Failed to load message sender"


@dataclass(frozen=True, slots=True)
class Outcome(Generic[T]):
    """Result of a service operation: either a value or a typed error."""

    value: T | None = None
    error: CollabError | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T | None = None, *, message: str | None = None) -> "Outcome[T]":
        return cls(value=value, message=message)

    @classmethod
    def failure(cls, error: CollabError) -> "Outcome[T]":
        return cls(error=error, message=error.message)


__all__ = [
    "CollabError",
    "AuthError",
    "DomainNotAllowed",
    "ProfileFetchError",
    "QueryError",
    "UploadError",
    "RealtimeHydrationError",
    "Outcome",
]
