"""Exception taxonomy for the compatibility core."""

from __future__ import annotations


class ConfigurationError(RuntimeError):
    """Fatal misconfiguration detected at startup or first use."""


class InvalidProfileError(ValueError):
    """Adopter profile is missing or carries no usable field."""


class InvalidStatusError(ValueError):
    """Target status is not one of the known adoption request statuses."""


class AdoptionError(Exception):
    """Base class for adoption request lifecycle failures."""


class RequestNotFoundError(AdoptionError):
    """No adoption request exists with the given id."""


class PetUnavailableError(AdoptionError):
    """Pet is missing, archived, not available, or already has an approved adopter."""


class DuplicateRequestError(AdoptionError):
    """Adopter already holds an active request for this pet."""


class InvalidTransitionError(AdoptionError):
    """Requested status change is not allowed from the current status."""


class PermissionDeniedError(AdoptionError):
    """Actor may not perform this change on this request."""


class ApprovalConflictError(AdoptionError):
    """Another request for the same pet already holds Approved."""

    def __init__(self, message: str = "This pet already has an approved adopter.") -> None:
        super().__init__(message)


class ConcurrentUpdateError(AdoptionError):
    """The request changed underneath this transition; retry with fresh state."""
