# Overview: Domain error taxonomy shared by services and routes.

"""
Error classes raised by the service layer.

Routes map them to HTTP responses:
- ValidationError    -> 400 (malformed input, not retried)
- Unauthorized       -> 403 (actor lacks the role or ownership, never retried)
- NotFoundError      -> 404 (row missing or not visible to the actor)
- InvalidTransition  -> 409 (status precondition not met, refresh and retry)
- StaleStateError    -> 409 (lost a concurrent update race)
- DependencyFailure  -> 503 (file storage unavailable, retry the whole action)
"""


class OrbitError(Exception):
    """Base class for domain errors."""

    http_status = 500


class ValidationError(OrbitError, ValueError):
    """400-level input problem."""

    http_status = 400


class Unauthorized(OrbitError):
    """Actor lacks the role (or row ownership) an operation requires."""

    http_status = 403


class NotFoundError(OrbitError):
    http_status = 404


class InvalidTransition(OrbitError):
    """
    Raised when a lifecycle transition does not match the row's current status.

    This is a domain error, not a technical error. The client should refetch
    the row and retry.
    """

    http_status = 409


class StaleStateError(InvalidTransition):
    """The status-guarded update matched no row: another request won the race."""


class DependencyFailure(OrbitError):
    """File storage (or another collaborator) failed; nothing was advanced."""

    http_status = 503
