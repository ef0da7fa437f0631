"""Error taxonomy for the custody engine.

Every client-facing failure derives from :class:`CustodyError` and carries
the HTTP status code the API layer answers with.  Guard failures are raised
immediately and are never retried: they describe a client error or a real
authorisation denial, not a transient fault.

:class:`InconsistentAuthorityError` is deliberately *not* a
``CustodyError``.  It signals a data-integrity violation (a document with no
origin authority at all) and is treated as a fatal assertion.

Example
-------
>>> try:
...     raise ForbiddenError("Only the origin authority can approve this request.")
... except CustodyError as exc:
...     exc.status_code
403
"""
from __future__ import annotations


class CustodyError(Exception):
    """Base class for client-facing custody errors.

    Attributes
    ----------
    message:
        Human-readable explanation safe to return to the caller.
    status_code:
        HTTP status code used by the REST layer.
    kind:
        Short machine-readable error label.
    """

    status_code: int = 500
    kind: str = "custody_error"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class NotFoundError(CustodyError):
    """Raised when a document, grant or revocation request does not exist."""

    status_code = 404
    kind = "not_found"


class ForbiddenError(CustodyError):
    """Raised when an authorisation guard fails."""

    status_code = 403
    kind = "forbidden"


class BadRequestError(CustodyError):
    """Raised for invalid input, duplicates and invalid state transitions."""

    status_code = 400
    kind = "bad_request"


class DuplicateActiveGrantError(BadRequestError):
    """Raised when an active grant already exists for a (document, subject) tuple."""

    kind = "duplicate_active_grant"


class NoActiveGrantError(BadRequestError):
    """Raised when revoking a (document, subject) tuple that has no active grant."""

    kind = "no_active_grant"


class DuplicatePendingRequestError(BadRequestError):
    """Raised when the requester already has a pending request of the same type."""

    kind = "duplicate_pending_request"


class InvalidTransitionError(BadRequestError):
    """Raised when a revocation request is no longer pending."""

    kind = "invalid_transition"


class UnauthenticatedError(CustodyError):
    """Raised by the API layer when the caller cannot be identified."""

    status_code = 401
    kind = "unauthenticated"


class InconsistentAuthorityError(RuntimeError):
    """Raised when a document has neither an origin manager nor a user context.

    Attributes
    ----------
    document_id:
        Identifier of the corrupt document record.
    """

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id
        super().__init__(
            f"Document {document_id!r} has no origin authority: "
            "both origin_manager_id and origin_user_context_id are unset."
        )
