"""Standardised API error responses.

Usage
-----
    from certflow.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Workflow not found")
    return api_error(E.VALIDATION_REQUIRED, "reason is required")
    return api_error(E.PRECONDITION_FAILED, "Step is not awaiting approval",
                     details={"current_status": "completed"})
"""

from __future__ import annotations

from flask import jsonify

from certflow.core.exceptions import (
    ConflictError,
    GenerationServiceError,
    GenerationTimeoutError,
    NotFoundError,
    PreconditionFailedError,
    QuotaExhaustedError,
    RateLimitedError,
    UnauthorizedError,
    ValidationError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (ERR_ prefix)."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / state – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    PRECONDITION_FAILED = "ERR_PRECONDITION_FAILED"

    # Upstream generation service
    RATE_LIMITED = "ERR_RATE_LIMITED"
    QUOTA_EXHAUSTED = "ERR_QUOTA_EXHAUSTED"
    TIMEOUT = "ERR_TIMEOUT"
    UPSTREAM = "ERR_UPSTREAM"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.PRECONDITION_FAILED: 409,
    E.RATE_LIMITED: 429,
    E.QUOTA_EXHAUSTED: 402,
    E.TIMEOUT: 504,
    E.UPSTREAM: 502,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_service_error_handlers(bp) -> None:
    """Attach the service-exception → JSON handlers to a blueprint.

    Every blueprint of the API maps ``certflow.core.exceptions`` the same
    way, so the mapping lives here once.
    """

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        code = E.VALIDATION_REQUIRED if "required" in str(error) else E.VALIDATION_INVALID
        return api_error(code, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error),
                         details={"resource": error.resource, "field": error.field})

    @bp.errorhandler(PreconditionFailedError)
    def _handle_precondition(error: PreconditionFailedError):
        details = {"current_status": error.current_status} if error.current_status else None
        return api_error(E.PRECONDITION_FAILED, str(error), details=details)

    @bp.errorhandler(UnauthorizedError)
    def _handle_unauthorized(error: UnauthorizedError):
        return api_error(E.UNAUTHORIZED, str(error) or "Authentication required")

    @bp.errorhandler(GenerationServiceError)
    def _handle_generation(error: GenerationServiceError):
        if isinstance(error, RateLimitedError):
            code = E.RATE_LIMITED
        elif isinstance(error, QuotaExhaustedError):
            code = E.QUOTA_EXHAUSTED
        elif isinstance(error, GenerationTimeoutError):
            code = E.TIMEOUT
        else:
            code = E.UPSTREAM
        return api_error(code, str(error), status=error.status_code)
