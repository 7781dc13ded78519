"""
Service-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from certflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="WorkflowRun", resource_id=42)
    raise ValidationError("reason is required", details={"reason": "required"})

HTTP mapping (see certflow.utils.errors):
    NotFoundError            404
    ValidationError          400
    ConflictError            409
    PreconditionFailedError  409
    UnauthorizedError        401
    GenerationServiceError   502
      RateLimitedError       429
      QuotaExhaustedError    402
      GenerationTimeoutError 504
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "WorkflowRun", "Project").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when request input is missing or malformed.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate something that must be unique.

    The canonical case is a second active workflow run for a project.

    Args:
        resource: Model name.
        field: The unique field that would be duplicated.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | int | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class PreconditionFailedError(Exception):
    """Raised when an action is invoked against a run, step or artifact in the wrong state.

    Raised before any mutation, so the caller's state is unchanged.

    Args:
        message: What was attempted and why it is not allowed.
        current_status: Status of the entity at the time of the attempt.
    """

    def __init__(self, message: str, current_status: str | None = None) -> None:
        self.current_status = current_status
        super().__init__(message)


class UnauthorizedError(Exception):
    """Raised when a request carries no valid credential."""


class GenerationServiceError(Exception):
    """Raised when the external generation service (LLM) fails.

    Subclasses distinguish the failures callers must surface with a
    specific HTTP status instead of retrying.

    Args:
        message: Provider error text.
        provider: Provider name that produced the error, if known.
    """

    status_code = 502

    def __init__(self, message: str, provider: str | None = None) -> None:
        self.provider = provider
        super().__init__(message)


class RateLimitedError(GenerationServiceError):
    """Upstream throttling (HTTP 429 from the provider)."""

    status_code = 429


class QuotaExhaustedError(GenerationServiceError):
    """Upstream billing quota exhausted (HTTP 402 / insufficient_quota)."""

    status_code = 402


class GenerationTimeoutError(GenerationServiceError):
    """The generation call was aborted after the configured timeout."""

    status_code = 504
