"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ConflictError

    raise NotFoundError(resource="Participant", resource_id=42)
    raise ConflictError("Participant", "version", "3")
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access attempts,
    so a 404 never confirms that a record exists in another tenant.

    Args:
        resource: Human-readable model/entity name (e.g. "Participant", "Step").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint) — this
    exception signals that the data was well-formed but violated a business
    rule (unknown action, duplicate step name, invalid e-mail).

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class WorkflowConfigurationError(ValidationError):
    """Raised when an authored step chain is unusable.

    Covers dangling or cross-workflow ``next`` references, cycles, forks,
    unreachable steps and a missing "Request Received" start step. These are
    rejected when the chain is edited, never discovered mid-transition.
    """

    def __init__(self, workflow_id: int | None, message: str, details: dict | None = None) -> None:
        self.workflow_id = workflow_id
        super().__init__(message, details)


class ConflictError(Exception):
    """Raised when a write would collide with existing state.

    Two cases map here (HTTP 409):
      - a duplicate unique key (e.g. second workflow for the same event and
        participant type);
      - an optimistic-concurrency mismatch: the participant changed between
        read and conditional update. Callers retry after reloading.

    Args:
        resource: Model name.
        field: The unique or version field that collided.
        value: The conflicting value (truncated in HTTP response; full in logs).
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} conflicts with current state"
        super().__init__(msg)


class AuthorizationError(Exception):
    """Raised when the acting user may not perform an action.

    Maps to HTTP 403.

    Args:
        user_id: The acting user.
        action: The attempted action.
        required_role: Role the current step (or action) demands.
    """

    def __init__(self, user_id: int | None, action: str, required_role: str | None = None) -> None:
        self.user_id = user_id
        self.action = action
        self.required_role = required_role
        msg = f"User {user_id} may not {action}"
        if required_role:
            msg += f" (requires role '{required_role}')"
        super().__init__(msg)
