"""
Participant Workflow Blueprint.

Endpoints:
    POST   /api/v1/participants
           Body: { "event_id", "participant_type_id", "email",
                   "first_name", "family_name", "organization"? }
           Returns: 201 with the new participant at "Request Received".

    POST   /api/v1/participants/<pid>/actions
           Body: { "action": "APPROVE|REJECT|PRINT|NOTIFY|ARCHIVE|BYPASS",
                   "remarks": "..." }
           Returns: 200 with the transition result and the participant.

    POST   /api/v1/participants/<pid>/resubmit
           Returns: 200 with the participant back at the start step.

    GET    /api/v1/participants/<pid>/approvals
           Returns: 200 with the ordered decision trail.

    GET    /api/v1/validator/requests
           Query params: limit, offset
           Returns: 200 with participants waiting on the caller's roles.

    GET    /api/v1/workflows/<wid>/chain
           Returns: 200 with the validated step chain.

Layer contract:
    - Blueprint: parse + validate input, read identity from ``g``, call the
      service, return JSON.
    - NO db.session calls here; all writes are owned by the services.
    - Role checks live in the services (``acting_roles``).
"""

import logging

from flask import Blueprint, g, jsonify, request
from werkzeug.exceptions import HTTPException

from app.blueprints import paginate_query
from app.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
    WorkflowConfigurationError,
)
from app.middleware.jwt_auth import require_identity
from app.services import participant_service, step_graph, workflow_engine
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)

participant_bp = Blueprint("participant", __name__, url_prefix="/api/v1")


# ── Error handlers ─────────────────────────────────────────────────────────────


@participant_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@participant_bp.errorhandler(AuthorizationError)
def _handle_forbidden(error: AuthorizationError):
    return api_error(
        E.FORBIDDEN, "You are not allowed to perform this action",
        details={"action": error.action, "required_role": error.required_role},
    )


@participant_bp.errorhandler(ConflictError)
def _handle_conflict(error: ConflictError):
    code = E.CONFLICT_STATE if error.field == "version" else E.CONFLICT_DUPLICATE
    return api_error(code, str(error), details={"resource": error.resource, "field": error.field})


@participant_bp.errorhandler(WorkflowConfigurationError)
def _handle_workflow_config(error: WorkflowConfigurationError):
    return api_error(E.WORKFLOW_CONFIG, str(error), details=error.details)


@participant_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    return api_error(E.BUSINESS_RULE, str(error), details=error.details)


@participant_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in participant_bp endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ── Helpers ────────────────────────────────────────────────────────────────────


def _int_field(data: dict, name: str):
    """Return (value, err_response) for a required integer body field."""
    raw = data.get(name)
    if raw is None or raw == "":
        return None, api_error(E.VALIDATION_REQUIRED, f"{name} is required")
    try:
        return int(raw), None
    except (TypeError, ValueError):
        return None, api_error(E.VALIDATION_INVALID, f"{name} must be an integer")


# ── Participants ───────────────────────────────────────────────────────────────


@participant_bp.route("/participants", methods=["POST"])
@require_identity
def register_participant():
    """Intake: create a participant at the start step of its workflow."""
    data = request.get_json(silent=True) or {}
    event_id, err = _int_field(data, "event_id")
    if err:
        return err
    participant_type_id, err = _int_field(data, "participant_type_id")
    if err:
        return err

    participant = participant_service.register_participant(
        g.tenant_id, event_id, participant_type_id, data, actor_user_id=g.user_id,
    )
    return jsonify(participant.to_dict()), 201


@participant_bp.route("/participants/<int:pid>/actions", methods=["POST"])
@require_identity
def process_action(pid):
    """Apply a workflow action to the participant."""
    data = request.get_json(silent=True) or {}
    action = data.get("action")
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")
    if not isinstance(action, str):
        return api_error(E.VALIDATION_INVALID, "action must be a string")
    remarks = data.get("remarks")
    if remarks is not None and not isinstance(remarks, str):
        return api_error(E.VALIDATION_INVALID, "remarks must be a string")

    result = workflow_engine.process(
        pid, g.user_id, action.strip().upper(), remarks,
        acting_roles=g.roles, tenant_id=g.tenant_id,
    )
    participant = participant_service.get_participant(pid, g.tenant_id)
    return jsonify({"result": result.to_dict(), "participant": participant.to_dict()}), 200


@participant_bp.route("/participants/<int:pid>/resubmit", methods=["POST"])
@require_identity
def resubmit(pid):
    participant = participant_service.resubmit_participant(
        pid, user_id=g.user_id, tenant_id=g.tenant_id, acting_roles=g.roles,
    )
    return jsonify(participant.to_dict()), 200


@participant_bp.route("/participants/<int:pid>/approvals", methods=["GET"])
@require_identity
def approval_history(pid):
    approvals = participant_service.get_approval_history(pid, g.tenant_id)
    return jsonify({"items": [a.to_dict() for a in approvals], "total": len(approvals)}), 200


# ── Validator queue ────────────────────────────────────────────────────────────


@participant_bp.route("/validator/requests", methods=["GET"])
@require_identity
def validator_requests():
    """Participants whose current step belongs to one of the caller's roles."""
    query = participant_service.pending_query_for_user(g.user_id, g.tenant_id)
    items, total = paginate_query(query)
    return jsonify({"items": [p.to_dict() for p in items], "total": total}), 200


# ── Workflows ──────────────────────────────────────────────────────────────────


@participant_bp.route("/workflows/<int:wid>/chain", methods=["GET"])
@require_identity
def workflow_chain(wid):
    workflow = step_graph.get_workflow(wid, g.tenant_id)
    chain = step_graph.validate_chain(workflow)
    return jsonify({"workflow": workflow.to_dict(), "steps": [s.to_dict() for s in chain]}), 200
