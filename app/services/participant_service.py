"""
Participant Service — intake, resubmission, validator queue and history.

Workflow decisions go through ``app.services.workflow_engine.process``;
this module covers the participant operations around it:

    register_participant   intake at the workflow's start step (PENDING)
    resubmit_participant   administrative REJECTED → INPROGRESS at start
    list_pending_for_user  validator work queue (current step role ∈ user roles)
    get_approval_history   decision trail, oldest first

Transaction ownership: register/resubmit commit; the queries only read.
"""

from __future__ import annotations

import logging
import secrets

from email_validator import EmailNotValidError, validate_email
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.approval import RESULT_SUCCESS, Approval
from app.models.audit import write_audit
from app.models.auth import ROLE_ADMIN, Role, User, UserRole
from app.models.event import Event, ParticipantType
from app.models.participant import Participant
from app.models.workflow import (
    STATUS_ARCHIVED,
    STATUS_INPROGRESS,
    STATUS_PENDING,
    STATUS_REJECTED,
    STEP_REQUEST_RECEIVED,
    Step,
)
from app.services import step_graph

logger = logging.getLogger(__name__)

INTAKE_ACTION = "REGISTER"
INTAKE_REMARKS = "Request Received"

# No 0/1/I/O: codes are read aloud at the badge desk
_CODE_ALPHABET = "23456789ABCDEFGHJKLMNPQRSTUVWXYZ"
_CODE_ATTEMPTS = 5

_REQUIRED_FIELDS = ("email", "first_name", "family_name")


# ── Private helpers ────────────────────────────────────────────────────────────


def _registration_code(event: Event, ptype: ParticipantType) -> str:
    """EVE-PT-YY-XXXX from event name, participant type and event year."""
    event_prefix = (event.name[:3] or "EVT").upper()
    type_prefix = (ptype.name[:2] or "PT").upper()
    year = event.start_date.strftime("%y") if event.start_date else "00"
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(4))
    return f"{event_prefix}-{type_prefix}-{year}-{suffix}"


def _unique_registration_code(event: Event, ptype: ParticipantType) -> str:
    for _ in range(_CODE_ATTEMPTS):
        code = _registration_code(event, ptype)
        taken = db.session.execute(
            select(Participant.id).where(Participant.registration_code == code)
        ).first()
        if taken is None:
            return code
    raise ConflictError("Participant", "registration_code", code)


def _normalize_email(raw: str) -> str:
    try:
        return validate_email(raw, check_deliverability=False).normalized
    except EmailNotValidError as exc:
        raise ValidationError(f"Invalid email: {exc}", {"email": str(exc)}) from exc


# ── Public API ─────────────────────────────────────────────────────────────────


def get_participant(participant_id: int, tenant_id: int | None = None) -> Participant:
    participant = db.session.get(Participant, participant_id)
    if participant is None or (tenant_id is not None and participant.tenant_id != tenant_id):
        raise NotFoundError("Participant", participant_id, tenant_id)
    return participant


def register_participant(
    tenant_id: int,
    event_id: int,
    participant_type_id: int,
    data: dict,
    actor_user_id: int | None = None,
) -> Participant:
    """Place a new participant at the start step of its workflow.

    The workflow is the one keyed on (tenant, event, participant type) and
    must pass full chain validation. An initial SUCCESS approval with
    remarks "Request Received" opens the decision trail.

    Args:
        tenant_id:           Tenant scope.
        event_id:            Event the participant attends.
        participant_type_id: Participant category; selects the workflow.
        data:                email, first_name, family_name, organization (optional).
        actor_user_id:       Registering user, if any.

    Raises:
        ValidationError: missing fields or invalid e-mail.
        NotFoundError: no workflow for the key.
        WorkflowConfigurationError: workflow chain unusable.
    """
    missing = [f for f in _REQUIRED_FIELDS if not str(data.get(f) or "").strip()]
    if missing:
        raise ValidationError(
            f"Missing required field(s): {', '.join(missing)}",
            {f: "required" for f in missing},
        )
    email = _normalize_email(str(data["email"]).strip())

    workflow = step_graph.workflow_for(tenant_id, event_id, participant_type_id)
    chain = step_graph.validate_chain(workflow)
    start = chain[0]

    event = db.session.get(Event, event_id)
    ptype = db.session.get(ParticipantType, participant_type_id)

    participant = Participant(
        tenant_id=tenant_id,
        event_id=event_id,
        participant_type_id=participant_type_id,
        workflow_id=workflow.id,
        step_id=start.id,
        status=STATUS_PENDING,
        email=email,
        first_name=str(data["first_name"]).strip(),
        family_name=str(data["family_name"]).strip(),
        organization=str(data.get("organization") or "").strip(),
        registration_code=_unique_registration_code(event, ptype),
    )
    db.session.add(participant)

    actor = db.session.get(User, actor_user_id) if actor_user_id else None
    try:
        db.session.flush()
        db.session.add(Approval(
            participant_id=participant.id,
            step_id=start.id,
            user_id=actor.id if actor else None,
            user_name_snapshot=(actor.full_name or actor.email) if actor else None,
            action=INTAKE_ACTION,
            result=RESULT_SUCCESS,
            remarks=INTAKE_REMARKS,
        ))
        write_audit(
            entity_type="participant", entity_id=participant.id, action="participant.register",
            tenant_id=tenant_id, actor_user_id=actor_user_id,
            diff={"workflow_id": workflow.id, "step": STEP_REQUEST_RECEIVED,
                  "registration_code": participant.registration_code},
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Participant intake failed", extra={"tenant_id": tenant_id})
        raise

    logger.info(
        "Participant registered %s", participant.registration_code,
        extra={"tenant_id": tenant_id, "participant_id": participant.id, "workflow_id": workflow.id},
    )
    return participant


def resubmit_participant(
    participant_id: int,
    user_id: int | None = None,
    tenant_id: int | None = None,
    acting_roles=None,
) -> Participant:
    """Send a REJECTED participant back into review at the start step.

    When ``acting_roles`` is given it must include ``admin``.

    Raises:
        NotFoundError: unknown participant (or another tenant's).
        AuthorizationError: caller is not an administrator.
        ValidationError: participant is not REJECTED.
        WorkflowConfigurationError: workflow lost its start step.
        ConflictError: participant changed concurrently.
    """
    participant = get_participant(participant_id, tenant_id)
    if acting_roles is not None and ROLE_ADMIN not in acting_roles:
        raise AuthorizationError(user_id, "RESUBMIT", ROLE_ADMIN)
    if participant.status != STATUS_REJECTED:
        raise ValidationError(
            f"Only REJECTED participants can be resubmitted (status={participant.status})",
            {"status": participant.status},
        )

    workflow = participant.workflow
    start = step_graph.validate_chain(workflow)[0]

    observed_version = participant.version
    previous_step_id = participant.step_id
    res = db.session.execute(
        update(Participant)
        .where(
            Participant.id == participant.id,
            Participant.version == observed_version,
            Participant.status == STATUS_REJECTED,
        )
        .values(step_id=start.id, status=STATUS_INPROGRESS, version=observed_version + 1)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        db.session.rollback()
        raise ConflictError("Participant", "version", str(observed_version))

    write_audit(
        entity_type="participant", entity_id=participant.id, action="participant.resubmit",
        tenant_id=participant.tenant_id, actor_user_id=user_id,
        diff={
            "status": {"old": STATUS_REJECTED, "new": STATUS_INPROGRESS},
            "step_id": {"old": previous_step_id, "new": start.id},
        },
    )
    db.session.commit()

    logger.info(
        "Participant resubmitted",
        extra={"tenant_id": participant.tenant_id, "participant_id": participant.id, "user_id": user_id},
    )
    return participant


def pending_query_for_user(user_id: int, tenant_id: int):
    """Query of participants waiting on one of the user's roles (tenant-scoped, not archived)."""
    role_ids = select(UserRole.role_id).where(UserRole.user_id == user_id)
    return (
        Participant.query
        .join(Step, Participant.step_id == Step.id)
        .options(joinedload(Participant.step).joinedload(Step.role))
        .filter(
            Participant.tenant_id == tenant_id,
            Participant.status != STATUS_ARCHIVED,
            Step.role_id.in_(role_ids),
        )
        .order_by(Participant.updated_at.asc(), Participant.id.asc())
    )


def list_pending_for_user(user_id: int) -> list[Participant]:
    """Validator work queue for ``user_id``."""
    user = db.session.get(User, user_id)
    if user is None:
        raise NotFoundError("User", user_id)
    return pending_query_for_user(user.id, user.tenant_id).all()


def get_approval_history(participant_id: int, tenant_id: int | None = None) -> list[Approval]:
    """All decisions recorded for a participant, oldest first."""
    get_participant(participant_id, tenant_id)
    return db.session.execute(
        select(Approval)
        .where(Approval.participant_id == participant_id)
        .order_by(Approval.created_at.asc(), Approval.id.asc())
    ).scalars().all()


def role_names_for(user_id: int) -> list[str]:
    """Role names currently assigned to a user."""
    return db.session.execute(
        select(Role.name)
        .join(UserRole, UserRole.role_id == Role.id)
        .where(UserRole.user_id == user_id)
        .order_by(Role.name)
    ).scalars().all()
