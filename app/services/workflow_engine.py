"""
Participant Workflow Engine — advances a participant through its step chain.

Single entry point:

    from app.services.workflow_engine import process

    result = process(participant_id, acting_user_id, "APPROVE", remarks=None,
                     acting_roles=["first-validator"], tenant_id=1)

Pipeline per call:
    1. Load the participant with its current step (NotFoundError).
    2. Re-verify the acting roles when supplied (AuthorizationError):
       APPROVE / REJECT / PRINT / NOTIFY need the current step's role,
       ARCHIVE / BYPASS need ``admin``.
    3. Insert one Approval row (FAILURE iff REJECT).
    4. Plan the transition:
         APPROVE  → next step, INPROGRESS         (terminal step: stays)
         PRINT    → next step, PRINTED            (terminal step: stays)
         NOTIFY   → next step, NOTIFIED           (terminal step: stays)
         REJECT   → second-validator: first-validator step, INPROGRESS (rewind)
                    any other role:   start step, REJECTED + rejection email
         ARCHIVE  → same step, ARCHIVED + finalization email
         BYPASS   → fast-track ("MOFA Print") step, BYPASSED
       ARCHIVED is terminal: any other action on it is recorded but leaves
       the participant as is. A missing target does the same; the result
       reports ``applied=False`` instead of pretending a move happened.
    5. Conditional UPDATE on the (step_id, version) observed in step 1.
       Zero rows matched → rollback, ConflictError.
    6. Commit the audit row and the update together.
    7. Fire-and-forget notifications after commit.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import joinedload

from app.core.exceptions import AuthorizationError, ConflictError, NotFoundError, ValidationError
from app.models import db
from app.models.approval import RESULT_FAILURE, RESULT_SUCCESS, Approval
from app.models.auth import ROLE_ADMIN, ROLE_FIRST_VALIDATOR, ROLE_SECOND_VALIDATOR, User
from app.models.participant import Participant
from app.models.workflow import (
    ACTION_APPROVE,
    ACTION_ARCHIVE,
    ACTION_BYPASS,
    ACTION_NOTIFY,
    ACTION_PRINT,
    ACTION_REJECT,
    ACTIONS,
    STATUS_ARCHIVED,
    STATUS_BYPASSED,
    STATUS_INPROGRESS,
    STATUS_NOTIFIED,
    STATUS_PRINTED,
    STATUS_REJECTED,
    Step,
    default_remarks,
)
from app.services import notification_sender
from app.services.step_graph import find_step_by_role

logger = logging.getLogger(__name__)

# Actions that move to ``next`` and the status they leave behind
_ADVANCE_STATUS = {
    ACTION_APPROVE: STATUS_INPROGRESS,
    ACTION_PRINT: STATUS_PRINTED,
    ACTION_NOTIFY: STATUS_NOTIFIED,
}

_ADMIN_ACTIONS = frozenset({ACTION_ARCHIVE, ACTION_BYPASS})

NOTIFY_REJECTION = "rejection"
NOTIFY_FINALIZATION = "finalization"


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of one ``process`` call."""

    participant_id: int
    action: str
    approval_id: int
    result: str
    previous_step_id: int
    step_id: int
    previous_status: str
    status: str
    applied: bool
    notification: str | None = None

    @property
    def moved(self) -> bool:
        return self.step_id != self.previous_step_id

    def to_dict(self) -> dict:
        d = asdict(self)
        d["moved"] = self.moved
        return d


@dataclass(frozen=True)
class _Plan:
    step_id: int
    status: str
    notification: str | None = None


# ── Pipeline stages ──────────────────────────────────────────────────────────


def _load_participant(participant_id: int, tenant_id: int | None = None) -> Participant:
    participant = db.session.get(
        Participant,
        participant_id,
        options=[
            joinedload(Participant.step).joinedload(Step.role),
            joinedload(Participant.workflow),
        ],
    )
    if participant is None or participant.step is None:
        raise NotFoundError("Participant", participant_id, tenant_id)
    if tenant_id is not None and participant.tenant_id != tenant_id:
        raise NotFoundError("Participant", participant_id, tenant_id)
    return participant


def _authorize(participant: Participant, user_id: int, action: str, acting_roles) -> None:
    if acting_roles is None:
        return
    required = ROLE_ADMIN if action in _ADMIN_ACTIONS else participant.step.role_name
    if required not in set(acting_roles):
        logger.warning(
            "Workflow action refused: %s requires role %s", action, required,
            extra={"participant_id": participant.id, "user_id": user_id, "action": action},
        )
        raise AuthorizationError(user_id, action, required)


def _plan_transition(participant: Participant, action: str) -> _Plan | None:
    """Compute the target (step, status); None means the action is a no-op."""
    step = participant.step
    workflow = participant.workflow

    if participant.status == STATUS_ARCHIVED and action != ACTION_ARCHIVE:
        return None

    if action in _ADVANCE_STATUS:
        if step.is_terminal:
            return None
        return _Plan(step.next_step_id, _ADVANCE_STATUS[action])

    if action == ACTION_REJECT:
        if step.role_name == ROLE_SECOND_VALIDATOR:
            target = find_step_by_role(workflow.id, ROLE_FIRST_VALIDATOR)
            if target is None:
                return None
            return _Plan(target.id, STATUS_INPROGRESS)
        if workflow.start_step_id is None:
            return None
        return _Plan(workflow.start_step_id, STATUS_REJECTED, NOTIFY_REJECTION)

    if action == ACTION_ARCHIVE:
        return _Plan(step.id, STATUS_ARCHIVED, NOTIFY_FINALIZATION)

    if action == ACTION_BYPASS:
        if workflow.fast_track_step_id is None:
            return None
        return _Plan(workflow.fast_track_step_id, STATUS_BYPASSED)

    raise ValidationError(f"Unsupported action: {action}", {"action": action})


def _record_decision(participant: Participant, user: User, action: str, remarks: str | None) -> Approval:
    approval = Approval(
        participant_id=participant.id,
        step_id=participant.step_id,
        user_id=user.id,
        user_name_snapshot=user.full_name or user.email,
        action=action,
        result=RESULT_FAILURE if action == ACTION_REJECT else RESULT_SUCCESS,
        remarks=remarks if remarks is not None else default_remarks(action),
    )
    db.session.add(approval)
    db.session.flush()
    return approval


def _apply(participant_id: int, observed_step_id: int, observed_version: int,
           step_id: int, status: str) -> None:
    """Conditional write: only succeeds if nobody moved the participant since we read it."""
    res = db.session.execute(
        update(Participant)
        .where(
            Participant.id == participant_id,
            Participant.step_id == observed_step_id,
            Participant.version == observed_version,
        )
        .values(
            step_id=step_id,
            status=status,
            version=observed_version + 1,
            updated_at=datetime.now(timezone.utc),
        )
        .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
        raise ConflictError("Participant", "version", str(observed_version))


# ── Public API ───────────────────────────────────────────────────────────────


def process(
    participant_id: int,
    acting_user_id: int,
    action: str,
    remarks: str | None = None,
    *,
    acting_roles=None,
    tenant_id: int | None = None,
    sender: notification_sender.NotificationSender | None = None,
) -> TransitionResult:
    """Apply ``action`` to a participant on behalf of ``acting_user_id``.

    Args:
        participant_id: Participant to act on.
        acting_user_id: User taking the decision; recorded on the Approval row.
        action:         One of APPROVE, REJECT, PRINT, NOTIFY, ARCHIVE, BYPASS.
        remarks:        Free text; the per-action default is used when None.
        acting_roles:   Caller's role names. When given, the engine re-checks
                        them against the current step; when None, the caller
                        is trusted to have done so.
        tenant_id:      Tenant scope; a participant of another tenant is NotFound.
        sender:         Notification sender override (defaults to the app's).

    Returns:
        TransitionResult describing the decision and the resulting state.

    Raises:
        NotFoundError, ValidationError, AuthorizationError, ConflictError,
        SQLAlchemyError (persistence failures always propagate).
    """
    if action not in ACTIONS:
        raise ValidationError(
            f"Unsupported action: {action}",
            {"action": action, "valid_actions": sorted(ACTIONS)},
        )

    participant = _load_participant(participant_id, tenant_id)
    user = db.session.get(User, acting_user_id)
    if user is None:
        raise NotFoundError("User", acting_user_id, tenant_id)
    if user.tenant_id != participant.tenant_id:
        # Users never act across tenants; answer as if the participant were absent
        raise NotFoundError("Participant", participant_id, user.tenant_id)

    _authorize(participant, acting_user_id, action, acting_roles)

    observed_step_id = participant.step_id
    observed_version = participant.version
    previous_status = participant.status

    try:
        approval = _record_decision(participant, user, action, remarks)
        plan = _plan_transition(participant, action)
        if plan is None:
            target_step_id, target_status = observed_step_id, previous_status
        else:
            target_step_id, target_status = plan.step_id, plan.status
        _apply(participant.id, observed_step_id, observed_version, target_step_id, target_status)
        db.session.commit()
    except ConflictError:
        db.session.rollback()
        logger.warning(
            "Concurrent update detected; decision discarded",
            extra={"participant_id": participant_id, "user_id": acting_user_id, "action": action},
        )
        raise
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception(
            "Persisting workflow decision failed",
            extra={"participant_id": participant_id, "user_id": acting_user_id, "action": action},
        )
        raise

    result = TransitionResult(
        participant_id=participant_id,
        action=action,
        approval_id=approval.id,
        result=approval.result,
        previous_step_id=observed_step_id,
        step_id=target_step_id,
        previous_status=previous_status,
        status=target_status,
        applied=plan is not None,
        notification=plan.notification if plan else None,
    )

    logger.info(
        "Workflow decision %s (%s)", action, "applied" if result.applied else "no-op",
        extra={
            "tenant_id": participant.tenant_id,
            "participant_id": participant_id,
            "user_id": acting_user_id,
            "action": action,
            "status_from": previous_status,
            "status_to": target_status,
            "step_from": observed_step_id,
            "step_to": target_step_id,
        },
    )

    if result.notification:
        _notify(participant, result, remarks, sender)
    return result


def _notify(participant: Participant, result: TransitionResult, remarks, sender) -> None:
    """Fire-and-forget; never raises into the caller."""
    sender = sender or notification_sender.get_sender()
    try:
        if result.notification == NOTIFY_REJECTION:
            notification_sender.notify_rejection(sender, participant, remarks)
        elif result.notification == NOTIFY_FINALIZATION:
            notification_sender.notify_finalization(sender, participant)
    except Exception:
        logger.exception(
            "Could not dispatch %s notification", result.notification,
            extra={"participant_id": result.participant_id},
        )
