"""
Step Graph Service — workflow/step lookups and chain validation.

A workflow is a singly-linked chain of steps beginning at the step named
"Request Received". This module is the only place that reads steps by
name or by role; the workflow engine consumes the resolved handles on
Workflow (``start_step_id``, ``fast_track_step_id``) plus
``find_step_by_role`` for the second-stage rewind.

Design decisions:
    - Every authoring edit (add / link / delete) re-checks the chain's
      structure and fails with WorkflowConfigurationError on a cross-workflow
      or dangling ``next``, a cycle, or a fork (two steps pointing at the
      same successor). Partial chains are allowed while authoring.
    - ``validate_chain`` is the full check: start step present and every
      step reachable from it. Intake refuses to place a participant on a
      workflow that does not pass it.
    - Handles are recomputed after every edit so renames take effect at once.
"""

from __future__ import annotations

import logging

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from app.core.exceptions import (
    ConflictError,
    NotFoundError,
    ValidationError,
    WorkflowConfigurationError,
)
from app.models import db
from app.models.audit import write_audit
from app.models.auth import Role
from app.models.event import Event, ParticipantType
from app.models.participant import Participant
from app.models.workflow import STEP_MOFA_PRINT, STEP_REQUEST_RECEIVED, Step, Workflow

logger = logging.getLogger(__name__)


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_workflow(workflow_id: int, tenant_id: int | None = None) -> Workflow:
    wf = db.session.get(Workflow, workflow_id)
    if wf is None or (tenant_id is not None and wf.tenant_id != tenant_id):
        raise NotFoundError("Workflow", workflow_id, tenant_id)
    return wf


def workflow_for(tenant_id: int, event_id: int, participant_type_id: int) -> Workflow:
    """Return the single workflow keyed on (tenant, event, participant type)."""
    wf = db.session.execute(
        select(Workflow).where(
            Workflow.tenant_id == tenant_id,
            Workflow.event_id == event_id,
            Workflow.participant_type_id == participant_type_id,
        )
    ).scalar_one_or_none()
    if wf is None:
        raise NotFoundError("Workflow", f"event={event_id}/ptype={participant_type_id}", tenant_id)
    return wf


def get_step(step_id: int) -> Step:
    step = db.session.get(Step, step_id)
    if step is None:
        raise NotFoundError("Step", step_id)
    return step


def find_step_by_name(workflow_id: int, name: str) -> Step | None:
    return db.session.execute(
        select(Step).where(Step.workflow_id == workflow_id, Step.name == name)
    ).scalar_one_or_none()


def find_step_by_role(workflow_id: int, role_name: str) -> Step | None:
    """First step (lowest id) in the workflow owned by ``role_name``."""
    return db.session.execute(
        select(Step)
        .join(Role, Step.role_id == Role.id)
        .where(Step.workflow_id == workflow_id, Role.name == role_name)
        .order_by(Step.id.asc())
        .limit(1)
    ).scalar_one_or_none()


def _steps_of(workflow: Workflow) -> list[Step]:
    return db.session.execute(
        select(Step).where(Step.workflow_id == workflow.id).order_by(Step.id.asc())
    ).scalars().all()


# ── Validation ───────────────────────────────────────────────────────────────


def _check_structure(workflow: Workflow, steps: list[Step]) -> None:
    """Reject cross-workflow links, forks and cycles. Partial chains pass."""
    by_id = {s.id: s for s in steps}
    predecessors: dict[int, int] = {}

    for step in steps:
        if step.next_step_id is None:
            continue
        if step.next_step_id not in by_id:
            raise WorkflowConfigurationError(
                workflow.id,
                f"Step '{step.name}' points outside workflow {workflow.id}",
                {"step_id": step.id, "next_step_id": step.next_step_id},
            )
        if step.next_step_id == step.id:
            raise WorkflowConfigurationError(
                workflow.id, f"Step '{step.name}' points at itself", {"step_id": step.id},
            )
        if step.next_step_id in predecessors:
            raise WorkflowConfigurationError(
                workflow.id,
                f"Step '{by_id[step.next_step_id].name}' has more than one predecessor",
                {"step_id": step.next_step_id,
                 "predecessors": [predecessors[step.next_step_id], step.id]},
            )
        predecessors[step.next_step_id] = step.id

    # In-degree <= 1 everywhere, so any cycle is a closed loop reachable by walking next
    for step in steps:
        seen = {step.id}
        cursor = step.next_step_id
        while cursor is not None:
            if cursor in seen:
                raise WorkflowConfigurationError(
                    workflow.id, f"Step chain through '{step.name}' is cyclic",
                    {"step_id": step.id},
                )
            seen.add(cursor)
            cursor = by_id[cursor].next_step_id


def validate_chain(workflow: Workflow) -> list[Step]:
    """Full validation. Returns steps in chain order from the start step.

    Raises:
        WorkflowConfigurationError: missing start step, bad links, or steps
            not reachable from the start step.
    """
    steps = _steps_of(workflow)
    _check_structure(workflow, steps)

    start = next((s for s in steps if s.name == STEP_REQUEST_RECEIVED), None)
    if start is None:
        raise WorkflowConfigurationError(
            workflow.id, f"Workflow {workflow.id} has no '{STEP_REQUEST_RECEIVED}' step",
        )

    by_id = {s.id: s for s in steps}
    chain = []
    cursor = start
    while cursor is not None:
        chain.append(cursor)
        cursor = by_id.get(cursor.next_step_id) if cursor.next_step_id else None

    unreachable = [s.name for s in steps if s not in chain]
    if unreachable:
        raise WorkflowConfigurationError(
            workflow.id,
            f"Steps not reachable from '{STEP_REQUEST_RECEIVED}': {', '.join(unreachable)}",
            {"unreachable": unreachable},
        )
    return chain


def validate_all_workflows() -> list[tuple[int, WorkflowConfigurationError]]:
    """Run ``validate_chain`` on every workflow; returns (workflow_id, error) failures."""
    failures = []
    for wf in db.session.execute(select(Workflow).order_by(Workflow.id)).scalars().all():
        try:
            validate_chain(wf)
        except WorkflowConfigurationError as exc:
            failures.append((wf.id, exc))
    return failures


def refresh_handles(workflow: Workflow) -> None:
    """Re-resolve the start and fast-track handles from step names."""
    start = find_step_by_name(workflow.id, STEP_REQUEST_RECEIVED)
    fast_track = find_step_by_name(workflow.id, STEP_MOFA_PRINT)
    workflow.start_step_id = start.id if start else None
    workflow.fast_track_step_id = fast_track.id if fast_track else None


def _check_next(workflow: Workflow, next_step_id: int | None) -> None:
    if next_step_id is None:
        return
    target = db.session.get(Step, next_step_id)
    if target is None or target.workflow_id != workflow.id:
        raise WorkflowConfigurationError(
            workflow.id,
            f"Next step {next_step_id} does not belong to workflow {workflow.id}",
            {"next_step_id": next_step_id},
        )


def _after_edit(workflow: Workflow) -> None:
    db.session.flush()
    try:
        _check_structure(workflow, _steps_of(workflow))
    except WorkflowConfigurationError:
        db.session.rollback()
        raise
    refresh_handles(workflow)


# ── Authoring ────────────────────────────────────────────────────────────────


def create_workflow(
    tenant_id: int,
    event_id: int,
    participant_type_id: int,
    name: str,
    actor_user_id: int | None = None,
) -> Workflow:
    """Create the workflow for (tenant, event, participant type). Commits."""
    name = (name or "").strip()
    if not name:
        raise ValidationError("Workflow name is required", {"name": "required"})

    event = db.session.get(Event, event_id)
    if event is None or event.tenant_id != tenant_id:
        raise NotFoundError("Event", event_id, tenant_id)
    ptype = db.session.get(ParticipantType, participant_type_id)
    if ptype is None or ptype.tenant_id != tenant_id:
        raise NotFoundError("ParticipantType", participant_type_id, tenant_id)

    wf = Workflow(
        tenant_id=tenant_id,
        event_id=event_id,
        participant_type_id=participant_type_id,
        name=name,
    )
    db.session.add(wf)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Workflow", "event/participant_type", f"{event_id}/{participant_type_id}")

    write_audit(
        entity_type="workflow", entity_id=wf.id, action="workflow.create",
        tenant_id=tenant_id, actor_user_id=actor_user_id, diff={"name": {"old": None, "new": name}},
    )
    db.session.commit()
    logger.info("Workflow created", extra={"tenant_id": tenant_id, "workflow_id": wf.id})
    return wf


def add_step(
    workflow_id: int,
    name: str,
    role_name: str,
    next_step_id: int | None = None,
    actor_user_id: int | None = None,
) -> Step:
    """Append a step to a workflow. Commits."""
    wf = get_workflow(workflow_id)
    name = (name or "").strip()
    if not name:
        raise ValidationError("Step name is required", {"name": "required"})

    role = Role.query.filter_by(name=role_name).first()
    if role is None:
        raise ValidationError(f"Unknown role '{role_name}'", {"role": role_name})
    if find_step_by_name(wf.id, name) is not None:
        raise ConflictError("Step", "name", name)
    _check_next(wf, next_step_id)

    step = Step(workflow_id=wf.id, role_id=role.id, name=name, next_step_id=next_step_id)
    db.session.add(step)
    _after_edit(wf)

    write_audit(
        entity_type="step", entity_id=step.id, action="step.create",
        tenant_id=wf.tenant_id, actor_user_id=actor_user_id,
        diff={"name": name, "role": role_name, "next_step_id": next_step_id},
    )
    db.session.commit()
    return step


def link_steps(step_id: int, next_step_id: int | None, actor_user_id: int | None = None) -> Step:
    """Point ``step_id`` at ``next_step_id`` (None marks it terminal). Commits."""
    step = get_step(step_id)
    wf = step.workflow
    _check_next(wf, next_step_id)
    previous = step.next_step_id
    step.next_step_id = next_step_id
    _after_edit(wf)

    write_audit(
        entity_type="step", entity_id=step.id, action="step.link",
        tenant_id=wf.tenant_id, actor_user_id=actor_user_id,
        diff={"next_step_id": {"old": previous, "new": next_step_id}},
    )
    db.session.commit()
    return step


def delete_step(step_id: int, actor_user_id: int | None = None) -> None:
    """Remove a step, splicing its predecessor onto its successor. Commits.

    Refused while any participant is currently at the step.
    """
    step = get_step(step_id)
    wf = step.workflow

    occupied = db.session.execute(
        select(db.func.count(Participant.id)).where(Participant.step_id == step.id)
    ).scalar_one()
    if occupied:
        raise ValidationError(
            f"Step '{step.name}' still holds {occupied} participant(s)",
            {"step_id": step.id, "participants": occupied},
        )

    predecessor = db.session.execute(
        select(Step).where(Step.next_step_id == step.id)
    ).scalar_one_or_none()
    if predecessor is not None:
        predecessor.next_step_id = step.next_step_id

    for handle in ("start_step_id", "fast_track_step_id"):
        if getattr(wf, handle) == step.id:
            setattr(wf, handle, None)

    write_audit(
        entity_type="step", entity_id=step.id, action="step.delete",
        tenant_id=wf.tenant_id, actor_user_id=actor_user_id,
        diff={"name": step.name, "spliced_predecessor": predecessor.id if predecessor else None},
    )
    db.session.flush()
    db.session.delete(step)
    _after_edit(wf)
    db.session.commit()
