"""
Participant Accreditation Platform
Workflow domain model.

Models:
    - Workflow: ordered chain of steps for one (tenant, event, participant type)
    - Step: a node in the chain; carries the role permitted to act on it and
      an optional forward link to the next step

The string constants below are shared with step authoring and must not be
changed without migrating stored data.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel

# ── Actions ──────────────────────────────────────────────────────────────────

ACTION_APPROVE = "APPROVE"
ACTION_REJECT = "REJECT"
ACTION_PRINT = "PRINT"
ACTION_NOTIFY = "NOTIFY"
ACTION_ARCHIVE = "ARCHIVE"
ACTION_BYPASS = "BYPASS"

ACTIONS = frozenset({
    ACTION_APPROVE, ACTION_REJECT, ACTION_PRINT,
    ACTION_NOTIFY, ACTION_ARCHIVE, ACTION_BYPASS,
})

# Default audit remarks when the caller supplies none
DEFAULT_REMARKS = {
    ACTION_APPROVE: "Approved successfully.",
    ACTION_REJECT: "Rejected due to compliance issues.",
    ACTION_PRINT: "Printed successfully.",
    ACTION_NOTIFY: "Notification sent successfully.",
    ACTION_ARCHIVE: "Archived successfully.",
}
FALLBACK_REMARK = "Action processed."

# ── Participant statuses ─────────────────────────────────────────────────────

STATUS_PENDING = "PENDING"
STATUS_INPROGRESS = "INPROGRESS"
STATUS_REJECTED = "REJECTED"
STATUS_PRINTED = "PRINTED"
STATUS_NOTIFIED = "NOTIFIED"
STATUS_BYPASSED = "BYPASSED"
STATUS_ARCHIVED = "ARCHIVED"

PARTICIPANT_STATUSES = frozenset({
    STATUS_PENDING, STATUS_INPROGRESS, STATUS_REJECTED, STATUS_PRINTED,
    STATUS_NOTIFIED, STATUS_BYPASSED, STATUS_ARCHIVED,
})

# ── Well-known step names ────────────────────────────────────────────────────

STEP_REQUEST_RECEIVED = "Request Received"
STEP_MOFA_PRINT = "MOFA Print"


def default_remarks(action: str) -> str:
    return DEFAULT_REMARKS.get(action, FALLBACK_REMARK)


class Workflow(TenantModel):
    """
    Authored chain of approval steps.

    At most one workflow exists per (tenant, event, participant type).
    ``start_step_id`` and ``fast_track_step_id`` are resolved handles to the
    "Request Received" and "MOFA Print" steps; they are recomputed by
    ``app.services.step_graph`` whenever the chain is edited, so the engine
    never searches by name at transition time.
    """

    __tablename__ = "workflows"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    participant_type_id = db.Column(
        db.Integer, db.ForeignKey("participant_types.id", ondelete="CASCADE"), nullable=False,
    )
    name = db.Column(db.String(200), nullable=False)

    start_step_id = db.Column(
        db.Integer,
        db.ForeignKey("steps.id", ondelete="SET NULL", use_alter=True, name="fk_workflow_start_step"),
        nullable=True,
    )
    fast_track_step_id = db.Column(
        db.Integer,
        db.ForeignKey("steps.id", ondelete="SET NULL", use_alter=True, name="fk_workflow_fast_track_step"),
        nullable=True,
    )

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint(
            "tenant_id", "event_id", "participant_type_id",
            name="uq_workflow_tenant_event_ptype",
        ),
    )

    steps = db.relationship(
        "Step", back_populates="workflow", lazy="dynamic",
        foreign_keys="Step.workflow_id", cascade="all, delete-orphan",
    )
    start_step = db.relationship("Step", foreign_keys=[start_step_id], post_update=True)
    fast_track_step = db.relationship("Step", foreign_keys=[fast_track_step_id], post_update=True)

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_id": self.event_id,
            "participant_type_id": self.participant_type_id,
            "name": self.name,
            "start_step_id": self.start_step_id,
            "fast_track_step_id": self.fast_track_step_id,
        }

    def __repr__(self):
        return f"<Workflow {self.id}: {self.name}>"


class Step(db.Model):
    """
    Node in a workflow's singly-linked chain.

    ``next_step_id IS NULL`` is the terminal marker: APPROVE/PRINT/NOTIFY on
    a terminal step leave the participant where it is.
    """

    __tablename__ = "steps"

    id = db.Column(db.Integer, primary_key=True)
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    role_id = db.Column(
        db.Integer, db.ForeignKey("roles.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    name = db.Column(db.String(200), nullable=False)
    next_step_id = db.Column(
        db.Integer, db.ForeignKey("steps.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("workflow_id", "name", name="uq_step_workflow_name"),
    )

    workflow = db.relationship("Workflow", back_populates="steps", foreign_keys=[workflow_id])
    role = db.relationship("Role")
    next_step = db.relationship("Step", remote_side=[id], foreign_keys=[next_step_id])

    @property
    def is_terminal(self) -> bool:
        return self.next_step_id is None

    @property
    def role_name(self) -> str | None:
        return self.role.name if self.role else None

    def to_dict(self):
        return {
            "id": self.id,
            "workflow_id": self.workflow_id,
            "name": self.name,
            "role": self.role_name,
            "next_step_id": self.next_step_id,
            "is_terminal": self.is_terminal,
        }

    def __repr__(self):
        return f"<Step {self.id}: {self.name} ({self.role_name})>"
