"""
Participant decision trail — Approval model.

Every workflow action creates exactly one Approval row recording the step
the participant was on when the decision was taken. Rows are never
mutated or deleted; the mapper events below turn any attempt into an error
instead of a silent audit breach.
"""

from datetime import datetime, timezone

from sqlalchemy import event

from app.models import db

# ── Constants ─────────────────────────────────────────────────────────────────

RESULT_SUCCESS = "SUCCESS"
RESULT_FAILURE = "FAILURE"

APPROVAL_RESULTS = frozenset({RESULT_SUCCESS, RESULT_FAILURE})


class ImmutableRecordError(RuntimeError):
    """Raised when code tries to update or delete an append-only row."""


class Approval(db.Model):
    """
    Immutable decision record for a participant.

    Business rules:
    - Records are NEVER deleted or updated — append-only log.
    - result is FAILURE iff the action was REJECT.
    - step_id is the step the participant was AT, not the step it moved to.
    - user_name_snapshot keeps the trail readable if the User row is removed.
    """

    __tablename__ = "approvals"

    id = db.Column(db.Integer, primary_key=True)
    participant_id = db.Column(
        db.Integer,
        db.ForeignKey("participants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step_id = db.Column(
        db.Integer,
        db.ForeignKey("steps.id", ondelete="SET NULL"),
        nullable=True,
        comment="Step the participant was at when the decision was made",
    )
    user_id = db.Column(
        db.Integer,
        db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    user_name_snapshot = db.Column(db.String(200), nullable=True)

    action = db.Column(db.String(20), nullable=False, comment="APPROVE | REJECT | PRINT | ...")
    result = db.Column(db.String(10), nullable=False, comment="SUCCESS | FAILURE")
    remarks = db.Column(db.Text, nullable=False, default="")

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_approval_participant_created", "participant_id", "created_at"),
    )

    step = db.relationship("Step", foreign_keys=[step_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "participant_id": self.participant_id,
            "step_id": self.step_id,
            "step_name": self.step.name if self.step else None,
            "user_id": self.user_id,
            "user_name": self.user_name_snapshot,
            "action": self.action,
            "result": self.result,
            "remarks": self.remarks,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self) -> str:
        return f"<Approval #{self.id} participant={self.participant_id} {self.action}/{self.result}>"


@event.listens_for(Approval, "before_update")
def _block_approval_update(mapper, connection, target):
    raise ImmutableRecordError(f"Approval #{target.id} is append-only and cannot be updated")


@event.listens_for(Approval, "before_delete")
def _block_approval_delete(mapper, connection, target):
    raise ImmutableRecordError(f"Approval #{target.id} is append-only and cannot be deleted")
