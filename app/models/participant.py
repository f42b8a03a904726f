"""
Participant Accreditation Platform
Participant domain model.

A participant is the subject moving through a workflow. Its
(step_id, status, version) triple is the only state the workflow engine
mutates; every mutation is a conditional UPDATE on the observed
(step_id, version) so concurrent decisions cannot both apply.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel
from app.models.workflow import STATUS_PENDING


class Participant(TenantModel):
    __tablename__ = "participants"

    id = db.Column(db.Integer, primary_key=True)
    event_id = db.Column(
        db.Integer, db.ForeignKey("events.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    participant_type_id = db.Column(
        db.Integer, db.ForeignKey("participant_types.id", ondelete="CASCADE"), nullable=False,
    )
    workflow_id = db.Column(
        db.Integer, db.ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    step_id = db.Column(
        db.Integer, db.ForeignKey("steps.id", ondelete="RESTRICT"), nullable=False, index=True,
    )
    status = db.Column(db.String(20), nullable=False, default=STATUS_PENDING)
    version = db.Column(db.Integer, nullable=False, default=1)

    # Identity
    email = db.Column(db.String(200), nullable=False)
    first_name = db.Column(db.String(100), nullable=False)
    family_name = db.Column(db.String(100), nullable=False)
    organization = db.Column(db.String(200), default="")
    registration_code = db.Column(db.String(40), nullable=False, unique=True)

    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        TenantModel.tenant_composite_index("participants", "status"),
        db.Index("ix_participants_event_status", "event_id", "status"),
    )

    step = db.relationship("Step", foreign_keys=[step_id])
    workflow = db.relationship("Workflow", foreign_keys=[workflow_id])

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.family_name}".strip()

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "event_id": self.event_id,
            "participant_type_id": self.participant_type_id,
            "workflow_id": self.workflow_id,
            "step_id": self.step_id,
            "step_name": self.step.name if self.step else None,
            "status": self.status,
            "version": self.version,
            "email": self.email,
            "first_name": self.first_name,
            "family_name": self.family_name,
            "organization": self.organization,
            "registration_code": self.registration_code,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<Participant {self.id}: {self.registration_code} [{self.status}]>"
