"""
Participant Accreditation Platform
Event domain model.

Models:
    - Event: an accreditation event owned by a tenant
    - ParticipantType: category of participant (delegate, press, ...) per tenant

Both are reference data maintained through ordinary admin CRUD; the
workflow engine only reads them to key a Workflow.
"""

from datetime import datetime, timezone

from app.models import db
from app.models.base import TenantModel


class Event(TenantModel):
    __tablename__ = "events"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    start_date = db.Column(db.Date, nullable=True)
    end_date = db.Column(db.Date, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_event_tenant_name"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
        }

    def __repr__(self):
        return f"<Event {self.id}: {self.name}>"


class ParticipantType(TenantModel):
    __tablename__ = "participant_types"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text, default="")

    __table_args__ = (
        db.UniqueConstraint("tenant_id", "name", name="uq_participant_type_tenant_name"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
        }

    def __repr__(self):
        return f"<ParticipantType {self.id}: {self.name}>"
