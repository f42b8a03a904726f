"""
Participant service tests: intake, resubmission, work queue, history.
"""

import re

import pytest

from app.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from app.models.audit import AuditLog
from app.models.auth import ROLE_ADMIN, ROLE_FIRST_VALIDATOR, ROLE_PRINTER
from app.models.workflow import STATUS_ARCHIVED, STATUS_INPROGRESS, STATUS_PENDING, STATUS_REJECTED
from app.services import participant_service, workflow_engine


class TestRegister:
    def test_intake_places_at_start(self, participant, steps):
        assert participant.status == STATUS_PENDING
        assert participant.step_id == steps["Request Received"].id
        assert participant.version == 1
        assert re.fullmatch(r"SUM-DE-26-[2-9A-HJ-NP-Z]{4}", participant.registration_code)

    def test_intake_audited(self, participant):
        row = AuditLog.query.filter_by(action="participant.register").one()
        assert row.entity_id == str(participant.id)

    def test_missing_fields(self, default_tenant, event, participant_type, workflow):
        with pytest.raises(ValidationError) as exc:
            participant_service.register_participant(
                default_tenant.id, event.id, participant_type.id, {"email": "a@delegates.org"},
            )
        assert set(exc.value.details) == {"first_name", "family_name"}

    def test_registered_by_user_snapshot(self, default_tenant, event, participant_type, workflow, users):
        p = participant_service.register_participant(
            default_tenant.id, event.id, participant_type.id,
            {"email": "b@delegates.org", "first_name": "B", "family_name": "C"},
            actor_user_id=users[ROLE_ADMIN].id,
        )
        history = participant_service.get_approval_history(p.id)
        assert history[0].user_name_snapshot == "Ada Admin"


class TestResubmit:
    def test_resubmit_rejected(self, participant, steps, users, sender):
        workflow_engine.process(participant.id, users[ROLE_FIRST_VALIDATOR].id, "REJECT")

        p = participant_service.resubmit_participant(participant.id, user_id=users[ROLE_ADMIN].id)

        assert p.status == STATUS_INPROGRESS
        assert p.step_id == steps["Request Received"].id
        row = AuditLog.query.filter_by(action="participant.resubmit").one()
        assert row.diff["status"] == {"old": STATUS_REJECTED, "new": STATUS_INPROGRESS}

    def test_resubmit_requires_rejected(self, participant):
        with pytest.raises(ValidationError):
            participant_service.resubmit_participant(participant.id)

    def test_resubmit_requires_admin_when_roles_given(self, participant, users, sender):
        workflow_engine.process(participant.id, users[ROLE_FIRST_VALIDATOR].id, "REJECT")
        with pytest.raises(AuthorizationError):
            participant_service.resubmit_participant(
                participant.id, user_id=users[ROLE_PRINTER].id, acting_roles=[ROLE_PRINTER],
            )

    def test_resubmit_unknown(self):
        with pytest.raises(NotFoundError):
            participant_service.resubmit_participant(31337)


class TestQueueAndHistory:
    def test_pending_for_user(self, participant, users):
        assert [p.id for p in participant_service.list_pending_for_user(users[ROLE_FIRST_VALIDATOR].id)] == [
            participant.id
        ]
        assert participant_service.list_pending_for_user(users[ROLE_PRINTER].id) == []

    def test_archived_not_pending(self, participant, users, sender):
        workflow_engine.process(participant.id, users[ROLE_ADMIN].id, "ARCHIVE")
        p = participant_service.get_participant(participant.id)
        assert p.status == STATUS_ARCHIVED
        assert participant_service.list_pending_for_user(users[ROLE_FIRST_VALIDATOR].id) == []

    def test_pending_unknown_user(self):
        with pytest.raises(NotFoundError):
            participant_service.list_pending_for_user(4040)

    def test_history_other_tenant(self, participant):
        with pytest.raises(NotFoundError):
            participant_service.get_approval_history(participant.id, tenant_id=participant.tenant_id + 1)

    def test_role_names_for(self, users):
        assert participant_service.role_names_for(users[ROLE_PRINTER].id) == [ROLE_PRINTER]
