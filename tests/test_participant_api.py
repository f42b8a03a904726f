"""
Participant workflow HTTP API tests.

Tests cover:
  - Bearer identity: 401 without a token, with an invalid one, or without a tenant claim
  - Intake (POST /participants) incl. validation errors
  - Actions (POST /participants/<id>/actions): 200 / 400 / 403 / 404 / 409 / 422
  - Resubmission, approval history, validator queue, workflow chain
  - Health endpoints
"""

import jwt
import pytest

from app.core.exceptions import ConflictError
from app.models import db
from app.models.auth import ROLE_ADMIN, ROLE_FIRST_VALIDATOR, ROLE_PRINTER, ROLE_SECOND_VALIDATOR, Tenant
from app.models.participant import Participant
from app.models.workflow import STATUS_INPROGRESS, STATUS_PENDING, STATUS_REJECTED
from app.services import step_graph, workflow_engine


def _act(client, headers, pid, action, remarks=None):
    body = {"action": action}
    if remarks is not None:
        body["remarks"] = remarks
    return client.post(f"/api/v1/participants/{pid}/actions", json=body, headers=headers)


# ═════════════════════════════════════════════════════════════════════════
# IDENTITY
# ═════════════════════════════════════════════════════════════════════════


class TestIdentity:
    def test_missing_token_is_401(self, client, participant):
        res = client.post(f"/api/v1/participants/{participant.id}/actions", json={"action": "APPROVE"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHENTICATED"

    def test_bad_signature_is_401(self, client, participant):
        res = client.post(
            f"/api/v1/participants/{participant.id}/actions",
            json={"action": "APPROVE"},
            headers={"Authorization": "Bearer not.a.token"},
        )
        assert res.status_code == 401

    def test_token_without_tenant_claim_is_401(self, app, client, participant, make_user):
        other = Tenant(name="Elsewhere", slug="elsewhere")
        db.session.add(other)
        db.session.commit()
        outsider = make_user("drifter@elsewhere.test", [ROLE_FIRST_VALIDATOR], tenant=other)
        token = jwt.encode(
            {"sub": str(outsider.id), "roles": [ROLE_FIRST_VALIDATOR]},
            app.config["JWT_SECRET_KEY"],
            algorithm="HS256",
        )
        headers = {"Authorization": f"Bearer {token}"}

        res = _act(client, headers, participant.id, "APPROVE")
        assert res.status_code == 401
        assert client.get(f"/api/v1/participants/{participant.id}/approvals", headers=headers).status_code == 401

        p = db.session.get(Participant, participant.id)
        assert p.version == 1
        assert p.status == STATUS_PENDING

    def test_request_id_header(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"


# ═════════════════════════════════════════════════════════════════════════
# INTAKE
# ═════════════════════════════════════════════════════════════════════════


class TestIntake:
    def test_register_participant(self, client, users, auth_headers, event, participant_type, steps):
        res = client.post(
            "/api/v1/participants",
            json={
                "event_id": event.id,
                "participant_type_id": participant_type.id,
                "email": "Omar.Ali@Delegates.org",
                "first_name": "Omar",
                "family_name": "Ali",
            },
            headers=auth_headers(users[ROLE_ADMIN]),
        )
        assert res.status_code == 201
        data = res.get_json()
        assert data["status"] == STATUS_PENDING
        assert data["step_id"] == steps["Request Received"].id
        assert data["step_name"] == "Request Received"
        assert data["email"] == "Omar.Ali@delegates.org"
        assert data["registration_code"].startswith("SUM-DE-26-")

    def test_register_requires_event(self, client, users, auth_headers, participant_type):
        res = client.post(
            "/api/v1/participants",
            json={"participant_type_id": participant_type.id, "email": "a@b.org"},
            headers=auth_headers(users[ROLE_ADMIN]),
        )
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_register_invalid_email(self, client, users, auth_headers, event, participant_type, workflow):
        res = client.post(
            "/api/v1/participants",
            json={"event_id": event.id, "participant_type_id": participant_type.id,
                  "email": "not-an-email", "first_name": "A", "family_name": "B"},
            headers=auth_headers(users[ROLE_ADMIN]),
        )
        assert res.status_code == 422
        assert "email" in res.get_json()["details"]

    def test_register_without_workflow(self, client, users, auth_headers, event, participant_type):
        res = client.post(
            "/api/v1/participants",
            json={"event_id": event.id, "participant_type_id": participant_type.id,
                  "email": "a@delegates.org", "first_name": "A", "family_name": "B"},
            headers=auth_headers(users[ROLE_ADMIN]),
        )
        assert res.status_code == 404

    def test_register_on_broken_workflow(self, client, users, auth_headers, default_tenant,
                                         event, participant_type, roles):
        wf = step_graph.create_workflow(default_tenant.id, event.id, participant_type.id, "Broken")
        step_graph.add_step(wf.id, "Review", ROLE_FIRST_VALIDATOR)

        res = client.post(
            "/api/v1/participants",
            json={"event_id": event.id, "participant_type_id": participant_type.id,
                  "email": "a@delegates.org", "first_name": "A", "family_name": "B"},
            headers=auth_headers(users[ROLE_ADMIN]),
        )
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_WORKFLOW_CONFIG"

    def test_wrong_content_type(self, client, users, auth_headers):
        res = client.post(
            "/api/v1/participants", data="event_id=1",
            headers={**auth_headers(users[ROLE_ADMIN]), "Content-Type": "text/plain"},
        )
        assert res.status_code == 415


# ═════════════════════════════════════════════════════════════════════════
# ACTIONS
# ═════════════════════════════════════════════════════════════════════════


class TestActions:
    def test_approve(self, client, participant, steps, users, auth_headers, sender):
        res = _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id, "approve")
        assert res.status_code == 200
        data = res.get_json()
        assert data["result"]["action"] == "APPROVE"
        assert data["result"]["applied"] is True
        assert data["result"]["moved"] is True
        assert data["participant"]["step_id"] == steps["Second Validation"].id
        assert data["participant"]["status"] == STATUS_INPROGRESS

    def test_reject_with_remarks(self, client, participant, users, auth_headers, sender):
        res = _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id,
                   "REJECT", "Photo unusable")
        assert res.status_code == 200
        assert res.get_json()["participant"]["status"] == STATUS_REJECTED
        assert res.get_json()["result"]["notification"] == "rejection"
        assert "Photo unusable" in sender.of_category("rejection")[0]["body"]

    def test_missing_action_is_400(self, client, participant, users, auth_headers):
        res = client.post(
            f"/api/v1/participants/{participant.id}/actions", json={},
            headers=auth_headers(users[ROLE_FIRST_VALIDATOR]),
        )
        assert res.status_code == 400

    def test_non_string_remarks_is_400(self, client, participant, users, auth_headers):
        res = _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id, "APPROVE", 42)
        assert res.status_code == 400

    def test_unknown_action_is_422(self, client, participant, users, auth_headers):
        res = _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id, "ESCALATE")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_BUSINESS_RULE"

    def test_wrong_role_is_403(self, client, participant, users, auth_headers):
        res = _act(client, auth_headers(users[ROLE_PRINTER]), participant.id, "APPROVE")
        assert res.status_code == 403
        assert res.get_json()["details"]["required_role"] == ROLE_FIRST_VALIDATOR

    def test_archive_requires_admin(self, client, participant, users, auth_headers, sender):
        res = _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id, "ARCHIVE")
        assert res.status_code == 403
        res = _act(client, auth_headers(users[ROLE_ADMIN]), participant.id, "ARCHIVE")
        assert res.status_code == 200
        assert len(sender.of_category("finalization")) == 1

    def test_unknown_participant_is_404(self, client, users, auth_headers):
        res = _act(client, auth_headers(users[ROLE_ADMIN]), 98765, "APPROVE")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"

    def test_other_tenant_is_404(self, client, participant, users, auth_headers):
        headers = auth_headers(users[ROLE_FIRST_VALIDATOR], tenant_id=participant.tenant_id + 1)
        res = _act(client, headers, participant.id, "APPROVE")
        assert res.status_code == 404

    def test_conflict_is_409(self, client, participant, users, auth_headers, monkeypatch):
        def conflicting(*args, **kwargs):
            raise ConflictError("Participant", "version", "1")

        monkeypatch.setattr(workflow_engine, "process", conflicting)
        res = _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id, "APPROVE")
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"


# ═════════════════════════════════════════════════════════════════════════
# RESUBMIT / HISTORY
# ═════════════════════════════════════════════════════════════════════════


class TestResubmitAndHistory:
    def test_resubmit_rejected(self, client, participant, steps, users, auth_headers, sender):
        _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id, "REJECT")

        res = client.post(
            f"/api/v1/participants/{participant.id}/resubmit", headers=auth_headers(users[ROLE_ADMIN]),
        )
        assert res.status_code == 200
        data = res.get_json()
        assert data["status"] == STATUS_INPROGRESS
        assert data["step_id"] == steps["Request Received"].id

    def test_resubmit_requires_admin(self, client, participant, users, auth_headers, sender):
        _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id, "REJECT")
        res = client.post(
            f"/api/v1/participants/{participant.id}/resubmit",
            headers=auth_headers(users[ROLE_FIRST_VALIDATOR]),
        )
        assert res.status_code == 403

    def test_resubmit_not_rejected_is_422(self, client, participant, users, auth_headers):
        res = client.post(
            f"/api/v1/participants/{participant.id}/resubmit", headers=auth_headers(users[ROLE_ADMIN]),
        )
        assert res.status_code == 422

    def test_history_in_order(self, client, participant, users, auth_headers, sender):
        _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id, "APPROVE")
        _act(client, auth_headers(users[ROLE_SECOND_VALIDATOR]), participant.id, "REJECT", "Recheck visa")

        res = client.get(
            f"/api/v1/participants/{participant.id}/approvals", headers=auth_headers(users[ROLE_ADMIN]),
        )
        assert res.status_code == 200
        items = res.get_json()["items"]
        assert [i["remarks"] for i in items] == ["Request Received", "Approved successfully.", "Recheck visa"]
        assert [i["result"] for i in items] == ["SUCCESS", "SUCCESS", "FAILURE"]
        assert items[1]["step_name"] == "Request Received"
        assert items[2]["step_name"] == "Second Validation"
        assert items[2]["user_name"] == "Sam Second"


# ═════════════════════════════════════════════════════════════════════════
# VALIDATOR QUEUE
# ═════════════════════════════════════════════════════════════════════════


class TestValidatorQueue:
    def test_queue_matches_current_step_role(self, client, participant, users, auth_headers, sender):
        first = client.get("/api/v1/validator/requests", headers=auth_headers(users[ROLE_FIRST_VALIDATOR]))
        second = client.get("/api/v1/validator/requests", headers=auth_headers(users[ROLE_SECOND_VALIDATOR]))
        assert [p["id"] for p in first.get_json()["items"]] == [participant.id]
        assert second.get_json()["total"] == 0

        _act(client, auth_headers(users[ROLE_FIRST_VALIDATOR]), participant.id, "APPROVE")

        first = client.get("/api/v1/validator/requests", headers=auth_headers(users[ROLE_FIRST_VALIDATOR]))
        second = client.get("/api/v1/validator/requests", headers=auth_headers(users[ROLE_SECOND_VALIDATOR]))
        assert first.get_json()["total"] == 0
        assert [p["id"] for p in second.get_json()["items"]] == [participant.id]

    def test_queue_excludes_archived(self, client, participant, users, auth_headers, sender):
        _act(client, auth_headers(users[ROLE_ADMIN]), participant.id, "ARCHIVE")
        res = client.get("/api/v1/validator/requests", headers=auth_headers(users[ROLE_FIRST_VALIDATOR]))
        assert res.get_json()["total"] == 0

    def test_queue_is_tenant_scoped(self, client, participant, make_user, auth_headers):
        other = Tenant(name="Other", slug="other-tenant")
        db.session.add(other)
        db.session.commit()
        outsider = make_user("outsider@other.test", [ROLE_FIRST_VALIDATOR], tenant=other)

        res = client.get("/api/v1/validator/requests", headers=auth_headers(outsider))
        assert res.get_json()["total"] == 0

    def test_queue_pagination(self, client, participant, users, auth_headers):
        res = client.get(
            "/api/v1/validator/requests?limit=0", headers=auth_headers(users[ROLE_FIRST_VALIDATOR]),
        )
        data = res.get_json()
        assert data["total"] == 1
        assert data["items"] == []


# ═════════════════════════════════════════════════════════════════════════
# WORKFLOW CHAIN / HEALTH
# ═════════════════════════════════════════════════════════════════════════


class TestChainAndHealth:
    def test_chain(self, client, workflow, users, auth_headers):
        wf = workflow["workflow"]
        res = client.get(f"/api/v1/workflows/{wf.id}/chain", headers=auth_headers(users[ROLE_ADMIN]))
        assert res.status_code == 200
        data = res.get_json()
        assert [s["name"] for s in data["steps"]][0] == "Request Received"
        assert data["steps"][-1]["is_terminal"] is True
        assert data["workflow"]["fast_track_step_id"] == workflow["steps"]["MOFA Print"].id

    def test_chain_other_tenant_is_404(self, client, workflow, users, auth_headers):
        wf = workflow["workflow"]
        res = client.get(
            f"/api/v1/workflows/{wf.id}/chain",
            headers=auth_headers(users[ROLE_ADMIN], tenant_id=wf.tenant_id + 1),
        )
        assert res.status_code == 404

    def test_health(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    @pytest.mark.parametrize("path", ["/api/v1/health/live"])
    def test_live(self, client, path):
        res = client.get(path)
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"
