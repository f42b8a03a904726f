"""
Shared pytest fixtures for the Participant Accreditation Platform test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - default_tenant: Pre-created Tenant entity
    - roles / make_user / users: system roles and one user per role
    - event / participant_type / workflow: the standard five-step chain
    - participant: a freshly registered participant at "Request Received"
    - sender: recording notification sender installed on the app
    - auth_headers: bearer-token header builder for a user
"""

import jwt
import pytest

from app import create_app
from app.models import db as _db
from app.models.auth import (
    ROLE_ADMIN,
    ROLE_FIRST_VALIDATOR,
    ROLE_PRINTER,
    ROLE_SECOND_VALIDATOR,
    Role,
    Tenant,
    User,
    UserRole,
    ensure_system_roles,
)
from app.models.event import Event, ParticipantType
from app.services import participant_service, step_graph
from app.services.notification_sender import NotificationSender

TEST_JWT_SECRET = "test-jwt-secret"

# Standard chain, authored tail-first so every ``next`` already exists
STANDARD_CHAIN = [
    ("Request Received", ROLE_FIRST_VALIDATOR),
    ("Second Validation", ROLE_SECOND_VALIDATOR),
    ("MOFA Print", ROLE_PRINTER),
    ("Notification", ROLE_PRINTER),
    ("Badge Collection", ROLE_PRINTER),
]


def _ensure_default_tenant():
    t = Tenant.query.filter_by(slug="test-default").first()
    if not t:
        t = Tenant(name="Test Default", slug="test-default")
        _db.session.add(t)
        _db.session.commit()
    return t.id


class RecordingSender(NotificationSender):
    """Captures messages instead of delivering them; ``fail=True`` makes send raise."""

    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    def send(self, to, subject, body, *, html=None, category="system", participant_id=None):
        if self.fail:
            raise ConnectionError("SMTP relay unreachable")
        self.sent.append({
            "to": to, "subject": subject, "body": body, "html": html,
            "category": category, "participant_id": participant_id,
        })

    def of_category(self, category):
        return [m for m in self.sent if m["category"] == category]


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        _ensure_default_tenant()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def default_tenant():
    """Return the auto-created default test tenant."""
    return Tenant.query.filter_by(slug="test-default").first()


# ── Identity fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def roles():
    ensure_system_roles()
    _db.session.commit()
    return {r.name: r for r in Role.query.all()}


@pytest.fixture()
def make_user(default_tenant, roles):
    """Factory: make_user("a@x.org", ["printer"], tenant=None) -> User."""

    def _make(email, role_names=(), full_name=None, tenant=None):
        tenant = tenant or default_tenant
        user = User(tenant_id=tenant.id, email=email, full_name=full_name or email.split("@")[0])
        _db.session.add(user)
        _db.session.flush()
        for name in role_names:
            _db.session.add(UserRole(user_id=user.id, role_id=roles[name].id))
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def users(make_user):
    return {
        ROLE_ADMIN: make_user("admin@accr.test", [ROLE_ADMIN], "Ada Admin"),
        ROLE_FIRST_VALIDATOR: make_user("first@accr.test", [ROLE_FIRST_VALIDATOR], "Fay First"),
        ROLE_SECOND_VALIDATOR: make_user("second@accr.test", [ROLE_SECOND_VALIDATOR], "Sam Second"),
        ROLE_PRINTER: make_user("printer@accr.test", [ROLE_PRINTER], "Pat Printer"),
    }


@pytest.fixture()
def auth_headers():
    """Build an Authorization header carrying the user's id, tenant and roles."""

    def _headers(user, role_names=None, tenant_id=None):
        token = jwt.encode(
            {
                "sub": str(user.id),
                "tenant_id": tenant_id if tenant_id is not None else user.tenant_id,
                "roles": list(role_names if role_names is not None else user.role_names),
            },
            TEST_JWT_SECRET,
            algorithm="HS256",
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


# ── Workflow fixtures ────────────────────────────────────────────────────


@pytest.fixture()
def event(default_tenant):
    from datetime import date

    ev = Event(tenant_id=default_tenant.id, name="Summit 2026", start_date=date(2026, 11, 3))
    _db.session.add(ev)
    _db.session.commit()
    return ev


@pytest.fixture()
def participant_type(default_tenant):
    pt = ParticipantType(tenant_id=default_tenant.id, name="Delegate")
    _db.session.add(pt)
    _db.session.commit()
    return pt


def build_chain(workflow_id, chain=STANDARD_CHAIN):
    """Author ``chain`` on a workflow; returns {step name: Step}."""
    steps = {}
    next_id = None
    for name, role_name in reversed(chain):
        step = step_graph.add_step(workflow_id, name, role_name, next_step_id=next_id)
        steps[name] = step
        next_id = step.id
    return steps


@pytest.fixture()
def workflow(default_tenant, event, participant_type, roles):
    wf = step_graph.create_workflow(default_tenant.id, event.id, participant_type.id, "Delegates")
    steps = build_chain(wf.id)
    return {"workflow": wf, "steps": steps}


@pytest.fixture()
def steps(workflow):
    return workflow["steps"]


@pytest.fixture()
def participant(default_tenant, event, participant_type, workflow):
    return participant_service.register_participant(
        default_tenant.id, event.id, participant_type.id,
        {"email": "jane.doe@delegates.org", "first_name": "Jane", "family_name": "Doe",
         "organization": "Ministry of Culture"},
    )


@pytest.fixture()
def sender(app):
    """Install a RecordingSender as the app's notification sender."""
    recording = RecordingSender()
    app.extensions["notification_sender"] = recording
    yield recording
    app.extensions.pop("notification_sender", None)


@pytest.fixture()
def chain_builder():
    """Expose ``build_chain`` to tests that author their own workflows."""
    return build_chain
