"""
Shared pytest fixtures for the Nirman Works Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - super_admin / admin / engineer: Actor instances
    - refs: one row of every reference kind ({kind: id})
    - proposal_data / make_proposal: valid create payload + factory
    - advance: drive a proposal forward through the real lifecycle operations
    - force_status: super-admin status override (reaches otherwise unused statuses)
"""

import pytest

from app import create_app
from app.auth import Actor
from app.models import db as _db
from app.models.reference import REFERENCE_KINDS
from app.models.work_proposal import (
    PENDING_ADMINISTRATIVE,
    PENDING_TECHNICAL,
    PENDING_TENDER,
    PENDING_WORK_ORDER,
)
from app.services import work_proposal_lifecycle as lifecycle

SUBMITTER_ID = "submitter-1"
ENGINEER_ID = "engineer-7"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Actors ───────────────────────────────────────────────────────────────


@pytest.fixture()
def super_admin():
    return Actor(user_id="root-1", role="super_admin")


@pytest.fixture()
def admin():
    return Actor(user_id="admin-1", role="admin", department="PWD")


@pytest.fixture()
def engineer():
    return Actor(user_id=ENGINEER_ID, role="engineer")


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def refs():
    """One row of every reference kind; returns {kind: id}."""
    ids = {}
    for kind, (model, _attrs) in REFERENCE_KINDS.items():
        obj = model(name=f"Test {kind.replace('_', ' ')}")
        _db.session.add(obj)
        _db.session.flush()
        ids[kind] = obj.id
    _db.session.commit()
    return ids


@pytest.fixture()
def proposal_data(refs):
    """A complete, valid create payload."""
    return {
        "type_of_work_id": refs["type_of_work"],
        "name_of_work": "CC road from bus stand to ward office",
        "work_agency_id": refs["work_agency"],
        "scheme_id": refs["scheme"],
        "work_description": "Cement concrete road, 450 m, with side drain",
        "financial_year": "2024-25",
        "work_department_id": refs["department"],
        "approving_department_id": refs["department"],
        "sanction_amount": 1500000,
        "type_of_location_id": refs["type_of_location"],
        "city_id": refs["city"],
        "ward_id": refs["ward"],
        "appointed_engineer_id": ENGINEER_ID,
        "appointed_sdo_id": refs["sdo"],
        "estimated_completion_date": "2025-03-31",
        "is_tender_required": False,
    }


@pytest.fixture()
def make_proposal(proposal_data):
    """Factory: create a proposal, overriding any payload field."""
    def _make(**overrides):
        data = {**proposal_data, **overrides}
        return lifecycle.create_proposal(data, SUBMITTER_ID)
    return _make


@pytest.fixture()
def advance(admin):
    """Move a proposal forward with the real operations until ``target``."""
    def _advance(proposal, target):
        pid = proposal.id
        while proposal.current_status != target:
            status = proposal.current_status
            if status == PENDING_TECHNICAL:
                proposal = lifecycle.technical_approval(
                    pid, "approve", {"approval_number": f"TA-{pid}"}, admin,
                )
            elif status == PENDING_ADMINISTRATIVE:
                proposal = lifecycle.administrative_approval(
                    pid, "approve", {"approval_number": f"AA-{pid}"}, admin,
                )
            elif status == PENDING_TENDER:
                proposal = lifecycle.start_tender_process(
                    pid, {"tender_title": f"Tender {pid}", "tender_number": f"TN-{pid}"}, admin,
                )
            elif status == PENDING_WORK_ORDER:
                proposal = lifecycle.create_work_order(
                    pid, f"WO-{pid}", "2024-06-01", "Shree Builders", None, admin,
                )
            else:
                raise AssertionError(f"No forward step from {status!r} to {target!r}")
        return proposal
    return _advance


@pytest.fixture()
def force_status(super_admin):
    """Set a status directly through the super-admin override."""
    def _force(proposal, status):
        return lifecycle.update_proposal(proposal.id, {"current_status": status}, super_admin)
    return _force
