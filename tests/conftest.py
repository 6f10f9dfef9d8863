"""
Shared pytest fixtures for the Workflow X-Ray test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test app context, DB reset and analysis cache reset (autouse)
    - client: Flask test client (function-scoped)
    - raw_decomposition: A well-formed model payload (dict)
"""

import copy

import pytest

from workflow_xray import create_app
from workflow_xray.models import db as _db


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
    """Per-test: open app context, clear the analysis cache, recreate tables after."""
    with app.app_context():
        app.extensions["analysis_cache"].backend.clear()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Payload fixtures ─────────────────────────────────────────────────────

_RAW_DECOMPOSITION = {
    "title": "Invoice Approval",
    "steps": [
        {
            "id": "step_1", "name": "Receive invoice",
            "description": "Invoices arrive by email.",
            "owner": "AP Clerk", "layer": "human",
            "inputs": ["invoice email"], "outputs": ["invoice record"], "tools": ["Outlook"],
            "automationScore": 40, "dependencies": [],
        },
        {
            "id": "step_2", "name": "Match purchase order",
            "description": "Clerk matches the invoice to a PO.",
            "owner": "AP Clerk", "layer": "human",
            "inputs": ["invoice record"], "outputs": ["matched invoice"], "tools": ["ERP"],
            "automationScore": 60, "dependencies": ["step_1"],
        },
        {
            "id": "step_3", "name": "Approve payment",
            "description": "Finance manager approves the payment.",
            "owner": "Finance Manager", "layer": "human",
            "inputs": ["matched invoice"], "outputs": ["approval"], "tools": [],
            "automationScore": 10, "dependencies": ["step_2"],
        },
    ],
    "gaps": [
        {
            "type": "single_dependency", "severity": "high", "stepIds": ["step_3"],
            "description": "Only the finance manager can approve payments.",
            "suggestion": "Add a delegate approver.",
        },
    ],
}


@pytest.fixture()
def raw_decomposition():
    """A fresh copy of a schema-valid model payload."""
    return copy.deepcopy(_RAW_DECOMPOSITION)
