"""
Shared pytest fixtures for the construction schedule test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created Project entity
    - make_item: factory seeding ScheduleItem rows directly
"""

from datetime import date

import pytest

from app import create_app
from app.models import db as _db
from app.models.project import Project
from app.models.schedule import ScheduleItem


# Monday 2026-03-02; every weekday below is checked against a calendar.
MONDAY = date(2026, 3, 2)


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


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project():
    """Create and return a test Project."""
    proj = Project(name="Maison Tremblay", target_start_date=MONDAY)
    _db.session.add(proj)
    _db.session.commit()
    return proj


@pytest.fixture()
def make_item(project):
    """Factory: insert one ScheduleItem for ``project`` and return it."""

    def _make(step_id, **fields):
        values = {
            "step_name": step_id.replace("-", " ").title(),
            "trade_type": "autre",
            "estimated_days": 5,
            "status": "scheduled",
        }
        values.update(fields)
        item = ScheduleItem(project_id=project.id, step_id=step_id, **values)
        _db.session.add(item)
        _db.session.commit()
        return item

    return _make
