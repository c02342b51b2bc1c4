"""
Shared pytest fixtures for the Agency Delivery Workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_stage: ORM factory for a stage with checklist items
"""

from datetime import datetime, timezone

import pytest

from app import create_app
from app.models import db as _db
from app.models.stage import ProjectStage, StageChecklistItem


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
def make_stage():
    """Factory: create a stage with ``items`` checklist entries and commit.

    ``completed`` marks the first N items as done.
    """

    def _make(project_id="proj-1", order=1, name=None, requires_client_approval=False,
              items=2, completed=0):
        stage = ProjectStage(
            project_id=project_id,
            order=order,
            name=name or f"Stage {order}",
            requires_client_approval=requires_client_approval,
        )
        _db.session.add(stage)
        _db.session.flush()
        for idx in range(items):
            done = idx < completed
            _db.session.add(StageChecklistItem(
                stage_id=stage.id,
                description=f"Item {idx + 1}",
                order=idx + 1,
                is_completed=done,
                completed_by="fixture" if done else None,
                completed_at=datetime.now(timezone.utc) if done else None,
            ))
        _db.session.commit()
        _db.session.refresh(stage)
        return stage

    return _make
