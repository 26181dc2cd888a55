import itertools
import os
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from pathlib import Path

_TEST_ROOT = Path(tempfile.mkdtemp(prefix="steward-tests-"))
os.environ["DATABASE_URL"] = (
    os.environ.get("TEST_DATABASE_URL") or f"sqlite:///{_TEST_ROOT / 'identity.db'}"
)
os.environ["STEWARD_CONFIG_PATH"] = str(_TEST_ROOT / "config.json")
os.environ.pop("STEWARD_API_KEY", None)

import pytest  # noqa: E402
from app import app  # noqa: E402
from extensions import config_store, connection_manager, db, setup_gate  # noqa: E402
from infra import rate_limiter  # noqa: E402
from repositories import users_repo  # noqa: E402
from security import issue_access_token  # noqa: E402
from services import setup_service  # noqa: E402
from services.common import activity_log  # noqa: E402


def steady_clock(start=None, step=timedelta(seconds=1)):
    """Clock that advances by ``step`` on every call."""
    base = start or datetime(2025, 3, 1, 12, 0, tzinfo=timezone.utc)
    ticks = itertools.count()
    return lambda: base + step * next(ticks)


@pytest.fixture()
def client(tmp_path, monkeypatch):
    app.config.update({"TESTING": True, "API_KEY": None})
    monkeypatch.setattr(config_store, "path", tmp_path / "config.json")
    monkeypatch.setattr(activity_log, "clock", steady_clock())
    connection_manager.dispose()
    setup_gate.invalidate()
    rate_limiter.reset()

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.create_all()

    with app.test_client() as test_client:
        yield test_client

    connection_manager.dispose()
    setup_gate.invalidate()
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def audit_descriptor(tmp_path):
    return {"type": "embedded", "path": str(tmp_path / "audit" / "activity.db")}


@pytest.fixture()
def configured(client, audit_descriptor):
    """Run initial setup against an embedded audit database."""
    with app.app_context():
        setup_service.complete_setup(
            audit_descriptor,
            config_store=config_store,
            connection_manager=connection_manager,
            activity_log=activity_log,
            gate=setup_gate,
        )
    return audit_descriptor


@pytest.fixture()
def make_user(client):
    def _make(email=None, role="user", name=None):
        email = email or f"user_{uuid.uuid4().hex[:8]}@example.com"
        with app.app_context():
            user_id = users_repo.create_user(
                uuid.uuid4().hex, email, name or email.split("@")[0], "hash", role=role
            )
            return users_repo.get_user_by_id(user_id)

    return _make


def auth_headers(user):
    with app.app_context():
        tokens = issue_access_token(user)
    return {
        "Authorization": f"Bearer {tokens['access_token']}",
        "X-CSRF-Token": tokens["csrf_token"],
    }


@pytest.fixture()
def admin_user(make_user):
    return make_user(email="admin@example.com", role="admin", name="Admin User")


@pytest.fixture()
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture()
def user_headers(make_user):
    return auth_headers(make_user(email="member@example.com"))
