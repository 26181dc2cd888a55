import re

import pytest
from conftest import steady_clock
from infra.db_adapter import (
    AuditConnection,
    BackendConnectionError,
    ClientServerAdapter,
    ConnectionManager,
    EmbeddedAdapter,
)
from schemas import ActivityType, BackendKind, ClientServerDescriptor, EmbeddedDescriptor
from security import ValidationError
from services.activity_log import ActivityLog
from sqlalchemy import create_engine

TIMESTAMP_RE = re.compile(r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{3}Z$")
ID_RE = re.compile(r"^\d+-[a-z0-9]{7}$")


class StaticGate:
    def __init__(self, complete=True, configured=None):
        self.complete = complete
        self.configured = complete if configured is None else configured

    def is_setup_complete(self):
        return self.complete

    def is_configured(self):
        return self.configured


class StaticConfig:
    def __init__(self, descriptor=None):
        self.descriptor = descriptor

    def load_descriptor(self):
        return self.descriptor


class UntouchableManager:
    def open(self, descriptor):
        raise AssertionError("storage must not be touched")


@pytest.fixture()
def embedded(tmp_path):
    return EmbeddedDescriptor(path=str(tmp_path / "audit.db"))


@pytest.fixture()
def log(embedded):
    audit = ActivityLog(
        StaticGate(), StaticConfig(embedded), ConnectionManager(), clock=steady_clock()
    )
    audit.ensure_schema(embedded)
    return audit


def test_append_then_list_returns_the_event(log):
    event = log.append(
        action="Created user", actor="Admin", type="create", target="bob@example.com"
    )

    assert ID_RE.match(event.id)
    assert TIMESTAMP_RE.match(event.timestamp)
    assert event.created_at == event.timestamp

    listed = log.list(limit=10)
    assert len(listed) == 1
    stored = listed[0]
    assert stored.id == event.id
    assert stored.action == "Created user"
    assert stored.actor == "Admin"
    assert stored.target == "bob@example.com"
    assert stored.type is ActivityType.CREATE
    assert stored.metadata is None
    assert stored.to_dict()["user"] == "Admin"


def test_list_is_newest_first_and_paginated(log):
    for index in range(5):
        log.append(action=f"Action {index}", actor="Admin", type="edit")

    first_page = log.list(limit=2, offset=0)
    second_page = log.list(limit=2, offset=2)
    assert [event.action for event in first_page] == ["Action 4", "Action 3"]
    assert [event.action for event in second_page] == ["Action 2", "Action 1"]
    assert log.list(limit=10, offset=5) == []


def test_metadata_round_trips_as_structured_data(log):
    metadata = {"reason": "spam", "ids": ["a", "b"], "nested": {"count": 2}}
    log.append(action="Banned user", actor="Admin", type="ban", metadata=metadata)
    assert log.list()[0].metadata == metadata


@pytest.mark.parametrize(
    "kwargs, missing",
    [
        ({"action": None, "actor": "Admin", "type": "create"}, "action"),
        ({"action": "Did it", "actor": "", "type": "create"}, "user"),
        ({"action": "Did it", "actor": "Admin", "type": None}, "type"),
    ],
)
def test_missing_fields_are_rejected_before_storage(kwargs, missing):
    audit = ActivityLog(StaticGate(True), StaticConfig(), UntouchableManager())
    with pytest.raises(ValidationError) as excinfo:
        audit.append(**kwargs)
    assert excinfo.value.message == f"Missing required field(s): {missing}"


def test_unknown_type_is_rejected():
    audit = ActivityLog(StaticGate(True), StaticConfig(), UntouchableManager())
    with pytest.raises(ValidationError):
        audit.append(action="Did it", actor="Admin", type="promote")


def test_closed_gate_skips_storage_entirely():
    audit = ActivityLog(StaticGate(False), StaticConfig(), UntouchableManager())
    assert audit.append(action="Created user", actor="Admin", type="create") is None
    assert audit.list() == []


def test_configured_but_unreachable_backend_raises_instead_of_skipping():
    audit = ActivityLog(StaticGate(False, configured=True), StaticConfig(), UntouchableManager())
    with pytest.raises(BackendConnectionError):
        audit.append(action="Created user", actor="Admin", type="create")
    with pytest.raises(BackendConnectionError):
        audit.list()


def test_invalid_pagination_is_rejected(log):
    with pytest.raises(ValidationError):
        log.list(limit=0)
    with pytest.raises(ValidationError):
        log.list(offset=-1)


def test_reconfiguration_is_picked_up_by_the_next_write(tmp_path, monkeypatch, embedded):
    def fake_engine(descriptor):
        return create_engine(f"sqlite:///{tmp_path / 'client-server.db'}")

    manager = ConnectionManager(
        {
            BackendKind.EMBEDDED: EmbeddedAdapter(),
            BackendKind.CLIENT_SERVER: ClientServerAdapter(engine_factory=fake_engine),
        }
    )
    client_server = ClientServerDescriptor(host="db.internal", database="audit", user="steward")
    config = StaticConfig(embedded)
    audit = ActivityLog(StaticGate(), config, manager, clock=steady_clock())
    audit.ensure_schema(embedded)
    audit.ensure_schema(client_server)

    statements = []
    original_execute = AuditConnection.execute

    def recording_execute(self, sql, params=()):
        statements.append((self.kind, sql))
        return original_execute(self, sql, params)

    monkeypatch.setattr(AuditConnection, "execute", recording_execute)

    audit.append(action="Before switch", actor="Admin", type="create")
    config.descriptor = client_server
    audit.append(action="After switch", actor="Admin", type="create")

    assert [kind for kind, _ in statements] == [BackendKind.EMBEDDED, BackendKind.CLIENT_SERVER]
    embedded_sql, client_server_sql = (sql for _, sql in statements)
    assert "?" in embedded_sql and "$1" not in embedded_sql
    assert "$1" in client_server_sql and '"user"' in client_server_sql

    assert [event.action for event in audit.list()] == ["After switch"]
    config.descriptor = embedded
    assert [event.action for event in audit.list()] == ["Before switch"]


def test_append_accepts_positional_target_before_type(log):
    event = log.append("Deleted user", "Admin", "bob@example.com", "delete", {"soft": False})
    assert event.target == "bob@example.com"
    assert event.type is ActivityType.DELETE
    assert event.metadata == {"soft": False}
