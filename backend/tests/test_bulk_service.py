import threading

import pytest
from schemas import ActivityType
from security import ValidationError
from services.bulk_service import (
    BatchState,
    BulkActionRequest,
    BulkIntent,
    BulkOrchestrator,
    PartialBatchFailure,
)
from services.identity_provider import IdentityError, UserNotFoundError


class FakeDirectory:
    def __init__(self, users, failing=None):
        self.users = {user["id"]: dict(user) for user in users}
        self.failing = failing or {}
        self.calls = []
        self._lock = threading.Lock()

    def _record(self, name, user_id):
        with self._lock:
            self.calls.append((name, user_id))
        if user_id in self.failing:
            raise self.failing[user_id]
        if user_id not in self.users:
            raise UserNotFoundError(f"User not found: {user_id}")

    def ban_user(self, user_id, reason=None):
        self._record("ban", user_id)
        self.users[user_id].update(banned=True, ban_reason=reason)

    def unban_user(self, user_id):
        self._record("unban", user_id)
        self.users[user_id].update(banned=False, ban_reason=None)

    def update_role(self, user_id, role):
        self._record("role", user_id)
        self.users[user_id]["role"] = role

    def delete_user(self, user_id):
        self._record("delete", user_id)
        del self.users[user_id]

    def find_users(self, user_ids):
        return [dict(self.users[uid]) for uid in user_ids if uid in self.users]


class FakeLog:
    def __init__(self, error=None):
        self.events = []
        self.error = error

    def append(self, **kwargs):
        if self.error:
            raise self.error
        self.events.append(kwargs)
        return None


def _users(*ids):
    return [
        {"id": uid, "email": f"{uid}@example.com", "role": "user", "banned": False}
        for uid in ids
    ]


def _request(intent, ids, **kwargs):
    return BulkActionRequest.build(intent, ids, actor="Admin", **kwargs)


def test_one_failure_fails_the_batch_without_rollback():
    directory = FakeDirectory(
        _users("u1", "u3"), failing={"u2": UserNotFoundError("User not found: u2")}
    )
    log = FakeLog()
    orchestrator = BulkOrchestrator(directory, log)

    with pytest.raises(PartialBatchFailure) as excinfo:
        orchestrator.dispatch(_request("bulk-ban", ["u1", "u2", "u3"]))

    assert excinfo.value.message == "User not found: u2"
    assert sorted(excinfo.value.succeeded) == ["u1", "u3"]
    assert sorted(uid for _, uid in directory.calls) == ["u1", "u2", "u3"]
    assert directory.users["u1"]["banned"] is True
    assert directory.users["u3"]["banned"] is True
    assert log.events == []


def test_first_failure_in_target_order_is_reported():
    directory = FakeDirectory(
        _users("u1"),
        failing={
            "u2": IdentityError("second failed"),
            "u3": IdentityError("third failed"),
        },
    )
    with pytest.raises(PartialBatchFailure) as excinfo:
        BulkOrchestrator(directory, FakeLog()).dispatch(
            _request("bulk-unban", ["u1", "u2", "u3"])
        )
    assert excinfo.value.message == "second failed"
    assert [f.target_id for f in excinfo.value.failures] == ["u2", "u3"]


def test_failure_without_message_uses_generic_text():
    directory = FakeDirectory(_users(), failing={"u1": IdentityError()})
    with pytest.raises(PartialBatchFailure) as excinfo:
        BulkOrchestrator(directory, FakeLog()).dispatch(_request("bulk-ban", ["u1"]))
    assert excinfo.value.message == "Failed to bulk ban users"


def test_successful_ban_writes_one_summary_event():
    directory = FakeDirectory(_users("u1", "u2"))
    log = FakeLog()

    result = BulkOrchestrator(directory, log).dispatch(
        _request("bulk-ban", ["u1", "u2"], ban_reason="spam")
    )

    assert result.processed == 2
    assert result.state is BatchState.REPORTED
    assert [row["id"] for row in result.confirmed] == ["u1", "u2"]
    assert all(row["ban_reason"] == "spam" for row in result.confirmed)
    assert log.events == [
        {
            "action": "Banned multiple users",
            "actor": "Admin",
            "type": ActivityType.BAN,
            "target": "u1@example.com, u2@example.com",
        }
    ]


def test_role_change_is_audited_as_edit():
    directory = FakeDirectory(_users("u1"))
    log = FakeLog()
    BulkOrchestrator(directory, log).dispatch(_request("bulk-role", ["u1"], role="admin"))

    assert directory.users["u1"]["role"] == "admin"
    assert log.events[0]["action"] == "Updated role to admin"
    assert log.events[0]["type"] is ActivityType.EDIT


def test_delete_confirms_nothing_and_is_audited():
    directory = FakeDirectory(_users("u1", "u2"))
    log = FakeLog()
    result = BulkOrchestrator(directory, log).dispatch(_request("bulk-delete", ["u1", "u2"]))

    assert result.confirmed == []
    assert directory.users == {}
    assert log.events[0]["type"] is ActivityType.DELETE
    assert log.events[0]["target"] == "u1@example.com, u2@example.com"


def test_empty_batch_is_a_no_op():
    directory = FakeDirectory(_users("u1"))
    log = FakeLog()
    result = BulkOrchestrator(directory, log).dispatch(_request("bulk-ban", []))

    assert result.processed == 0
    assert directory.calls == []
    assert log.events == []


def test_audit_failure_does_not_fail_a_successful_batch():
    directory = FakeDirectory(_users("u1"))
    result = BulkOrchestrator(directory, FakeLog(error=RuntimeError("disk full"))).dispatch(
        _request("bulk-ban", ["u1"])
    )
    assert result.processed == 1
    assert result.activity is None


def test_targets_are_dispatched_concurrently():
    barrier = threading.Barrier(3, timeout=5)

    class BarrierDirectory(FakeDirectory):
        def unban_user(self, user_id):
            barrier.wait()
            super().unban_user(user_id)

    directory = BarrierDirectory(_users("u1", "u2", "u3"))
    result = BulkOrchestrator(directory, FakeLog(), max_workers=3).dispatch(
        _request("bulk-unban", ["u1", "u2", "u3"])
    )
    assert result.processed == 3


def test_duplicate_targets_are_dispatched_once():
    request = _request("bulk-ban", ["u1", "u1", "", "u2"])
    assert request.target_ids == ("u1", "u2")


def test_unknown_intent_is_rejected():
    with pytest.raises(ValidationError) as excinfo:
        _request("bulk-promote", ["u1"])
    assert excinfo.value.message == "Unsupported bulk action"


@pytest.mark.parametrize("role", [None, "", "owner"])
def test_role_change_requires_a_known_role(role):
    with pytest.raises(ValidationError) as excinfo:
        _request("bulk-role", ["u1"], role=role)
    assert excinfo.value.message == "Invalid role selected"


def test_intent_values_match_wire_names():
    assert {intent.value for intent in BulkIntent} == {
        "bulk-ban",
        "bulk-unban",
        "bulk-role",
        "bulk-delete",
    }
