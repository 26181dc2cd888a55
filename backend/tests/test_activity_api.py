import re

import pytest


def test_reads_and_writes_are_inert_before_setup(client):
    listed = client.get("/api/activity")
    assert listed.status_code == 200
    assert listed.get_json() == {"activities": []}

    logged = client.post(
        "/api/activity", json={"action": "Created user", "user": "Admin", "type": "create"}
    )
    assert logged.status_code == 200
    assert logged.get_json() == {
        "success": True,
        "activity": None,
        "message": "Activity logging disabled during setup",
    }


@pytest.mark.usefixtures("configured")
def test_listing_requires_an_administrator(client, user_headers):
    assert client.get("/api/activity").status_code == 401
    forbidden = client.get("/api/activity", headers=user_headers)
    assert forbidden.status_code == 403
    assert forbidden.get_json()["error"]["code"] == "forbidden"


@pytest.mark.usefixtures("configured")
def test_logging_requires_an_administrator(client, user_headers):
    payload = {"action": "Created user", "user": "Admin", "type": "create"}
    assert client.post("/api/activity", json=payload).status_code == 401
    assert client.post("/api/activity", json=payload, headers=user_headers).status_code == 403


@pytest.mark.usefixtures("configured")
def test_log_then_list(client, admin_headers):
    logged = client.post(
        "/api/activity",
        json={
            "action": "Created user",
            "user": "Admin User",
            "type": "create",
            "target": "bob@example.com",
            "metadata": {"source": "dashboard"},
        },
        headers=admin_headers,
    )
    assert logged.status_code == 200
    body = logged.get_json()
    assert body["success"] is True
    activity = body["activity"]
    assert re.match(r"^\d+-[a-z0-9]{7}$", activity["id"])

    listed = client.get("/api/activity", headers=admin_headers)
    assert listed.status_code == 200
    activities = listed.get_json()["activities"]
    assert activities == [activity]
    assert activities[0]["metadata"] == {"source": "dashboard"}
    assert activities[0]["user"] == "Admin User"
    assert activities[0]["createdAt"] == activities[0]["timestamp"]


@pytest.mark.usefixtures("configured")
def test_listing_honours_pagination(client, admin_headers):
    for index in range(3):
        client.post(
            "/api/activity",
            json={"action": f"Edit {index}", "user": "Admin", "type": "edit"},
            headers=admin_headers,
        )

    page = client.get("/api/activity?limit=2&offset=1", headers=admin_headers)
    assert [item["action"] for item in page.get_json()["activities"]] == ["Edit 1", "Edit 0"]

    bad = client.get("/api/activity?limit=0", headers=admin_headers)
    assert bad.status_code == 400
    assert bad.get_json()["error"]["code"] == "invalid_query"


@pytest.mark.usefixtures("configured")
def test_missing_fields_are_reported(client, admin_headers):
    response = client.post(
        "/api/activity", json={"action": "Created user"}, headers=admin_headers
    )
    assert response.status_code == 400
    error = response.get_json()["error"]
    assert error["message"] == "Missing required field(s): user, type"
    assert error["details"]["fields"] == ["user", "type"]


@pytest.mark.usefixtures("configured")
def test_writes_need_a_csrf_header(client, admin_headers):
    headers = {"Authorization": admin_headers["Authorization"]}
    response = client.post(
        "/api/activity",
        json={"action": "Created user", "user": "Admin", "type": "create"},
        headers=headers,
    )
    assert response.status_code == 403
    assert response.get_json()["error"]["code"] == "invalid_csrf"


def test_unreachable_backend_reports_failure(client, configured, admin_headers, tmp_path):
    assert client.get("/api/activity", headers=admin_headers).status_code == 200

    # The gate answer is cached, so the broken backend surfaces on the next query.
    (tmp_path / "audit" / "activity.db").unlink()
    (tmp_path / "audit").rmdir()

    response = client.get("/api/activity", headers=admin_headers)
    assert response.status_code == 500
    assert response.get_json()["error"]["message"] == "Failed to fetch activities"
