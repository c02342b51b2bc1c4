"""
Tests: agency-facing workflow API (/api/v1).

Exercises the blueprint layer: status codes, JSON error bodies and the
X-User actor header.  Business rules are covered in test_workflow_service.
"""

from app.models.approval import ApprovalChangeRequest


HEADERS = {"X-User": "alice"}


def _setup(client, project_id="proj-1"):
    res = client.post(f"/api/v1/projects/{project_id}/stages", json={"stages": [
        {"name": "Briefing", "requires_client_approval": True, "items": ["Kick-off", "Sitemap"]},
        {"name": "Design", "items": ["Layouts"]},
        {"name": "Launch", "items": ["DNS"]},
    ]})
    assert res.status_code == 201
    return res.get_json()


def _complete_stage(client, stage):
    for item in stage["items"]:
        res = client.post(f"/api/v1/checklist-items/{item['id']}/toggle", headers=HEADERS)
        assert res.status_code == 200


def test_setup_and_read_workflow(client):
    created = _setup(client)
    assert [s["name"] for s in created["stages"]] == ["Briefing", "Design", "Launch"]

    res = client.get("/api/v1/projects/proj-1/workflow")
    assert res.status_code == 200
    body = res.get_json()
    assert [s["blocked"] for s in body["stages"]] == [False, True, True]
    assert body["stages"][0]["progress"]["percent"] == 0


def test_setup_twice_conflicts(client):
    _setup(client)
    res = client.post("/api/v1/projects/proj-1/stages", json={"stages": [{"name": "X"}]})
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"


def test_setup_without_stages_is_400(client):
    res = client.post("/api/v1/projects/proj-1/stages", json={})
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"


def test_toggle_records_actor_from_header(client):
    wf = _setup(client)
    item = wf["stages"][0]["items"][0]
    res = client.post(f"/api/v1/checklist-items/{item['id']}/toggle", headers=HEADERS)
    assert res.status_code == 200
    assert res.get_json()["item"]["completed_by"] == "alice"


def test_toggle_without_header_uses_system_actor(client):
    wf = _setup(client)
    item = wf["stages"][0]["items"][0]
    res = client.post(f"/api/v1/checklist-items/{item['id']}/toggle")
    assert res.get_json()["item"]["completed_by"] == "system"


def test_toggle_blocked_stage_is_409_not_yet(client):
    wf = _setup(client)
    item = wf["stages"][1]["items"][0]
    res = client.post(f"/api/v1/checklist-items/{item['id']}/toggle", headers=HEADERS)
    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_STAGE_BLOCKED"
    assert body["details"]["state"] == "not_yet"
    assert body["details"]["blocking_stage_name"] == "Briefing"


def test_toggle_unknown_item_is_404(client):
    res = client.post("/api/v1/checklist-items/9999/toggle", headers=HEADERS)
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_completing_stage_returns_event(client):
    wf = _setup(client)
    items = wf["stages"][0]["items"]
    client.post(f"/api/v1/checklist-items/{items[0]['id']}/toggle", headers=HEADERS)
    res = client.post(f"/api/v1/checklist-items/{items[1]['id']}/toggle", headers=HEADERS)
    assert res.get_json()["events"][0]["type"] == "stage_completed"


def test_requires_approval_patch(client):
    wf = _setup(client)
    stage_id = wf["stages"][0]["id"]
    res = client.patch(f"/api/v1/stages/{stage_id}/requires-approval",
                       json={"requires_client_approval": False})
    assert res.status_code == 200
    assert res.get_json()["requires_client_approval"] is False

    body = client.get("/api/v1/projects/proj-1/workflow").get_json()
    assert [s["blocked"] for s in body["stages"]] == [False, False, False]


def test_requires_approval_patch_rejects_non_boolean(client):
    wf = _setup(client)
    stage_id = wf["stages"][0]["id"]
    res = client.patch(f"/api/v1/stages/{stage_id}/requires-approval",
                       json={"requires_client_approval": "perhaps"})
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"


def test_requires_approval_unknown_stage(client):
    res = client.patch("/api/v1/stages/999/requires-approval",
                       json={"requires_client_approval": True})
    assert res.status_code == 404


def test_request_approval_flow(client):
    wf = _setup(client)
    stage = wf["stages"][0]

    res = client.post(f"/api/v1/stages/{stage['id']}/approvals", json={"notes": "ok?"}, headers=HEADERS)
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_NOT_READY"

    _complete_stage(client, stage)
    res = client.post(f"/api/v1/stages/{stage['id']}/approvals",
                      json={"notes": "ok?", "client_email": "client@example.com"}, headers=HEADERS)
    assert res.status_code == 201
    body = res.get_json()
    assert body["share_url"].startswith("https://workflow.test/approval/")
    assert body["approval"]["requested_by"] == "alice"
    assert body["approval"]["client_email"] == "client@example.com"

    res = client.post(f"/api/v1/stages/{stage['id']}/approvals", json={}, headers=HEADERS)
    assert res.status_code == 409
    assert res.get_json()["code"] == "ERR_ALREADY_PENDING"

    res = client.get(f"/api/v1/stages/{stage['id']}/approvals")
    assert res.status_code == 200
    assert res.get_json()["total"] == 1

    res = client.get("/api/v1/approvals/pending?project_id=proj-1")
    assert res.get_json()["items"][0]["stage_name"] == "Briefing"


def test_list_approvals_unknown_stage(client):
    assert client.get("/api/v1/stages/999/approvals").status_code == 404


def test_resolve_change_request_endpoint(client):
    wf = _setup(client)
    stage = wf["stages"][0]
    _complete_stage(client, stage)
    token = client.post(f"/api/v1/stages/{stage['id']}/approvals", json={}, headers=HEADERS) \
        .get_json()["approval"]["approval_token"]
    client.post(f"/approval/{token}", json={
        "decision": "request_changes", "approver_name": "Carol", "approver_email": "carol@example.com",
        "change_description": "More blue",
    })

    change = ApprovalChangeRequest.query.one()
    res = client.post(f"/api/v1/approval-changes/{change.id}/resolve", headers=HEADERS)
    assert res.status_code == 200
    assert res.get_json()["resolved_by"] == "alice"

    res = client.post(f"/api/v1/approval-changes/{change.id}/resolve", headers=HEADERS)
    assert res.status_code == 409


def test_attachment_endpoints(client):
    wf = _setup(client)
    stage = wf["stages"][0]
    res = client.post(f"/api/v1/stages/{stage['id']}/attachments", json={
        "file_name": "sitemap.pdf", "file_url": "https://files.example.com/sitemap.pdf", "file_size": 1200,
    }, headers=HEADERS)
    assert res.status_code == 201
    assert res.get_json()["uploaded_by"] == "alice"

    res = client.post(f"/api/v1/stages/{stage['id']}/attachments",
                      json={"file_name": "x", "file_url": "ftp://files.example.com/x"}, headers=HEADERS)
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    res = client.get(f"/api/v1/stages/{stage['id']}/attachments")
    assert res.status_code == 200
    body = res.get_json()
    assert body["total"] == 1
    assert body["items"][0]["file_name"] == "sitemap.pdf"

    assert client.get("/api/v1/stages/999/attachments").status_code == 404
    assert client.post("/api/v1/stages/999/attachments", json={}).status_code == 404


def test_approval_settings_roundtrip(client):
    res = client.get("/api/v1/approval-settings")
    assert res.get_json() == {
        "days_before_notification": 3,
        "notification_frequency_days": 2,
        "email_enabled": True,
    }

    res = client.put("/api/v1/approval-settings",
                     json={"days_before_notification": 5, "email_enabled": False})
    assert res.status_code == 200
    assert res.get_json()["days_before_notification"] == 5
    assert client.get("/api/v1/approval-settings").get_json()["email_enabled"] is False


def test_approval_settings_validation(client):
    res = client.put("/api/v1/approval-settings", json={"notification_frequency_days": -1})
    assert res.status_code == 400


def test_notifications_list_and_mark_read(client):
    wf = _setup(client)
    stage = wf["stages"][0]
    _complete_stage(client, stage)
    client.post(f"/api/v1/stages/{stage['id']}/approvals", json={}, headers=HEADERS)

    res = client.get("/api/v1/notifications?project_id=proj-1&unread_only=true", headers=HEADERS)
    body = res.get_json()
    assert body["total"] == 1
    nid = body["items"][0]["id"]

    res = client.post(f"/api/v1/notifications/{nid}/read", headers=HEADERS)
    assert res.status_code == 200
    assert res.get_json()["is_read"] is True

    res = client.get("/api/v1/notifications?unread_only=true", headers=HEADERS)
    assert res.get_json()["total"] == 0

    assert client.post("/api/v1/notifications/999/read").status_code == 404


def test_non_json_body_is_415(client):
    res = client.post("/api/v1/projects/p/stages", data="stages=1", content_type="text/plain")
    assert res.status_code == 415


def test_unknown_api_route_is_json_404(client):
    res = client.get("/api/v1/nope")
    assert res.status_code == 404
    assert res.get_json()["error"] == "Not found"


def test_health_endpoints(client):
    assert client.get("/api/v1/health/ready").get_json() == {"status": "ok"}
    res = client.get("/api/v1/health/live")
    assert res.status_code == 200
    assert res.get_json()["checks"]["database"]["status"] == "ok"
    res = client.get("/api/v1/health/db-diag")
    assert res.get_json()["project_stages"]["status"] == "ok"


def test_response_carries_request_id(client):
    res = client.get("/api/v1/health/ready", headers={"X-Request-ID": "abc123"})
    assert res.headers["X-Request-ID"] == "abc123"
    assert "X-Request-Duration-Ms" in res.headers
