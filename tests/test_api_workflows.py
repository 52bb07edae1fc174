"""HTTP tests for /api/v1/statuses, /api/v1/workflows and /api/v1/workflow-rules."""

import pytest

pytestmark = pytest.mark.integration


def _create_statuses(client, headers, *names):
    ids = []
    for name in names:
        res = client.post("/api/v1/statuses", json={"name": name}, headers=headers)
        assert res.status_code == 201
        ids.append(res.get_json()["id"])
    return ids


def _create_workflow(client, headers, status_ids, **extra):
    res = client.post(
        "/api/v1/workflows",
        json={"name": "Support", "status_ids": status_ids, "initial_status_id": status_ids[0], **extra},
        headers=headers,
    )
    assert res.status_code == 201
    return res.get_json()


class TestOrganizationContext:
    def test_missing_organization(self, client):
        res = client.get("/api/v1/workflows")
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_ORGANIZATION_REQUIRED"

    def test_unknown_organization(self, client):
        res = client.get("/api/v1/workflows", headers={"X-Organization-Id": "404"})
        assert res.status_code == 404

    def test_query_parameter_is_accepted(self, client, org):
        res = client.get(f"/api/v1/statuses?organization_id={org.id}")
        assert res.status_code == 200

    def test_health_needs_no_organization(self, client):
        assert client.get("/api/v1/health").get_json()["status"] == "ok"


class TestWorkflowEndpoints:
    def test_build_workflow(self, client, headers):
        new, triage, closed = _create_statuses(client, headers, "New", "Triage", "Closed")
        wf = _create_workflow(client, headers, [new, triage, closed])
        assert [s["status_id"] for s in wf["statuses"]] == [new, triage, closed]

        res = client.post(
            f"/api/v1/workflows/{wf['id']}/transitions",
            json={"name": "Triage", "from_status_id": new, "to_status_id": triage,
                  "conditions": [{"name": "actor_in_list", "params": {"user_ids": [1]}}]},
            headers=headers,
        )
        assert res.status_code == 201
        assert res.get_json()["conditions"][0]["params"] == {"user_ids": [1]}

        res = client.get(f"/api/v1/workflows/{wf['id']}/validate", headers=headers)
        body = res.get_json()
        assert body["valid"] is False
        assert [e["status_id"] for e in body["errors"]] == [closed]

        client.post(
            f"/api/v1/workflows/{wf['id']}/transitions",
            json={"name": "Close", "from_status_id": triage, "to_status_id": closed},
            headers=headers,
        )
        assert client.get(f"/api/v1/workflows/{wf['id']}/validate", headers=headers).get_json()["valid"]

    def test_duplicate_transition_is_409(self, client, headers):
        a, b = _create_statuses(client, headers, "A", "B")
        wf = _create_workflow(client, headers, [a, b])
        payload = {"name": "Go", "from_status_id": a, "to_status_id": b}
        assert client.post(f"/api/v1/workflows/{wf['id']}/transitions", json=payload, headers=headers).status_code == 201
        res = client.post(f"/api/v1/workflows/{wf['id']}/transitions", json=payload, headers=headers)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_same_name_to_other_target_is_409(self, client, headers):
        a, b, c = _create_statuses(client, headers, "A", "B", "C")
        wf = _create_workflow(client, headers, [a, b, c])
        url = f"/api/v1/workflows/{wf['id']}/transitions"
        assert client.post(url, json={"name": "Go", "from_status_id": a, "to_status_id": b}, headers=headers).status_code == 201
        res = client.post(url, json={"name": "Go", "from_status_id": a, "to_status_id": c}, headers=headers)
        assert res.status_code == 409
        assert client.post(url, json={"name": "Go", "from_status_id": b, "to_status_id": c}, headers=headers).status_code == 201

    def test_endpoint_outside_workflow_is_422(self, client, headers):
        a, b, c = _create_statuses(client, headers, "A", "B", "C")
        wf = _create_workflow(client, headers, [a, b])
        res = client.post(
            f"/api/v1/workflows/{wf['id']}/transitions",
            json={"name": "Go", "from_status_id": a, "to_status_id": c},
            headers=headers,
        )
        assert res.status_code == 422
        assert res.get_json()["details"]["status_ids"] == [c]

    def test_missing_fields_is_400(self, client, headers):
        a, = _create_statuses(client, headers, "A")
        wf = _create_workflow(client, headers, [a])
        res = client.post(f"/api/v1/workflows/{wf['id']}/transitions", json={"name": "Go"}, headers=headers)
        assert res.status_code == 400

    def test_delete_blocked(self, client, headers, project, default_workflow):
        res = client.delete(f"/api/v1/workflows/{default_workflow.id}", headers=headers)
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "ERR_DELETE_BLOCKED"
        assert body["details"]["in_use_by_project_count"] == 1

    def test_cross_organization_is_404(self, client, other_org, default_workflow):
        res = client.get(
            f"/api/v1/workflows/{default_workflow.id}",
            headers={"X-Organization-Id": str(other_org.id)},
        )
        assert res.status_code == 404

    def test_seed_default(self, client, headers):
        res = client.post("/api/v1/workflows/seed-default", headers=headers)
        assert res.status_code == 201
        assert res.get_json()["is_default"] is True
        listed = client.get("/api/v1/workflows", headers=headers).get_json()
        assert len(listed) == 1

    def test_update_and_initial_status(self, client, headers):
        a, b = _create_statuses(client, headers, "A", "B")
        wf = _create_workflow(client, headers, [a, b])
        res = client.put(f"/api/v1/workflows/{wf['id']}", json={"description": "edited"}, headers=headers)
        assert res.get_json()["description"] == "edited"
        res = client.put(f"/api/v1/workflows/{wf['id']}/initial-status", json={"status_id": b}, headers=headers)
        assert res.get_json()["initial_status_id"] == b


def test_rule_catalog(client):
    body = client.get("/api/v1/workflow-rules").get_json()
    assert "actor_is_assignee" in body["condition"]
    assert "no_open_subtasks" in body["validator"]
    assert "set_resolution" in body["post_function"]


def test_non_json_body_is_415(client, headers):
    res = client.post(
        "/api/v1/statuses",
        data="name=Backlog",
        headers={**headers, "Content-Type": "application/x-www-form-urlencoded"},
    )
    assert res.status_code == 415
