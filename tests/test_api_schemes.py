"""HTTP tests for /api/v1/schemes/<scheme_type> and project scheme binding."""

import pytest

pytestmark = pytest.mark.integration


PERMISSION_ENTRIES = [
    {"permission_key": "browse_project", "holder_type": "anyone"},
    {"permission_key": "transition_issues", "holder_type": "project_role", "holder_id": "developers"},
]


def _create(client, headers, scheme_type="permission_scheme", entries=PERMISSION_ENTRIES, **extra):
    res = client.post(
        f"/api/v1/schemes/{scheme_type}",
        json={"name": "Standard", "entries": entries, **extra},
        headers=headers,
    )
    assert res.status_code == 201
    return res.get_json()


def _project(client, headers, key):
    res = client.post("/api/v1/projects", json={"key": key, "name": key}, headers=headers)
    assert res.status_code == 201
    return res.get_json()


def _bind(client, headers, project_id, scheme_type, scheme_id):
    return client.put(
        f"/api/v1/projects/{project_id}/schemes/{scheme_type}",
        json={"scheme_id": scheme_id},
        headers=headers,
    )


class TestSchemeCrud:
    def test_create_get_list(self, client, headers):
        scheme = _create(client, headers, is_default=True)
        assert scheme["is_default"] is True
        assert len(scheme["entries"]) == 2

        fetched = client.get(f"/api/v1/schemes/permission_scheme/{scheme['id']}", headers=headers).get_json()
        assert fetched["entries"][1]["holder_id"] == "developers"

        listed = client.get("/api/v1/schemes/permission_scheme", headers=headers).get_json()
        assert [s["id"] for s in listed] == [scheme["id"]]
        assert "entries" not in listed[0]

    def test_unknown_type_is_422(self, client, headers):
        res = client.get("/api/v1/schemes/screen_scheme", headers=headers)
        assert res.status_code == 422

    def test_invalid_entry_is_422(self, client, headers):
        res = client.post(
            "/api/v1/schemes/notification_scheme",
            json={"name": "N", "entries": [{"event": "issue_exploded", "recipient_type": "reporter"}]},
            headers=headers,
        )
        assert res.status_code == 422

    def test_entries(self, client, headers):
        scheme = _create(client, headers, entries=[])
        res = client.post(
            f"/api/v1/schemes/permission_scheme/{scheme['id']}/entries",
            json={"permission_key": "edit_issues", "holder_type": "reporter"},
            headers=headers,
        )
        assert res.status_code == 201
        entry_id = res.get_json()["id"]
        res = client.delete(f"/api/v1/schemes/permission_scheme/{scheme['id']}/entries/{entry_id}", headers=headers)
        assert res.status_code == 200

    def test_delete_blocked_then_allowed(self, client, headers):
        scheme = _create(client, headers)
        project = _project(client, headers, "ENG")
        assert _bind(client, headers, project["id"], "permission_scheme", scheme["id"]).status_code == 200

        res = client.delete(f"/api/v1/schemes/permission_scheme/{scheme['id']}", headers=headers)
        assert res.status_code == 409
        assert res.get_json()["details"]["in_use_by_project_count"] == 1

        _bind(client, headers, project["id"], "permission_scheme", None)
        res = client.delete(f"/api/v1/schemes/permission_scheme/{scheme['id']}", headers=headers)
        assert res.status_code == 200


class TestSharingEndpoints:
    def test_clone(self, client, headers):
        scheme = _create(client, headers, is_default=True)
        res = client.post(
            f"/api/v1/schemes/permission_scheme/{scheme['id']}/clone",
            json={"new_name": "Standard v2"},
            headers=headers,
        )
        assert res.status_code == 201
        clone = res.get_json()
        assert clone["parent_id"] == scheme["id"]
        assert clone["is_default"] is False
        assert len(clone["entries"]) == 2

        sharing = client.get(f"/api/v1/schemes/permission_scheme/{clone['id']}/sharing", headers=headers)
        assert sharing.get_json() == {"shared": False, "project_count": 0}

    def test_clone_requires_name(self, client, headers):
        scheme = _create(client, headers)
        res = client.post(f"/api/v1/schemes/permission_scheme/{scheme['id']}/clone", json={}, headers=headers)
        assert res.status_code == 400

    def test_fork_shared_scheme(self, client, headers):
        scheme = _create(client, headers)
        a = _project(client, headers, "AAA")
        b = _project(client, headers, "BBB")
        for p in (a, b):
            _bind(client, headers, p["id"], "permission_scheme", scheme["id"])

        sharing = client.get(f"/api/v1/schemes/permission_scheme/{scheme['id']}/sharing", headers=headers)
        assert sharing.get_json() == {"shared": True, "project_count": 2}

        res = client.post(
            f"/api/v1/schemes/permission_scheme/{scheme['id']}/fork",
            json={"project_id": a["id"]},
            headers=headers,
        )
        assert res.status_code == 201
        fork = res.get_json()
        assert fork["name"] == "Standard (Custom)"

        a_now = client.get(f"/api/v1/projects/{a['id']}", headers=headers).get_json()
        b_now = client.get(f"/api/v1/projects/{b['id']}", headers=headers).get_json()
        assert a_now["permission_scheme_id"] == fork["id"]
        assert b_now["permission_scheme_id"] == scheme["id"]

    def test_clone_workflow(self, client, headers, default_workflow):
        res = client.post(
            f"/api/v1/schemes/workflow/{default_workflow.id}/clone",
            json={"new_name": "Support flow"},
            headers=headers,
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["parent_id"] == default_workflow.id
        assert [t["name"] for t in body["transitions"]] == ["Start Progress", "Stop Progress", "Done", "Reopen"]

    def test_bind_foreign_scheme_is_404(self, client, headers, other_org):
        foreign = _create(client, {**headers, "X-Organization-Id": str(other_org.id), "X-User-Id": ""})
        project = _project(client, headers, "ENG")
        res = _bind(client, headers, project["id"], "permission_scheme", foreign["id"])
        assert res.status_code == 404
