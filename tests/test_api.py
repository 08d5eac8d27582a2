"""API endpoint tests using FastAPI's TestClient."""

import pytest
from fastapi.testclient import TestClient

import main


@pytest.fixture
def client(settings, tmp_path, monkeypatch):
    """TestClient with state and directories isolated under tmp_path."""
    monkeypatch.setattr(main, "settings", settings)
    monkeypatch.setattr(main, "global_data_manager", None)
    monkeypatch.setattr(main, "UPLOAD_DIR", settings.upload_dir)
    monkeypatch.setattr(main, "EXPORT_DIR", settings.export_dir)
    monkeypatch.setattr(main, "CURRENT_FILES_PATH", str(tmp_path / "current_files.json"))
    return TestClient(main.app)


@pytest.fixture
def uploaded(client, dataset, write_csvs):
    paths = write_csvs(dataset, names={c: f"{c}-src.csv" for c in dataset})
    files = {name: (f"{name}.csv", open(path, "rb"), "text/csv") for name, path in paths.items()}
    try:
        response = client.post("/upload", files=files)
    finally:
        for _, handle, _ in files.values():
            handle.close()
    assert response.status_code == 200
    return client


class TestWithoutData:
    """Every data endpoint refuses politely before an upload."""

    @pytest.mark.parametrize(
        "method,path",
        [("get", "/validate"), ("get", "/rules"), ("get", "/export"), ("post", "/export")],
    )
    def test_no_data(self, client, method, path):
        response = getattr(client, method)(path)

        assert response.status_code == 400
        assert response.json()["status"] == "error"

    def test_search_without_data(self, client):
        response = client.post("/search", data={"query": "vip clients"})
        assert response.status_code == 400


class TestUploadAndValidate:
    def test_upload_returns_findings(self, client, dataset, write_csvs):
        paths = write_csvs(dataset)
        with open(paths["clients"], "rb") as c, open(paths["workers"], "rb") as w, open(paths["tasks"], "rb") as t:
            response = client.post("/upload", files={
                "clients": ("clients.csv", c, "text/csv"),
                "workers": ("workers.csv", w, "text/csv"),
                "tasks": ("tasks.csv", t, "text/csv"),
            })

        body = response.json()
        assert body["status"] == "success"
        assert body["counts"] == {"clients": 3, "workers": 3, "tasks": 4}
        assert body["summary"]["passed"] is True
        assert body["findings"][0]["category"] == "Data Quality"

    def test_validate(self, uploaded):
        body = uploaded.get("/validate").json()

        assert body["state"] == "complete"
        assert body["summary"]["critical"] == 0

    def test_data_reloads_from_stored_paths(self, uploaded, monkeypatch):
        monkeypatch.setattr(main, "global_data_manager", None)
        assert uploaded.get("/validate").json()["status"] == "success"


class TestCellEdits:
    def test_edit_cell(self, uploaded):
        body = uploaded.patch("/data/clients/0", json={"field": "PriorityLevel", "value": 9}).json()

        assert body["status"] == "success"
        assert body["record"]["PriorityLevel"] == 9
        assert any(f["category"] == "Invalid Range" for f in body["findings"])
        assert body["summary"]["errors"] >= 1

    def test_export_follows_edit(self, uploaded):
        uploaded.patch("/data/tasks/0", json={"field": "Duration", "value": 0})
        issues = uploaded.get("/export").json()["payloads"]["validation"]["issues"]

        assert any(issue["category"] == "Invalid Range" for issue in issues)

    def test_row_out_of_range(self, uploaded):
        assert uploaded.patch("/data/clients/99", json={"field": "PriorityLevel", "value": 3}).status_code == 404

    @pytest.mark.parametrize("payload", [{"value": 3}, {"field": "PriorityLevel"}])
    def test_incomplete_payload(self, uploaded, payload):
        assert uploaded.patch("/data/clients/0", json=payload).status_code == 400

    def test_unknown_collection(self, uploaded):
        assert uploaded.patch("/data/vendors/0", json={"field": "x", "value": 1}).status_code == 400

    def test_without_data(self, client):
        assert client.patch("/data/clients/0", json={"field": "x", "value": 1}).status_code == 400


class TestSearchEndpoint:
    def test_search(self, uploaded):
        body = uploaded.post("/search", data={"query": "vip clients", "collection": "clients"}).json()

        assert body["status"] == "success"
        assert body["count"] == 1
        assert body["conditions"] == [
            {"field": "AttributesJSON.vip", "operator": "=", "value": True, "type": "boolean"}
        ]
        assert body["source"] == "local"

    def test_unknown_collection(self, uploaded):
        response = uploaded.post("/search", data={"query": "x", "collection": "vendors"})
        assert response.status_code == 400


class TestRuleEndpoints:
    def test_convert(self, uploaded):
        body = uploaded.post("/rules/convert", json={"input": "DataTeam workers should not exceed 4 tasks per phase"}).json()

        assert body["status"] == "success"
        assert body["rule"]["type"] == "loadLimit"
        assert body["acceptable"] is True

    def test_convert_unclassified(self, uploaded):
        response = uploaded.post("/rules/convert", json={"input": "hello world"})

        assert response.status_code == 200
        assert response.json() == {"status": "error", "message": "Could not understand rule"}

    def test_convert_empty_input(self, uploaded):
        assert uploaded.post("/rules/convert", json={"input": "  "}).status_code == 400

    def test_add_gated_rule(self, uploaded):
        payload = {"input": "Tasks T001 and T003 must run together"}

        assert uploaded.post("/rules", json=payload).status_code == 409
        body = uploaded.post("/rules", json=dict(payload, override=True)).json()
        assert body["status"] == "success"
        assert uploaded.get("/rules").json()["active"] == 1

    def test_builder_toggle_delete(self, uploaded):
        rule = uploaded.post("/rules", json={
            "type": "phaseWindow", "parameters": {"taskId": "T002", "allowedPhases": [2, 3]}, "priority": 2,
        }).json()["rule"]

        assert rule["name"] == "T002 Phase Window"
        toggled = uploaded.post(f"/rules/{rule['id']}/toggle").json()["rule"]
        assert toggled["enabled"] is False
        assert uploaded.delete(f"/rules/{rule['id']}").json()["deleted"] == rule["id"]
        assert uploaded.delete(f"/rules/{rule['id']}").status_code == 404

    def test_unknown_rule_type(self, uploaded):
        assert uploaded.post("/rules", json={"type": "teleport"}).status_code == 400

    def test_parameters_must_be_object(self, uploaded):
        response = uploaded.post("/rules", json={"type": "phaseWindow", "parameters": [1, 2]})
        assert response.status_code == 400


class TestPriorities:
    def test_preset_then_weight(self, uploaded):
        body = uploaded.post("/priorities", json={"preset": "urgencyDriven"}).json()
        assert body["weights"]["taskUrgency"] == 95

        body = uploaded.post("/priorities", json={"weights": {"taskUrgency": 50}}).json()
        assert body["preset"] == "custom"
        assert body["weights"]["taskUrgency"] == 50

    def test_toggle_list_item(self, uploaded):
        body = uploaded.post("/priorities", json={"toggle": {"list": "urgentTasks", "item": "T004"}}).json()
        assert body["priorities"]["urgentTasks"] == ["T004"]

    @pytest.mark.parametrize(
        "payload",
        [{"preset": "chaos"}, {"weights": {"taskUrgency": 500}}, {"toggle": {"list": "urgentTasks"}}],
    )
    def test_invalid(self, uploaded, payload):
        assert uploaded.post("/priorities", json=payload).status_code == 400


class TestExportEndpoints:
    def test_payloads(self, uploaded):
        payloads = uploaded.get("/export").json()["payloads"]

        assert payloads["rules"]["version"] == "1.0"
        assert payloads["summary"]["qualityMetrics"]["readinessLevel"] == "Ready"

    def test_export_and_download(self, uploaded):
        body = uploaded.post("/export").json()
        names = {f["name"] for f in body["files"]}

        assert "rules-config.json" in names
        assert "clients.csv" in names

        download = uploaded.get("/download/project-summary.json")
        assert download.status_code == 200
        assert download.json()["project"]["generatedBy"] == "Data Alchemist AI Configurator"

    def test_download_missing(self, uploaded):
        assert uploaded.get("/download/nope.json").status_code == 404
