"""Tests for DataManager: ingestion, header correction, validation, rules and export."""

import json
import os

import pandas as pd
import pytest

from backend import DataManager, EXPORT_FILES
from rules import RuleNotAcceptable
from validation import ALL_PASSED


@pytest.fixture
def manager(settings):
    return DataManager(settings)


@pytest.fixture
def loaded(manager, dataset):
    for collection, records in dataset.items():
        manager.load_records(collection, records)
    manager.validate_all()
    return manager


def messy_headers(dataset):
    renamed = []
    for client in dataset["clients"]:
        row = dict(client)
        row["Client ID"] = row.pop("ClientID")
        row["Name"] = row.pop("ClientName")
        row["pref"] = row.pop("PriorityLevel")
        renamed.append(row)
    dataset["clients"] = renamed
    return dataset


class TestIngestion:
    def test_load_csv_files_corrects_headers(self, manager, dataset, write_csvs):
        paths = write_csvs(messy_headers(dataset))

        findings = manager.load_files(paths["clients"], paths["workers"], paths["tasks"])

        assert findings == [ALL_PASSED]
        assert manager.header_mappings["clients"] == {
            "Client ID": "ClientID", "Name": "ClientName", "pref": "PriorityLevel",
        }
        assert manager.header_mappings["workers"] == {}
        assert manager.clients[0]["ClientID"] == "C1"
        assert manager.clients[2]["PriorityLevel"] == 5

    def test_load_xlsx(self, manager, dataset, tmp_path):
        paths = {}
        for collection, rows in dataset.items():
            path = tmp_path / f"{collection}.xlsx"
            pd.DataFrame(rows).to_excel(path, index=False)
            paths[collection] = str(path)

        manager.load_files(paths["clients"], paths["workers"], paths["tasks"])

        assert len(manager.tasks) == 4
        assert manager.workers[1]["WorkerName"] == "Bob"

    def test_empty_cells_become_none(self, manager, dataset, write_csvs):
        dataset["clients"][1]["GroupTag"] = None
        paths = write_csvs(dataset)

        manager.load_files(paths["clients"], paths["workers"], paths["tasks"])

        assert manager.clients[1]["GroupTag"] is None

    def test_unknown_collection(self, manager):
        with pytest.raises(ValueError):
            manager.load_records("vendors", [])

    def test_has_data(self, manager, dataset):
        assert not manager.has_data()
        manager.load_records("tasks", dataset["tasks"])
        assert manager.has_data()


class TestValidation:
    def test_progress_callback(self, loaded):
        seen = []
        loaded.validate_all(on_progress=lambda done, total, label: seen.append(done))

        assert seen == list(range(1, 12))
        assert loaded.last_run.state == "complete"

    def test_findings_track_edits(self, loaded):
        loaded.clients[0]["PriorityLevel"] = 9
        findings = loaded.validate_all()

        assert any(f.category == "Invalid Range" for f in findings)


class TestUpdateCell:
    def test_edit_revalidates(self, loaded):
        findings = loaded.update_cell("clients", 0, "PriorityLevel", 9)

        assert loaded.clients[0]["PriorityLevel"] == 9
        assert any(f.category == "Invalid Range" for f in findings)
        assert loaded.findings == findings

    def test_rows_are_replaced_not_mutated(self, loaded):
        before = loaded.clients
        original_row = before[0]

        loaded.update_cell("clients", 0, "ClientName", "Acme Holdings")

        assert loaded.clients is not before
        assert original_row["ClientName"] == "Acme Corp"
        assert loaded.clients[0]["ClientName"] == "Acme Holdings"

    def test_export_reflects_edit(self, loaded):
        loaded.update_cell("tasks", 0, "Duration", 0)
        issues = loaded.export_payloads()["validation"]["issues"]

        assert any(issue["category"] == "Invalid Range" for issue in issues)

    def test_bad_row(self, loaded):
        with pytest.raises(IndexError):
            loaded.update_cell("clients", 99, "PriorityLevel", 3)

    def test_unknown_collection(self, loaded):
        with pytest.raises(ValueError):
            loaded.update_cell("vendors", 0, "PriorityLevel", 3)


class TestSearch:
    def test_search_uses_local_parser_without_token(self, loaded):
        result = loaded.search("tasks with duration more than 1", "tasks")

        assert result.source == "local"
        assert [r["TaskID"] for r in result.records] == ["T001", "T003"]

    def test_unknown_collection(self, loaded):
        with pytest.raises(ValueError):
            loaded.search("anything", "vendors")


class TestRules:
    def test_unclassified_sentence(self, loaded):
        assert loaded.add_rule_from_nl("hello world") is None
        assert loaded.rules.rules == []

    def test_gate_and_override(self, loaded):
        sentence = "Tasks T001 and T003 must run together"
        with pytest.raises(RuleNotAcceptable):
            loaded.add_rule_from_nl(sentence)

        rule = loaded.add_rule_from_nl(sentence, priority=3, override=True)
        assert rule.priority == 3
        assert loaded.rules.rules == [rule]

    def test_builder_toggle_delete(self, loaded):
        rule = loaded.create_rule("slotRestriction", {"groupType": "client", "groupName": "Enterprise", "minCommonSlots": 2})

        assert loaded.toggle_rule(rule.id).enabled is False
        assert loaded.delete_rule(rule.id) is rule
        with pytest.raises(KeyError):
            loaded.delete_rule(rule.id)


class TestExport:
    def test_payload_keys(self, loaded):
        assert set(loaded.export_payloads()) == {"rules", "prioritization", "validation", "summary"}

    def test_payloads_validate_first_when_needed(self, manager, dataset):
        manager.load_records("clients", dataset["clients"])
        payloads = manager.export_payloads()

        assert manager.last_run is not None
        assert payloads["validation"]["dataQuality"]["clientsProcessed"] == 3

    def test_reload_invalidates_report(self, loaded, dataset):
        assert loaded.export_payloads()["validation"]["summary"]["passed"] is True

        clients = dataset["clients"]
        loaded.load_records("clients", clients + [dict(clients[0])])
        payloads = loaded.export_payloads()

        assert payloads["validation"]["summary"]["criticalIssues"] >= 1
        assert payloads["validation"]["dataQuality"]["clientsProcessed"] == 4

    def test_export_all_writes_every_file(self, loaded, tmp_path):
        loaded.apply_preset("costEfficient")
        loaded.create_rule("phaseWindow", {"taskId": "T001", "allowedPhases": [1, 2]})
        output_dir = loaded.export_all(str(tmp_path / "out"))

        names = sorted(os.listdir(output_dir))
        assert names == sorted(["clients.csv", "workers.csv", "tasks.csv"] + list(EXPORT_FILES.values()))

        with open(os.path.join(output_dir, "prioritization-config.json")) as f:
            assert json.load(f)["preset"] == "costEfficient"
        with open(os.path.join(output_dir, "rules-config.json")) as f:
            assert json.load(f)["rules"][0]["parameters"]["allowedPhases"] == [1, 2]
        assert len(pd.read_csv(os.path.join(output_dir, "tasks.csv"))) == 4

    def test_export_all_defaults_to_settings_dir(self, loaded, settings):
        assert loaded.export_all() == settings.export_dir
        assert os.path.isdir(settings.export_dir)
