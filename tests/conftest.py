"""Shared fixtures: a small, internally consistent dataset and helpers."""

import copy

import pytest

from config import Settings


CLIENTS = [
    {
        "ClientID": "C1", "ClientName": "Acme Corp", "PriorityLevel": 4,
        "RequestedTaskIDs": "T001,T002", "GroupTag": "Enterprise",
        "AttributesJSON": '{"vip": true, "budget": 50000, "location": "New York"}',
    },
    {
        "ClientID": "C2", "ClientName": "Beta LLC", "PriorityLevel": 2,
        "RequestedTaskIDs": "T003", "GroupTag": "Startup",
        "AttributesJSON": '{"vip": false, "budget": 12000}',
    },
    {
        "ClientID": "C3", "ClientName": "Gamma Inc", "PriorityLevel": 5,
        "RequestedTaskIDs": "T001", "GroupTag": "Enterprise",
        "AttributesJSON": '{"budget": 80000, "location": "Boston"}',
    },
]

WORKERS = [
    {
        "WorkerID": "W1", "WorkerName": "Alice", "Skills": "Python, SQL",
        "AvailableSlots": "[1, 2, 3]", "MaxLoadPerPhase": 2,
        "WorkerGroup": "DataTeam", "QualificationLevel": "Senior",
    },
    {
        "WorkerID": "W2", "WorkerName": "Bob", "Skills": "JavaScript, React",
        "AvailableSlots": "[2, 4]", "MaxLoadPerPhase": 3,
        "WorkerGroup": "WebTeam", "QualificationLevel": "Junior",
    },
    {
        "WorkerID": "W3", "WorkerName": "Carol", "Skills": "Python, ML",
        "AvailableSlots": "[3, 4, 5]", "MaxLoadPerPhase": 2,
        "WorkerGroup": "DataTeam", "QualificationLevel": "Senior",
    },
]

TASKS = [
    {
        "TaskID": "T001", "TaskName": "Data Cleanup", "Category": "ETL", "Duration": 2,
        "RequiredSkills": "Python", "PreferredPhases": "[1, 2]", "MaxConcurrent": 2,
    },
    {
        "TaskID": "T002", "TaskName": "Dashboard", "Category": "Frontend", "Duration": 1,
        "RequiredSkills": "JavaScript, React", "PreferredPhases": "[2, 3]", "MaxConcurrent": 1,
    },
    {
        "TaskID": "T003", "TaskName": "Model Training", "Category": "ML", "Duration": 3,
        "RequiredSkills": "Python, ML", "PreferredPhases": "[3, 4]", "MaxConcurrent": 1,
    },
    {
        "TaskID": "T004", "TaskName": "API Build", "Category": "Backend", "Duration": 1,
        "RequiredSkills": "SQL", "PreferredPhases": "[5]", "MaxConcurrent": 1,
    },
]


@pytest.fixture
def dataset():
    """Clean dataset: every check passes."""
    return {
        "clients": copy.deepcopy(CLIENTS),
        "workers": copy.deepcopy(WORKERS),
        "tasks": copy.deepcopy(TASKS),
    }


@pytest.fixture
def settings(tmp_path):
    """Settings with assist disabled and output under tmp_path."""
    return Settings(
        github_token=None,
        upload_dir=str(tmp_path / "uploads"),
        export_dir=str(tmp_path / "exports"),
    )


@pytest.fixture
def write_csvs(tmp_path):
    """Write collections as CSV files under tmp_path and return their paths."""
    import pandas as pd

    def _write(data, names=None):
        paths = {}
        for collection, rows in data.items():
            path = tmp_path / ((names or {}).get(collection) or f"{collection}.csv")
            pd.DataFrame(rows).to_csv(path, index=False)
            paths[collection] = str(path)
        return paths

    return _write
