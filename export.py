# export.py
"""
JSON payloads handed to the downstream allocation system. Every payload is a
versioned envelope: {"version": "1.0", "generatedAt": <ISO-8601 UTC>, ...}.
"""
import logging
from datetime import datetime, timezone
from typing import List, Dict, Any, Optional

from fields import DataSet, is_missing, split_list, to_number
from validation import Finding, VALIDATION_STAGES, SUCCESS, CRITICAL, HIGH, MEDIUM, LOW, summarize
from rules import RuleBook

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.0"
DATA_SOURCE = "Data Alchemist v1.0"

WEIGHT_KEYS = (
    "clientImportance", "workerSkillMatch", "taskUrgency",
    "resourceAvailability", "costEfficiency", "workloadBalance",
)
PRIORITY_LISTS = ("highPriorityClients", "criticalSkills", "urgentTasks", "preferredWorkers")

PRESETS: Dict[str, Dict[str, Any]] = {
    "balanced": {
        "name": "Balanced Allocation",
        "description": "Equal consideration for all factors",
        "weights": dict.fromkeys(WEIGHT_KEYS, 75),
    },
    "clientFocused": {
        "name": "Client-Focused",
        "description": "Prioritize client satisfaction and importance",
        "weights": dict(zip(WEIGHT_KEYS, (95, 70, 85, 60, 50, 65))),
    },
    "skillOptimized": {
        "name": "Skill-Optimized",
        "description": "Match workers to tasks based on expertise",
        "weights": dict(zip(WEIGHT_KEYS, (60, 95, 80, 85, 70, 75))),
    },
    "urgencyDriven": {
        "name": "Urgency-Driven",
        "description": "Focus on completing urgent tasks first",
        "weights": dict(zip(WEIGHT_KEYS, (70, 75, 95, 80, 55, 70))),
    },
    "costEfficient": {
        "name": "Cost-Efficient",
        "description": "Optimize for cost and resource efficiency",
        "weights": dict(zip(WEIGHT_KEYS, (65, 70, 70, 90, 95, 85))),
    },
}

DEFAULT_WEIGHTS = dict(zip(WEIGHT_KEYS, (75, 85, 90, 70, 60, 80)))

RECOMMENDATIONS = [
    "Review all critical issues before proceeding with allocation",
    "Ensure all required fields are properly filled",
    "Verify skill-coverage matrix for optimal matching",
    "Check workload balance across all worker groups",
]

NEXT_STEPS = [
    "Import configurations into your allocation system",
    "Run test allocations with sample data",
    "Monitor allocation performance and adjust weights",
    "Iterate on rules based on real-world results",
]


def envelope(**payload) -> Dict[str, Any]:
    data = {"version": EXPORT_VERSION, "generatedAt": datetime.now(timezone.utc).isoformat()}
    data.update(payload)
    return data


class PrioritizationConfig:
    """Six 0-100 weights plus four priority lists. Editing a weight switches the preset to 'custom'."""

    def __init__(self):
        self.preset = "balanced"
        self.weights: Dict[str, int] = dict(DEFAULT_WEIGHTS)
        self.priorities: Dict[str, List[str]] = {key: [] for key in PRIORITY_LISTS}

    def apply_preset(self, name: str):
        if name not in PRESETS:
            raise ValueError(f"Unknown preset: {name!r}")
        self.weights = dict(PRESETS[name]["weights"])
        self.preset = name

    def set_weight(self, key: str, value):
        if key not in WEIGHT_KEYS:
            raise ValueError(f"Unknown weight: {key!r}")
        number = to_number(value)
        if number is None or not 0 <= number <= 100:
            raise ValueError(f"Weight {key} must be a number between 0 and 100")
        self.weights[key] = int(round(number))
        self.preset = "custom"

    def set_weights(self, weights: Dict[str, Any]):
        for key, value in weights.items():
            self.set_weight(key, value)

    def toggle_priority(self, list_name: str, item: str) -> List[str]:
        if list_name not in PRIORITY_LISTS:
            raise ValueError(f"Unknown priority list: {list_name!r}")
        items = self.priorities[list_name]
        if item in items:
            items.remove(item)
        else:
            items.append(item)
        return items

    def normalized_weights(self) -> Dict[str, float]:
        total = sum(self.weights.values())
        if total <= 0:
            return {key: 0.0 for key in self.weights}
        return {key: value / total for key, value in self.weights.items()}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "preset": self.preset,
            "weights": dict(self.weights),
            "priorities": {key: list(items) for key, items in self.priorities.items()},
        }


# --------- Payloads ---------
def rules_config(book: RuleBook) -> Dict[str, Any]:
    active = book.active_rules()
    rules = []
    for rule in active:
        item = rule.to_dict()
        item.pop("createdAt")
        rules.append(item)
    return envelope(
        rules=rules,
        metadata={"totalRules": len(book.rules), "activeRules": len(active), "dataSource": DATA_SOURCE},
    )


def prioritization_config(config: PrioritizationConfig, dataset: DataSet) -> Dict[str, Any]:
    payload = config.to_dict()
    payload["normalizedWeights"] = config.normalized_weights()
    payload["metadata"] = {
        "totalClients": len(dataset.get("clients") or []),
        "totalWorkers": len(dataset.get("workers") or []),
        "totalTasks": len(dataset.get("tasks") or []),
    }
    return envelope(**payload)


def validation_report(findings: List[Finding], dataset: DataSet) -> Dict[str, Any]:
    issues = [f for f in findings if f.kind != SUCCESS]
    checks = [check for _, check in VALIDATION_STAGES if check is not None]
    counts = summarize(findings)
    return envelope(
        summary={
            "totalIssues": len(issues),
            "criticalIssues": sum(1 for f in issues if f.severity == CRITICAL),
            "highIssues": sum(1 for f in issues if f.severity == HIGH),
            "mediumIssues": sum(1 for f in issues if f.severity == MEDIUM),
            "lowIssues": sum(1 for f in issues if f.severity == LOW),
            "errors": counts["errors"],
            "warnings": counts["warnings"],
            "passed": counts["passed"],
        },
        dataQuality={
            "clientsProcessed": len(dataset.get("clients") or []),
            "workersProcessed": len(dataset.get("workers") or []),
            "tasksProcessed": len(dataset.get("tasks") or []),
            "validationsPassed": max(0, len(checks) - len({f.category for f in issues})),
        },
        issues=[f.to_dict() for f in issues],
        recommendations=list(RECOMMENDATIONS),
    )


def _distinct_count(records, key: str) -> int:
    return len({str(r.get(key)).strip() for r in records if not is_missing(r.get(key))})


def _average(records, key: str, default: float) -> Optional[float]:
    if not records:
        return None
    values = [to_number(r.get(key)) for r in records]
    return round(sum(default if v is None else v for v in values) / len(records), 1)


def project_summary(dataset: DataSet, findings: List[Finding], book: RuleBook,
                    config: PrioritizationConfig) -> Dict[str, Any]:
    clients = dataset.get("clients") or []
    workers = dataset.get("workers") or []
    tasks = dataset.get("tasks") or []
    issues = [f for f in findings if f.kind != SUCCESS]
    skills = set()
    for worker in workers:
        skills.update(split_list(worker.get("Skills")))

    return envelope(
        project={
            "name": "Resource Allocation Configuration",
            "generatedBy": "Data Alchemist AI Configurator",
        },
        dataOverview={
            "clients": {
                "total": len(clients),
                "groups": _distinct_count(clients, "GroupTag"),
                "avgPriority": _average(clients, "PriorityLevel", 3),
            },
            "workers": {
                "total": len(workers),
                "groups": _distinct_count(workers, "WorkerGroup"),
                "totalSkills": len(skills),
            },
            "tasks": {
                "total": len(tasks),
                "categories": _distinct_count(tasks, "Category"),
                "avgDuration": _average(tasks, "Duration", 1),
            },
        },
        qualityMetrics={
            "validationScore": max(0, 100 - len(issues) * 8),
            "dataCompleteness": round(sum(1 for rows in (clients, workers, tasks) if rows) / 3 * 100),
            "readinessLevel": "Ready" if summarize(findings)["passed"] else "Needs Review",
        },
        configuration={
            "activeRules": len(book.active_rules()),
            "preset": config.preset,
        },
        nextSteps=list(NEXT_STEPS),
    )
