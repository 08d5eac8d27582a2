# validation.py
import json
import logging
from collections import Counter
from dataclasses import dataclass, replace
from typing import List, Dict, Any, Optional, Callable

from fields import (
    COLLECTIONS, REQUIRED_FIELDS, ID_FIELDS, DataSet, Record,
    is_missing, parse_array_field, parse_json_field,
    split_list, to_number, to_int, display_number,
)

logger = logging.getLogger(__name__)

ERROR = "error"
WARNING = "warning"
SUCCESS = "success"

CRITICAL = "critical"
HIGH = "high"
MEDIUM = "medium"
LOW = "low"


# --------- Finding ---------
@dataclass
class Finding:
    kind: str
    category: str
    message: str
    severity: str
    location: Optional[str] = None
    suggestion: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.kind,
            "category": self.category,
            "message": self.message,
            "severity": self.severity,
        }
        if self.location is not None:
            data["location"] = self.location
        if self.suggestion is not None:
            data["suggestion"] = self.suggestion
        return data


def _records(dataset: DataSet, collection: str) -> List[Record]:
    return list(dataset.get(collection) or [])


def _label(record: Record, id_field: str, index: int):
    value = record.get(id_field)
    return index if is_missing(value) else value


# --------- Rule catalog ---------
def check_required_columns(dataset: DataSet) -> List[Finding]:
    findings = []
    for collection in COLLECTIONS:
        rows = _records(dataset, collection)
        if not rows:
            continue
        columns = set(rows[0].keys())
        for column in REQUIRED_FIELDS[collection]:
            if column not in columns:
                findings.append(Finding(
                    ERROR, "Missing Columns",
                    f"Required column '{column}' is missing in {collection}",
                    CRITICAL,
                    location=collection,
                    suggestion=f"Add the '{column}' column to your {collection} data",
                ))
    return findings


def _invalid_phase_entries(value) -> List[str]:
    entries = parse_array_field(value)
    if not entries and isinstance(value, str) and value.strip().startswith("["):
        # Bracketed but unparseable: the whole cell is the offending entry.
        try:
            json.loads(value)
        except ValueError:
            return [value.strip()]
        return []
    invalid = []
    for entry in entries:
        number = to_number(entry)
        if number is None or number < 1:
            invalid.append(str(entry))
    return invalid


def check_malformed_lists(dataset: DataSet) -> List[Finding]:
    findings = []
    for index, worker in enumerate(_records(dataset, "workers")):
        slots = worker.get("AvailableSlots")
        if is_missing(slots):
            continue
        invalid = _invalid_phase_entries(slots)
        if invalid:
            findings.append(Finding(
                ERROR, "Malformed Data",
                f"Invalid AvailableSlots format for worker {_label(worker, 'WorkerID', index)}: {', '.join(invalid)}",
                HIGH,
                location=f"workers[{index}]",
                suggestion="AvailableSlots should be numeric phase numbers (e.g., [1,2,3])",
            ))

    for index, task in enumerate(_records(dataset, "tasks")):
        phases = task.get("PreferredPhases")
        if is_missing(phases):
            continue
        invalid = _invalid_phase_entries(phases)
        if invalid:
            findings.append(Finding(
                ERROR, "Malformed Data",
                f"Invalid PreferredPhases format for task {_label(task, 'TaskID', index)}: {', '.join(invalid)}",
                HIGH,
                location=f"tasks[{index}]",
                suggestion="PreferredPhases should be numeric phase numbers (e.g., [1,2])",
            ))
    return findings


def check_duplicate_ids(dataset: DataSet) -> List[Finding]:
    findings = []
    for collection in COLLECTIONS:
        id_field = ID_FIELDS[collection]
        seen = set()
        duplicates = []
        for row in _records(dataset, collection):
            value = row.get(id_field)
            if is_missing(value):
                continue
            key = str(value).strip()
            if key in seen and key not in duplicates:
                duplicates.append(key)
            seen.add(key)
        if duplicates:
            findings.append(Finding(
                ERROR, "Duplicate IDs",
                f"Duplicate {id_field}s found in {collection}: {', '.join(duplicates)}",
                CRITICAL,
                location=collection,
                suggestion="Ensure all IDs are unique within each dataset",
            ))
    return findings


def check_value_ranges(dataset: DataSet) -> List[Finding]:
    findings = []
    specs = [
        ("clients", "PriorityLevel", "client", "ClientID", lambda v: 1 <= v <= 5,
         "PriorityLevel must be an integer between 1 and 5"),
        ("tasks", "Duration", "task", "TaskID", lambda v: v >= 1,
         "Duration must be a positive integer (>=1)"),
        ("workers", "MaxLoadPerPhase", "worker", "WorkerID", lambda v: v >= 1,
         "MaxLoadPerPhase must be a positive integer"),
    ]
    for collection, column, noun, id_field, in_range, suggestion in specs:
        for index, row in enumerate(_records(dataset, collection)):
            raw = row.get(column)
            number = to_int(raw)
            if number is None or not in_range(number):
                findings.append(Finding(
                    ERROR, "Invalid Range",
                    f"Invalid {column} '{'' if raw is None else raw}' for {noun} {_label(row, id_field, index)}",
                    HIGH,
                    location=f"{collection}[{index}]",
                    suggestion=suggestion,
                ))
    return findings


def check_json_fields(dataset: DataSet) -> List[Finding]:
    findings = []
    for index, client in enumerate(_records(dataset, "clients")):
        raw = client.get("AttributesJSON")
        if is_missing(raw):
            continue
        if parse_json_field(raw) is None:
            findings.append(Finding(
                ERROR, "Broken JSON",
                f"Invalid JSON in AttributesJSON for client {_label(client, 'ClientID', index)}",
                MEDIUM,
                location=f"clients[{index}]",
                suggestion="Ensure AttributesJSON contains valid JSON format",
            ))
    return findings


def check_cross_references(dataset: DataSet) -> List[Finding]:
    findings = []
    task_ids = {
        str(task.get("TaskID")).strip()
        for task in _records(dataset, "tasks")
        if not is_missing(task.get("TaskID"))
    }
    for index, client in enumerate(_records(dataset, "clients")):
        for task_id in split_list(client.get("RequestedTaskIDs")):
            if task_id not in task_ids:
                findings.append(Finding(
                    ERROR, "Invalid Reference",
                    f"Client {_label(client, 'ClientID', index)} references non-existent task '{task_id}'",
                    HIGH,
                    location=f"clients[{index}]",
                    suggestion=f"Ensure task '{task_id}' exists in the tasks dataset",
                ))
    return findings


def check_skill_coverage(dataset: DataSet) -> List[Finding]:
    required = []
    for task in _records(dataset, "tasks"):
        for skill in split_list(task.get("RequiredSkills")):
            if skill not in required:
                required.append(skill)
    available = set()
    for worker in _records(dataset, "workers"):
        available.update(split_list(worker.get("Skills")))

    uncovered = [skill for skill in required if skill not in available]
    if not uncovered:
        return []
    return [Finding(
        ERROR, "Skill Coverage",
        f"Required skills not covered by any worker: {', '.join(uncovered)}",
        CRITICAL,
        suggestion="Add workers with these skills or update task requirements",
    )]


def check_worker_capacity(dataset: DataSet) -> List[Finding]:
    findings = []
    for index, worker in enumerate(_records(dataset, "workers")):
        slots = parse_array_field(worker.get("AvailableSlots"))
        max_load = to_int(worker.get("MaxLoadPerPhase")) or 0
        if slots and max_load > 0 and len(slots) * max_load == 0:
            findings.append(Finding(
                WARNING, "Worker Capacity",
                f"Worker {_label(worker, 'WorkerID', index)} has no effective capacity",
                MEDIUM,
                location=f"workers[{index}]",
                suggestion="Ensure worker has both available slots and positive max load per phase",
            ))
    return findings


def check_phase_saturation(dataset: DataSet) -> List[Finding]:
    capacity: Dict[float, int] = {}
    demand: Dict[float, int] = {}

    for worker in _records(dataset, "workers"):
        max_load = to_int(worker.get("MaxLoadPerPhase")) or 0
        for phase in parse_array_field(worker.get("AvailableSlots")):
            number = to_number(phase)
            if number is not None:
                capacity[number] = capacity.get(number, 0) + max_load

    for task in _records(dataset, "tasks"):
        duration = to_int(task.get("Duration")) or 0
        for phase in parse_array_field(task.get("PreferredPhases")):
            number = to_number(phase)
            if number is not None:
                demand[number] = demand.get(number, 0) + duration

    findings = []
    for phase in sorted(demand):
        needed = demand[phase]
        available = capacity.get(phase, 0)
        if needed > available:
            findings.append(Finding(
                WARNING, "Phase Saturation",
                f"Phase {display_number(phase)} is oversaturated: demand ({needed}) exceeds capacity ({available})",
                HIGH,
                suggestion="Consider redistributing tasks or adding more worker capacity for this phase",
            ))
    return findings


def check_insights(dataset: DataSet) -> List[Finding]:
    """Advisory findings only; nothing here is ever an error."""
    findings = []
    clients = _records(dataset, "clients")
    workers = _records(dataset, "workers")
    tasks = _records(dataset, "tasks")

    if workers and tasks:
        ratio = len(tasks) / len(workers)
        if ratio > 5:
            findings.append(Finding(
                WARNING, "AI Insights",
                f"High task-to-worker ratio detected ({ratio:.1f} tasks per worker)",
                MEDIUM,
                suggestion="Consider adding more workers or reducing task scope",
            ))

    frequency = Counter()
    for task in tasks:
        frequency.update(dict.fromkeys(split_list(task.get("RequiredSkills"))).keys())
    if frequency and tasks:
        # Counter.most_common keeps first-seen order on ties.
        skill, count = frequency.most_common(1)[0]
        if count > len(tasks) * 0.5:
            findings.append(Finding(
                WARNING, "AI Insights",
                f"Skill '{skill}' is required by {count} tasks ({count / len(tasks) * 100:.0f}%)",
                MEDIUM,
                suggestion="Ensure adequate workers with this critical skill are available",
            ))

    if clients:
        high = sum(1 for c in clients if (to_int(c.get("PriorityLevel")) or 0) in (4, 5))
        if high > len(clients) * 0.7:
            findings.append(Finding(
                WARNING, "AI Insights",
                f"{high} clients ({high / len(clients) * 100:.0f}%) have high priority (4-5)",
                LOW,
                suggestion="Consider reviewing priority assignments to ensure proper resource allocation",
            ))
    return findings


# Ordered catalog: (stage label, check). The final stage has no check.
VALIDATION_STAGES = [
    ("Checking required columns...", check_required_columns),
    ("Validating data types and formats...", check_malformed_lists),
    ("Checking for duplicate IDs...", check_duplicate_ids),
    ("Validating value ranges...", check_value_ranges),
    ("Checking JSON fields...", check_json_fields),
    ("Validating cross-references...", check_cross_references),
    ("Analyzing skill coverage...", check_skill_coverage),
    ("Checking worker capacity...", check_worker_capacity),
    ("Validating phase constraints...", check_phase_saturation),
    ("Running AI-powered insights...", check_insights),
    ("Finalizing results...", None),
]

ALL_PASSED = Finding(SUCCESS, "Data Quality", "All critical validations passed successfully", LOW)


# --------- Orchestrator ---------
ProgressCallback = Callable[[int, int, str], None]


class ValidationRun:
    """
    One validation pass over a snapshot of the data. ``state`` moves
    idle -> running -> complete; ``stage`` and ``progress`` are observational.
    """

    def __init__(self, dataset: DataSet, on_progress: Optional[ProgressCallback] = None):
        self.dataset = {name: list(dataset.get(name) or []) for name in COLLECTIONS}
        self.on_progress = on_progress
        self.state = "idle"
        self.stage = ""
        self.progress = 0.0
        self.findings: List[Finding] = []

    def run(self) -> List[Finding]:
        self.state = "running"
        results: List[Finding] = []
        total = len(VALIDATION_STAGES)

        for index, (label, check) in enumerate(VALIDATION_STAGES):
            self.stage = label
            logger.debug("Validation stage %d/%d: %s", index + 1, total, label)
            if check is not None:
                try:
                    results.extend(check(self.dataset))
                except Exception:
                    logger.exception("Validation check %s failed", check.__name__)
                    results.append(Finding(
                        ERROR, "Validation Engine",
                        f"Check '{check.__name__}' could not run on this data",
                        MEDIUM,
                        suggestion="Inspect the data for unexpected value types",
                    ))
            self.progress = (index + 1) / total * 100
            if self.on_progress:
                self.on_progress(index + 1, total, label)

        critical = [f for f in results if f.kind == ERROR and f.severity == CRITICAL]
        if not critical:
            results.insert(0, replace(ALL_PASSED))

        self.findings = results
        self.state = "complete"
        self.stage = ""
        logger.info("Validation complete: %d findings (%d critical)", len(results), len(critical))
        return results


def revalidate(dataset: DataSet, on_progress: Optional[ProgressCallback] = None) -> List[Finding]:
    """Run every catalog check over ``dataset`` and return the full finding list."""
    return ValidationRun(dataset, on_progress).run()


def summarize(findings: List[Finding]) -> Dict[str, Any]:
    errors = [f for f in findings if f.kind == ERROR]
    critical = [f for f in errors if f.severity == CRITICAL]
    return {
        "errors": len(errors),
        "warnings": sum(1 for f in findings if f.kind == WARNING),
        "successes": sum(1 for f in findings if f.kind == SUCCESS),
        "critical": len(critical),
        "high": sum(1 for f in errors if f.severity == HIGH),
        "medium": sum(1 for f in findings if f.severity == MEDIUM),
        "passed": not critical,
    }
