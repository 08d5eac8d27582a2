# fields.py
"""
Canonical schemas for the three record collections, the field normalizer used
for header correction and query aliases, and the tolerant cell coercers.

A record is a mapping from field name to one of: a number, a string, a list of
strings/numbers, a JSON object, or a missing value (None / NaN).
"""
import re
import json
import math
import logging
from typing import List, Dict, Any, Optional, Union

logger = logging.getLogger(__name__)

Value = Union[int, float, str, List[Union[str, int, float]], Dict[str, Any], None]
Record = Dict[str, Value]
DataSet = Dict[str, List[Record]]

COLLECTIONS = ("clients", "workers", "tasks")

# --------- Canonical schemas ---------
CANONICAL_FIELDS: Dict[str, List[str]] = {
    "clients": [
        "ClientID", "ClientName", "PriorityLevel",
        "RequestedTaskIDs", "GroupTag", "AttributesJSON"
    ],
    "workers": [
        "WorkerID", "WorkerName", "Skills",
        "AvailableSlots", "MaxLoadPerPhase",
        "WorkerGroup", "QualificationLevel"
    ],
    "tasks": [
        "TaskID", "TaskName", "Category",
        "Duration", "RequiredSkills",
        "PreferredPhases", "MaxConcurrent"
    ],
}

REQUIRED_FIELDS: Dict[str, List[str]] = {
    "clients": ["ClientID", "ClientName", "PriorityLevel"],
    "workers": ["WorkerID", "WorkerName", "Skills", "AvailableSlots", "MaxLoadPerPhase"],
    "tasks": ["TaskID", "TaskName", "Duration", "RequiredSkills"],
}

ID_FIELDS = {"clients": "ClientID", "workers": "WorkerID", "tasks": "TaskID"}
NAME_FIELDS = {"clients": "ClientName", "workers": "WorkerName", "tasks": "TaskName"}
GROUP_FIELDS = {"clients": "GroupTag", "workers": "WorkerGroup", "tasks": "Category"}
SKILL_FIELDS = {"clients": None, "workers": "Skills", "tasks": "RequiredSkills"}
PHASE_FIELDS = {"clients": None, "workers": "AvailableSlots", "tasks": "PreferredPhases"}

NUMERIC_FIELDS = {"PriorityLevel", "Duration", "MaxLoadPerPhase", "MaxConcurrent", "QualificationLevel"}
ARRAY_FIELDS = {"RequestedTaskIDs", "Skills", "AvailableSlots", "RequiredSkills", "PreferredPhases"}

# Header variants, matched against the cleaned (lowercase alphanumeric) token.
FIELD_VARIANTS: Dict[str, Dict[str, List[str]]] = {
    "clients": {
        "ClientID": [r"^id$", r"^client_?id$", r"^customer_?id$", r"^cid$"],
        "ClientName": [r"^name$", r"^client_?name$", r"^customer_?name$", r"^company$"],
        "PriorityLevel": [r"^priority_?level$", r"^priority$", r"^pref$", r"^importance$", r"^prio$"],
        "RequestedTaskIDs": [r"^requested_?tasks?(_?ids?)?$", r"^tasks?$", r"^task_?ids$"],
        "GroupTag": [r"^group(_?tag)?$", r"^segment$", r"^tag$"],
        "AttributesJSON": [r"^attributes?(_?json)?$", r"^attrs?$", r"^meta(data)?$"],
    },
    "workers": {
        "WorkerID": [r"^id$", r"^worker_?id$", r"^employee_?id$", r"^staff_?id$"],
        "WorkerName": [r"^name$", r"^worker_?name$", r"^employee_?name$"],
        "Skills": [r"^skills?$", r"^capabilities$", r"^expertise$", r"^competencies$"],
        "AvailableSlots": [r"^available_?slots$", r"^slots$", r"^availability$", r"^phases$"],
        "MaxLoadPerPhase": [r"^max_?load(_?per_?phase)?$", r"^load$", r"^capacity$", r"^workload$"],
        "WorkerGroup": [r"^(worker_?)?group$", r"^team$", r"^department$"],
        "QualificationLevel": [r"^qualification(_?level)?$", r"^level$", r"^seniority$", r"^experience$"],
    },
    "tasks": {
        "TaskID": [r"^id$", r"^task_?id$", r"^job_?id$"],
        "TaskName": [r"^name$", r"^task_?name$", r"^job_?name$", r"^title$"],
        "Category": [r"^category$", r"^type$", r"^kind$"],
        "Duration": [r"^duration$", r"^time$", r"^length$", r"^hours$"],
        "RequiredSkills": [r"^required_?skills?$", r"^skills?$", r"^needs$"],
        "PreferredPhases": [r"^preferred_?phases$", r"^phases?$", r"^schedule$"],
        "MaxConcurrent": [r"^max_?concurrent$", r"^concurrent$", r"^parallel$"],
    },
}

_COMPILED_VARIANTS = {
    collection: {
        canonical: [re.compile(p, re.IGNORECASE) for p in patterns]
        for canonical, patterns in variants.items()
    }
    for collection, variants in FIELD_VARIANTS.items()
}

# Natural-language synonyms, consulted before the normalizer.
SEARCH_ALIASES: Dict[str, Dict[str, str]] = {
    "clients": {
        "priority level": "PriorityLevel",
        "priority": "PriorityLevel",
        "importance": "PriorityLevel",
        "client name": "ClientName",
        "name": "ClientName",
        "company": "ClientName",
        "organization": "ClientName",
        "client id": "ClientID",
        "id": "ClientID",
        "group": "GroupTag",
        "group tag": "GroupTag",
        "team": "GroupTag",
        "segment": "GroupTag",
        "requested tasks": "RequestedTaskIDs",
        "requested task ids": "RequestedTaskIDs",
        "requests": "RequestedTaskIDs",
        "budget": "AttributesJSON.budget",
        "cost": "AttributesJSON.budget",
        "spending": "AttributesJSON.budget",
        "location": "AttributesJSON.location",
        "city": "AttributesJSON.location",
        "region": "AttributesJSON.location",
        "sla": "AttributesJSON.sla",
        "service level": "AttributesJSON.sla",
    },
    "workers": {
        "skills": "Skills",
        "skill": "Skills",
        "expertise": "Skills",
        "capabilities": "Skills",
        "technologies": "Skills",
        "available slots": "AvailableSlots",
        "slots": "AvailableSlots",
        "availability": "AvailableSlots",
        "phases": "AvailableSlots",
        "max load per phase": "MaxLoadPerPhase",
        "max load": "MaxLoadPerPhase",
        "load": "MaxLoadPerPhase",
        "capacity": "MaxLoadPerPhase",
        "workload": "MaxLoadPerPhase",
        "worker group": "WorkerGroup",
        "group": "WorkerGroup",
        "team": "WorkerGroup",
        "department": "WorkerGroup",
        "qualification level": "QualificationLevel",
        "qualification": "QualificationLevel",
        "level": "QualificationLevel",
        "experience": "QualificationLevel",
        "seniority": "QualificationLevel",
        "worker name": "WorkerName",
        "name": "WorkerName",
        "worker id": "WorkerID",
        "id": "WorkerID",
    },
    "tasks": {
        "duration": "Duration",
        "length": "Duration",
        "time": "Duration",
        "required skills": "RequiredSkills",
        "skills": "RequiredSkills",
        "requirements": "RequiredSkills",
        "technologies": "RequiredSkills",
        "preferred phases": "PreferredPhases",
        "phases": "PreferredPhases",
        "schedule": "PreferredPhases",
        "max concurrent": "MaxConcurrent",
        "concurrent": "MaxConcurrent",
        "concurrency": "MaxConcurrent",
        "parallel": "MaxConcurrent",
        "category": "Category",
        "type": "Category",
        "kind": "Category",
        "task name": "TaskName",
        "name": "TaskName",
        "title": "TaskName",
        "task id": "TaskID",
        "id": "TaskID",
    },
}

# Filler words that never name a field on their own.
_FILLER = {"is", "are", "was", "of", "with", "that", "who", "which", "has", "have", "the", "a", "an", "all", "and"}


def clean_token(token: Any) -> str:
    return re.sub(r"[^a-z0-9]", "", str(token).lower())


def normalize_field(raw_token: str, collection: str) -> Optional[str]:
    """
    Map a loosely typed header or phrase to a canonical field of ``collection``.

    Tries an exact match on the cleaned token, then the per-field variant
    patterns, then a prefix-similarity fallback. Returns None instead of
    guessing when nothing fires or when the fallback is ambiguous.
    """
    canonicals = CANONICAL_FIELDS.get(collection)
    if not canonicals or raw_token is None:
        return None
    cleaned = clean_token(raw_token)
    if not cleaned:
        return None

    for canonical in canonicals:
        if clean_token(canonical) == cleaned:
            return canonical

    for canonical, patterns in _COMPILED_VARIANTS[collection].items():
        if any(p.match(cleaned) for p in patterns):
            return canonical

    # Prefix similarity needs at least four characters to say anything.
    if len(cleaned) < 4:
        return None
    candidates = []
    for canonical in canonicals:
        cleaned_canonical = clean_token(canonical)
        if cleaned[:4] in cleaned_canonical or cleaned_canonical[:4] in cleaned:
            candidates.append(canonical)
    if len(candidates) == 1:
        return candidates[0]
    return None


def resolve_field_alias(phrase: str, collection: str) -> Optional[str]:
    """
    Resolve a natural-language field phrase ("all clients with priority level")
    to a canonical field. Suffixes of the phrase are tried longest first against
    the alias table, then the last one or two words go through the normalizer.
    """
    aliases = SEARCH_ALIASES.get(collection, {})
    words = [w for w in re.split(r"\s+", phrase.lower().strip()) if w]
    while words and words[-1] in _FILLER:
        words.pop()
    if not words:
        return None

    for start in range(len(words)):
        candidate = " ".join(words[start:])
        if candidate in aliases:
            return aliases[candidate]
        if candidate.replace(" ", "") in aliases:
            return aliases[candidate.replace(" ", "")]

    for size in (2, 1):
        if len(words) >= size:
            tail = words[-size:]
            if any(w in _FILLER for w in tail):
                continue
            mapped = normalize_field(" ".join(tail), collection)
            if mapped:
                return mapped
    return None


def field_in_collection(field: str, collection: str) -> bool:
    base = field.split(".", 1)[0]
    return base in CANONICAL_FIELDS.get(collection, [])


# --------- Header correction ---------
def detect_collection(file_name: str) -> str:
    name = file_name.lower()
    if any(word in name for word in ("worker", "employee", "staff")):
        return "workers"
    if any(word in name for word in ("task", "job")):
        return "tasks"
    return "clients"


def build_header_mapping(headers: List[str], collection: str) -> Dict[str, str]:
    """Return ``{original header: canonical field}`` for every header the normalizer can place."""
    mapping = {}
    taken = set()
    for header in headers:
        canonical = normalize_field(header, collection)
        if canonical and canonical not in taken:
            mapping[header] = canonical
            taken.add(canonical)
    return mapping


def apply_header_mapping(records: List[Record], mapping: Dict[str, str]) -> List[Record]:
    mapped = []
    for row in records:
        mapped.append({mapping.get(key, key): value for key, value in row.items()})
    return mapped


# --------- Coercers ---------
def is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    return False


def parse_array_field(value: Any) -> list:
    """Coerce a cell into a list. Never raises; malformed input becomes []."""
    if is_missing(value):
        return []
    if isinstance(value, list):
        return value
    if isinstance(value, tuple):
        return list(value)
    if isinstance(value, bool):
        return []
    if isinstance(value, (int, float)):
        return [value]
    if isinstance(value, str):
        text = value.strip()
        if text.startswith("["):
            if not text.endswith("]"):
                return []
            try:
                parsed = json.loads(text)
            except ValueError:
                return []
            return parsed if isinstance(parsed, list) else []
        return [item.strip() for item in text.split(",") if item.strip()]
    return []


def parse_json_field(value: Any) -> Optional[Any]:
    """
    Coerce a cell into a JSON value. An absent cell gives {}, a malformed one
    gives None so callers can tell the two apart.
    """
    if is_missing(value):
        return {}
    if isinstance(value, (dict, list)):
        return value
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return {}


def split_list(value: Any) -> List[str]:
    """Comma-list cell as a list of trimmed non-empty strings."""
    return [str(item).strip() for item in parse_array_field(value) if str(item).strip()]


def to_number(value: Any) -> Optional[float]:
    if is_missing(value) or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def to_int(value: Any) -> Optional[int]:
    """Integral number or None; 4.0 and "4" qualify, 3.5 does not."""
    number = to_number(value)
    if number is None or not number.is_integer():
        return None
    return int(number)


def to_phase_numbers(value: Any) -> List[int]:
    """Phase/slot cell as the list of its valid positive integer entries."""
    phases = []
    for item in parse_array_field(value):
        number = to_int(item)
        if number is not None and number >= 1:
            phases.append(number)
    return phases


def display_number(number: float):
    return int(number) if float(number).is_integer() else number
