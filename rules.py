# rules.py
"""
Rule Converter: classifies a plain-English business rule into one of six typed
shapes, extracts its parameters against the loaded data, and scores it.

Also holds the rule book, the persisted collection of accepted rules.
"""
import re
import uuid
import logging
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Callable, Pattern

from fields import DataSet, is_missing, split_list, to_phase_numbers

logger = logging.getLogger(__name__)

RULE_TYPES = ("coRun", "slotRestriction", "loadLimit", "phaseWindow", "patternMatch", "precedenceOverride")

RULE_TYPE_INFO = {
    "coRun": ("Co-Run Tasks", "Ensure specific tasks run together in the same phase"),
    "slotRestriction": ("Slot Restriction", "Limit shared slots between client or worker groups"),
    "loadLimit": ("Load Limit", "Set maximum workload per phase for worker groups"),
    "phaseWindow": ("Phase Window", "Restrict tasks to specific phases or phase ranges"),
    "patternMatch": ("Pattern Match", "Apply rules based on regex patterns in data"),
    "precedenceOverride": ("Precedence Override", "Define rule priority and override behavior"),
}

MIN_ACCEPTABLE_CONFIDENCE = 0.5


class RuleNotAcceptable(Exception):
    """Raised when a parsed rule fails the acceptance gate and no override was given."""


@dataclass
class TypePattern:
    rule_type: str
    regex: Pattern
    weight: float


def _patterns(rule_type: str, entries) -> List[TypePattern]:
    return [TypePattern(rule_type, re.compile(p), w) for p, w in entries]


# Declaration order breaks ties between equal weights.
RULE_TYPE_PATTERNS: List[TypePattern] = (
    _patterns("coRun", [
        (r"\btogether\b", 0.9),
        (r"\bsame phase\b", 0.9),
        (r"\bco-?run\b", 0.9),
        (r"\bruns? with\b", 0.85),
    ])
    + _patterns("slotRestriction", [
        (r"\b(?:limit|restrict|max)\w*\b.*\b(?:slots?|shared)\b", 0.85),
        (r"\bshared slots?\b", 0.85),
        (r"\bslots? (?:limit|restriction)s?\b", 0.8),
    ])
    + _patterns("loadLimit", [
        (r"\b(?:limit|restrict|max)\w*\b.*\b(?:tasks?|load)\b", 0.85),
        (r"\b(?:not exceed|at most)\b.*\b(?:tasks?|load)\b", 0.85),
        (r"\bload limits?\b", 0.85),
        (r"\bworkload\b", 0.75),
    ])
    + _patterns("phaseWindow", [
        (r"\b(?:only|can) run (?:in|during)\b", 0.8),
        (r"\bphase window\b", 0.8),
        (r"\bphases?\b", 0.7),
    ])
    + _patterns("patternMatch", [
        (r"\b(?:starting|ending) with\b", 0.75),
        (r"\bcontaining\b", 0.75),
        (r"\bmatching\b", 0.75),
        (r"\bpattern\b", 0.7),
    ])
    + _patterns("precedenceOverride", [
        (r"\boverrides?\b", 0.9),
        (r"\bprecedence\b", 0.9),
        (r"\btakes? priority over\b", 0.85),
        (r"\bpriority\b", 0.6),
    ])
)

TASK_ID_RE = re.compile(r"\bT\d+\b", re.IGNORECASE)
SLOT_LIMIT_RE = re.compile(r"(\d+)\s*(?:shared\s+)?(?:slots?|shared)\b", re.IGNORECASE)
LOAD_LIMIT_RE = re.compile(r"(\d+)\s*(?:tasks?|load)\b", re.IGNORECASE)
PHASE_LIST_RE = re.compile(
    r"(\d+(?:\s*(?:-|\bto\b)\s*\d+)?(?:\s*(?:,|\band\b|\bor\b)\s*(?:and\s+|or\s+)?\d+(?:\s*(?:-|\bto\b)\s*\d+)?)*)"
)
QUOTED_FRAGMENT_RE = re.compile(r"\b(starting with|ending with|containing|matching)\s+['\"]([^'\"]+)['\"]", re.IGNORECASE)
ACTION_RE = re.compile(r"\b(prioriti[sz]\w*|exclud\w*|flag\w*|includ\w*)", re.IGNORECASE)
OVERRIDE_SCOPES = ("global", "specific", "priority", "client", "worker")


# --------- Data types ---------
@dataclass
class DataContext:
    """What the converter knows about the loaded data."""
    task_ids: List[str] = field(default_factory=list)
    client_groups: List[str] = field(default_factory=list)
    worker_groups: List[str] = field(default_factory=list)
    task_phases: Dict[str, List[int]] = field(default_factory=dict)
    skills: List[str] = field(default_factory=list)

    @classmethod
    def from_dataset(cls, dataset: DataSet) -> "DataContext":
        context = cls()
        for task in dataset.get("tasks") or []:
            task_id = task.get("TaskID")
            if is_missing(task_id):
                continue
            task_id = str(task_id).strip()
            if task_id not in context.task_ids:
                context.task_ids.append(task_id)
            context.task_phases[task_id] = to_phase_numbers(task.get("PreferredPhases"))
            for skill in split_list(task.get("RequiredSkills")):
                if skill not in context.skills:
                    context.skills.append(skill)
        context.client_groups = _distinct(dataset.get("clients"), "GroupTag")
        context.worker_groups = _distinct(dataset.get("workers"), "WorkerGroup")
        return context


def _distinct(records, key: str) -> List[str]:
    values = []
    for record in records or []:
        value = record.get(key)
        if not is_missing(value) and str(value).strip() not in values:
            values.append(str(value).strip())
    return values


@dataclass
class ParsedRule:
    type: str
    name: str
    description: str
    parameters: Dict[str, Any]
    confidence: float
    suggestions: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_acceptable(self) -> bool:
        return not self.warnings and self.confidence >= MIN_ACCEPTABLE_CONFIDENCE

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "confidence": self.confidence,
        }
        if self.suggestions:
            data["suggestions"] = list(self.suggestions)
        if self.warnings:
            data["warnings"] = list(self.warnings)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ParsedRule":
        """Build from an externally produced mapping; raises on missing or invalid keys."""
        rule_type = data["type"]
        if rule_type not in RULE_TYPES:
            raise ValueError(f"Unknown rule type: {rule_type!r}")
        parameters = data["parameters"]
        if not isinstance(parameters, dict):
            raise ValueError("Rule parameters must be an object")
        confidence = max(0.0, min(1.0, float(data["confidence"])))
        return cls(
            type=rule_type,
            name=str(data.get("name") or NAME_TEMPLATES[rule_type](parameters)),
            description=str(data.get("description") or ""),
            parameters=parameters,
            confidence=confidence,
            suggestions=[str(s) for s in data.get("suggestions") or []],
            warnings=[str(w) for w in data.get("warnings") or []],
        )


@dataclass
class Rule:
    id: str
    type: str
    name: str
    description: str
    parameters: Dict[str, Any]
    priority: int = 1
    enabled: bool = True
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
            "priority": self.priority,
            "enabled": self.enabled,
            "createdAt": self.created_at,
        }


# --------- Parameter extraction ---------
def _task_ids(sentence: str) -> List[str]:
    found = []
    for match in TASK_ID_RE.finditer(sentence):
        token = match.group(0).upper()
        if token not in found:
            found.append(token)
    return found


def _known_task(token: str, context: DataContext) -> Optional[str]:
    for task_id in context.task_ids:
        if task_id.upper() == token:
            return task_id
    return None


def _find_group(sentence: str, groups: List[str]) -> Optional[str]:
    lowered = sentence.lower()
    for group in groups:
        if re.search(rf"\b{re.escape(group.lower())}\b", lowered):
            return group
    return None


def _preview(values: List[str], limit: int = 5) -> str:
    text = ", ".join(values[:limit])
    return text + ("..." if len(values) > limit else "")


def _extract_co_run(sentence: str, context: DataContext, draft: ParsedRule):
    valid = []
    for token in _task_ids(sentence):
        task_id = _known_task(token, context)
        if task_id and task_id not in valid:
            valid.append(task_id)

    if len(valid) < 2:
        draft.warnings.append("Need at least 2 valid task IDs for co-run rule")
        draft.confidence -= 0.2
        if context.task_ids:
            draft.suggestions.append(f"Available tasks: {_preview(context.task_ids)}")
        return

    draft.parameters["tasks"] = valid
    draft.confidence += 0.1

    phase_sets = [set(context.task_phases.get(t) or []) for t in valid]
    phase_sets = [phases for phases in phase_sets if phases]
    if len(phase_sets) < 2:
        return
    common = sorted(set.intersection(*phase_sets))
    if common:
        draft.suggestions.append(f"Common preferred phases: {', '.join(str(p) for p in common)}")
    else:
        draft.warnings.append(f"Tasks {', '.join(valid)} have no overlapping preferred phases")


def _extract_slot_restriction(sentence: str, context: DataContext, draft: ParsedRule):
    client_group = _find_group(sentence, context.client_groups)
    worker_group = None if client_group else _find_group(sentence, context.worker_groups)
    if client_group or worker_group:
        draft.parameters["groupType"] = "client" if client_group else "worker"
        draft.parameters["groupName"] = client_group or worker_group
        draft.confidence += 0.1
    else:
        draft.confidence -= 0.1
        groups = context.client_groups + [g for g in context.worker_groups if g not in context.client_groups]
        if groups:
            draft.suggestions.append(f"Available groups: {', '.join(groups)}")

    limit = SLOT_LIMIT_RE.search(sentence)
    if limit:
        draft.parameters["minCommonSlots"] = int(limit.group(1))
        draft.confidence += 0.1
    else:
        draft.warnings.append("Could not extract slot limit number")
        draft.confidence -= 0.1


def _extract_load_limit(sentence: str, context: DataContext, draft: ParsedRule):
    group = _find_group(sentence, context.worker_groups)
    if group:
        draft.parameters["workerGroup"] = group
        draft.confidence += 0.1
    else:
        draft.warnings.append("Could not identify worker group")
        if context.worker_groups:
            draft.suggestions.append(f"Available worker groups: {', '.join(context.worker_groups)}")

    limit = LOAD_LIMIT_RE.search(sentence)
    if limit:
        draft.parameters["maxSlotsPerPhase"] = int(limit.group(1))
        draft.confidence += 0.1
    else:
        draft.warnings.append("Could not extract load limit number")
        draft.confidence -= 0.1


def _expand_phases(text: str) -> List[int]:
    phases = []
    for part in re.split(r"\s*(?:,|\band\b|\bor\b)\s*", text):
        bounds = re.split(r"\s*(?:-|\bto\b)\s*", part.strip())
        numbers = [int(b) for b in bounds if b.isdigit()]
        if not numbers:
            continue
        expanded = range(numbers[0], numbers[-1] + 1) if len(numbers) > 1 else numbers
        for phase in expanded:
            if phase not in phases:
                phases.append(phase)
    return phases


def _extract_phase_window(sentence: str, context: DataContext, draft: ParsedRule):
    tokens = _task_ids(sentence)
    task_id = _known_task(tokens[0], context) if tokens else None
    if task_id:
        draft.parameters["taskId"] = task_id
        draft.confidence += 0.1
    else:
        draft.warnings.append(f"Task {tokens[0]} not found" if tokens else "Could not identify task")
        if context.task_ids:
            draft.suggestions.append(f"Available tasks: {_preview(context.task_ids)}")

    remainder = TASK_ID_RE.sub(" ", sentence)
    match = PHASE_LIST_RE.search(remainder)
    if match:
        phases = _expand_phases(match.group(1))
        if phases:
            draft.parameters["allowedPhases"] = phases
            draft.confidence += 0.1


PATTERN_SHAPES = {
    "starting with": ("prefix", "TaskID", "^{}"),
    "ending with": ("suffix", "TaskID", "{}$"),
    "containing": ("substring", "TaskName", "{}"),
    "matching": ("literal", "TaskID", "^{}$"),
}


def _extract_pattern_match(sentence: str, context: DataContext, draft: ParsedRule):
    match = QUOTED_FRAGMENT_RE.search(sentence)
    if match:
        match_type, target, template = PATTERN_SHAPES[match.group(1).lower()]
        draft.parameters["pattern"] = template.format(re.escape(match.group(2)))
        draft.parameters["matchType"] = match_type
        draft.parameters["field"] = target
        draft.confidence += 0.1
    else:
        draft.suggestions.append("Quote the fragment to match, e.g. starting with 'CRIT'")

    action = ACTION_RE.search(sentence)
    verb = action.group(1).lower() if action else ""
    if verb.startswith("priorit"):
        draft.parameters["action"] = "prioritize"
    elif verb.startswith("exclud"):
        draft.parameters["action"] = "exclude"
    elif verb.startswith("flag"):
        draft.parameters["action"] = "flag"
    else:
        draft.parameters["action"] = "include"


def _extract_precedence_override(sentence: str, context: DataContext, draft: ParsedRule):
    lowered = sentence.lower()
    scope = next((s for s in OVERRIDE_SCOPES if re.search(rf"\b{s}\b", lowered)), "specific")
    draft.parameters["overrideType"] = scope
    draft.confidence += 0.05


EXTRACTORS: Dict[str, Callable[[str, DataContext, ParsedRule], None]] = {
    "coRun": _extract_co_run,
    "slotRestriction": _extract_slot_restriction,
    "loadLimit": _extract_load_limit,
    "phaseWindow": _extract_phase_window,
    "patternMatch": _extract_pattern_match,
    "precedenceOverride": _extract_precedence_override,
}

NAME_TEMPLATES: Dict[str, Callable[[Dict[str, Any]], str]] = {
    "coRun": lambda p: f"Co-run {' & '.join(p['tasks']) if p.get('tasks') else 'Tasks'}",
    "slotRestriction": lambda p: f"Limit {p.get('groupName') or 'Group'} Slots",
    "loadLimit": lambda p: f"{p.get('workerGroup') or 'Worker'} Load Limit",
    "phaseWindow": lambda p: f"{p.get('taskId') or 'Task'} Phase Window",
    "patternMatch": lambda p: f"Pattern Rule: {p.get('pattern') or 'Match'}",
    "precedenceOverride": lambda p: f"{str(p.get('overrideType') or 'specific').title()} Override",
}


# --------- Converter ---------
def classify(sentence: str):
    """Return ``(rule_type, weight)`` for the single strongest pattern hit, or None."""
    lowered = sentence.lower()
    best = None
    for pattern in RULE_TYPE_PATTERNS:
        if pattern.regex.search(lowered) and (best is None or pattern.weight > best.weight):
            best = pattern
    if best is None:
        return None
    return best.rule_type, best.weight


class RuleConverter:
    def __init__(self, context: Optional[DataContext] = None):
        self.context = context or DataContext()

    def convert(self, sentence: str) -> Optional[ParsedRule]:
        if not sentence or not sentence.strip():
            return None
        hit = classify(sentence)
        if hit is None:
            logger.debug("No rule type matched %r", sentence)
            return None
        rule_type, weight = hit
        logger.debug("Classified %r as %s (%.2f)", sentence, rule_type, weight)

        draft = ParsedRule(
            type=rule_type, name="", description=sentence.strip(),
            parameters={}, confidence=weight,
        )
        EXTRACTORS[rule_type](sentence, self.context, draft)
        draft.name = NAME_TEMPLATES[rule_type](draft.parameters)
        draft.confidence = round(max(0.0, min(1.0, draft.confidence)), 4)
        return draft


def convert_rule(sentence: str, dataset: DataSet) -> Optional[ParsedRule]:
    return RuleConverter(DataContext.from_dataset(dataset)).convert(sentence)


# --------- Rule book ---------
class RuleBook:
    """Append-only collection of accepted rules; rules can be toggled or deleted."""

    def __init__(self):
        self.rules: List[Rule] = []

    def promote(self, parsed: ParsedRule, priority: int = 1, override: bool = False) -> Rule:
        if not parsed.is_acceptable and not override:
            reasons = list(parsed.warnings)
            if parsed.confidence < MIN_ACCEPTABLE_CONFIDENCE:
                reasons.append(f"confidence {parsed.confidence:.0%} is below {MIN_ACCEPTABLE_CONFIDENCE:.0%}")
            raise RuleNotAcceptable("Rule needs review before it can be added: " + "; ".join(reasons))
        return self._append(parsed.type, parsed.name, parsed.description, dict(parsed.parameters), priority)

    def create_rule(self, rule_type: str, parameters: Dict[str, Any], name: Optional[str] = None,
                    description: str = "", priority: int = 1) -> Rule:
        if rule_type not in RULE_TYPES:
            raise ValueError(f"Unknown rule type: {rule_type!r}")
        if not isinstance(parameters, dict):
            raise ValueError("Rule parameters must be an object")
        name = name or NAME_TEMPLATES[rule_type](parameters)
        return self._append(rule_type, name, description or RULE_TYPE_INFO[rule_type][1], dict(parameters), priority)

    def _append(self, rule_type, name, description, parameters, priority) -> Rule:
        rule = Rule(
            id=f"{rule_type}_{uuid.uuid4().hex[:8]}",
            type=rule_type, name=name, description=description,
            parameters=parameters, priority=int(priority),
        )
        self.rules.append(rule)
        logger.info("Added rule %s (%s)", rule.id, rule.name)
        return rule

    def get(self, rule_id: str) -> Rule:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        raise KeyError(rule_id)

    def toggle(self, rule_id: str) -> Rule:
        rule = self.get(rule_id)
        rule.enabled = not rule.enabled
        return rule

    def delete(self, rule_id: str) -> Rule:
        rule = self.get(rule_id)
        self.rules.remove(rule)
        return rule

    def active_rules(self) -> List[Rule]:
        return [rule for rule in self.rules if rule.enabled]

    def to_list(self) -> List[Dict[str, Any]]:
        return [rule.to_dict() for rule in self.rules]
