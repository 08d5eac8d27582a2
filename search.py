# search.py
"""
Natural-language search: turns a query such as "workers available in phases 1, 2
and 3" into typed conditions, then filters one collection with them.

Patterns are declarative data grouped into four families (numeric, string,
array, boolean). Every family runs over the whole query; conditions from all
families are kept and ANDed.
"""
import re
import logging
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, Callable, Pattern, Match, Tuple

from fields import (
    Record, NUMERIC_FIELDS, ARRAY_FIELDS, NAME_FIELDS, GROUP_FIELDS, SKILL_FIELDS, PHASE_FIELDS, SEARCH_ALIASES,
    resolve_field_alias, field_in_collection, clean_token, is_missing,
    parse_array_field, parse_json_field, to_number, display_number,
)

logger = logging.getLogger(__name__)

OPERATORS = (">", "<", "=", ">=", "<=", "contains", "in", "not", "startswith", "endswith")
CONDITION_TYPES = ("numeric", "string", "array", "boolean")


@dataclass
class Condition:
    field: str
    operator: str
    value: Any
    type: str

    def to_dict(self) -> Dict[str, Any]:
        return {"field": self.field, "operator": self.operator, "value": self.value, "type": self.type}


# --------- Phrase tables ---------
WORD_COMPARATORS = {
    "greater than or equal to": ">=",
    "greater than or equal": ">=",
    "no less than": ">=",
    "at least": ">=",
    "minimum of": ">=",
    "minimum": ">=",
    "less than or equal to": "<=",
    "less than or equal": "<=",
    "no more than": "<=",
    "at most": "<=",
    "maximum of": "<=",
    "maximum": "<=",
    "up to": "<=",
    "greater than": ">",
    "more than": ">",
    "higher than": ">",
    "exceeding": ">",
    "exceeds": ">",
    "above": ">",
    "over": ">",
    "beyond": ">",
    "less than": "<",
    "fewer than": "<",
    "lower than": "<",
    "below": "<",
    "under": "<",
    "equal to": "=",
    "equals": "=",
    "exactly": "=",
    "is not": "not",
    "is": "=",
}
SYMBOL_COMPARATORS = {">=": ">=", "<=": "<=", "!=": "not", "==": "=", ">": ">", "<": "<", "=": "="}

# Adjective tags: tag -> (field, value)
TAGS = {
    "vip": ("AttributesJSON.vip", True),
    "premium": ("AttributesJSON.vip", True),
    "urgent": ("AttributesJSON.urgent", True),
    "active": ("AttributesJSON.active", True),
    "inactive": ("AttributesJSON.active", False),
    "senior": ("QualificationLevel", "Senior"),
    "junior": ("QualificationLevel", "Junior"),
}


def _alternation(phrases) -> str:
    return "|".join(re.escape(p) for p in sorted(phrases, key=len, reverse=True))


_WORDS = _alternation(WORD_COMPARATORS)
_SYMBOLS = _alternation(SYMBOL_COMPARATORS)
_NUMBER = r"(-?\d+(?:\.\d+)?)(?![\d.])"
_WORD = r"[a-z][a-z_]*"
_LIST_SEP = r"\s*(?:,|\band\b|\bor\b)\s*(?:and\s+|or\s+)?"
_QUOTED_OR_TOKEN = r"(?:\"([^\"]+)\"|'([^']+)'|([a-z0-9+#._-]+))"
_TAG_WORDS = _alternation(TAGS)
_NOUNS = r"(?:clients?|customers?|workers?|employees?|staff|tasks?|jobs?)"
_STRING_VERBS = ("contains", "includes", "include", "has", "having", "with", "featuring")
_VERBS = _alternation(_STRING_VERBS)
_FIELD_PHRASES = _alternation({alias for aliases in SEARCH_ALIASES.values() for alias in aliases})
_COMPARATOR_WORDS = {word for phrase in WORD_COMPARATORS for word in phrase.split()}
_OPEN_BOUNDS = {"more": ">=", "greater": ">=", "higher": ">=", "above": ">=",
                "less": "<=", "fewer": "<=", "lower": "<=", "below": "<="}
_SKILL_LEADS = r"(?:(?:including|include|like|such\s+as|in|of)\s+)?"


# --------- Family builders ---------
Span = Tuple[int, int]


def _overlaps(span: Span, claimed: List[Span]) -> bool:
    return any(span[0] < end and start < span[1] for start, end in claimed)


def _number(text: str):
    return display_number(float(text))


def _quoted_or_token(match: Match, first_group: int) -> Optional[str]:
    for group in range(first_group, first_group + 3):
        if match.group(group):
            return match.group(group).strip()
    return None


def _resolve_numeric(phrase: str, collection: str) -> Optional[str]:
    mapped = resolve_field_alias(phrase, collection)
    if not mapped or not field_in_collection(mapped, collection):
        return None
    # Nested attributes may hold numbers ("budget over 20000").
    if mapped in NUMERIC_FIELDS or mapped.startswith("AttributesJSON."):
        return mapped
    return None


def _leading_comparison(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    mapped = _resolve_numeric(match.group(1), collection)
    if not mapped:
        return None
    phrase = match.group(2) or match.group(3)
    operator = WORD_COMPARATORS.get(phrase) or SYMBOL_COMPARATORS.get(phrase, "=")
    claimed.append((match.start(2) if match.group(2) else match.start(3), match.end(4)))
    return Condition(mapped, operator, _number(match.group(4)), "numeric")


def _trailing_comparison(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    span = (match.start(1), match.end(2))
    if _overlaps(span, claimed):
        return None
    words = match.group(3).split()
    for size in range(len(words), 0, -1):
        mapped = _resolve_numeric(" ".join(words[:size]), collection)
        if mapped:
            claimed.append(span)
            return Condition(mapped, WORD_COMPARATORS[match.group(1)], _number(match.group(2)), "numeric")
    return None


def _bare_number(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    span = (match.start(2), match.end(2))
    if _overlaps(span, claimed):
        return None
    mapped = _resolve_numeric(match.group(1), collection)
    if not mapped:
        return None
    claimed.append(span)
    return Condition(mapped, "=", _number(match.group(2)), "numeric")


def _open_bound(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    span = (match.start(2), match.end(3))
    if _overlaps(span, claimed):
        return None
    mapped = _resolve_numeric(match.group(1), collection)
    if not mapped:
        return None
    claimed.append(span)
    return Condition(mapped, _OPEN_BOUNDS[match.group(3)], _number(match.group(2)), "numeric")


def _field_contains(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    # resolve_field_alias walks suffixes, so "tasks with category" resolves to Category
    mapped = resolve_field_alias(match.group(1), collection)
    value = _quoted_or_token(match, 3)
    if not mapped or not value or mapped in NUMERIC_FIELDS:
        return None
    claimed.append(match.span())
    return Condition(mapped, "contains", value, "string")


def _with_field_value(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    if _overlaps(match.span(), claimed):
        return None
    mapped = resolve_field_alias(match.group(1), collection)
    value = _quoted_or_token(match, 2)
    # Numbers and lists belong to the numeric and array families.
    if not mapped or not value or mapped in NUMERIC_FIELDS or mapped in ARRAY_FIELDS:
        return None
    if value in _COMPARATOR_WORDS or value in _STRING_VERBS:
        return None
    if mapped.startswith("AttributesJSON.") and to_number(value) is not None:
        return None
    claimed.append(match.span())
    return Condition(mapped, "contains", value, "string")


def _requiring_skill(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    skill_field = SKILL_FIELDS.get(collection)
    value = _quoted_or_token(match, 1)
    if not skill_field or not value:
        return None
    return Condition(skill_field, "contains", value, "string")


def _named(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    name_field = NAME_FIELDS.get(collection)
    value = _quoted_or_token(match, 1)
    if not name_field or not value:
        return None
    return Condition(name_field, "contains", value, "string")


def _in_group(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    group_field = GROUP_FIELDS.get(collection)
    value = match.group(1) or match.group(2) or match.group(3)
    if not group_field or not value:
        return None
    return Condition(group_field, "contains", re.sub(r"\s+", "", value), "string")


def _split_list(text: str) -> List[str]:
    return [item.strip() for item in re.split(r"\s*(?:,|\band\b|\bor\b)\s*", text) if item.strip()]


def _phase_list(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    phase_field = PHASE_FIELDS.get(collection)
    values = [int(n) for n in re.findall(r"\d+", match.group(1))]
    if not phase_field or not values:
        return None
    return Condition(phase_field, "in", values, "array")


def _requested_tasks(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    values = [item.upper() for item in _split_list(match.group(1))]
    if not values:
        return None
    return Condition("RequestedTaskIDs", "in", values, "array")


def _skill_list(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    skill_field = SKILL_FIELDS.get(collection)
    values = _split_list(match.group(1))
    if not skill_field or not values:
        return None
    return Condition(skill_field, "in", values, "array")


def _tag(word: str) -> Optional[Condition]:
    mapped, value = TAGS[word]
    kind = "boolean" if isinstance(value, bool) else "string"
    return Condition(mapped, "=", value, kind)


def _tag_before_noun(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    return _tag(match.group(1))


def _tag_after_noun(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    return _tag(match.group(1))


def _priority_band(match: Match, collection: str, claimed: List[Span]) -> Optional[Condition]:
    if match.group(1) == "high":
        return Condition("PriorityLevel", ">=", 4, "numeric")
    return Condition("PriorityLevel", "<=", 2, "numeric")


@dataclass
class PatternSpec:
    regex: Pattern
    build: Callable[[Match, str, List[Span]], Optional[Condition]]


PATTERN_FAMILIES: Dict[str, List[PatternSpec]] = {
    "numeric": [
        # "priority level greater than 3", "duration>=2"
        PatternSpec(re.compile(
            rf"\b({_WORD}(?:\s+{_WORD})*?)(?:\s+({_WORDS})\s+|\s*({_SYMBOLS})\s*){_NUMBER}"
        ), _leading_comparison),
        # "more than 2 max load per phase"
        PatternSpec(re.compile(
            rf"\b({_WORDS})\s+{_NUMBER}\s+({_WORD}(?:\s+{_WORD}){{0,3}})"
        ), _trailing_comparison),
        # "duration 2 or more"
        PatternSpec(re.compile(
            rf"\b({_WORD}(?:\s+{_WORD}){{0,2}})\s+(?:of\s+)?{_NUMBER}\s+or\s+({_alternation(_OPEN_BOUNDS)})\b"
        ), _open_bound),
        # "priority 4", "duration of 2"
        PatternSpec(re.compile(
            rf"\b({_WORD}(?:\s+{_WORD}){{0,2}})\s+(?:of\s+)?{_NUMBER}"
        ), _bare_number),
    ],
    "string": [
        # 'category contains "etl"', 'tasks with category contains "etl"'
        PatternSpec(re.compile(
            rf"\b((?:{_WORD}\s+){{0,3}}{_WORD})\s+({_VERBS})\s+{_QUOTED_OR_TOKEN}"
        ), _field_contains),
        # "clients with id c1", "tasks with category etl"
        PatternSpec(re.compile(
            rf"\b(?:with|having|whose)\s+((?:{_FIELD_PHRASES})\b|{_WORD})\s+(?:(?:is|of)\s+|=\s*)?{_QUOTED_OR_TOKEN}"
        ), _with_field_value),
        PatternSpec(re.compile(
            rf"\b(?:requiring|needing|demanding)\s+(?!tasks?\b){_QUOTED_OR_TOKEN}"
        ), _requiring_skill),
        PatternSpec(re.compile(rf"\b(?:named|called|titled)\s+{_QUOTED_OR_TOKEN}"), _named),
        PatternSpec(re.compile(
            r"\b(?:in|from)\s+(?:the\s+)?(?:((?:group|team)(?:\s*[a-z0-9]|[a-z0-9]+))|"
            r"([a-z0-9]+(?:group|team))|([a-z0-9]+)\s+(?:group|team))\b"
        ), _in_group),
    ],
    "array": [
        PatternSpec(re.compile(
            rf"\b(?:in|during|within)\s+(?:phases?|slots?)\s+(\d+(?:{_LIST_SEP}\d+)*)"
        ), _phase_list),
        PatternSpec(re.compile(
            rf"\b(?:requesting|needing|requiring)\s+tasks?\s+(t[a-z_-]*\d+(?:{_LIST_SEP}t[a-z_-]*\d+)*)"
        ), _requested_tasks),
        PatternSpec(re.compile(
            rf"\b(?:with|having)\s+skills?\s+{_SKILL_LEADS}([a-z0-9+#.]+(?:{_LIST_SEP}[a-z0-9+#.]+)*)"
        ), _skill_list),
        PatternSpec(re.compile(
            rf"\b(?:with|having)\s+([a-z0-9+#.]+(?:{_LIST_SEP}[a-z0-9+#.]+)*)\s+skills?\b"
        ), _skill_list),
    ],
    "boolean": [
        PatternSpec(re.compile(rf"\b({_TAG_WORDS})\s+{_NOUNS}\b"), _tag_before_noun),
        PatternSpec(re.compile(rf"\b{_NOUNS}\s+(?:that|who|which)\s+(?:are|is)\s+({_TAG_WORDS})\b"), _tag_after_noun),
        PatternSpec(re.compile(r"\b(high|low)[\s-]+priority\b"), _priority_band),
    ],
}


def _run_family(specs: List[PatternSpec], text: str, collection: str) -> List[Condition]:
    found = []
    claimed: List[Span] = []
    for spec in specs:
        for match in spec.regex.finditer(text):
            condition = spec.build(match, collection, claimed)
            if condition and field_in_collection(condition.field, collection):
                found.append(condition)
    return found


def parse_conditions(query: str, collection: str) -> List[Condition]:
    """Parse ``query`` into the ordered list of conditions for ``collection``."""
    text = query.lower().strip()
    conditions: List[Condition] = []
    if not text:
        return conditions
    for family, specs in PATTERN_FAMILIES.items():
        try:
            found = _run_family(specs, text, collection)
        except Exception:
            logger.exception("Pattern family %s failed on %r", family, query)
            continue
        logger.debug("Family %s produced %d condition(s)", family, len(found))
        conditions.extend(found)
    return conditions


# --------- Executor ---------
ALTERNATIVE_FIELDS = {
    "PriorityLevel": ["Priority", "priority", "priorityLevel"],
    "ClientName": ["Name", "name", "clientName"],
    "WorkerName": ["Name", "name", "workerName"],
    "TaskName": ["Name", "name", "taskName"],
    "ClientID": ["ID", "id", "clientId"],
    "WorkerID": ["ID", "id", "workerId"],
    "TaskID": ["ID", "id", "taskId"],
    "GroupTag": ["Group", "group", "groupTag"],
    "WorkerGroup": ["Group", "group", "workerGroup"],
    "Skills": ["skills", "skill"],
    "RequiredSkills": ["RequiredSkill", "requiredSkill", "skills", "skill"],
    "AvailableSlots": ["Slots", "slots", "availableSlots"],
    "PreferredPhases": ["Phases", "phases", "preferredPhases"],
    "RequestedTaskIDs": ["RequestedTasks", "requestedTasks", "tasks"],
    "Duration": ["duration"],
    "MaxConcurrent": ["maxConcurrent", "concurrent"],
    "MaxLoadPerPhase": ["MaxLoad", "maxLoad", "load"],
    "QualificationLevel": ["Qualification", "qualification", "level"],
}

_MISSING = object()


def _lookup(record: Record, path: str):
    current: Any = record
    for key in path.split("."):
        if not isinstance(current, dict) or key not in current:
            return _MISSING
        value = current[key]
        if key.endswith("JSON") and isinstance(value, str):
            parsed = parse_json_field(value)
            value = parsed if parsed is not None else value
        current = value
    return current


def _fuzzy_lookup(record: Record, path: str):
    base, _, rest = path.partition(".")
    wanted = clean_token(base)
    for key in record:
        if clean_token(key) == wanted:
            return _lookup(record, key + ("." + rest if rest else ""))
    return _MISSING


def resolve_value(record: Record, field_name: str, reverse_mapping: Optional[Dict[str, str]] = None):
    """Find the cell a condition refers to; returns None when the record lacks it."""
    base, _, rest = field_name.partition(".")
    suffix = "." + rest if rest else ""

    value = _lookup(record, field_name)
    if value is _MISSING and reverse_mapping and base in reverse_mapping:
        value = _lookup(record, reverse_mapping[base] + suffix)
    if value is _MISSING:
        for alternative in ALTERNATIVE_FIELDS.get(base, []):
            value = _lookup(record, alternative + suffix)
            if value is not _MISSING:
                break
    if value is _MISSING:
        value = _fuzzy_lookup(record, field_name)
    if value is _MISSING or (value is not None and not isinstance(value, str) and is_missing(value)):
        return None
    return value


def _as_text(value: Any) -> str:
    if isinstance(value, list):
        return ", ".join(_as_text(item) for item in value)
    if isinstance(value, float):
        return str(display_number(value))
    return str(value)


def _as_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    return str(value).strip().lower() in ("true", "yes", "y", "1")


def _same_item(item: Any, wanted: Any) -> bool:
    left, right = to_number(item), to_number(wanted)
    if left is not None and right is not None:
        return left == right
    return _as_text(item).strip().lower() == _as_text(wanted).strip().lower()


def evaluate(condition: Condition, value: Any) -> bool:
    if value is None:
        return False

    if condition.type == "numeric":
        actual, expected = to_number(value), to_number(condition.value)
        if actual is None or expected is None:
            return False
        op = condition.operator
        if op == ">":
            return actual > expected
        if op == "<":
            return actual < expected
        if op in ("=", "=="):
            return actual == expected
        if op == ">=":
            return actual >= expected
        if op == "<=":
            return actual <= expected
        if op == "not":
            return actual != expected
        return False

    if condition.type == "string":
        actual = _as_text(value).lower()
        expected = _as_text(condition.value).lower()
        op = condition.operator
        if op in ("=", "=="):
            return actual == expected
        if op == "not":
            return expected not in actual
        if op == "startswith":
            return actual.startswith(expected)
        if op == "endswith":
            return actual.endswith(expected)
        return expected in actual

    if condition.type == "array":
        items = parse_array_field(value)
        wanted = condition.value if isinstance(condition.value, list) else [condition.value]
        hit = any(_same_item(item, w) for w in wanted for item in items)
        if condition.operator in ("in", "contains"):
            return hit
        if condition.operator == "not":
            return not hit
        return False

    if condition.type == "boolean":
        return _as_bool(value) == _as_bool(condition.value)

    return False


@dataclass
class SearchResult:
    records: List[Record] = field(default_factory=list)
    rows: List[int] = field(default_factory=list)
    highlights: List[Dict[str, Any]] = field(default_factory=list)
    conditions: List[Condition] = field(default_factory=list)
    source: str = "local"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "records": self.records,
            "rows": self.rows,
            "highlights": self.highlights,
            "conditions": [c.to_dict() for c in self.conditions],
            "source": self.source,
            "count": len(self.records),
        }


def run_search(conditions: List[Condition], records: List[Record],
               header_mapping: Optional[Dict[str, str]] = None) -> SearchResult:
    """
    Filter ``records`` down to those satisfying every condition.

    ``header_mapping`` is the ``{original header: canonical field}`` map recorded
    at upload time; it is used in reverse when a canonical field is absent.
    """
    reverse_mapping = {canonical: original for original, canonical in (header_mapping or {}).items()}
    result = SearchResult(conditions=list(conditions))
    for row, record in enumerate(records):
        if all(evaluate(c, resolve_value(record, c.field, reverse_mapping)) for c in conditions):
            result.records.append(record)
            result.rows.append(row)
            result.highlights.extend({"row": row, "field": c.field} for c in conditions)
    logger.debug("Search matched %d of %d records", len(result.records), len(records))
    return result


def execute_conditions(conditions: List[Condition], records: List[Record],
                       header_mapping: Optional[Dict[str, str]] = None) -> List[Record]:
    return run_search(conditions, records, header_mapping).records
