# assist.py
"""
Optional external text-model assist for search and rule conversion.

Every call site runs a two-strategy chain: the hosted model first (only when a
GITHUB_TOKEN is configured), then the local heuristic. A failed assist attempt
contributes nothing; the local result is returned as if assist never ran.
"""
import json
import logging
from dataclasses import dataclass
from typing import List, Dict, Any, Optional, Union

from azure.ai.inference import ChatCompletionsClient
from azure.ai.inference.models import SystemMessage, UserMessage
from azure.core.credentials import AzureKeyCredential
from azure.core.exceptions import AzureError, HttpResponseError

from config import Settings
from fields import CANONICAL_FIELDS, field_in_collection
from search import Condition, OPERATORS, CONDITION_TYPES, parse_conditions
from rules import RULE_TYPES, DataContext, ParsedRule, RuleConverter

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a data assistant for a resource-allocation configurator. "
    "Answer with a single JSON object and nothing else."
)


class AssistError(Exception):
    """Base class for failures on the external assist path."""


class AssistUnavailable(AssistError):
    """No API key configured, or the endpoint could not be reached."""


class AssistResponseError(AssistError):
    """The model answered, but not with the JSON shape we asked for."""


# --------- Client ---------
class GPTAgent:
    def __init__(self, settings: Settings):
        if not settings.github_token:
            raise AssistUnavailable("Missing GITHUB_TOKEN env variable")

        self.client = ChatCompletionsClient(
            endpoint=settings.endpoint,
            credential=AzureKeyCredential(settings.github_token)
        )
        self.model_name = settings.model
        self.temperature = settings.temperature
        self.max_tokens = settings.max_tokens
        self.timeout = settings.timeout

    def chat_completion(self, system_prompt: str, user_prompt: str) -> str:
        messages = [
            SystemMessage(content=system_prompt),
            UserMessage(content=user_prompt)
        ]

        response = self.client.complete(
            messages=messages,
            model=self.model_name,
            temperature=self.temperature,
            top_p=1.0,
            max_tokens=self.max_tokens,
            connection_timeout=self.timeout,
            read_timeout=self.timeout,
        )

        return response.choices[0].message.content


@dataclass
class AssistResponse:
    success: bool
    text: str = ""
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"success": self.success, "text": self.text}
        if self.error:
            data["error"] = self.error
        return data


class AssistClient:
    """``complete(prompt) -> AssistResponse``; transport failures become ``success=False``."""

    def __init__(self, agent):
        self.agent = agent

    @classmethod
    def from_settings(cls, settings: Settings) -> Optional["AssistClient"]:
        if not settings.assist_enabled:
            return None
        return cls(GPTAgent(settings))

    def complete(self, prompt: str, system_prompt: str = SYSTEM_PROMPT) -> AssistResponse:
        try:
            text = self.agent.chat_completion(system_prompt, prompt)
        except HttpResponseError as e:
            return AssistResponse(False, error=f"HTTP {e.status_code}: {e.message}")
        except (AzureError, AssistUnavailable) as e:
            return AssistResponse(False, error=str(e))
        if not text or not text.strip():
            return AssistResponse(False, error="Empty response")
        return AssistResponse(True, text)


def extract_json_object(text: str) -> Dict[str, Any]:
    """Pull the JSON object out of a model reply, tolerating ``` fences and chatter."""
    text = (text or "").strip()
    if text.startswith("```"):
        lines = [line for line in text.split("\n") if not line.strip().startswith("```")]
        text = "\n".join(lines).strip()

    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise AssistResponseError("No JSON object in response")
    try:
        payload = json.loads(text[start:end + 1])
    except ValueError as e:
        raise AssistResponseError(f"Invalid JSON in response: {e}") from e
    if not isinstance(payload, dict):
        raise AssistResponseError("Response JSON is not an object")
    return payload


# --------- Result ---------
@dataclass
class Success:
    value: Any
    source: str
    ok: bool = True


@dataclass
class Failure:
    reason: str
    source: str
    ok: bool = False


Result = Union[Success, Failure]


# --------- Strategies ---------
class LocalConditionStrategy:
    name = "local"

    def run(self, query: str, collection: str) -> Result:
        return Success(parse_conditions(query, collection), self.name)


class AssistConditionStrategy:
    name = "assist"

    def __init__(self, client: AssistClient):
        self.client = client

    def build_prompt(self, query: str, collection: str) -> str:
        return f"""
Convert this search query over the "{collection}" collection into filter conditions.

Query: "{query.strip()}"

Fields available: {', '.join(CANONICAL_FIELDS.get(collection, []))}
Nested attributes may be addressed as AttributesJSON.<key>.
Operators: {', '.join(OPERATORS)}
Types: {', '.join(CONDITION_TYPES)}

Return only: {{"conditions": [{{"field": "...", "operator": "...", "value": ..., "type": "..."}}]}}
"""

    def _to_conditions(self, payload: Dict[str, Any], collection: str) -> List[Condition]:
        items = payload.get("conditions")
        if not isinstance(items, list):
            raise AssistResponseError("Missing 'conditions' list")
        conditions = []
        for item in items:
            if not isinstance(item, dict):
                raise AssistResponseError("Condition is not an object")
            missing = [key for key in ("field", "operator", "value", "type") if key not in item]
            if missing:
                raise AssistResponseError(f"Condition missing keys: {', '.join(missing)}")
            if item["operator"] not in OPERATORS or item["type"] not in CONDITION_TYPES:
                raise AssistResponseError(f"Unsupported operator or type in {item}")
            if not field_in_collection(str(item["field"]), collection):
                raise AssistResponseError(f"Unknown field {item['field']!r} for {collection}")
            conditions.append(Condition(str(item["field"]), item["operator"], item["value"], item["type"]))
        return conditions

    def run(self, query: str, collection: str) -> Result:
        response = self.client.complete(self.build_prompt(query, collection))
        if not response.success:
            return Failure(response.error or "Assist request failed", self.name)
        try:
            payload = extract_json_object(response.text)
            return Success(self._to_conditions(payload, collection), self.name)
        except AssistResponseError as e:
            return Failure(str(e), self.name)


class LocalRuleStrategy:
    name = "local"

    def __init__(self, context: DataContext):
        self.converter = RuleConverter(context)

    def run(self, sentence: str) -> Result:
        # None is a legitimate local outcome: the sentence could not be classified.
        return Success(self.converter.convert(sentence), self.name)


class AssistRuleStrategy:
    name = "assist"

    def __init__(self, client: AssistClient, context: DataContext):
        self.client = client
        self.context = context

    def build_prompt(self, sentence: str) -> str:
        return f"""
Convert this business rule into a structured rule.

Rule: "{sentence.strip()}"

Known task IDs: {', '.join(self.context.task_ids[:50]) or 'none'}
Client groups: {', '.join(self.context.client_groups) or 'none'}
Worker groups: {', '.join(self.context.worker_groups) or 'none'}

Rule types and their parameters:
- coRun: tasks (list of task IDs)
- slotRestriction: groupType ("client" or "worker"), groupName, minCommonSlots
- loadLimit: workerGroup, maxSlotsPerPhase
- phaseWindow: taskId, allowedPhases (list of numbers)
- patternMatch: pattern (regex), matchType, field, action (prioritize, exclude, include or flag)
- precedenceOverride: overrideType (global, specific, priority, client or worker)

Return only: {{"type": one of {', '.join(RULE_TYPES)}, "name": "...", "description": "...",
"parameters": {{...}}, "confidence": 0.0-1.0, "suggestions": [], "warnings": []}}
"""

    def run(self, sentence: str) -> Result:
        response = self.client.complete(self.build_prompt(sentence))
        if not response.success:
            return Failure(response.error or "Assist request failed", self.name)
        try:
            payload = extract_json_object(response.text)
            parsed = ParsedRule.from_dict(payload)
        except AssistResponseError as e:
            return Failure(str(e), self.name)
        except (KeyError, TypeError, ValueError) as e:
            return Failure(f"Malformed rule payload: {e!r}", self.name)
        if not parsed.description:
            parsed.description = sentence.strip()
        return Success(parsed, self.name)


class StrategyChain:
    """Try each strategy in order and return the first Success, never merging outputs."""

    def __init__(self, strategies):
        self.strategies = list(strategies)

    def run(self, *args) -> Result:
        result: Result = Failure("No strategies configured", "chain")
        for strategy in self.strategies:
            try:
                result = strategy.run(*args)
            except Exception as e:
                logger.exception("Strategy %s raised", strategy.name)
                result = Failure(str(e), strategy.name)
            if result.ok:
                return result
            logger.warning("%s strategy failed (%s); falling back", strategy.name, result.reason)
        return result


def condition_chain(client: Optional[AssistClient]) -> StrategyChain:
    strategies = [AssistConditionStrategy(client)] if client else []
    return StrategyChain(strategies + [LocalConditionStrategy()])


def rule_chain(client: Optional[AssistClient], context: DataContext) -> StrategyChain:
    strategies = [AssistRuleStrategy(client, context)] if client else []
    return StrategyChain(strategies + [LocalRuleStrategy(context)])
