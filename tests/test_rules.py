"""Tests for the rule converter and rule book."""

import pytest

from rules import (
    DataContext,
    ParsedRule,
    RuleBook,
    RuleConverter,
    RuleNotAcceptable,
    classify,
    convert_rule,
)


@pytest.fixture
def converter(dataset):
    return RuleConverter(DataContext.from_dataset(dataset))


def overlapping(dataset):
    """T001 and T003 share phase 2."""
    dataset["tasks"][2]["PreferredPhases"] = "[2, 3, 4]"
    return dataset


class TestClassification:
    @pytest.mark.parametrize(
        "sentence,expected",
        [
            ("Tasks T001 and T003 must run together in the same phase", "coRun"),
            ("Limit Enterprise clients to maximum 3 shared slots per phase", "slotRestriction"),
            ("DataTeam workers should not exceed 4 tasks per phase", "loadLimit"),
            ("Task T005 can only run in phases 1, 2, or 3", "phaseWindow"),
            ("All tasks starting with 'CRIT' should be prioritized", "patternMatch"),
            ("High priority client rules override worker load limits", "precedenceOverride"),
        ],
    )
    def test_examples(self, sentence, expected):
        assert classify(sentence)[0] == expected

    def test_ties_follow_declaration_order(self):
        # slotRestriction and loadLimit both score 0.85 here
        assert classify("Limit the load on shared slots") == ("slotRestriction", 0.85)

    def test_highest_weight_wins(self):
        assert classify("T001 co-run in phase 2") == ("coRun", 0.9)

    def test_no_match(self, converter):
        assert classify("hello world") is None
        assert converter.convert("hello world") is None
        assert converter.convert("   ") is None


class TestCoRun:
    def test_overlapping_phases(self, dataset):
        parsed = convert_rule("Tasks T001 and T003 must run together in the same phase", overlapping(dataset))

        assert parsed.type == "coRun"
        assert parsed.parameters["tasks"] == ["T001", "T003"]
        assert parsed.confidence >= 0.8
        assert parsed.warnings == []
        assert parsed.suggestions == ["Common preferred phases: 2"]
        assert parsed.name == "Co-run T001 & T003"
        assert parsed.description == "Tasks T001 and T003 must run together in the same phase"
        assert parsed.is_acceptable

    def test_disjoint_phases_warn(self, dataset):
        parsed = convert_rule("Tasks T001 and T003 must run together in the same phase", dataset)

        assert parsed.type == "coRun"
        assert parsed.parameters["tasks"] == ["T001", "T003"]
        assert len(parsed.warnings) == 1
        assert "no overlapping preferred phases" in parsed.warnings[0]
        assert not parsed.is_acceptable

    def test_unknown_tasks_are_ignored(self, converter):
        parsed = converter.convert("T001 and T999 must run together")

        assert "tasks" not in parsed.parameters
        assert parsed.warnings == ["Need at least 2 valid task IDs for co-run rule"]
        assert parsed.confidence == pytest.approx(0.7)
        assert parsed.suggestions == ["Available tasks: T001, T002, T003, T004"]
        assert parsed.name == "Co-run Tasks"

    def test_lowercase_ids(self, dataset):
        parsed = convert_rule("t001 and t002 run together", dataset)
        assert parsed.parameters["tasks"] == ["T001", "T002"]


class TestSlotRestriction:
    def test_group_and_limit(self, converter):
        parsed = converter.convert("Limit Enterprise clients to maximum 3 shared slots per phase")

        assert parsed.parameters == {"groupType": "client", "groupName": "Enterprise", "minCommonSlots": 3}
        assert parsed.confidence == 1.0
        assert parsed.name == "Limit Enterprise Slots"

    def test_worker_group(self, converter):
        parsed = converter.convert("Restrict DataTeam to 2 slots")
        assert parsed.parameters["groupType"] == "worker"
        assert parsed.parameters["groupName"] == "DataTeam"

    def test_missing_group_is_penalized_with_suggestion(self, converter):
        parsed = converter.convert("Limit Unknown clients to 3 shared slots")

        assert "groupName" not in parsed.parameters
        assert parsed.confidence == pytest.approx(0.85)
        assert parsed.warnings == []
        assert parsed.suggestions == ["Available groups: Enterprise, Startup, DataTeam, WebTeam"]

    def test_missing_number_warns(self, converter):
        parsed = converter.convert("Restrict Enterprise shared slots")

        assert parsed.warnings == ["Could not extract slot limit number"]
        assert parsed.confidence == pytest.approx(0.85)


class TestLoadLimit:
    def test_group_and_limit(self, converter):
        parsed = converter.convert("DataTeam workers should not exceed 4 tasks per phase")

        assert parsed.type == "loadLimit"
        assert parsed.parameters == {"workerGroup": "DataTeam", "maxSlotsPerPhase": 4}
        assert parsed.name == "DataTeam Load Limit"
        assert parsed.is_acceptable

    def test_missing_group_warns_without_penalty(self, converter):
        parsed = converter.convert("Workers should not exceed 4 tasks per phase")

        assert parsed.warnings == ["Could not identify worker group"]
        assert parsed.confidence == pytest.approx(0.95)
        assert parsed.suggestions == ["Available worker groups: DataTeam, WebTeam"]

    def test_missing_number_is_penalized(self, converter):
        parsed = converter.convert("Set a load limit for DataTeam")

        assert parsed.type == "loadLimit"
        assert parsed.warnings == ["Could not extract load limit number"]
        assert parsed.confidence == pytest.approx(0.85)


class TestPhaseWindow:
    def test_task_and_list(self, dataset):
        dataset["tasks"].append(dict(dataset["tasks"][0], TaskID="T005"))
        parsed = convert_rule("Task T005 can only run in phases 1, 2, or 3", dataset)

        assert parsed.parameters == {"taskId": "T005", "allowedPhases": [1, 2, 3]}
        assert parsed.confidence == 1.0
        assert parsed.name == "T005 Phase Window"

    def test_range(self, converter):
        parsed = converter.convert("Task T001 can only run in phases 2-4")
        assert parsed.parameters["allowedPhases"] == [2, 3, 4]

    def test_unknown_task(self, converter):
        parsed = converter.convert("Task T777 can only run in phase 2")

        assert "taskId" not in parsed.parameters
        assert parsed.parameters["allowedPhases"] == [2]
        assert parsed.warnings == ["Task T777 not found"]
        assert parsed.suggestions == ["Available tasks: T001, T002, T003, T004"]
        assert not parsed.is_acceptable

    def test_missing_task(self, converter):
        parsed = converter.convert("Only run in phases 1 and 2")

        assert parsed.type == "phaseWindow"
        assert parsed.warnings == ["Could not identify task"]
        assert not parsed.is_acceptable


class TestPatternMatch:
    def test_prefix_and_action(self, converter):
        parsed = converter.convert("All tasks starting with 'CRIT' should be prioritized")

        assert parsed.parameters == {
            "pattern": "^CRIT", "matchType": "prefix", "field": "TaskID", "action": "prioritize",
        }
        assert parsed.name == "Pattern Rule: ^CRIT"

    def test_suffix_exclude(self, converter):
        parsed = converter.convert('Exclude tasks ending with "_TMP"')
        assert parsed.parameters["pattern"] == "_TMP$"
        assert parsed.parameters["action"] == "exclude"

    def test_substring_defaults_to_include(self, converter):
        parsed = converter.convert("Tasks containing 'report'")
        assert parsed.parameters["field"] == "TaskName"
        assert parsed.parameters["action"] == "include"

    def test_literal_flag(self, converter):
        parsed = converter.convert("Flag tasks matching 'T001'")
        assert parsed.parameters["pattern"] == "^T001$"
        assert parsed.parameters["action"] == "flag"


class TestPrecedenceOverride:
    def test_scope_keyword(self, converter):
        parsed = converter.convert("High priority client rules override worker load limits")

        assert parsed.type == "precedenceOverride"
        assert parsed.parameters == {"overrideType": "priority"}
        assert parsed.confidence == pytest.approx(0.95)

    def test_global(self, converter):
        parsed = converter.convert("Global rules take precedence")
        assert parsed.parameters["overrideType"] == "global"
        assert parsed.name == "Global Override"

    def test_default_specific(self, converter):
        assert converter.convert("This rule overrides that one").parameters["overrideType"] == "specific"


class TestParsedRule:
    def test_gate(self):
        rule = ParsedRule("coRun", "x", "x", {}, 0.49)
        assert not rule.is_acceptable
        rule.confidence = 0.5
        assert rule.is_acceptable
        rule.warnings.append("careful")
        assert not rule.is_acceptable

    def test_to_dict_omits_empty_lists(self):
        data = ParsedRule("loadLimit", "n", "d", {"workerGroup": "A"}, 0.9).to_dict()
        assert "warnings" not in data
        assert "suggestions" not in data

    def test_from_dict_requires_keys(self):
        with pytest.raises(KeyError):
            ParsedRule.from_dict({"type": "coRun", "parameters": {}})
        with pytest.raises(ValueError):
            ParsedRule.from_dict({"type": "nope", "parameters": {}, "confidence": 1})

    def test_from_dict_clamps_and_names(self):
        parsed = ParsedRule.from_dict({"type": "coRun", "parameters": {"tasks": ["T1", "T2"]}, "confidence": 3})
        assert parsed.confidence == 1.0
        assert parsed.name == "Co-run T1 & T2"


class TestRuleBook:
    def test_promote_acceptable_rule(self, dataset):
        book = RuleBook()
        parsed = convert_rule("DataTeam workers should not exceed 4 tasks per phase", dataset)

        rule = book.promote(parsed, priority=2)

        assert rule.id.startswith("loadLimit_")
        assert rule.enabled is True
        assert rule.priority == 2
        assert rule.to_dict()["createdAt"]
        assert book.active_rules() == [rule]

    def test_gate_blocks_without_override(self, dataset):
        book = RuleBook()
        parsed = convert_rule("Tasks T001 and T003 must run together", dataset)

        with pytest.raises(RuleNotAcceptable):
            book.promote(parsed)
        assert book.rules == []

        rule = book.promote(parsed, override=True)
        assert book.rules == [rule]

    def test_toggle_and_delete(self):
        book = RuleBook()
        rule = book.create_rule("phaseWindow", {"taskId": "T001", "allowedPhases": [1]})

        assert rule.name == "T001 Phase Window"
        assert book.toggle(rule.id).enabled is False
        assert book.active_rules() == []
        book.delete(rule.id)
        assert book.rules == []

    def test_unknown_ids(self):
        book = RuleBook()
        with pytest.raises(KeyError):
            book.toggle("missing")
        with pytest.raises(KeyError):
            book.delete("missing")

    def test_unknown_type(self):
        with pytest.raises(ValueError):
            RuleBook().create_rule("teleport", {})

    @pytest.mark.parametrize("parameters", [[1, 2], "T001", None])
    def test_parameters_must_be_object(self, parameters):
        with pytest.raises(ValueError, match="must be an object"):
            RuleBook().create_rule("phaseWindow", parameters)
