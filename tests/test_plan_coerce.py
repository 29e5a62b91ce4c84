from __future__ import annotations

import json

import pytest

from planpilot.planning.coerce import PlanParseError, coerce_plan, coerce_plan_payload, strip_code_fence
from planpilot.planning.schema import (
    PLACEHOLDER_GOAL,
    EditStep,
    InstallStep,
    LiteralFind,
    PatternFind,
    ShellStep,
    WriteStep,
    parse_find,
)


def _plan_text() -> str:
    return json.dumps(
        {
            "goal": "Scaffold app",
            "root": " my-app ",
            "steps": [
                {"action": "write", "path": "index.js", "content": "console.log(1);\n"},
                {"action": "deploy", "target": "prod"},
                "not a step",
                {"action": "shell", "cmd": "npm test"},
                {"action": "install", "packages": ["react"], "dev": True},
            ],
        }
    )


def test_coerce_plan_accepts_fenced_json() -> None:
    plan = coerce_plan(f"```json\n{_plan_text()}\n```")

    assert plan.goal == "Scaffold app"
    assert plan.root == "my-app"
    assert [step.action for step in plan.steps] == ["write", "shell", "install"]


def test_coerce_plan_extracts_object_from_prose() -> None:
    plan = coerce_plan(f"Sure! Here is the plan:\n{_plan_text()}\nLet me know.")

    assert isinstance(plan.steps[0], WriteStep)
    assert plan.steps[0].content == "console.log(1);\n"
    assert isinstance(plan.steps[1], ShellStep)
    assert plan.steps[1].cwd is None
    assert isinstance(plan.steps[2], InstallStep)
    assert plan.steps[2].packages == ["react"]
    assert plan.steps[2].dev is True


@pytest.mark.parametrize("raw", ["", "   ", "no json here", "[1, 2, 3]", "{broken"])
def test_coerce_plan_rejects_unparseable_output(raw: str) -> None:
    with pytest.raises(PlanParseError):
        coerce_plan(raw)


def test_coerce_plan_applies_defaults() -> None:
    plan = coerce_plan('{"steps": [{"action": "write", "path": "a.txt"}]}')

    assert plan.goal == PLACEHOLDER_GOAL
    assert plan.root == "."
    assert plan.steps == [WriteStep(path="a.txt", content="")]


def test_coerce_plan_payload_tolerates_non_list_steps() -> None:
    plan = coerce_plan_payload({"goal": 7, "root": "", "steps": {"action": "write"}})

    assert plan.goal == PLACEHOLDER_GOAL
    assert plan.root == "."
    assert plan.steps == []


def test_coerce_plan_drops_steps_with_non_string_action() -> None:
    raw = json.dumps(
        {
            "steps": [
                {"action": ["write"], "path": "a.txt"},
                {"action": {"k": 1}},
                {"action": 3},
                {"action": "mkdir", "path": "src"},
            ]
        }
    )

    plan = coerce_plan(raw)

    assert [step.action for step in plan.steps] == ["mkdir"]
    assert coerce_plan('{"steps":[{"action":{"k":1}}]}').steps == []


def test_strip_code_fence_leaves_plain_text_alone() -> None:
    assert strip_code_fence('  {"a": 1}  ') == '{"a": 1}'
    assert strip_code_fence('```\n{"a": 1}\n```') == '{"a": 1}'


def test_parse_find_classifies_terms() -> None:
    assert parse_find("/foo/gi") == PatternFind(body="foo", flags="gi")
    assert parse_find("/a/b/") == PatternFind(body="a/b", flags="")
    assert parse_find("plain text") == LiteralFind("plain text")
    assert parse_find("/") == LiteralFind("/")
    assert parse_find("//") == LiteralFind("//")
    assert parse_find(42) is None


def test_edit_step_keeps_non_string_find_as_none() -> None:
    plan = coerce_plan_payload({"steps": [{"action": "edit", "path": "a.txt", "find": ["x"]}]})

    step = plan.steps[0]
    assert isinstance(step, EditStep)
    assert step.find is None


def test_digest_ignores_key_order() -> None:
    first = coerce_plan_payload(
        {"goal": "g", "root": ".", "steps": [{"action": "write", "path": "a", "content": "x"}]}
    )
    second = coerce_plan_payload(
        {"steps": [{"content": "x", "path": "a", "action": "write"}], "root": ".", "goal": "g"}
    )
    changed = coerce_plan_payload(
        {"goal": "g", "root": ".", "steps": [{"action": "write", "path": "a", "content": "y"}]}
    )

    assert first.digest() == second.digest()
    assert first.digest() != changed.digest()
    assert coerce_plan(first.to_json()).digest() == first.digest()


def test_mutated_paths_are_deduplicated_in_order() -> None:
    plan = coerce_plan_payload(
        {
            "steps": [
                {"action": "write", "path": "b.txt", "content": ""},
                {"action": "mkdir", "path": "dir"},
                {"action": "append", "path": "a.txt", "content": ""},
                {"action": "edit", "path": "b.txt", "find": "x", "replace": "y"},
            ]
        }
    )

    assert plan.mutated_paths() == ["b.txt", "a.txt"]
