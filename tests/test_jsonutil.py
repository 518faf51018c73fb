from __future__ import annotations

import allure

from autopilot.workflow.jsonutil import extract_json_object, iter_json_objects, truncate

pytestmark = [
    allure.epic("Workflow"),
    allure.feature("Output Recovery"),
]


def test_extract_json_from_fenced_block() -> None:
    text = """
Some text before.
```json
{"version": 1, "id": "wf", "steps": []}
```
Some text after {not json}.
""".strip()

    assert extract_json_object(text) == {"version": 1, "id": "wf", "steps": []}


def test_extract_json_from_prose() -> None:
    assert extract_json_object('Here you go: {"done": true} Thanks!') == {"done": True}


def test_extract_first_object_when_slice_is_not_json() -> None:
    text = 'first {"a": 1} and then {"b": 2}'

    assert extract_json_object(text) == {"a": 1}


def test_iter_yields_each_top_level_object_once() -> None:
    text = 'draft {"a": {"nested": 1}} then {"b": 2} and again {"b": 2}'

    assert list(iter_json_objects(text)) == [{"a": {"nested": 1}}, {"b": 2}]


def test_extract_returns_none_without_object() -> None:
    assert extract_json_object("") is None
    assert extract_json_object("[1, 2, 3]") is None
    assert extract_json_object("no braces here") is None
    assert extract_json_object("{ broken") is None


def test_truncate_keeps_head_and_tail() -> None:
    text = "0123456789" * 10

    assert truncate(text, 10) == "0123456\n...(truncated 90 chars)...\n789"
    assert truncate("short", 10) == "short"
    assert truncate(text, 0) == text
