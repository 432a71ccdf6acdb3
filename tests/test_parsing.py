from __future__ import annotations

from dream_roadmap_agents.errors import ParseFailure
from dream_roadmap_agents.models import ReflectionQuestion
from dream_roadmap_agents.parsing import (
    extract_array,
    extract_items,
    extract_object,
    extract_reflection_and_question,
)


def test_reflection_and_question_split_on_last_question_line() -> None:
    text = "That sounds like a big step.\nIt clearly matters to you.\n\n2. What would it feel like?"
    result = extract_reflection_and_question(text)
    assert result == ReflectionQuestion(
        reflection="That sounds like a big step. It clearly matters to you.",
        question="What would it feel like?",
    )


def test_reflection_and_question_without_question_mark_uses_whole_text() -> None:
    result = extract_reflection_and_question("  Tell me more about that.  ")
    assert isinstance(result, ReflectionQuestion)
    assert result.reflection == ""
    assert result.question == "Tell me more about that."


def test_reflection_and_question_rejects_empty_text() -> None:
    assert isinstance(extract_reflection_and_question("   "), ParseFailure)
    assert isinstance(extract_reflection_and_question(None), ParseFailure)


def test_parse_failure_is_falsy() -> None:
    assert not ParseFailure("nothing")


def test_extract_object_skips_prose_and_nested_braces() -> None:
    text = 'Sure! Here you go:\n{"title": "A {braced} title", "meta": {"n": 1}}\nEnjoy.'
    assert extract_object(text) == {"title": "A {braced} title", "meta": {"n": 1}}


def test_extract_object_moves_past_undecodable_span() -> None:
    text = "{not json} then {\"ok\": true}"
    assert extract_object(text) == {"ok": True}


def test_extract_object_reports_missing_or_unbalanced_span() -> None:
    assert isinstance(extract_object("no braces here"), ParseFailure)
    assert isinstance(extract_object('{"open": "never closed"'), ParseFailure)


def test_extract_array_handles_brackets_inside_strings() -> None:
    assert extract_array('Steps: [{"title": "Use [brackets]"}]') == [{"title": "Use [brackets]"}]


def test_extract_items_prefers_outer_object_key() -> None:
    text = '{"actions": [{"title": "One"}, {"title": "Two"}]}'
    assert extract_items(text, "actions") == [{"title": "One"}, {"title": "Two"}]


def test_extract_items_accepts_top_level_array() -> None:
    assert extract_items('[{"title": "One"}]', "actions") == [{"title": "One"}]


def test_extract_items_object_without_key_fails() -> None:
    assert isinstance(extract_items('{"steps": [1, 2]}', "actions"), ParseFailure)


def test_too_deeply_nested_span_is_a_parse_failure() -> None:
    depth = 100_000
    text = '{"steps": ' + "[" * depth + "]" * depth + "}"
    assert isinstance(extract_object(text), ParseFailure)
