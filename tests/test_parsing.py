"""Tests for best-effort model output parsing."""

import pytest

from taleweaver.errors import LLMOutputError
from taleweaver.pipeline.parsing import (
    MAX_MESSAGE_CHARS,
    extract_json,
    normalize_transcript,
    parse_model_output,
    sanitize_messages,
)
from taleweaver.schemas.llm_output import DialogTurn, HeroPlan, SceneSplit, StoryDraft


def test_extract_json_ignores_surrounding_prose():
    text = 'Sure! Here you go:\n```json\n{"title": "Moon", "story": "Once..."}\n```\nEnjoy.'
    assert extract_json(text) == {"title": "Moon", "story": "Once..."}


@pytest.mark.parametrize("text", ["", "no braces here", "{not json}", None])
def test_extract_json_rejects_non_json(text):
    with pytest.raises(LLMOutputError):
        extract_json(text)


def test_parse_model_output_uses_fallback():
    fallback = StoryDraft(title="Default", story="raw text")
    assert parse_model_output("raw text", StoryDraft, fallback=fallback) is fallback


def test_parse_model_output_defaults_without_fallback():
    assert parse_model_output("nothing", SceneSplit).scenes == []


def test_dialog_turn_accepts_camel_case_and_loose_types():
    turn = parse_model_output(
        '{"say": ["Hi", "there"], "storyReq": {"hero": "fox"}, "done": "true"}', DialogTurn
    )
    assert turn.say == "Hi\nthere"
    assert turn.story_req == {"hero": "fox"}
    assert turn.done is True


def test_hero_plan_defaults_to_including_hero():
    plan = parse_model_output('{"decisions": [{"sceneId": "s1"}, {"scene_id": "s2", "include_hero": false}]}', HeroPlan)
    assert [d.include_hero for d in plan.decisions] == [True, False]
    assert plan.decisions[0].scene_id == "s1"


def test_null_fields_are_coerced_instead_of_rejected():
    turn = parse_model_output('{"say": "Hi there!", "story_req": null, "done": false}', DialogTurn)
    assert turn.say == "Hi there!"
    assert turn.story_req == {}

    plan = parse_model_output('{"decisions": [{"order": null, "sceneId": 3}, {"order": "2", "include_hero": false}]}', HeroPlan)
    assert [(d.order, d.scene_id) for d in plan.decisions] == [(0, "3"), (2, "")]
    assert plan.decisions[1].include_hero is False

def test_normalize_transcript():
    assert normalize_transcript("  hello ") == "hello"
    assert normalize_transcript({"transcript": " hi "}) == "hi"
    assert normalize_transcript(None) == ""


def test_sanitize_messages_drops_malformed_and_clamps():
    cleaned = sanitize_messages(
        [
            {"role": "user", "content": "x" * (MAX_MESSAGE_CHARS + 10)},
            {"role": "assistant", "content": {"text": "from asr"}},
            {"role": "", "content": "orphan"},
            {"role": "user", "content": "   "},
            "not a dict",
        ]
    )
    assert len(cleaned) == 2
    assert len(cleaned[0]["content"]) == MAX_MESSAGE_CHARS
    assert cleaned[1] == {"role": "assistant", "content": "from asr"}
    assert sanitize_messages("nope") == []
