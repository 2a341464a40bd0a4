"""Tests for story drafting and scene splitting."""

import json

import pytest

from taleweaver.errors import InputValidationError, TransientNetworkError
from taleweaver.orchestrator.state import TaskKind
from taleweaver.pipeline.story import DEFAULT_TITLE, StoryPipeline, clamp_max_scenes


@pytest.fixture
def pipeline(sessions, provider, fast_config) -> StoryPipeline:
    return StoryPipeline(sessions, provider, fast_config)


def _scenes(n: int) -> str:
    return json.dumps(
        {
            "scenes": [
                {"sceneTitle": f"Title {i}", "scene_text": f"Text {i}", "image_prompt": f"Prompt {i}", "narration": f"N {i}"}
                for i in range(1, n + 1)
            ]
        }
    )


@pytest.mark.parametrize("value,expected", [(None, 6), (1, 3), (5, 5), (42, 10), ("7", 7), ("x", 6), (0, 6)])
def test_clamp_max_scenes(value, expected):
    assert clamp_max_scenes(value, default=6) == expected


# ---------------------------------------------------------------------------
# Generate
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_writes_story(pipeline, sessions, provider, make_ctx):
    sessions.write_artifact("s1", "story_req", {"hero": "fox", "done": True})
    provider.queue("chat", '{"title": "The Fox", "story": "Once upon a time.", "moral": "Be kind."}')
    ctx = make_ctx(TaskKind.STORY_GENERATE)

    await pipeline.generate(ctx, length_hint="short", language="en")

    story = sessions.get("s1").artifact("story")
    assert story["title"] == "The Fox"
    assert story["text"] == "Once upon a time."
    assert story["moral"] == "Be kind."
    assert story["language"] == "en"
    assert sessions.get("s1").stage == "STORY_GEN_DONE"
    assert ctx.task.result == {"title": "The Fox", "length": len("Once upon a time.")}

    user_payload = json.loads(provider.calls_to("chat")[0][0][1]["content"])
    assert user_payload["story_req"]["hero"] == "fox"


@pytest.mark.asyncio
async def test_generate_without_requirements_still_drafts(pipeline, sessions, provider, make_ctx):
    provider.queue("chat", '{"title": "T", "story": "S"}')
    await pipeline.generate(make_ctx(TaskKind.STORY_GENERATE))
    assert sessions.get("s1").artifact("story")["text"] == "S"


@pytest.mark.asyncio
async def test_generate_falls_back_to_raw_text(pipeline, sessions, provider, make_ctx):
    provider.queue("chat", "A plain story with no JSON at all.")
    await pipeline.generate(make_ctx(TaskKind.STORY_GENERATE))

    story = sessions.get("s1").artifact("story")
    assert story["title"] == DEFAULT_TITLE
    assert story["text"] == "A plain story with no JSON at all."


@pytest.mark.asyncio
async def test_generate_rejects_empty_story(pipeline, provider, make_ctx):
    provider.queue("chat", '{"title": "Empty", "story": "   "}')
    with pytest.raises(InputValidationError, match="story_empty"):
        await pipeline.generate(make_ctx(TaskKind.STORY_GENERATE))


@pytest.mark.asyncio
async def test_generate_retries_transient_chat_errors(pipeline, sessions, provider, make_ctx):
    provider.queue("chat", TransientNetworkError("llm_timeout"), '{"title": "T", "story": "S"}')
    await pipeline.generate(make_ctx(TaskKind.STORY_GENERATE))
    assert len(provider.calls_to("chat")) == 2


# ---------------------------------------------------------------------------
# Split
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_split_writes_ordered_scenes(pipeline, sessions, provider, make_ctx):
    sessions.write_artifact("s1", "story", {"text": "Once upon a time."})
    provider.queue("chat", _scenes(4))
    ctx = make_ctx(TaskKind.STORY_SPLIT)

    await pipeline.split(ctx, max_scenes=4)

    scenes = sessions.get("s1").artifact("scenes")
    assert scenes["max_scenes"] == 4
    assert [s["order"] for s in scenes["items"]] == [1, 2, 3, 4]
    assert scenes["items"][0]["scene_title"] == "Title 1"
    assert len({s["id"] for s in scenes["items"]}) == 4
    assert sessions.get("s1").stage == "SPLIT_DONE"
    assert ctx.task.result == {"scene_count": 4}


@pytest.mark.asyncio
async def test_split_truncates_to_limit(pipeline, sessions, provider, make_ctx):
    sessions.write_artifact("s1", "story", {"text": "Once."})
    provider.queue("chat", _scenes(8))
    await pipeline.split(make_ctx(TaskKind.STORY_SPLIT), max_scenes=5)
    assert len(sessions.get("s1").artifact("scenes")["items"]) == 5


@pytest.mark.asyncio
async def test_split_requires_story(pipeline, make_ctx):
    with pytest.raises(InputValidationError, match="story_missing"):
        await pipeline.split(make_ctx(TaskKind.STORY_SPLIT))


@pytest.mark.asyncio
async def test_split_rejects_empty_result(pipeline, sessions, provider, make_ctx):
    sessions.write_artifact("s1", "story", {"text": "Once."})
    provider.queue("chat", "I could not split that.")
    with pytest.raises(InputValidationError, match="split_empty"):
        await pipeline.split(make_ctx(TaskKind.STORY_SPLIT))
