"""Tests for engine wiring and job starters."""

import pytest

from taleweaver.config import PipelineConfig, ProviderConfig, Settings
from taleweaver.engine import Engine
from taleweaver.errors import InputValidationError
from taleweaver.orchestrator.state import TaskStatus
from taleweaver.providers.mock import MockProvider


@pytest.fixture
def engine(clock, provider) -> Engine:
    settings = Settings(
        provider=ProviderConfig(name="mock"),
        pipeline=PipelineConfig(retry_base_delay=0, retry_max_delay=0, retry_jitter=0, video_poll_interval=0),
    )
    return Engine(settings, provider=provider, clock=clock)


def test_engine_builds_configured_provider():
    engine = Engine(Settings(provider=ProviderConfig(name="mock")))
    assert isinstance(engine.provider, MockProvider)


@pytest.mark.asyncio
async def test_start_marks_session_pending(engine):
    task = engine.start_story("s1", length_hint="short", language="en")

    assert task.status == TaskStatus.PENDING
    assert task.input == {"length_hint": "short", "language": "en"}
    assert engine.sessions.get("s1").stage == "STORY_GEN_PENDING"

    await engine.runner.drain()
    assert engine.tasks.get(task.id).status == TaskStatus.FAILED  # scripted chat returns no story


@pytest.mark.asyncio
async def test_start_rejects_empty_media(engine):
    with pytest.raises(InputValidationError, match="missing_image_base64"):
        engine.start_avatar("s1", "")
    with pytest.raises(InputValidationError, match="missing_audio_base64"):
        engine.start_voice_dialog("s1", "")
    assert len(engine.tasks) == 0


@pytest.mark.asyncio
async def test_start_video_preconditions(engine):
    with pytest.raises(LookupError, match="session_not_found"):
        engine.start_video("ghost")

    engine.sessions.write_artifact("s1", "scene_images", {"items": [{"order": 1, "scene_id": "a", "image_url": ""}]})
    with pytest.raises(InputValidationError, match="no_scene_images"):
        engine.start_video("s1")


@pytest.mark.asyncio
async def test_voice_asr_failure_stage(engine, provider):
    provider.queue("recognize", ValueError("asr_no_transcript"))
    task = engine.start_voice_asr("s1", "QUJD")
    await engine.runner.drain()

    assert engine.tasks.get(task.id).error == "asr_no_transcript"
    assert engine.sessions.get("s1").stage == "VOICE_ASR_FAILED"


@pytest.mark.asyncio
async def test_aclose_releases_provider(engine, provider):
    await engine.aclose()
    assert provider.closed is True
