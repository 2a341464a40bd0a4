"""API route handlers and Pydantic request/response schemas."""

import json
import logging
import re
from typing import Any, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from taleweaver.engine import Engine
from taleweaver.errors import ConfigurationError, InputValidationError
from taleweaver.schemas.session import Session
from taleweaver.schemas.task import Task

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

_DATA_URL_PREFIX = re.compile(r"^data:[^,]*;base64,", re.IGNORECASE)


def get_engine(request: Request) -> Engine:
    return request.app.state.engine


def strip_data_url(value: str) -> str:
    """Drop a ``data:<mime>;base64,`` prefix, keeping only the base64 payload."""
    return _DATA_URL_PREFIX.sub("", (value or "").strip())


# ---------------------------------------------------------------------------
# Request / response schemas
# ---------------------------------------------------------------------------


class TaskAccepted(BaseModel):
    task_id: str
    status: str
    session_id: str


class AvatarStartRequest(BaseModel):
    session_id: str = Field(min_length=1)
    image_base64: str = Field(min_length=1, description="Data URL or bare base64 photo")
    style_id: str = "comic"
    size: str = "2K"


class AudioStartRequest(BaseModel):
    session_id: str = Field(min_length=1)
    audio_base64: str = Field(min_length=1, description="Data URL or bare base64 audio")
    mime_type: str = ""


class StoryGenerateRequest(BaseModel):
    session_id: str = Field(min_length=1)
    length_hint: str = ""
    language: str = "zh"


class StorySplitRequest(BaseModel):
    session_id: str = Field(min_length=1)
    max_scenes: Optional[int] = None


class SceneImagesRequest(BaseModel):
    session_id: str = Field(min_length=1)
    size: str = "2K"
    watermark: bool = True


class VideoStartRequest(BaseModel):
    session_id: str = Field(min_length=1)
    clip_duration: Optional[int] = None
    watermark: bool = True


class TtsTestRequest(BaseModel):
    text: str = Field(min_length=1)


def _accepted(task: Task) -> TaskAccepted:
    return TaskAccepted(task_id=task.id, status=task.status.value, session_id=task.session_id)


def _bad_request(e: Exception) -> HTTPException:
    return HTTPException(status_code=400, detail=str(e))


# ---------------------------------------------------------------------------
# Health, sessions, tasks
# ---------------------------------------------------------------------------


@router.get("/health")
async def health(engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    return {
        "ok": True,
        "provider": engine.provider.name,
        "sessions": len(engine.session_store),
        "tasks": len(engine.tasks),
        "running_jobs": engine.runner.active,
    }


@router.get("/session/{session_id}", response_model=Session)
async def get_session(session_id: str, engine: Engine = Depends(get_engine)) -> Session:
    session = engine.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="session_not_found")
    return session


@router.post("/session/{session_id}/artifacts/{namespace}", response_model=Session)
async def write_artifact(
    session_id: str,
    namespace: str,
    data: dict[str, Any] = Body(...),
    engine: Engine = Depends(get_engine),
) -> Session:
    """Let the client store its own artifact (e.g. edited scenes) in a session."""
    size = len(json.dumps(data, ensure_ascii=False).encode("utf-8"))
    if size > engine.settings.server.max_artifact_bytes:
        raise HTTPException(status_code=413, detail="artifact_too_large")
    try:
        return engine.sessions.write_artifact(session_id, namespace, data)
    except ConfigurationError as e:
        raise _bad_request(e)


@router.get("/task/{task_id}", response_model=Task)
async def get_task(task_id: str, engine: Engine = Depends(get_engine)) -> Task:
    task = engine.tasks.get(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="task_not_found")
    return task


@router.delete("/task/{task_id}", status_code=204)
async def delete_task(task_id: str, engine: Engine = Depends(get_engine)) -> None:
    if not engine.tasks.delete(task_id):
        raise HTTPException(status_code=404, detail="task_not_found")


# ---------------------------------------------------------------------------
# Job starters
# ---------------------------------------------------------------------------


@router.post("/avatar/stylize/start", status_code=202, response_model=TaskAccepted)
async def start_avatar(body: AvatarStartRequest, engine: Engine = Depends(get_engine)) -> TaskAccepted:
    if len(body.image_base64) > engine.settings.server.max_image_base64_chars:
        raise HTTPException(status_code=413, detail="image_too_large")
    try:
        task = engine.start_avatar(body.session_id, body.image_base64, body.style_id, body.size)
    except (InputValidationError, ConfigurationError) as e:
        raise _bad_request(e)
    return _accepted(task)


@router.post("/voice/asr/start", status_code=202, response_model=TaskAccepted)
async def start_voice_asr(body: AudioStartRequest, engine: Engine = Depends(get_engine)) -> TaskAccepted:
    if len(body.audio_base64) > engine.settings.server.max_audio_base64_chars:
        raise HTTPException(status_code=413, detail="audio_too_large")
    try:
        task = engine.start_voice_asr(body.session_id, strip_data_url(body.audio_base64), body.mime_type)
    except (InputValidationError, ConfigurationError) as e:
        raise _bad_request(e)
    return _accepted(task)


@router.post("/voice/dialog/start", status_code=202, response_model=TaskAccepted)
async def start_voice_dialog(body: AudioStartRequest, engine: Engine = Depends(get_engine)) -> TaskAccepted:
    if len(body.audio_base64) > engine.settings.server.max_audio_base64_chars:
        raise HTTPException(status_code=413, detail="audio_too_large")
    try:
        task = engine.start_voice_dialog(body.session_id, strip_data_url(body.audio_base64), body.mime_type)
    except (InputValidationError, ConfigurationError) as e:
        raise _bad_request(e)
    return _accepted(task)


@router.post("/story/generate/start", status_code=202, response_model=TaskAccepted)
async def start_story(body: StoryGenerateRequest, engine: Engine = Depends(get_engine)) -> TaskAccepted:
    return _accepted(engine.start_story(body.session_id, body.length_hint, body.language))


@router.post("/story/split/start", status_code=202, response_model=TaskAccepted)
async def start_split(body: StorySplitRequest, engine: Engine = Depends(get_engine)) -> TaskAccepted:
    return _accepted(engine.start_split(body.session_id, body.max_scenes))


@router.post("/image/scenes/start", status_code=202, response_model=TaskAccepted)
async def start_scene_images(body: SceneImagesRequest, engine: Engine = Depends(get_engine)) -> TaskAccepted:
    return _accepted(engine.start_scene_images(body.session_id, body.size, body.watermark))


@router.post("/video/start", status_code=202, response_model=TaskAccepted)
async def start_video(body: VideoStartRequest, engine: Engine = Depends(get_engine)) -> TaskAccepted:
    try:
        task = engine.start_video(body.session_id, body.clip_duration, body.watermark)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InputValidationError as e:
        raise _bad_request(e)
    return _accepted(task)


@router.post("/tts/test")
async def tts_test(body: TtsTestRequest, engine: Engine = Depends(get_engine)) -> dict[str, Any]:
    """Synthesize a short text synchronously to check speech credentials."""
    logger.info(f"TTS test request ({len(body.text)} chars)")
    audio = await engine.provider.synthesize(body.text[:800])
    return audio.model_dump()
