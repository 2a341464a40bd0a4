"""Pydantic schemas for the artifact payloads pipelines write into sessions.

Artifacts are stored as plain dicts (``model_dump()`` output) so that
clients and later pipeline stages read them without knowing these classes.
"""

import uuid
from typing import Annotated, Any, Literal, Optional

from pydantic import BaseModel, BeforeValidator, Field

from taleweaver.schemas.llm_output import CoercedInt, CoercedStr


def _new_id() -> str:
    return str(uuid.uuid4())


def _scene_id(v: Any) -> str:
    """Stringify a client-supplied scene id, minting one when it is blank."""
    text = "" if v is None else str(v).strip()
    return text or _new_id()


class SceneItem(BaseModel):
    """One scene of a split story, the unit of work for image generation."""

    id: Annotated[str, BeforeValidator(_scene_id)] = Field(default_factory=_new_id)
    # missing or non-numeric orders become 0, which ordered_units drops
    order: CoercedInt = 0
    scene_title: CoercedStr = ""
    scene_text: CoercedStr = ""
    image_prompt: CoercedStr = ""
    narration: CoercedStr = ""


class SceneImageItem(BaseModel):
    """Result record for one scene image, successful or failed."""

    id: str
    scene_id: str
    order: int
    image_url: str = ""
    caption: str = ""
    include_hero: bool = True
    used_ref: str = ""
    error: Optional[str] = None
    created_at: float


ClipStatus = Literal["creating", "polling", "succeeded", "failed"]


class VideoClip(BaseModel):
    """Per-scene image-to-video clip, updated in place as its job progresses."""

    order: int
    scene_id: str
    image_url: str
    prompt_text: str
    external_job_id: str = ""
    status: ClipStatus = "creating"
    video_url: str = ""
    duration: int
    error: Optional[str] = None
    created_at: float
    updated_at: float


class SpeechAudio(BaseModel):
    """Synthesized speech: either a hosted url or inline base64 audio."""

    url: str = ""
    audio_base64: str = ""
    mime_type: str = "audio/wav"
    format: str = "wav"
    expires_at: Optional[int] = None


class VideoJobStatus(BaseModel):
    """Snapshot of a remote image-to-video job."""

    status: str
    video_url: str = ""
