"""Process-level wiring of stores, provider, job runner and pipelines.

An ``Engine`` is built once at startup (by the API lifespan or the CLI)
and passed to whatever needs it. Its ``start_*`` methods are the only way
jobs get created: each ensures the session, records the ``*_PENDING``
stage, creates the PENDING task and spawns the job detached.
"""

import logging
import time
from functools import partial
from typing import Any, Callable, Optional

from taleweaver.config import Settings
from taleweaver.errors import InputValidationError
from taleweaver.orchestrator.jobs import JobFunc, JobRunner
from taleweaver.orchestrator.state import TaskKind, session_stage
from taleweaver.pipeline.avatar import AvatarPipeline
from taleweaver.pipeline.scene_images import SceneImagePipeline
from taleweaver.pipeline.story import StoryPipeline
from taleweaver.pipeline.video_clips import VideoClipPipeline, build_clip_plan
from taleweaver.pipeline.voice import VoicePipeline
from taleweaver.providers.base import GenerationProvider
from taleweaver.providers.registry import get_provider
from taleweaver.schemas.task import Task
from taleweaver.store.housekeeping import Housekeeper
from taleweaver.store.service import SessionService
from taleweaver.store.sessions import SessionStore
from taleweaver.store.tasks import TaskLedger

logger = logging.getLogger(__name__)


class Engine:
    """Owns every stateful component of a running service."""

    def __init__(
        self,
        settings: Settings,
        provider: Optional[GenerationProvider] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.settings = settings
        self.tasks = TaskLedger(ttl_seconds=settings.store.task_ttl_seconds, clock=clock)
        self.session_store = SessionStore(ttl_seconds=settings.store.session_ttl_seconds, clock=clock)
        self.sessions = SessionService(self.session_store, max_messages=settings.store.dialog_max_messages)
        self.provider = provider or get_provider(settings)
        self.runner = JobRunner(self.tasks, self.sessions)
        self.housekeeper = Housekeeper(
            self.session_store, self.tasks, interval_seconds=settings.store.sweep_interval_seconds
        )

        pipeline_config = settings.pipeline
        self.avatar = AvatarPipeline(self.sessions, self.provider, pipeline_config)
        self.voice = VoicePipeline(
            self.sessions, self.provider, pipeline_config, max_messages=settings.store.dialog_max_messages
        )
        self.story = StoryPipeline(self.sessions, self.provider, pipeline_config)
        self.scene_images = SceneImagePipeline(self.sessions, self.provider, pipeline_config)
        self.video = VideoClipPipeline(self.sessions, self.provider, pipeline_config)

    def _start(self, kind: TaskKind, session_id: str, job: JobFunc, task_input: dict[str, Any]) -> Task:
        self.sessions.ensure(session_id)
        self.sessions.set_stage(session_id, session_stage(kind, "PENDING"))
        task = self.runner.submit(kind, session_id, job, task_input=task_input)
        logger.info(f"Submitted {kind.value} task {task.id} for session {session_id}")
        return task

    # ---------------------------------------------------------------------------
    # Job starters
    # ---------------------------------------------------------------------------

    def start_avatar(self, session_id: str, image_base64: str, style_id: str = "comic", size: str = "2K") -> Task:
        if not image_base64:
            raise InputValidationError("missing_image_base64")
        return self._start(
            TaskKind.AVATAR_STYLIZE,
            session_id,
            partial(self.avatar.run, image_base64=image_base64, style_id=style_id, size=size),
            {"style_id": style_id, "size": size},
        )

    def start_voice_asr(self, session_id: str, audio_base64: str, mime_type: str = "") -> Task:
        if not audio_base64:
            raise InputValidationError("missing_audio_base64")
        return self._start(
            TaskKind.VOICE_ASR,
            session_id,
            partial(self.voice.recognize, audio_base64=audio_base64, mime_type=mime_type),
            {"mime_type": mime_type},
        )

    def start_voice_dialog(self, session_id: str, audio_base64: str, mime_type: str = "") -> Task:
        if not audio_base64:
            raise InputValidationError("missing_audio_base64")
        return self._start(
            TaskKind.VOICE_DIALOG,
            session_id,
            partial(self.voice.dialog, audio_base64=audio_base64, mime_type=mime_type),
            {"mime_type": mime_type},
        )

    def start_story(self, session_id: str, length_hint: str = "", language: str = "zh") -> Task:
        return self._start(
            TaskKind.STORY_GENERATE,
            session_id,
            partial(self.story.generate, length_hint=length_hint, language=language),
            {"length_hint": length_hint, "language": language},
        )

    def start_split(self, session_id: str, max_scenes: Optional[int] = None) -> Task:
        return self._start(
            TaskKind.STORY_SPLIT,
            session_id,
            partial(self.story.split, max_scenes=max_scenes),
            {"max_scenes": max_scenes},
        )

    def start_scene_images(self, session_id: str, size: str = "2K", watermark: bool = True) -> Task:
        return self._start(
            TaskKind.SCENE_IMAGES,
            session_id,
            partial(self.scene_images.run, size=size, watermark=watermark),
            {"size": size, "watermark": watermark},
        )

    def start_video(self, session_id: str, clip_duration: Optional[int] = None, watermark: bool = True) -> Task:
        """Start clip generation for an existing session.

        Raises:
            LookupError: The session does not exist
            InputValidationError: The session has no scene images (``no_scene_images``)
        """
        session = self.sessions.get(session_id)
        if session is None:
            raise LookupError("session_not_found")
        if not build_clip_plan(session):
            raise InputValidationError("no_scene_images")
        return self._start(
            TaskKind.VIDEO_CLIPS,
            session_id,
            partial(self.video.run, clip_duration=clip_duration, watermark=watermark),
            {"clip_duration": clip_duration, "watermark": watermark},
        )

    async def aclose(self) -> None:
        await self.provider.aclose()
