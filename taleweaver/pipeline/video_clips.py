"""Image-to-video clip generation, one remote job per scene image.

Clips are produced sequentially. Each clip's job is driven through
creating -> polling -> succeeded/failed and every transition is written
to the ``video_clips`` artifact so clients see live progress. Any clip
failure or timeout aborts the remaining clips: the ``video`` artifact is
marked failed and the task fails. Clip records written before the abort
stay in the session.
"""

import asyncio
import logging
import re
import time
from typing import Any, Awaitable, Callable

from taleweaver.config import PipelineConfig
from taleweaver.errors import InputValidationError
from taleweaver.orchestrator.jobs import JobContext
from taleweaver.orchestrator.poller import Transition, drive_external_job
from taleweaver.orchestrator.state import TaskKind, TaskStatus, session_stage
from taleweaver.providers.base import GenerationProvider
from taleweaver.schemas.artifacts import VideoClip
from taleweaver.schemas.session import Session
from taleweaver.store.service import SessionService

logger = logging.getLogger(__name__)

DEFAULT_NARRATION = "A warm fairy tale."
MAX_NARRATION_CHARS = 260


def clamp_clip_duration(value, default: int = 5) -> int:
    try:
        n = int(value)
    except (TypeError, ValueError):
        n = default
    return max(1, min(10, n or default))


def build_clip_prompt(narration: str, duration: int, watermark: bool) -> str:
    text = re.sub(r"\s+", " ", narration or "").strip()[:MAX_NARRATION_CHARS]
    return (
        f"{text} --duration {duration} --camerafixed false "
        f"--watermark {'true' if watermark else 'false'}"
    )


def build_clip_plan(session: Session) -> list[dict[str, Any]]:
    """List the scene images that have an image, in order, with narration.

    Returns:
        Dicts with ``order``, ``scene_id``, ``image_url`` and ``narration``
    """
    scenes = {s.get("id"): s for s in session.artifact("scenes").get("items") or [] if isinstance(s, dict)}
    story_title = session.artifact("story").get("title") or ""
    images = [i for i in session.artifact("scene_images").get("items") or [] if isinstance(i, dict)]

    plan = []
    for image in sorted(images, key=lambda i: int(i.get("order") or 0)):
        if not image.get("image_url"):
            continue
        scene = scenes.get(image.get("scene_id")) or {}
        narration = (
            scene.get("narration")
            or scene.get("scene_text")
            or scene.get("scene_title")
            or image.get("caption")
            or story_title
            or DEFAULT_NARRATION
        )
        plan.append(
            {
                "order": int(image.get("order") or 0),
                "scene_id": str(image.get("scene_id") or ""),
                "image_url": str(image["image_url"]),
                "narration": str(narration).strip(),
            }
        )
    return plan


class VideoClipPipeline:
    """Drives one image-to-video job per scene image into ``video_clips``."""

    def __init__(
        self,
        sessions: SessionService,
        provider: GenerationProvider,
        config: PipelineConfig,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sessions = sessions
        self.provider = provider
        self.config = config
        self._clock = clock
        self._sleep = sleep

    async def run(self, ctx: JobContext, clip_duration=None, watermark: bool = True) -> None:
        session_id = ctx.session_id
        duration = clamp_clip_duration(
            clip_duration if clip_duration is not None else self.config.default_clip_duration,
            default=self.config.default_clip_duration,
        )
        ctx.start(progress=5, stage="LOAD_SESSION")

        video: dict[str, Any] = {
            "status": "running",
            "clip_count": 0,
            "succeeded_count": 0,
            "failed_count": 0,
            "final_video_url": "",
        }
        clips: list[dict[str, Any]] = []
        try:
            session = self.sessions.get(session_id)
            if session is None:
                raise InputValidationError("session_not_found")
            plan = build_clip_plan(session)
            total = len(plan)
            if not total:
                raise InputValidationError("no_scene_images")

            self.sessions.set_stage(session_id, session_stage(TaskKind.VIDEO_CLIPS, "RUNNING"))
            video["clip_count"] = total
            self.sessions.write_artifact(session_id, "video", video)
            self.sessions.write_artifact(session_id, "video_clips", {"items": []})

            for i, item in enumerate(plan):
                now = self.sessions.store.now()
                clip = VideoClip(
                    order=item["order"],
                    scene_id=item["scene_id"],
                    image_url=item["image_url"],
                    prompt_text=build_clip_prompt(item["narration"], duration, watermark),
                    duration=duration,
                    created_at=now,
                    updated_at=now,
                ).model_dump()
                clips.append(clip)

                ctx.report(progress=10 + (i * 70) // total, stage=f"CREATE_{i + 1}/{total}")

                def on_transition(t: Transition, clip=clip, i=i) -> None:
                    clip["status"] = t.state
                    clip["updated_at"] = self.sessions.store.now()
                    if t.job_id:
                        clip["external_job_id"] = t.job_id
                    if t.output_url:
                        clip["video_url"] = t.output_url
                    if t.error:
                        clip["error"] = t.error
                    if t.state == "polling":
                        ctx.report(stage=f"POLL_{i + 1}/{total}")
                    self.sessions.write_artifact(session_id, "video_clips", {"items": clips})

                await drive_external_job(
                    lambda: self.provider.create_video_job(clip["prompt_text"], clip["image_url"]),
                    self.provider.poll_video_job,
                    on_transition,
                    interval=self.config.video_poll_interval,
                    timeout=self.config.video_poll_timeout,
                    label="clip",
                    clock=self._clock,
                    sleep=self._sleep,
                )

                succeeded = sum(1 for c in clips if c["status"] == "succeeded")
                video.update(
                    status="clips_done" if succeeded == total else "running",
                    succeeded_count=succeeded,
                )
                self.sessions.write_artifact(session_id, "video", video)
                logger.info(f"Session {session_id}: clip {i + 1}/{total} ready")
        except Exception as e:
            video.update(
                status="failed",
                failed_count=sum(1 for c in clips if c["status"] == "failed"),
                error=str(e) or type(e).__name__,
            )
            self.sessions.write_artifact(session_id, "video", video)
            raise

        self.sessions.set_stage(session_id, session_stage(TaskKind.VIDEO_CLIPS, "DONE"))
        ctx.complete({"clip_count": total}, status=TaskStatus.SUCCEEDED)
