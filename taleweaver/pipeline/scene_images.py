"""Per-scene image generation with checkpointing and resume.

Process:
1. Load the avatar url and the ordered scenes from the session
2. Ask the chat model which scenes should show the hero (falls back to
   "every scene" when that step fails)
3. Generate each missing scene image, referencing the avatar and the
   previous scene image for continuity
4. Write the full ``scene_images`` item list back after every scene

Running it again on the same session only generates scenes that have no
image yet. A failed scene is recorded with its error and the batch moves
on; only when no scene has an image does the job fail.
"""

import json
import logging
import uuid
from typing import Any, Optional

from taleweaver.config import PipelineConfig
from taleweaver.errors import AllUnitsFailedError, ConfigurationError, InputValidationError
from taleweaver.orchestrator.jobs import JobContext
from taleweaver.orchestrator.resumable import BatchSummary, ResumableBatch, ordered_units
from taleweaver.orchestrator.retry import with_retry
from taleweaver.orchestrator.state import IMAGES_DONE_WITH_ERRORS, TaskKind, session_stage
from taleweaver.pipeline.parsing import parse_model_output
from taleweaver.providers.base import GenerationProvider
from taleweaver.schemas.artifacts import SceneImageItem, SceneItem
from taleweaver.schemas.llm_output import HeroDecision, HeroPlan
from taleweaver.store.service import SessionService

logger = logging.getLogger(__name__)

HERO_SYSTEM_PROMPT = """
You are a picture-book storyboard director. You receive the story requirements "story_req"
and a list of scenes. Decide for every scene whether the human hero (the child) should appear.

Notes:
- If the story's hero is an animal (a rabbit, a bear...), it does not count as a human hero.
- include_hero=true means the human hero must appear in the picture.
- include_hero=false means no human characters: scenery, props or animal close-ups.
- You may add one sentence of extra constraint in prompt_extra (framing, distance, no extra people...).

Reply with JSON only, no other text:
{"decisions": [{"scene_id": "...", "include_hero": true, "prompt_extra": "..."}]}
""".strip()

STYLE_PREFIX = (
    "Fairy-tale picture-book illustration, warm clean colors, fine detail. "
    "No text, captions, watermarks or logos. "
    "If reference images are given: the character looks like the one in the reference, "
    "and the style and palette continue the reference."
)
NO_HUMAN_RULE = "Do not show any human characters or children in the picture (no human)."


def build_scene_prompt(scene: SceneItem, decision: HeroDecision) -> str:
    scene_part = "; ".join(
        p
        for p in (
            scene.image_prompt,
            f"Scene: {scene.scene_title}" if scene.scene_title else "",
            f"Content: {scene.scene_text}" if scene.scene_text else "",
        )
        if p
    )
    parts = [
        STYLE_PREFIX,
        scene_part,
        "" if decision.include_hero else NO_HUMAN_RULE,
        decision.prompt_extra.strip(),
    ]
    return " ".join(p for p in parts if p)


def pick_references(avatar_url: str, prev_image_url: str, include_hero: bool) -> tuple[list[str], str]:
    """Choose reference images and a label describing the choice.

    Returns:
        (reference urls, used_ref label) where the label is one of
        ``avatar``, ``avatar+prev`` or ``prev+avatar``
    """
    if not prev_image_url:
        return [avatar_url], "avatar"
    if include_hero:
        return [avatar_url, prev_image_url], "avatar+prev"
    return [prev_image_url, avatar_url], "prev+avatar"


def image_progress(succeeded: int, total: int) -> int:
    if total <= 0:
        return 15
    return min(95, round(succeeded / total * 80) + 15)


class SceneImagePipeline:
    """Generates the ``scene_images`` artifact one scene at a time."""

    def __init__(
        self,
        sessions: SessionService,
        provider: GenerationProvider,
        config: PipelineConfig,
    ) -> None:
        self.sessions = sessions
        self.provider = provider
        self.config = config

    async def plan_hero(
        self, story_req: dict[str, Any], scenes: list[SceneItem]
    ) -> dict[str, HeroDecision]:
        """Decide per scene whether the hero appears.

        Any failure of the chat call or of parsing falls back to showing the
        hero in every scene with no extra prompt text.

        Returns:
            Decisions keyed by scene id
        """
        defaults = {s.id: HeroDecision(scene_id=s.id, order=s.order) for s in scenes}
        user = {
            "story_req": story_req,
            "scenes": [
                {
                    "scene_id": s.id,
                    "order": s.order,
                    "scene_title": s.scene_title,
                    "scene_text": s.scene_text,
                    "image_prompt": s.image_prompt,
                    "narration": s.narration,
                }
                for s in scenes
            ],
        }
        messages = [
            {"role": "system", "content": HERO_SYSTEM_PROMPT},
            {"role": "user", "content": json.dumps(user, ensure_ascii=False)},
        ]
        try:
            raw = await with_retry(
                lambda: self.provider.chat(messages, temperature=0.3),
                retries=self.config.retry_attempts,
                base_delay=self.config.retry_base_delay,
                max_delay=self.config.retry_max_delay,
                jitter=self.config.retry_jitter,
            )
        except ConfigurationError:
            raise
        except Exception as e:
            logger.warning(f"Hero planning failed, showing hero in every scene: {type(e).__name__}: {e}")
            return defaults

        plan = parse_model_output(raw, HeroPlan)
        by_order = {s.order: s.id for s in scenes}
        decisions = dict(defaults)
        for d in plan.decisions:
            scene_id = d.scene_id if d.scene_id in decisions else by_order.get(d.order)
            if scene_id:
                decisions[scene_id] = d
        return decisions

    async def run(self, ctx: JobContext, size: str = "2K", watermark: bool = True) -> None:
        session_id = ctx.session_id
        ctx.start(progress=5, stage="LOAD_SESSION")

        session = self.sessions.ensure(session_id)
        avatar_url = str(session.artifact("avatar").get("url") or "").strip()
        if not avatar_url:
            raise InputValidationError("missing_avatar_url")
        scenes = ordered_units(
            SceneItem.model_validate(s)
            for s in session.artifact("scenes").get("items") or []
            if isinstance(s, dict)
        )
        if not scenes:
            raise InputValidationError("missing_scenes")

        self.sessions.set_stage(session_id, session_stage(TaskKind.SCENE_IMAGES, "RUNNING"))
        ctx.report(progress=12, stage="LLM_DECIDE_HERO")
        decisions = await self.plan_hero(session.artifact("story_req"), scenes)

        def checkpoint(records: list[dict[str, Any]]) -> None:
            self.sessions.write_artifact(session_id, "scene_images", {"items": records})

        batch: ResumableBatch[SceneItem] = ResumableBatch(
            scenes,
            session.artifact("scene_images").get("items") or [],
            id_field="scene_id",
            output_field="image_url",
            checkpoint=checkpoint,
        )
        latest = batch.index.latest()
        state: dict[str, Any] = {
            "prev_image_url": str(latest["image_url"]) if latest else "",
            "succeeded": batch.completed,
        }
        pending: dict[str, tuple[list[str], str, str]] = {}

        def on_skip(scene: SceneItem, record: dict[str, Any]) -> None:
            state["prev_image_url"] = str(record.get("image_url") or state["prev_image_url"])

        async def process(scene: SceneItem) -> dict[str, Any]:
            decision = decisions.get(scene.id) or HeroDecision(scene_id=scene.id, order=scene.order)
            refs, used_ref = pick_references(avatar_url, state["prev_image_url"], decision.include_hero)
            prompt = build_scene_prompt(scene, decision)
            pending[scene.id] = (refs, used_ref, prompt)

            ctx.report(
                progress=image_progress(state["succeeded"], batch.total),
                stage=f"GEN_{scene.order}",
            )
            url = await with_retry(
                lambda: self.provider.generate_image(prompt, refs, size, watermark),
                retries=self.config.image_retry_attempts,
                base_delay=self.config.image_retry_base_delay,
                max_delay=self.config.image_retry_max_delay,
                jitter=self.config.retry_jitter,
                on_attempt=lambda n, e: ctx.report(stage=f"GEN_{scene.order}_RETRY_{n}"),
            )
            state["prev_image_url"] = url
            return self._record(scene, decision, used_ref, image_url=url)

        def on_failure(scene: SceneItem, error: Exception) -> dict[str, Any]:
            decision = decisions.get(scene.id) or HeroDecision(scene_id=scene.id, order=scene.order)
            used_ref = pending.get(scene.id, ([], "", ""))[1]
            return self._record(
                scene, decision, used_ref, error=str(error) or type(error).__name__
            )

        def on_unit_done(scene: SceneItem, record: dict[str, Any], summary: BatchSummary) -> None:
            state["succeeded"] = summary.succeeded
            ctx.report(progress=image_progress(summary.succeeded, summary.total))

        summary = await batch.run(process, on_failure, on_skip=on_skip, on_unit_done=on_unit_done)
        logger.info(
            f"Session {session_id}: scene images {summary.succeeded}/{summary.total} "
            f"({summary.failed} failed)"
        )

        if summary.succeeded <= 0:
            raise AllUnitsFailedError("image_all_failed")

        if summary.failed > 0:
            self.sessions.set_stage(session_id, IMAGES_DONE_WITH_ERRORS)
            ctx.complete(
                summary.as_dict(),
                stage="DONE_WITH_ERRORS",
                error=f"partial_failed:{summary.failed}",
            )
        else:
            self.sessions.set_stage(session_id, session_stage(TaskKind.SCENE_IMAGES, "DONE"))
            ctx.complete(summary.as_dict())

    def _record(
        self,
        scene: SceneItem,
        decision: HeroDecision,
        used_ref: str,
        image_url: str = "",
        error: Optional[str] = None,
    ) -> dict[str, Any]:
        caption = scene.narration or scene.scene_text or scene.scene_title or f"Scene {scene.order}"
        return SceneImageItem(
            id=str(uuid.uuid4()),
            scene_id=scene.id,
            order=scene.order,
            image_url=image_url,
            caption=caption,
            include_hero=decision.include_hero,
            used_ref=used_ref,
            error=error,
            created_at=self.sessions.store.now(),
        ).model_dump()
