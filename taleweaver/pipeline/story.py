"""Story drafting and scene splitting.

Both steps are single chat calls whose JSON output is scraped
best-effort: a draft falls back to the raw reply as the story text, a
split falls back to no scenes (which then fails the job as ``split_empty``).
"""

import json
import logging
import uuid

from taleweaver.config import PipelineConfig
from taleweaver.errors import InputValidationError
from taleweaver.orchestrator.jobs import JobContext
from taleweaver.orchestrator.retry import with_retry
from taleweaver.orchestrator.state import TaskKind, session_stage
from taleweaver.providers.base import GenerationProvider
from taleweaver.pipeline.parsing import parse_model_output
from taleweaver.schemas.artifacts import SceneItem
from taleweaver.schemas.llm_output import SceneSplit, StoryDraft
from taleweaver.store.service import SessionService

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "A Story Just for You"
MIN_SCENES = 3
MAX_SCENES = 10

STORY_SYSTEM_PROMPT = """
You write bedtime stories for children aged 4 to 10.

Rules:
- Keep the story gentle, warm and positive: no gore, death, abuse or horror.
- Write in the requested language.
- Give it a clear arc: beginning, development, climax, ending.
- Keep the hero consistent; include companions if the child asked for any.
- Use the child's requirements (genre, hero, place, mood, ending, obstacle) where given.
- Aim for roughly 400 to 900 words unless a length hint says otherwise.

You receive the collected requirements "story_req" and whether the child has an avatar
(never output URLs). Reply with JSON only, no other text:
{"title": "...", "story": "...", "moral": "..."}
""".strip()

SPLIT_SYSTEM_PROMPT = """
You are a storyboard artist for children's stories.

Input: a complete story text and the collected requirements "story_req".
Output: split the story into scenes and write one text-to-image prompt per scene.

Rules:
- Between 3 and {max_scenes} scenes covering beginning, development, climax and ending.
- Each scene has scene_title, scene_text (1 to 3 sentence summary), image_prompt
  (subject, action, setting, mood, visual style) and narration (1 to 2 sentences).
- Keep the hero's appearance consistent across image prompts; reflect any requested style or mood.
- No violence, gore or horror.

Reply with JSON only, no other text:
{{"scenes": [{{"scene_title": "...", "scene_text": "...", "image_prompt": "...", "narration": "..."}}]}}
""".strip()


def clamp_max_scenes(value, default: int = 6) -> int:
    """Coerce a requested scene count into the supported range."""
    try:
        n = int(value)
    except (TypeError, ValueError):
        n = default
    if n <= 0:
        n = default
    return min(max(n, MIN_SCENES), MAX_SCENES)


class StoryPipeline:
    """Drafts the ``story`` artifact and splits it into the ``scenes`` artifact."""

    def __init__(
        self,
        sessions: SessionService,
        provider: GenerationProvider,
        config: PipelineConfig,
    ) -> None:
        self.sessions = sessions
        self.provider = provider
        self.config = config

    async def _chat(self, ctx: JobContext, messages: list[dict[str, str]]) -> str:
        return await with_retry(
            lambda: self.provider.chat(messages),
            retries=self.config.retry_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            jitter=self.config.retry_jitter,
            on_attempt=lambda n, e: ctx.report(stage=f"LLM_RETRY_{n}"),
        )

    async def generate(
        self,
        ctx: JobContext,
        length_hint: str = "",
        language: str = "zh",
    ) -> None:
        """Draft a story from the collected requirements."""
        session_id = ctx.session_id
        ctx.start(progress=10, stage="LOAD_SESSION")

        session = self.sessions.ensure(session_id)
        story_req = session.artifact("story_req")
        avatar = session.artifact("avatar")
        self.sessions.set_stage(session_id, session_stage(TaskKind.STORY_GENERATE, "RUNNING"))

        user = {
            "story_req": story_req,
            "avatar": {"has_avatar": bool(avatar.get("url")), "style_id": avatar.get("style_id")},
            "length_hint": length_hint or story_req.get("length", ""),
            "language": language or "zh",
        }
        ctx.report(progress=35, stage="LLM")
        raw = await self._chat(
            ctx,
            [
                {"role": "system", "content": STORY_SYSTEM_PROMPT},
                {"role": "user", "content": json.dumps(user, ensure_ascii=False)},
            ],
        )

        draft = parse_model_output(
            raw, StoryDraft, fallback=StoryDraft(title=DEFAULT_TITLE, story=raw.strip())
        )
        title = (draft.title.strip() or DEFAULT_TITLE)[:80]
        text = draft.story.strip()
        moral = draft.moral.strip()
        if not text:
            raise InputValidationError("story_empty")

        ctx.report(progress=80, stage="SAVE")
        self.sessions.write_artifact(
            session_id,
            "story",
            {
                "title": title,
                "text": text,
                "moral": moral,
                "length_hint": user["length_hint"],
                "language": user["language"],
            },
        )
        self.sessions.set_stage(session_id, session_stage(TaskKind.STORY_GENERATE, "DONE"))
        logger.info(f"Session {session_id}: story drafted ({len(text)} chars)")
        ctx.complete({"title": title, "length": len(text)})

    async def split(self, ctx: JobContext, max_scenes=None) -> None:
        """Split the drafted story into ordered scenes with image prompts."""
        session_id = ctx.session_id
        ctx.start(progress=10, stage="LOAD_SESSION")

        session = self.sessions.ensure(session_id)
        story_text = str(session.artifact("story").get("text") or "").strip()
        if not story_text:
            raise InputValidationError("story_missing")

        self.sessions.set_stage(session_id, session_stage(TaskKind.STORY_SPLIT, "RUNNING"))
        limit = clamp_max_scenes(
            max_scenes if max_scenes is not None else self.config.default_max_scenes,
            default=self.config.default_max_scenes,
        )

        user = {"story_req": session.artifact("story_req"), "story": story_text, "max_scenes": limit}
        ctx.report(progress=35, stage="LLM")
        raw = await self._chat(
            ctx,
            [
                {"role": "system", "content": SPLIT_SYSTEM_PROMPT.format(max_scenes=limit)},
                {"role": "user", "content": json.dumps(user, ensure_ascii=False)},
            ],
        )

        split = parse_model_output(raw, SceneSplit)
        scenes = [
            SceneItem(
                id=str(uuid.uuid4()),
                order=idx + 1,
                scene_title=draft.scene_title.strip(),
                scene_text=draft.scene_text.strip(),
                image_prompt=draft.image_prompt.strip(),
                narration=draft.narration.strip(),
            )
            for idx, draft in enumerate(split.scenes[:limit])
        ]
        if not scenes:
            raise InputValidationError("split_empty")

        ctx.report(progress=80, stage="SAVE")
        self.sessions.write_artifact(
            session_id,
            "scenes",
            {"items": [s.model_dump() for s in scenes], "max_scenes": limit},
        )
        self.sessions.set_stage(session_id, session_stage(TaskKind.STORY_SPLIT, "DONE"))
        logger.info(f"Session {session_id}: story split into {len(scenes)} scenes")
        ctx.complete({"scene_count": len(scenes)})
