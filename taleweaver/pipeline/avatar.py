"""Avatar stylization: turn an uploaded photo into a cartoon hero portrait."""

import logging

from taleweaver.config import PipelineConfig
from taleweaver.errors import InputValidationError
from taleweaver.orchestrator.jobs import JobContext
from taleweaver.orchestrator.retry import with_retry
from taleweaver.orchestrator.state import TaskKind, session_stage
from taleweaver.providers.base import GenerationProvider
from taleweaver.store.service import SessionService

logger = logging.getLogger(__name__)

STYLE_PROMPTS = {
    "comic": (
        "Turn the person in the reference photo into a high-quality comic-style avatar. "
        "Keep their facial features, use clean line art and soft colors, "
        "on a simple solid background."
    ),
    "watercolor": (
        "Repaint the person in the reference photo as a gentle watercolor portrait "
        "for a children's picture book. Keep their facial features, soft edges, light background."
    ),
    "clay": (
        "Turn the person in the reference photo into a cute clay figure portrait. "
        "Keep their facial features, rounded shapes, warm studio lighting, plain background."
    ),
    "pixel": (
        "Turn the person in the reference photo into a friendly pixel-art avatar. "
        "Keep recognizable hair and face shape, limited palette, plain background."
    ),
}
DEFAULT_STYLE_PROMPT = (
    "Stylize the person in the reference photo as a cartoon avatar. "
    "Keep their features, simple background, clear and natural overall."
)


def build_style_prompt(style_id: str) -> str:
    return STYLE_PROMPTS.get(style_id, DEFAULT_STYLE_PROMPT)


class AvatarPipeline:
    """Stylizes the hero photo and stores it as the ``avatar`` artifact."""

    def __init__(
        self,
        sessions: SessionService,
        provider: GenerationProvider,
        config: PipelineConfig,
    ) -> None:
        self.sessions = sessions
        self.provider = provider
        self.config = config

    async def run(
        self,
        ctx: JobContext,
        image_base64: str,
        style_id: str = "comic",
        size: str = "2K",
    ) -> None:
        session_id = ctx.session_id
        ctx.start(progress=10, stage="STYLIZE")
        self.sessions.set_stage(session_id, session_stage(TaskKind.AVATAR_STYLIZE, "RUNNING"))

        if not image_base64:
            raise InputValidationError("missing_image_base64")

        prompt = build_style_prompt(style_id)
        ctx.report(progress=35)

        avatar_url = await with_retry(
            lambda: self.provider.stylize(image_base64, prompt, size),
            retries=self.config.retry_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            jitter=self.config.retry_jitter,
            on_attempt=lambda n, e: ctx.report(stage=f"STYLIZE_RETRY_{n}"),
        )
        logger.info(f"Session {session_id}: avatar stylized ({style_id}, {size})")

        self.sessions.write_artifact(
            session_id, "avatar", {"url": avatar_url, "style_id": style_id, "size": size}
        )
        self.sessions.set_stage(session_id, session_stage(TaskKind.AVATAR_STYLIZE, "DONE"))
        ctx.complete({"avatar_url": avatar_url})
