"""Voice dialog: speech recognition -> chat turn -> speech synthesis.

Each dialog turn collects a little more of the child's story
requirements into the ``story_req`` artifact; when the model judges them
complete it sets ``done`` and the session moves to ``STORY_REQ_DONE``.
"""

import json
import logging

from taleweaver.config import PipelineConfig
from taleweaver.errors import InputValidationError
from taleweaver.orchestrator.jobs import JobContext
from taleweaver.orchestrator.retry import with_retry
from taleweaver.orchestrator.state import (
    STORY_REQ_COLLECTING,
    STORY_REQ_DONE,
    VOICE_LLM_PENDING,
    VOICE_TTS_PENDING,
    TaskKind,
    session_stage,
)
from taleweaver.providers.base import GenerationProvider
from taleweaver.pipeline.parsing import normalize_transcript, parse_model_output, sanitize_messages
from taleweaver.schemas.llm_output import DialogTurn
from taleweaver.store.service import SessionService

logger = logging.getLogger(__name__)

DIALOG_SYSTEM_PROMPT = """
You are a friendly story helper chatting with a child. In 3 to 6 turns, find out what story
they want.

Rules:
- Keep every reply short (1 to 2 sentences) and ask at most one question.
- Keep questions simple; do not list many options at once.
- Never frighten the child: no violence, blood, death or abuse.
- Gradually fill story_req: {{genre, hero, setting, companion, obstacle, tone, ending, length, taboo}}.
- You see what has been collected so far in current_story_req; fill in what is missing.
- Once genre, hero, setting, tone and ending are known, summarize to confirm and set done=true.

Reply with JSON only, no other text:
{{"say": "what to tell the child", "story_req": {{"genre": "...", "hero": "..."}}, "done": false}}

current_story_req:
{current}
""".strip()


class VoicePipeline:
    """ASR-only and full dialog jobs over the session's story dialog."""

    def __init__(
        self,
        sessions: SessionService,
        provider: GenerationProvider,
        config: PipelineConfig,
        max_messages: int = 24,
    ) -> None:
        self.sessions = sessions
        self.provider = provider
        self.config = config
        self.max_messages = max_messages

    def _retrying(self, ctx: JobContext, step: str, operation):
        return with_retry(
            operation,
            retries=self.config.retry_attempts,
            base_delay=self.config.retry_base_delay,
            max_delay=self.config.retry_max_delay,
            jitter=self.config.retry_jitter,
            on_attempt=lambda n, e: ctx.report(stage=f"{step}_RETRY_{n}"),
        )

    async def _recognize(self, ctx: JobContext, audio_base64: str, mime_type: str) -> str:
        if not audio_base64:
            raise InputValidationError("missing_audio_base64")
        transcript = await self._retrying(
            ctx, "ASR", lambda: self.provider.recognize(audio_base64, mime_type)
        )
        user_text = normalize_transcript(transcript)
        self.sessions.write_artifact(
            ctx.session_id, "voice.last_user", {"text": user_text, "mime_type": mime_type}
        )
        return user_text

    async def recognize(self, ctx: JobContext, audio_base64: str, mime_type: str = "") -> None:
        """Transcribe one utterance without replying."""
        ctx.start(progress=5, stage="ASR")
        user_text = await self._recognize(ctx, audio_base64, mime_type)
        self.sessions.set_stage(ctx.session_id, session_stage(TaskKind.VOICE_ASR, "DONE"))
        ctx.complete({"text": user_text})

    async def dialog(self, ctx: JobContext, audio_base64: str, mime_type: str = "") -> None:
        """Run one full spoken dialog turn."""
        session_id = ctx.session_id
        ctx.start(progress=5, stage="ASR")

        user_text = await self._recognize(ctx, audio_base64, mime_type)
        if not user_text:
            raise InputValidationError("asr_empty_text")
        ctx.report(progress=35, stage="LLM", asr_text=user_text)
        self.sessions.set_stage(session_id, VOICE_LLM_PENDING)

        session = self.sessions.ensure(session_id)
        current_req = session.artifact("story_req")
        history = sanitize_messages(session.artifact("story_dialog").get("messages") or [])

        system_prompt = DIALOG_SYSTEM_PROMPT.format(
            current=json.dumps(current_req, ensure_ascii=False, indent=2)
        )
        messages = sanitize_messages(
            [{"role": "system", "content": system_prompt}, *history, {"role": "user", "content": user_text}]
        )
        raw = await self._retrying(ctx, "LLM", lambda: self.provider.chat(messages))

        turn = parse_model_output(raw, DialogTurn, fallback=DialogTurn(say=raw.strip()))
        assistant_text = turn.say.strip()
        if not assistant_text:
            raise InputValidationError("llm_empty_reply")

        self.sessions.append_messages(
            session_id,
            "story_dialog",
            [
                {"role": "user", "content": user_text},
                {"role": "assistant", "content": assistant_text},
            ],
            max_messages=self.max_messages,
        )
        story_req = {**current_req, **turn.story_req, "done": turn.done}
        story_req.pop("created_at", None)
        self.sessions.write_artifact(session_id, "story_req", story_req)
        self.sessions.set_stage(session_id, STORY_REQ_DONE if turn.done else STORY_REQ_COLLECTING)

        ctx.report(progress=65, stage="TTS", assistant_text=assistant_text)
        self.sessions.write_artifact(session_id, "voice.last_assistant", {"text": assistant_text})
        self.sessions.set_stage(session_id, VOICE_TTS_PENDING)

        audio = await self._retrying(ctx, "TTS", lambda: self.provider.synthesize(assistant_text))
        self.sessions.write_artifact(session_id, "voice.last_assistant_audio", audio.model_dump())
        self.sessions.set_stage(session_id, session_stage(TaskKind.VOICE_DIALOG, "DONE"))

        logger.info(f"Session {session_id}: dialog turn done (done={turn.done})")
        ctx.complete(
            {
                "asr_text": user_text,
                "assistant_text": assistant_text,
                "done": turn.done,
                "story_req": story_req,
                "tts": {"url": audio.url, "mime_type": audio.mime_type, "format": audio.format},
            }
        )
