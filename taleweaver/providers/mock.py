"""Offline provider variant returning deterministic placeholder results.

Used for local development and the CLI demo. Its chat reply carries every
field the pipelines parse (dialog turn, story, scenes, hero decisions), so
a whole flow runs end to end without credentials.
"""

import hashlib
import json
import logging
from typing import Optional

from taleweaver.errors import InputValidationError
from taleweaver.providers.base import ChatMessage
from taleweaver.schemas.artifacts import SpeechAudio, VideoJobStatus

logger = logging.getLogger(__name__)

_CANNED_REPLY = {
    "say": "What a fun idea! Our little fox will set off on an adventure tonight.",
    "story_req": {"hero": "a little fox", "theme": "friendship", "setting": "a moonlit forest"},
    "done": True,
    "title": "The Little Fox and the Moon",
    "story": (
        "A little fox saw the moon caught in the branches of an old oak. "
        "She asked the owl and the hedgehog for help. "
        "Together they climbed, and shook the branch until the moon floated free."
    ),
    "moral": "Friends make hard things possible.",
    "scenes": [
        {
            "scene_title": "The moon is stuck",
            "scene_text": "A little fox sees the moon tangled in an oak tree.",
            "image_prompt": "a small orange fox looking up at a glowing moon in oak branches, night forest",
            "narration": "One night, a little fox saw the moon stuck in an old oak tree.",
        },
        {
            "scene_title": "Asking for help",
            "scene_text": "The fox asks the owl and the hedgehog to help.",
            "image_prompt": "a fox talking with an owl and a hedgehog under a tree, night forest",
            "narration": "She asked her friends the owl and the hedgehog for help.",
        },
        {
            "scene_title": "The moon floats free",
            "scene_text": "Together they shake the branch and the moon floats up.",
            "image_prompt": "fox, owl and hedgehog cheering as the moon rises over the forest",
            "narration": "Together they shook the branch, and the moon floated free.",
        },
    ],
    "decisions": [],
}


def _seed(*parts: str) -> str:
    return hashlib.sha1("|".join(parts).encode("utf-8")).hexdigest()[:16]


class MockProvider:
    """Deterministic provider; video jobs succeed on their second poll."""

    name = "mock"

    def __init__(self, polls_until_done: int = 2) -> None:
        self.polls_until_done = polls_until_done
        self._poll_counts: dict[str, int] = {}

    async def chat(self, messages: list[ChatMessage], temperature: float = 0.7) -> str:
        if not messages:
            raise InputValidationError("llm_empty_messages")
        return json.dumps(_CANNED_REPLY, ensure_ascii=False)

    async def stylize(self, image: str, prompt: str, size: str = "2K") -> str:
        if not image:
            raise InputValidationError("missing_image")
        return f"https://picsum.photos/seed/{_seed(image[-80:], prompt)}/512/512"

    async def generate_image(
        self,
        prompt: str,
        refs: Optional[list[str]] = None,
        size: str = "2K",
        watermark: bool = True,
    ) -> str:
        if not (prompt or "").strip():
            raise InputValidationError("image_prompt_empty")
        return f"https://picsum.photos/seed/{_seed(prompt, *(refs or []))}/768/768"

    async def create_video_job(self, prompt: str, image_url: str) -> str:
        job_id = f"mock-{_seed(prompt, image_url)}"
        self._poll_counts[job_id] = 0
        logger.debug(f"Mock video job {job_id} created")
        return job_id

    async def poll_video_job(self, job_id: str) -> VideoJobStatus:
        count = self._poll_counts.get(job_id, 0) + 1
        self._poll_counts[job_id] = count
        if count < self.polls_until_done:
            return VideoJobStatus(status="running")
        return VideoJobStatus(
            status="succeeded", video_url=f"https://example.com/mock/{job_id}.mp4"
        )

    async def recognize(self, audio_base64: str, mime_type: str = "") -> str:
        if not audio_base64:
            raise InputValidationError("missing_audio_base64")
        return "I want a story about a little fox and the moon."

    async def synthesize(self, text: str) -> SpeechAudio:
        if not (text or "").strip():
            raise InputValidationError("tts_empty_text")
        return SpeechAudio(url=f"https://example.com/mock/tts/{_seed(text)}.wav")

    async def aclose(self) -> None:
        return None
