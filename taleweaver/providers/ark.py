"""Volcengine Ark provider: chat, image generation and image-to-video tasks.

Speech recognition and synthesis are delegated to the Volcengine ASR and
DashScope TTS clients so that one provider object serves every capability
the pipelines need.
"""

import logging
from typing import Any, Optional

import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_incrementing

from taleweaver.config import ArkConfig, SpeechConfig, TtsConfig
from taleweaver.errors import (
    ConfigurationError,
    InputValidationError,
    ProviderHTTPError,
    ProviderResponseError,
)
from taleweaver.orchestrator.retry import is_transient_network_error
from taleweaver.providers.base import ChatMessage
from taleweaver.providers.http import JsonHttpClient
from taleweaver.providers.speech import DashScopeTtsClient, VolcAsrClient
from taleweaver.schemas.artifacts import SpeechAudio, VideoJobStatus

logger = logging.getLogger(__name__)


def _is_retriable_chat_error(exc: BaseException) -> bool:
    """Return True for transient errors worth retrying a chat call (429, 5xx, network)."""
    if isinstance(exc, ProviderHTTPError):
        return exc.status_code == 429 or exc.status_code >= 500
    return is_transient_network_error(exc)


def _message_text(data: dict[str, Any]) -> str:
    """Pull assistant text out of a chat completion, string or part list."""
    choices = data.get("choices") or []
    if not choices or not isinstance(choices[0], dict):
        return ""
    content = (choices[0].get("message") or {}).get("content")
    if isinstance(content, list):
        parts = [p.get("text", "") for p in content if isinstance(p, dict)]
        return "".join(parts)
    return content if isinstance(content, str) else ""


def _image_url(data: dict[str, Any]) -> str:
    for key in ("data", "images", "output"):
        items = data.get(key)
        if isinstance(items, list) and items and isinstance(items[0], dict):
            url = items[0].get("url")
            if url:
                return str(url)
    return ""


class ArkProvider:
    """Generation provider backed by Volcengine Ark, Volc ASR and DashScope TTS."""

    name = "ark"

    def __init__(
        self,
        ark: ArkConfig,
        speech: SpeechConfig,
        tts: TtsConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize provider clients.

        Args:
            ark: Ark endpoint, model and timeout settings
            speech: Volc ASR credentials
            tts: DashScope TTS settings
            transport: Optional httpx transport (tests pass ``httpx.MockTransport``)
        """
        self.config = ark
        self._http = JsonHttpClient(timeout=ark.timeout_seconds, transport=transport)
        self._asr = VolcAsrClient(speech, self._http)
        self._tts = DashScopeTtsClient(tts, self._http)

    def _headers(self) -> dict[str, str]:
        if not self.config.api_key:
            raise ConfigurationError("ark_config_missing:api_key")
        return {"Authorization": f"Bearer {self.config.api_key}"}

    # ---------------------------------------------------------------------------
    # Chat
    # ---------------------------------------------------------------------------

    async def chat(self, messages: list[ChatMessage], temperature: float = 0.7) -> str:
        headers = self._headers()
        if not messages:
            raise InputValidationError("llm_empty_messages")

        payload = {
            "model": self.config.llm_model,
            "messages": messages,
            "temperature": temperature,
        }

        @retry(
            stop=stop_after_attempt(self.config.llm_max_retry + 1),
            wait=wait_incrementing(start=0.5, increment=0.7),
            retry=retry_if_exception(_is_retriable_chat_error),
            reraise=True,
        )
        async def _call() -> str:
            data = await self._http.request_json(
                "POST",
                f"{self.config.base_url}/chat/completions",
                prefix="llm",
                headers=headers,
                payload=payload,
                timeout=self.config.llm_timeout_seconds,
            )
            text = _message_text(data).strip()
            if not text:
                raise ProviderResponseError(f"llm_empty_response:{str(data)[:800]}")
            return text

        return await _call()

    # ---------------------------------------------------------------------------
    # Images
    # ---------------------------------------------------------------------------

    async def _images(self, payload: dict[str, Any]) -> str:
        data = await self._http.request_json(
            "POST",
            f"{self.config.base_url}/images/generations",
            prefix="image",
            headers=self._headers(),
            payload={
                "model": self.config.image_model,
                "sequential_image_generation": "disabled",
                "response_format": "url",
                "stream": False,
                **payload,
            },
        )
        url = _image_url(data)
        if not url:
            raise ProviderResponseError(f"image_no_url:{str(data)[:500]}")
        return url

    async def stylize(self, image: str, prompt: str, size: str = "2K") -> str:
        if not image:
            raise InputValidationError("missing_image")
        return await self._images(
            {"prompt": prompt, "image": image, "size": size, "watermark": True}
        )

    async def generate_image(
        self,
        prompt: str,
        refs: Optional[list[str]] = None,
        size: str = "2K",
        watermark: bool = True,
    ) -> str:
        prompt = (prompt or "").strip()
        if not prompt:
            raise InputValidationError("image_prompt_empty")

        payload: dict[str, Any] = {"prompt": prompt, "size": size, "watermark": bool(watermark)}
        images = [str(r) for r in (refs or []) if r]
        if len(images) == 1:
            payload["image"] = images[0]
        elif images:
            payload["image"] = images
        return await self._images(payload)

    # ---------------------------------------------------------------------------
    # Image-to-video tasks
    # ---------------------------------------------------------------------------

    async def create_video_job(self, prompt: str, image_url: str) -> str:
        payload = {
            "model": self.config.video_model,
            "content": [
                {"type": "text", "text": (prompt or "")[:4000]},
                {"type": "image_url", "image_url": {"url": image_url}},
            ],
        }
        data = await self._http.request_json(
            "POST",
            f"{self.config.base_url}/contents/generations/tasks",
            prefix="video_create",
            headers=self._headers(),
            payload=payload,
            timeout=self.config.video_timeout_seconds,
        )
        job_id = data.get("id")
        if not job_id:
            raise ProviderResponseError(f"video_create_no_id:{str(data)[:500]}")
        logger.info(f"Created video job {job_id}")
        return str(job_id)

    async def poll_video_job(self, job_id: str) -> VideoJobStatus:
        data = await self._http.request_json(
            "GET",
            f"{self.config.base_url}/contents/generations/tasks/{job_id}",
            prefix="video_get",
            headers=self._headers(),
            timeout=self.config.video_timeout_seconds,
        )
        content = data.get("content") or {}
        video_url = content.get("video_url", "") if isinstance(content, dict) else ""
        return VideoJobStatus(
            status=str(data.get("status") or "").lower(),
            video_url=str(video_url or ""),
        )

    # ---------------------------------------------------------------------------
    # Speech
    # ---------------------------------------------------------------------------

    async def recognize(self, audio_base64: str, mime_type: str = "") -> str:
        return await self._asr.recognize(audio_base64, mime_type)

    async def synthesize(self, text: str) -> SpeechAudio:
        return await self._tts.synthesize(text)

    async def aclose(self) -> None:
        await self._http.aclose()
