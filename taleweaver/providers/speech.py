"""Speech clients: Volcengine flash ASR and DashScope TTS."""

import logging
import uuid
from typing import Any, Optional

from taleweaver.config import SpeechConfig, TtsConfig
from taleweaver.errors import ConfigurationError, InputValidationError, ProviderResponseError
from taleweaver.providers.http import JsonHttpClient
from taleweaver.schemas.artifacts import SpeechAudio

logger = logging.getLogger(__name__)


def guess_audio_format(mime_type: str) -> str:
    """Map a recorder mime type to the ASR ``audio.format`` value."""
    m = (mime_type or "").lower()
    if "wav" in m:
        return "wav"
    if "mpeg" in m or "mp3" in m:
        return "mp3"
    if "ogg" in m:
        return "ogg"
    return "webm"


def _first_text(data: dict[str, Any]) -> str:
    result = data.get("result")
    if isinstance(result, dict) and result.get("text"):
        return str(result["text"])
    if data.get("text"):
        return str(data["text"])
    utterances = data.get("utterances")
    if isinstance(utterances, list) and utterances and isinstance(utterances[0], dict):
        if utterances[0].get("text"):
            return str(utterances[0]["text"])
    nested = data.get("data")
    if isinstance(nested, dict):
        inner = nested.get("result")
        if isinstance(inner, dict) and inner.get("text"):
            return str(inner["text"])
    return ""


class VolcAsrClient:
    """Flash (single request) speech recognition with base64 JSON upload."""

    def __init__(self, config: SpeechConfig, http: JsonHttpClient) -> None:
        self.config = config
        self.http = http

    async def recognize(self, audio_base64: str, mime_type: str = "") -> str:
        if not audio_base64:
            raise InputValidationError("missing_audio_base64")
        for key in ("app_id", "access_key", "resource_id"):
            if not getattr(self.config, key):
                raise ConfigurationError(f"asr_config_missing:{key}")

        headers = {
            "X-Api-App-Id": self.config.app_id,
            "X-Api-Access-Key": self.config.access_key,
            "X-Api-Resource-Id": self.config.resource_id,
            "X-Api-Request-Id": str(uuid.uuid4()),
            "X-Api-Sequence": "-1",
        }
        payload = {"audio": {"data": audio_base64, "format": guess_audio_format(mime_type)}}

        data = await self.http.request_json(
            "POST",
            self.config.asr_endpoint,
            prefix="asr",
            headers=headers,
            payload=payload,
            timeout=self.config.asr_timeout_seconds,
        )
        transcript = _first_text(data)
        if not transcript:
            raise ProviderResponseError(f"asr_no_transcript:{str(data)[:400]}")
        logger.info(f"ASR transcript received ({len(transcript)} chars)")
        return transcript


class DashScopeTtsClient:
    """Qwen TTS over the DashScope multimodal generation endpoint."""

    def __init__(self, config: TtsConfig, http: JsonHttpClient) -> None:
        self.config = config
        self.http = http

    async def synthesize(self, text: str, voice: Optional[str] = None) -> SpeechAudio:
        if not self.config.api_key:
            raise ConfigurationError("tts_config_missing:api_key")
        input_text = (text or "").strip()
        if not input_text:
            raise InputValidationError("tts_empty_text")

        payload = {
            "model": self.config.model,
            "input": {
                "text": input_text,
                "voice": voice or self.config.voice,
                "language_type": self.config.language_type,
            },
        }
        data = await self.http.request_json(
            "POST",
            self.config.endpoint,
            prefix="tts",
            headers={"Authorization": f"Bearer {self.config.api_key}"},
            payload=payload,
            timeout=self.config.timeout_seconds,
        )

        output = data.get("output") or {}
        audio = output.get("audio") if isinstance(output, dict) else None
        url = audio.get("url") if isinstance(audio, dict) else None
        if not url:
            raise ProviderResponseError(f"tts_no_url:{str(data)[:800]}")
        return SpeechAudio(url=str(url), expires_at=audio.get("expires_at"))
