"""Capability interface shared by every generation provider variant.

Pipelines depend only on this interface. Concrete variants are selected
by ``provider.name`` in the configuration (see ``registry.get_provider``).
"""

from typing import Optional, Protocol, runtime_checkable

from taleweaver.schemas.artifacts import SpeechAudio, VideoJobStatus

ChatMessage = dict[str, str]


@runtime_checkable
class GenerationProvider(Protocol):
    """Chat, image, video-job, speech-recognition and speech-synthesis calls.

    Implementations raise ``ConfigurationError`` for missing credentials,
    ``ProviderHTTPError`` for non-2xx answers, ``TransientNetworkError``
    for timeouts and connection failures, and ``ProviderResponseError``
    when the answer lacks the expected field.
    """

    name: str

    async def chat(self, messages: list[ChatMessage], temperature: float = 0.7) -> str:
        """Return the assistant text for a chat completion."""
        ...

    async def stylize(self, image: str, prompt: str, size: str = "2K") -> str:
        """Restyle an image (url or data url) and return the new image url."""
        ...

    async def generate_image(
        self,
        prompt: str,
        refs: Optional[list[str]] = None,
        size: str = "2K",
        watermark: bool = True,
    ) -> str:
        """Generate an image from a prompt and reference images, return its url."""
        ...

    async def create_video_job(self, prompt: str, image_url: str) -> str:
        """Submit an image-to-video job and return its external id."""
        ...

    async def poll_video_job(self, job_id: str) -> VideoJobStatus:
        """Fetch the current status of an image-to-video job."""
        ...

    async def recognize(self, audio_base64: str, mime_type: str = "") -> str:
        """Transcribe base64 audio (no data-url prefix)."""
        ...

    async def synthesize(self, text: str) -> SpeechAudio:
        """Speak text and return where to fetch the audio."""
        ...

    async def aclose(self) -> None:
        """Release network resources."""
        ...
