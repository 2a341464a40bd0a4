"""Tests for provider variants against a mocked HTTP transport."""

import json

import httpx
import pytest

from taleweaver.config import ArkConfig, ProviderConfig, Settings, SpeechConfig, TtsConfig
from taleweaver.errors import (
    ConfigurationError,
    ProviderHTTPError,
    ProviderResponseError,
    TransientNetworkError,
)
from taleweaver.providers.ark import ArkProvider
from taleweaver.providers.base import GenerationProvider
from taleweaver.providers.mock import MockProvider
from taleweaver.providers.registry import get_provider
from taleweaver.providers.speech import guess_audio_format


class Backend:
    """Records requests and answers them from a list of handlers."""

    def __init__(self, *responses) -> None:
        self.responses = list(responses)
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        answer = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(answer, Exception):
            raise answer
        return answer

    def body(self, i: int = -1) -> dict:
        return json.loads(self.requests[i].content)


def _provider(backend: Backend, api_key: str = "k", **ark) -> ArkProvider:
    return ArkProvider(
        ArkConfig(api_key=api_key, base_url="https://ark.test/api/v3/", **ark),
        SpeechConfig(app_id="app", access_key="acc"),
        TtsConfig(api_key="tts-key", endpoint="https://tts.test/gen"),
        transport=httpx.MockTransport(backend),
    )


# ---------------------------------------------------------------------------
# Chat
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_chat_returns_message_text():
    backend = Backend(httpx.Response(200, json={"choices": [{"message": {"content": " hi there "}}]}))
    provider = _provider(backend)

    assert await provider.chat([{"role": "user", "content": "hello"}], temperature=0.2) == "hi there"

    request = backend.requests[0]
    assert str(request.url) == "https://ark.test/api/v3/chat/completions"
    assert request.headers["Authorization"] == "Bearer k"
    assert backend.body()["temperature"] == 0.2
    await provider.aclose()


@pytest.mark.asyncio
async def test_chat_joins_content_parts():
    backend = Backend(
        httpx.Response(200, json={"choices": [{"message": {"content": [{"text": "a"}, {"text": "b"}]}}]})
    )
    assert await _provider(backend).chat([{"role": "user", "content": "x"}]) == "ab"


@pytest.mark.asyncio
async def test_chat_retries_rate_limit_once():
    backend = Backend(
        httpx.Response(429, text="slow down"),
        httpx.Response(200, json={"choices": [{"message": {"content": "ok"}}]}),
    )
    assert await _provider(backend, llm_max_retry=1).chat([{"role": "user", "content": "x"}]) == "ok"
    assert len(backend.requests) == 2


@pytest.mark.asyncio
async def test_chat_client_error_is_not_retried():
    backend = Backend(httpx.Response(400, text="bad request"))
    with pytest.raises(ProviderHTTPError, match="llm_http_400:bad request") as info:
        await _provider(backend, llm_max_retry=3).chat([{"role": "user", "content": "x"}])
    assert info.value.status_code == 400
    assert len(backend.requests) == 1


@pytest.mark.asyncio
async def test_chat_empty_answer():
    backend = Backend(httpx.Response(200, json={"choices": []}))
    with pytest.raises(ProviderResponseError, match="llm_empty_response"):
        await _provider(backend, llm_max_retry=0).chat([{"role": "user", "content": "x"}])


@pytest.mark.asyncio
async def test_missing_api_key_fails_before_any_request():
    backend = Backend(httpx.Response(200, json={}))
    with pytest.raises(ConfigurationError, match="ark_config_missing:api_key"):
        await _provider(backend, api_key="").chat([{"role": "user", "content": "x"}])
    assert backend.requests == []


@pytest.mark.asyncio
async def test_timeouts_map_to_transient_errors():
    backend = Backend(httpx.ConnectTimeout("timed out"))
    with pytest.raises(TransientNetworkError, match="image_timeout"):
        await _provider(backend).generate_image("a fox", [])


# ---------------------------------------------------------------------------
# Images and video
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_image_reference_shapes():
    backend = Backend(httpx.Response(200, json={"data": [{"url": "https://img/1.png"}]}))
    provider = _provider(backend)

    assert await provider.generate_image("a fox", ["https://a.png"], "2K", False) == "https://img/1.png"
    single = backend.body()
    assert single["image"] == "https://a.png"
    assert single["watermark"] is False
    assert single["response_format"] == "url"

    await provider.generate_image("a fox", ["https://a.png", "https://b.png"])
    assert backend.body()["image"] == ["https://a.png", "https://b.png"]

    await provider.generate_image("a fox")
    assert "image" not in backend.body()


@pytest.mark.asyncio
async def test_image_without_url():
    backend = Backend(httpx.Response(200, json={"data": []}))
    with pytest.raises(ProviderResponseError, match="image_no_url"):
        await _provider(backend).stylize("data:image/png;base64,AA", "make it comic")


@pytest.mark.asyncio
async def test_video_job_create_and_poll():
    backend = Backend(
        httpx.Response(200, json={"id": "cgt-1"}),
        httpx.Response(200, json={"id": "cgt-1", "status": "Succeeded", "content": {"video_url": "https://v.mp4"}}),
    )
    provider = _provider(backend)

    job_id = await provider.create_video_job("a fox runs --duration 5", "https://img/1.png")
    assert job_id == "cgt-1"
    content = backend.body(0)["content"]
    assert content[1] == {"type": "image_url", "image_url": {"url": "https://img/1.png"}}

    status = await provider.poll_video_job(job_id)
    assert backend.requests[1].method == "GET"
    assert str(backend.requests[1].url).endswith("/contents/generations/tasks/cgt-1")
    assert status.status == "succeeded"
    assert status.video_url == "https://v.mp4"


# ---------------------------------------------------------------------------
# Speech
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    "mime,expected",
    [("audio/wav", "wav"), ("audio/mpeg", "mp3"), ("audio/ogg;codecs=opus", "ogg"), ("", "webm")],
)
def test_guess_audio_format(mime, expected):
    assert guess_audio_format(mime) == expected


@pytest.mark.asyncio
async def test_recognize_reads_nested_transcript():
    backend = Backend(httpx.Response(200, json={"result": {"text": "a brave turtle"}}))
    provider = _provider(backend)

    assert await provider.recognize("QUJD", "audio/wav") == "a brave turtle"
    request = backend.requests[0]
    assert request.headers["X-Api-App-Id"] == "app"
    assert backend.body()["audio"] == {"data": "QUJD", "format": "wav"}


@pytest.mark.asyncio
async def test_recognize_requires_credentials():
    provider = ArkProvider(
        ArkConfig(api_key="k"),
        SpeechConfig(),
        TtsConfig(),
        transport=httpx.MockTransport(Backend(httpx.Response(200, json={}))),
    )
    with pytest.raises(ConfigurationError, match="asr_config_missing:app_id"):
        await provider.recognize("QUJD")


@pytest.mark.asyncio
async def test_synthesize_returns_audio_url():
    backend = Backend(
        httpx.Response(200, json={"output": {"audio": {"url": "https://tts/a.wav", "expires_at": 123}}})
    )
    audio = await _provider(backend).synthesize("Hello!")

    assert audio.url == "https://tts/a.wav"
    assert audio.expires_at == 123
    assert backend.requests[0].headers["Authorization"] == "Bearer tts-key"
    assert backend.body()["input"]["text"] == "Hello!"


# ---------------------------------------------------------------------------
# Registry and mock
# ---------------------------------------------------------------------------


def test_registry_selects_variant():
    assert isinstance(get_provider(Settings(provider=ProviderConfig(name="mock"))), MockProvider)
    ark = get_provider(Settings(provider=ProviderConfig(name="ark")))
    assert isinstance(ark, ArkProvider)
    assert isinstance(ark, GenerationProvider)


@pytest.mark.asyncio
async def test_mock_video_job_succeeds_on_second_poll():
    provider = MockProvider()
    job_id = await provider.create_video_job("prompt", "https://img/1.png")

    assert (await provider.poll_video_job(job_id)).status == "running"
    done = await provider.poll_video_job(job_id)
    assert done.status == "succeeded"
    assert done.video_url.endswith(".mp4")
