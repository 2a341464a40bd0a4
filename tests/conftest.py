"""Shared fixtures: fake clock, scripted provider, fresh stores and zero-delay config."""

import itertools
import json
from typing import Any, Optional

import pytest

from taleweaver.config import PipelineConfig
from taleweaver.orchestrator.jobs import JobContext
from taleweaver.orchestrator.state import TaskKind
from taleweaver.schemas.artifacts import SpeechAudio, VideoJobStatus
from taleweaver.schemas.task import Task
from taleweaver.store.service import SessionService
from taleweaver.store.sessions import SessionStore
from taleweaver.store.tasks import TaskLedger


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced clock usable wherever a ``time.time`` is injected."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.now += seconds


# ---------------------------------------------------------------------------
# Provider
# ---------------------------------------------------------------------------


class ScriptedProvider:
    """Provider whose answers are queued per method.

    Each queue entry is returned as-is, raised if it is an exception, or
    called with the method's arguments if it is callable. An empty queue
    falls back to a deterministic default. Every call is recorded.
    """

    name = "scripted"

    def __init__(self) -> None:
        self.script: dict[str, list[Any]] = {}
        self.calls: list[tuple[str, tuple]] = []
        self._ids = itertools.count(1)
        self.closed = False

    def queue(self, method: str, *answers: Any) -> None:
        self.script.setdefault(method, []).extend(answers)

    def calls_to(self, method: str) -> list[tuple]:
        return [args for name, args in self.calls if name == method]

    def _answer(self, method: str, args: tuple, default: Any) -> Any:
        self.calls.append((method, args))
        queue = self.script.get(method) or []
        if not queue:
            return default
        answer = queue.pop(0)
        if isinstance(answer, BaseException):
            raise answer
        if callable(answer):
            return answer(*args)
        return answer

    async def chat(self, messages, temperature: float = 0.7) -> str:
        return self._answer("chat", (messages, temperature), json.dumps({"decisions": []}))

    async def stylize(self, image: str, prompt: str, size: str = "2K") -> str:
        return self._answer("stylize", (image, prompt, size), "https://img.test/avatar.png")

    async def generate_image(self, prompt: str, refs: Optional[list[str]] = None, size: str = "2K", watermark: bool = True) -> str:
        return self._answer(
            "generate_image",
            (prompt, list(refs or []), size, watermark),
            f"https://img.test/scene-{next(self._ids)}.png",
        )

    async def create_video_job(self, prompt: str, image_url: str) -> str:
        return self._answer("create_video_job", (prompt, image_url), f"job-{next(self._ids)}")

    async def poll_video_job(self, job_id: str) -> VideoJobStatus:
        return self._answer(
            "poll_video_job",
            (job_id,),
            VideoJobStatus(status="succeeded", video_url=f"https://video.test/{job_id}.mp4"),
        )

    async def recognize(self, audio_base64: str, mime_type: str = "") -> str:
        return self._answer("recognize", (audio_base64, mime_type), "a story about a brave turtle")

    async def synthesize(self, text: str) -> SpeechAudio:
        return self._answer("synthesize", (text,), SpeechAudio(url="https://tts.test/reply.wav"))

    async def aclose(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fast_config() -> PipelineConfig:
    """Pipeline config with every backoff and poll delay set to zero."""
    return PipelineConfig(
        retry_base_delay=0,
        retry_max_delay=0,
        retry_jitter=0,
        image_retry_base_delay=0,
        image_retry_max_delay=0,
        video_poll_interval=0,
    )


@pytest.fixture
def ledger(clock) -> TaskLedger:
    return TaskLedger(ttl_seconds=3600, clock=clock)


@pytest.fixture
def store(clock) -> SessionStore:
    return SessionStore(ttl_seconds=600, clock=clock)


@pytest.fixture
def sessions(store) -> SessionService:
    return SessionService(store, max_messages=24)


@pytest.fixture
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def make_ctx(ledger):
    """Create a task record and return a JobContext bound to it."""

    def _make(kind: TaskKind, session_id: str = "s1") -> JobContext:
        task = ledger.create(Task(id=f"{kind.value}-task", session_id=session_id, kind=kind))
        return JobContext(task.id, session_id, ledger)

    return _make
