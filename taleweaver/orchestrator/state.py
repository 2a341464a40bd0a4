"""Task status and session stage constants for the job orchestrator.

Task status only moves forward: PENDING -> RUNNING -> one terminal status.
Session stages are named ``<PREFIX>_<PHASE>`` so a client fetching the
session can tell which pipeline last touched it and how that went.
"""

from enum import Enum


class TaskStatus(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    DONE = "DONE"
    FAILED = "FAILED"
    SUCCEEDED = "SUCCEEDED"


TERMINAL_STATUSES = frozenset({TaskStatus.DONE, TaskStatus.FAILED, TaskStatus.SUCCEEDED})


class TaskKind(str, Enum):
    AVATAR_STYLIZE = "avatar_stylize"
    VOICE_ASR = "voice_asr"
    VOICE_DIALOG = "voice_dialog"
    STORY_GENERATE = "story_generate"
    STORY_SPLIT = "story_split"
    SCENE_IMAGES = "scene_images"
    VIDEO_CLIPS = "video_clips"


# Session stage prefix per task kind
STAGE_PREFIXES = {
    TaskKind.AVATAR_STYLIZE: "AVATAR",
    TaskKind.VOICE_ASR: "VOICE_ASR",
    TaskKind.VOICE_DIALOG: "VOICE",
    TaskKind.STORY_GENERATE: "STORY_GEN",
    TaskKind.STORY_SPLIT: "SPLIT",
    TaskKind.SCENE_IMAGES: "IMAGES",
    TaskKind.VIDEO_CLIPS: "VIDEO",
}

INITIAL_STAGE = "INIT"

# Stages written mid-run by individual pipelines
VOICE_LLM_PENDING = "VOICE_LLM_PENDING"
VOICE_TTS_PENDING = "VOICE_TTS_PENDING"
STORY_REQ_DONE = "STORY_REQ_DONE"
STORY_REQ_COLLECTING = "STORY_REQ_COLLECTING"
IMAGES_DONE_WITH_ERRORS = "IMAGES_DONE_WITH_ERRORS"


def is_terminal(status: TaskStatus) -> bool:
    """Check whether a task status ends the task's lifecycle.

    Args:
        status: Current task status

    Returns:
        True for DONE, FAILED and SUCCEEDED
    """
    return status in TERMINAL_STATUSES


def session_stage(kind: TaskKind, phase: str) -> str:
    """Build the session stage name for a task kind.

    Args:
        kind: Task kind that owns the stage
        phase: One of PENDING, RUNNING, DONE, FAILED

    Returns:
        Stage string such as ``IMAGES_RUNNING``
    """
    return f"{STAGE_PREFIXES[kind]}_{phase}"
