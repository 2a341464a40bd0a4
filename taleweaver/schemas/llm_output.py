"""Pydantic schemas for JSON the chat model is asked to return.

Every field has a default: model output is scraped best-effort and a
partially filled object is still useful downstream.
"""

from typing import Annotated, Any

from pydantic import AliasChoices, BaseModel, BeforeValidator, Field


def _coerce_to_str(v: Any) -> str:
    """Coerce list/None/number values to a string.

    Chat models occasionally return arrays or numbers for fields asked for
    as text.
    """
    if v is None:
        return ""
    if isinstance(v, list):
        return "\n".join(str(item) for item in v)
    return str(v)


def _coerce_to_bool(v: Any) -> bool:
    if isinstance(v, str):
        return v.strip().lower() in {"true", "yes", "1"}
    return bool(v)


def _coerce_to_int(v: Any) -> int:
    """Coerce numeric strings to int; None or junk becomes 0."""
    try:
        return int(v)
    except (TypeError, ValueError):
        return 0


def _coerce_to_dict(v: Any) -> dict[str, Any]:
    return v if isinstance(v, dict) else {}


CoercedStr = Annotated[str, BeforeValidator(_coerce_to_str)]
CoercedBool = Annotated[bool, BeforeValidator(_coerce_to_bool)]
CoercedInt = Annotated[int, BeforeValidator(_coerce_to_int)]
CoercedDict = Annotated[dict[str, Any], BeforeValidator(_coerce_to_dict)]


class DialogTurn(BaseModel):
    """One assistant turn of the requirement-collecting voice dialog."""

    say: CoercedStr = ""
    story_req: CoercedDict = Field(
        default_factory=dict,
        validation_alias=AliasChoices("story_req", "storyReq"),
    )
    done: CoercedBool = False


class StoryDraft(BaseModel):
    """A drafted story."""

    title: CoercedStr = ""
    story: CoercedStr = ""
    moral: CoercedStr = ""


class SceneDraft(BaseModel):
    """One scene as returned by the split prompt."""

    scene_title: CoercedStr = Field(
        default="", validation_alias=AliasChoices("scene_title", "sceneTitle")
    )
    scene_text: CoercedStr = Field(
        default="", validation_alias=AliasChoices("scene_text", "sceneText")
    )
    image_prompt: CoercedStr = Field(
        default="", validation_alias=AliasChoices("image_prompt", "imagePrompt")
    )
    narration: CoercedStr = ""


class SceneSplit(BaseModel):
    scenes: list[SceneDraft] = Field(default_factory=list)


class HeroDecision(BaseModel):
    """Whether the hero appears in a scene image, plus an optional prompt hint."""

    order: CoercedInt = 0
    scene_id: CoercedStr = Field(default="", validation_alias=AliasChoices("scene_id", "sceneId"))
    include_hero: CoercedBool = Field(
        default=True, validation_alias=AliasChoices("include_hero", "includeHero")
    )
    prompt_extra: CoercedStr = Field(
        default="", validation_alias=AliasChoices("prompt_extra", "promptExtra")
    )


class HeroPlan(BaseModel):
    decisions: list[HeroDecision] = Field(default_factory=list)
