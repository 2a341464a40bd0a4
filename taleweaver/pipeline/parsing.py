"""Best-effort parsing of free-form chat model output.

Models are asked for a JSON object but may wrap it in prose or code
fences. We take the first ``{`` through the last ``}`` and fall back to a
caller-supplied default when that is not valid JSON, so later stages
degrade gracefully instead of failing.
"""

import json
import logging
import re
from typing import Any, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

from taleweaver.errors import LLMOutputError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_JSON_BLOCK = re.compile(r"\{[\s\S]*\}")

MAX_MESSAGE_CHARS = 4000


def extract_json(text: str) -> dict[str, Any]:
    """Return the first JSON object embedded in ``text``.

    Raises:
        LLMOutputError: No ``{...}`` block, or it is not a JSON object
    """
    match = _JSON_BLOCK.search(text or "")
    if not match:
        raise LLMOutputError("llm_no_json")
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise LLMOutputError(f"llm_bad_json:{e.msg}") from e
    if not isinstance(data, dict):
        raise LLMOutputError("llm_no_json")
    return data


def parse_model_output(text: str, schema: Type[M], fallback: Optional[M] = None) -> M:
    """Scrape a JSON object from model output and validate it against ``schema``.

    Args:
        text: Raw assistant text
        schema: Pydantic model to validate against
        fallback: Returned when scraping or validation fails; when None the
                  schema's all-defaults instance is used

    Returns:
        Validated schema instance or the fallback
    """
    try:
        return schema.model_validate(extract_json(text))
    except (LLMOutputError, ValidationError) as e:
        logger.warning(f"Unparseable {schema.__name__} output, using fallback: {e}")
        return fallback if fallback is not None else schema()


def clamp(text: str, limit: int) -> str:
    text = (text or "").strip()
    return text[:limit]


def normalize_transcript(value: Any) -> str:
    """Turn an ASR result (string, or dict with text/transcript) into plain text."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, dict):
        for key in ("text", "transcript"):
            if isinstance(value.get(key), str):
                return value[key].strip()
        return json.dumps(value, ensure_ascii=False)
    return str(value).strip()


def sanitize_messages(messages: Any) -> list[dict[str, str]]:
    """Keep only well-formed ``{role, content}`` chat messages.

    Content that is a dict (e.g. a stored ASR result) is reduced to text;
    every content string is trimmed and clamped. Empty messages are dropped.
    """
    if not isinstance(messages, list):
        return []
    cleaned = []
    for m in messages:
        if not isinstance(m, dict):
            continue
        role = str(m.get("role") or "").strip()
        content = m.get("content")
        if isinstance(content, dict):
            content = normalize_transcript(content)
        elif not isinstance(content, str):
            content = "" if content is None else str(content)
        content = clamp(content, MAX_MESSAGE_CHARS)
        if role and content:
            cleaned.append({"role": role, "content": content})
    return cleaned
