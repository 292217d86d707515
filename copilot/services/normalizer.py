"""Normalization of caller-supplied conversation history.

Callers send whatever their UI kept around: plain dicts, partially filled
blocks, roles the model backend does not accept. Everything here degrades by
dropping the offending entry; nothing raises.
"""

import json
from collections.abc import Mapping, Sequence
from typing import Any

from pydantic import BaseModel

from copilot.models.llm import ContentBlock, LLMMessage, TextBlock, ToolResultBlock, ToolUseBlock
from copilot.utils.logging import get_logger

logger = get_logger(__name__)

_ROLES = ("user", "assistant")


def normalize_history(history: Sequence[Any] | None) -> list[LLMMessage]:
    """Convert prior conversation into messages the model backend will accept.

    Args:
        history: Prior messages as dicts or models, possibly malformed

    Returns:
        Well-formed messages in their original order
    """
    if not history:
        return []

    normalized: list[LLMMessage] = []
    for index, raw in enumerate(history):
        message = _normalize_message(_as_mapping(raw))
        if message is None:
            logger.debug(f"Dropping history entry {index}")
            continue
        normalized.append(message)

    return normalized


def _normalize_message(raw: Mapping[str, Any] | None) -> LLMMessage | None:
    if raw is None:
        return None

    role = raw.get("role")
    if role not in _ROLES:
        return None

    content = raw.get("content")
    if isinstance(content, str):
        if not content.strip():
            return None
        return LLMMessage(role=role, content=content)

    if isinstance(content, Sequence) and not isinstance(content, (bytes, bytearray)):
        blocks = [block for block in map(_normalize_block, content) if block is not None]
        if not blocks:
            return None
        return LLMMessage(role=role, content=blocks)

    return None


def _normalize_block(raw_block: Any) -> ContentBlock | None:
    block = _as_mapping(raw_block)
    if not block:
        return None

    block_type = block.get("type")

    if block_type == "text":
        text = block.get("text")
        if not isinstance(text, str) or not text.strip():
            return None
        return TextBlock(text=text)

    if block_type == "tool_use":
        tool_id = block.get("id")
        name = block.get("name")
        if not _present(tool_id) or not _present(name):
            return None
        tool_input = block.get("input")
        return ToolUseBlock(
            id=tool_id,
            name=name,
            input=dict(tool_input) if isinstance(tool_input, Mapping) else {},
        )

    if block_type == "tool_result":
        tool_use_id = block.get("tool_use_id")
        if not _present(tool_use_id):
            return None
        return ToolResultBlock(
            tool_use_id=tool_use_id,
            content=_coerce_content(block.get("content")),
            is_error=block.get("is_error") is True,
        )

    return None


def _coerce_content(content: Any) -> str:
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    return json.dumps(content, default=str)


def _present(value: Any) -> bool:
    return isinstance(value, str) and bool(value)


def _as_mapping(raw: Any) -> Mapping[str, Any] | None:
    if isinstance(raw, BaseModel):
        return raw.model_dump()
    if isinstance(raw, Mapping):
        return raw
    return None
