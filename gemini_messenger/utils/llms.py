from typing import List, Optional, Sequence

from google.genai import types
from loguru import logger

from ..models import BinaryAttachment, ConversationTurn, Role
from .config import DEFAULT_SYSTEM_INSTRUCTION, LANGUAGE_NAMES
from .tools import ToolRegistry


def build_system_instruction(language: str, base_message: Optional[str] = None) -> str:
    """Persona plus an instruction to answer in the user's language."""
    base = (base_message or DEFAULT_SYSTEM_INSTRUCTION).strip()
    language_name = LANGUAGE_NAMES.get(language)
    if not language_name:
        return base
    return (
        f"{base}\n"
        f"Always answer in {language_name} unless the user explicitly asks for another language."
    )


def _attachment_part(attachment: BinaryAttachment) -> types.Part:
    return types.Part.from_bytes(data=attachment.raw_bytes(), mime_type=attachment.mime_type)


def _turn_to_content(turn: ConversationTurn) -> Optional[types.Content]:
    parts = []
    if turn.attachment is not None:
        try:
            parts.append(_attachment_part(turn.attachment))
        except ValueError as e:
            logger.warning(f"Dropping attachment from history: {e}")
    if turn.text:
        parts.append(types.Part.from_text(text=turn.text))
    if not parts:
        return None
    role = "user" if turn.role == Role.USER else "model"
    return types.Content(role=role, parts=parts)


def format_reference(reference_text: str, reference_type: Optional[str]) -> str:
    label = (reference_type or "text").strip() or "text"
    return (
        f"[Reference {label}]\n"
        f"{reference_text.strip()}\n"
        f"[End of reference {label}]\n"
        f"Use the reference above when it is relevant to the request."
    )


def build_contents(
    history: Sequence[ConversationTurn],
    prompt: str,
    attachment: Optional[BinaryAttachment] = None,
    reference_text: Optional[str] = None,
    reference_type: Optional[str] = None,
) -> List[types.Content]:
    """
    Converts the caller's history plus the new request into Gemini contents.

    Empty history turns are skipped. The reference text, if any, is placed
    ahead of the prompt inside the new user turn.
    """
    contents = [c for c in (_turn_to_content(turn) for turn in history) if c is not None]

    parts: List[types.Part] = []
    if attachment is not None:
        # The current attachment is not optional: a bad one fails the request
        parts.append(_attachment_part(attachment))
    if reference_text and reference_text.strip():
        parts.append(types.Part.from_text(text=format_reference(reference_text, reference_type)))
    if prompt:
        parts.append(types.Part.from_text(text=prompt))
    if not parts:
        raise ValueError("Nothing to send: the prompt is empty and there is no attachment or reference.")

    contents.append(types.Content(role="user", parts=parts))
    logger.debug(f"Built {len(contents)} content item(s) ({len(history)} history turn(s))")
    return contents


def build_tools(registry: Optional[ToolRegistry], enable_search: bool) -> List[types.Tool]:
    tools: List[types.Tool] = []
    if registry is not None and len(registry):
        tools.append(types.Tool(function_declarations=registry.declarations))
    if enable_search:
        tools.append(types.Tool(google_search=types.GoogleSearch()))
    return tools


__all__ = [
    "build_system_instruction",
    "build_contents",
    "build_tools",
    "format_reference",
]
