# gemini_messenger/models.py
import base64
import binascii
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class Role(str, Enum):
    USER = "user"
    MODEL = "model"


class BinaryAttachment(BaseModel):
    """A file sent along with a user turn. `data` is base64 encoded."""
    data: str
    mime_type: str
    file_name: Optional[str] = None

    def raw_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"Attachment '{self.file_name or self.mime_type}' is not valid base64: {e}") from e


class ConversationTurn(BaseModel):
    """One entry of the conversation history. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    role: Role
    text: str = ""
    attachment: Optional[BinaryAttachment] = None


class StreamChunk(BaseModel):
    """
    An incremental piece of a streamed answer.

    is_reset: the consumer must discard all text accumulated so far for this turn.
    is_status: transient user feedback (e.g. "looking this up"), not part of the answer.
    """
    text: str = ""
    is_reset: bool = False
    is_status: bool = False

    @classmethod
    def reset(cls) -> "StreamChunk":
        return cls(text="", is_reset=True)

    @classmethod
    def status(cls, text: str) -> "StreamChunk":
        return cls(text=text, is_status=True)


class ToolCallRequest(BaseModel):
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None


class ToolCallResult(BaseModel):
    """Result of a tool call. Failures carry an error payload: {"error": "..."}."""
    name: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return "error" in self.payload

    @classmethod
    def failure(cls, name: str, message: str, id: Optional[str] = None) -> "ToolCallResult":
        return cls(name=name, payload={"error": message}, id=id)


class GroundingSource(BaseModel):
    title: str
    uri: str


# Ordered model identifiers, priority first
ModelCandidateList = List[str]


__all__ = [
    "Role",
    "BinaryAttachment",
    "ConversationTurn",
    "StreamChunk",
    "ToolCallRequest",
    "ToolCallResult",
    "GroundingSource",
    "ModelCandidateList",
]
