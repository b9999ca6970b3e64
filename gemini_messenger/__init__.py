"""
Gemini Messenger: streaming Gemini chat with model failover, one-shot tool
calls, citation collection and spoken answers.
"""

from .models import (
    BinaryAttachment,
    ConversationTurn,
    GroundingSource,
    Role,
    StreamChunk,
)
from .orchestrator import StreamOrchestrator

__all__ = [
    "BinaryAttachment",
    "ConversationTurn",
    "GroundingSource",
    "Role",
    "StreamChunk",
    "StreamOrchestrator",
]
