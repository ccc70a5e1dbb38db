"""
LLM module for Haven.
Provides Groq API integration and the intake conversation engine.
"""

from .groq_client import GroqClient, GroqConfig, parse_json_payload
from .conversation import (
    ConversationEngine,
    TurnReply,
    IntakeSummary,
    parse_completion_marker,
    COMPLETION_MARKER,
)

__all__ = [
    "GroqClient",
    "GroqConfig",
    "parse_json_payload",
    "ConversationEngine",
    "TurnReply",
    "IntakeSummary",
    "parse_completion_marker",
    "COMPLETION_MARKER",
]
