"""
Haven - AI voice intake and case management for homelessness services.
"""

from .calls import (
    CallOrchestrator,
    CallRegistry,
    BroadcastHub,
    CallFinalizer,
    CallNotFoundError,
    OrchestratorError,
)
from .llm import ConversationEngine, GroqClient
from .nlp import EmotionClassifier, EmotionResult
from .fallback import FallbackChain, StrategyOutcome, UpstreamError

__version__ = "0.1.0"

__all__ = [
    "CallOrchestrator",
    "CallRegistry",
    "BroadcastHub",
    "CallFinalizer",
    "CallNotFoundError",
    "OrchestratorError",
    "ConversationEngine",
    "GroqClient",
    "EmotionClassifier",
    "EmotionResult",
    "FallbackChain",
    "StrategyOutcome",
    "UpstreamError",
]
