"""
NLP module for Haven.
Provides emotion classification and entity extraction.
"""

from .emotion import (
    EmotionClassifier,
    EmotionProviderConfig,
    EmotionResult,
    EmotionSegment,
    SentenceEmotion,
    EMOTION_LABELS,
    split_sentences,
)
from .entities import (
    EntityExtractor,
    PioneerEntityExtractor,
    PioneerConfig,
    ENTITY_CATEGORIES,
    format_entity_summary,
)

__all__ = [
    "EmotionClassifier",
    "EmotionProviderConfig",
    "EmotionResult",
    "EmotionSegment",
    "SentenceEmotion",
    "EMOTION_LABELS",
    "split_sentences",
    "EntityExtractor",
    "PioneerEntityExtractor",
    "PioneerConfig",
    "ENTITY_CATEGORIES",
    "format_entity_summary",
]
