"""
Emotion classification for Haven.
Labels caller utterances sentence by sentence and aggregates them into an
emotion profile and a sentiment score.
"""

import os
import re
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

import requests
from dotenv import load_dotenv

from ..fallback import FallbackChain, FallbackExhaustedError, Strategy, StrategyOutcome

logger = logging.getLogger(__name__)

load_dotenv()

EMOTION_LABELS = ("anxiety", "sadness", "frustration", "hope", "urgency", "gratitude", "neutral")

POSITIVE_EMOTIONS = ("hope", "gratitude")
NEGATIVE_EMOTIONS = ("anxiety", "sadness", "frustration", "urgency")

MIN_CONFIDENCE = 0.3
MAX_CONFIDENCE = 0.95

# Checked in order, first match wins
EMOTION_PATTERNS = [
    ("anxiety", re.compile(r"\b(worried|scared|afraid|nervous|anxious|fear|panic|stress|terrif)", re.IGNORECASE)),
    ("sadness", re.compile(r"\b(sad|depressed|hopeless|lost everything|alone|lonely|cry|miss|devastat)", re.IGNORECASE)),
    ("frustration", re.compile(r"\b(frustrated|angry|mad|unfair|tired of|sick of|annoyed|can't believe)", re.IGNORECASE)),
    ("hope", re.compile(r"\b(hope|better|improving|looking forward|wish|dream|opportunity|optimist|good|great|fine|okay|alright)", re.IGNORECASE)),
    ("urgency", re.compile(r"\b(tonight|emergency|desperate|asap|right now|immediately|kicked out|evicted|no where|nowhere)", re.IGNORECASE)),
    ("gratitude", re.compile(r"\b(thank|grateful|appreciate|kind|blessing|relief)", re.IGNORECASE)),
]

SENTENCE_SPLIT = re.compile(r"[.!?]+")

LLM_EMOTION_PROMPT = """You are an emotion analysis expert for a housing intake call with homeless individuals. Analyze the emotional tone of the sentence provided.

Classify the primary emotion as ONE of:
- anxiety (worried, scared, fearful, nervous)
- sadness (depressed, hopeless, grieving, lonely)
- frustration (angry, annoyed, fed up, exhausted)
- hope (optimistic, looking forward, encouraged)
- urgency (desperate, immediate need, time-critical, crisis)
- gratitude (thankful, appreciative, relieved)
- neutral (calm, matter-of-fact, informational)

Consider the CONTEXT of a homeless person in an intake call. "I'm doing pretty good" is neutral/hope, not urgency. "I need a place tonight" is urgency. "Thank you for helping" is gratitude.

Respond with a JSON object: {"emotion": "string", "confidence": 0.0-1.0}"""


@dataclass
class EmotionProviderConfig:
    """Configuration for the external affect-analysis provider (Modulate)."""
    api_key: str
    url: str = "https://api.modulate.ai/v1/analyze"
    timeout: float = 8.0

    @classmethod
    def from_env(cls) -> Optional["EmotionProviderConfig"]:
        api_key = os.getenv("MODULATE_API_KEY")
        if not api_key:
            return None
        return cls(
            api_key=api_key,
            url=os.getenv("MODULATE_API_URL", cls.url),
            timeout=float(os.getenv("MODULATE_TIMEOUT_SECONDS", cls.timeout)),
        )


@dataclass
class SentenceEmotion:
    """Emotion label for one sentence of a caller turn."""
    text: str
    emotion: str
    confidence: float

    def to_dict(self) -> dict:
        return {"text": self.text, "emotion": self.emotion, "confidence": self.confidence}


@dataclass
class EmotionSegment:
    """One classified unit of an EmotionResult."""
    timestamp: int
    emotion: str
    confidence: float
    text: str

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp,
            "emotion": self.emotion,
            "confidence": self.confidence,
            "text": self.text,
        }


@dataclass
class EmotionResult:
    """Result of emotion classification over a piece of text."""
    emotions: List[EmotionSegment]
    profile: Dict[str, float] = field(default_factory=dict)
    sentiment_score: float = 0.0

    @property
    def primary(self) -> EmotionSegment:
        """The first classified segment, or a neutral placeholder."""
        if self.emotions:
            return self.emotions[0]
        return EmotionSegment(timestamp=0, emotion="neutral", confidence=0.5, text="")

    def top_emotions(self, limit: int = 3) -> List[Tuple[str, float]]:
        """Profile entries sorted by share, largest first."""
        return sorted(self.profile.items(), key=lambda item: item[1], reverse=True)[:limit]

    def to_dict(self) -> dict:
        return {
            "emotions": [e.to_dict() for e in self.emotions],
            "profile": dict(self.profile),
            "sentiment_score": self.sentiment_score,
        }


def split_sentences(text: str) -> List[str]:
    """Split text on sentence-terminal punctuation, dropping empty fragments."""
    return [s.strip() for s in SENTENCE_SPLIT.split(text or "") if s.strip()]


def normalize_label(label) -> str:
    """Coerce any provider label into the closed label set."""
    if isinstance(label, str) and label.strip().lower() in EMOTION_LABELS:
        return label.strip().lower()
    return "neutral"


def clamp_confidence(value, default: float = 0.6) -> float:
    try:
        confidence = float(value)
    except (TypeError, ValueError):
        confidence = default
    if confidence != confidence:  # NaN
        confidence = default
    return min(max(confidence, MIN_CONFIDENCE), MAX_CONFIDENCE)


def sentiment_weight(emotion: str) -> float:
    if emotion in POSITIVE_EMOTIONS:
        return 0.3
    if emotion in NEGATIVE_EMOTIONS:
        return -0.2
    return 0.0


def build_emotion_result(labelled: Sequence[SentenceEmotion]) -> EmotionResult:
    """
    Aggregate per-sentence labels into an EmotionResult.

    Each sentence contributes one unit to its label; the profile is the
    normalized count rounded to two decimals.
    """
    if not labelled:
        return EmotionResult(emotions=[], profile={}, sentiment_score=0.0)

    counts: Dict[str, int] = {}
    sentiment_total = 0.0
    emotions = []
    for index, item in enumerate(labelled):
        emotions.append(EmotionSegment(
            timestamp=index,
            emotion=item.emotion,
            confidence=item.confidence,
            text=item.text,
        ))
        counts[item.emotion] = counts.get(item.emotion, 0) + 1
        sentiment_total += sentiment_weight(item.emotion)

    total = len(labelled)
    profile = {emotion: round(count / total, 2) for emotion, count in counts.items()}
    sentiment = max(-1.0, min(1.0, sentiment_total / total))
    return EmotionResult(emotions=emotions, profile=profile, sentiment_score=sentiment)


def keyword_emotion(sentence: str) -> Tuple[str, float]:
    """Deterministic keyword classification of a single sentence."""
    for emotion, pattern in EMOTION_PATTERNS:
        if pattern.search(sentence):
            return emotion, 0.6
    return "neutral", 0.5


class ModulateEmotionStrategy(Strategy):
    """Delegates classification to the Modulate affect-analysis API."""

    name = "modulate"

    def __init__(self, config: EmotionProviderConfig):
        self.config = config

    def _post(self, sentence: str) -> dict:
        response = requests.post(
            self.config.url,
            json={"text": sentence, "features": ["emotion", "sentiment"]},
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {self.config.api_key}",
            },
            timeout=self.config.timeout,
        )
        response.raise_for_status()
        return response.json()

    async def attempt(self, sentence: str) -> StrategyOutcome:
        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, self._post, sentence)
        except requests.exceptions.RequestException as e:
            return StrategyOutcome.failure(f"Modulate request failed: {e}")
        except ValueError as e:
            return StrategyOutcome.failure(f"Modulate returned invalid JSON: {e}")

        emotions = data.get("emotions") if isinstance(data, dict) else None
        if not emotions or not isinstance(emotions, list) or not isinstance(emotions[0], dict):
            return StrategyOutcome.failure("Modulate response has no emotions")

        first = emotions[0]
        if not isinstance(first.get("emotion"), str):
            return StrategyOutcome.failure("Modulate response has no emotion label")
        return StrategyOutcome.success((first["emotion"], first.get("confidence")))


class LLMEmotionStrategy(Strategy):
    """Prompts the LLM to classify a sentence."""

    name = "llm"

    def __init__(self, llm):
        self._llm = llm

    async def attempt(self, sentence: str) -> StrategyOutcome:
        messages = [
            {"role": "system", "content": LLM_EMOTION_PROMPT},
            {"role": "user", "content": f'Sentence to analyze: "{sentence}"'},
        ]
        try:
            parsed = await self._llm.complete_json(messages, max_tokens=60, temperature=0.2)
        except Exception as e:
            return StrategyOutcome.failure(str(e))

        if not isinstance(parsed, dict):
            return StrategyOutcome.failure("LLM emotion payload is not an object")

        # Some models wrap the answer in a list under an arbitrary key
        if "emotion" not in parsed:
            nested = next((v for v in parsed.values() if isinstance(v, list) and v), None)
            if nested and isinstance(nested[0], dict):
                parsed = nested[0]

        if not isinstance(parsed.get("emotion"), str):
            return StrategyOutcome.failure("LLM emotion payload has no emotion label")
        return StrategyOutcome.success((parsed["emotion"], parsed.get("confidence", 0.6)))


class KeywordEmotionStrategy(Strategy):
    """Regex keyword matcher. Never fails."""

    name = "keyword"

    async def attempt(self, sentence: str) -> StrategyOutcome:
        return StrategyOutcome.success(keyword_emotion(sentence))


class EmotionClassifier:
    """
    Sentence-level emotion classifier with provider fallbacks.

    Sentences are classified concurrently; each goes through the chain
    provider -> LLM -> keyword matcher, and results are recombined in
    sentence order.
    """

    def __init__(
        self,
        llm=None,
        provider_config: Optional[EmotionProviderConfig] = None,
        timeout: float = 10.0,
        max_concurrency: int = 8,
    ):
        """
        Initialize the classifier.

        Args:
            llm: Optional LLM client with ``complete_json``.
            provider_config: Optional Modulate configuration.
            timeout: Per-strategy timeout in seconds.
            max_concurrency: Maximum sentences classified at once.
        """
        strategies: List[Strategy] = []
        if provider_config is not None:
            strategies.append(ModulateEmotionStrategy(provider_config))
        if llm is not None:
            strategies.append(LLMEmotionStrategy(llm))
        strategies.append(KeywordEmotionStrategy())

        self._chain = FallbackChain("emotion", strategies, timeout=timeout)
        self._semaphore = asyncio.Semaphore(max_concurrency)

    @property
    def chain(self) -> FallbackChain:
        return self._chain

    async def classify(self, text: str) -> EmotionResult:
        """
        Classify text sentence by sentence.

        Args:
            text: Utterance or full transcript.

        Returns:
            EmotionResult with per-sentence emotions, profile and sentiment.
        """
        sentences = split_sentences(text)
        if not sentences:
            return EmotionResult(
                emotions=[EmotionSegment(timestamp=0, emotion="neutral", confidence=0.5, text=text or "")],
                profile={"neutral": 1.0},
                sentiment_score=0.0,
            )

        labelled = await self.classify_sentences(sentences)
        return build_emotion_result(labelled)

    async def classify_sentences(self, sentences: Sequence[str]) -> List[SentenceEmotion]:
        """Classify already-split sentences concurrently, preserving order."""
        return list(await asyncio.gather(*(self._classify_one(s) for s in sentences)))

    async def _classify_one(self, sentence: str) -> SentenceEmotion:
        async with self._semaphore:
            try:
                label, confidence = await self._chain.run(sentence)
            except FallbackExhaustedError as e:
                logger.error(f"Emotion classification failed for sentence: {e}")
                label, confidence = "neutral", 0.5

        return SentenceEmotion(
            text=sentence,
            emotion=normalize_label(label),
            confidence=clamp_confidence(confidence),
        )
