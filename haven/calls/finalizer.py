"""
End-of-call finalization for Haven.

Aggregates the transcript's emotions, extracts entities and intake fields,
persists the results and retires the call from the registry.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from ..llm.conversation import ConversationEngine
from ..nlp.emotion import EmotionClassifier, EmotionResult
from ..nlp.entities import EntityExtractor, format_entity_summary
from ..storage.base import Storage, utcnow_iso
from ..storage.graph import GraphProjection, NullGraphProjection
from .broadcast import BroadcastHub
from .registry import CallRegistry

logger = logging.getLogger(__name__)

# Extracted intake field -> persisted client field
CLIENT_FIELD_MAP = {
    "employment_status": "employment_status",
    "monthly_income": "monthly_income",
    "has_dependents": "has_dependents",
    "dependent_count": "dependent_count",
    "veteran_status": "veteran_status",
    "has_disability": "has_disability",
    "has_id": "has_id",
    "has_ssn": "has_ssn",
    "has_proof_of_income": "has_proof_of_income",
    "preferred_location": "location",
    "urgency_level": "urgency_level",
    "notes": "notes",
}


@dataclass
class FinalizationReport:
    """What finalization persisted for a call."""
    call_id: str
    client_id: str
    summary: str
    emotion: EmotionResult
    entities: Dict[str, List[str]] = field(default_factory=dict)
    client_update: Dict[str, Any] = field(default_factory=dict)


def emotion_summary(result: EmotionResult) -> str:
    """Summary line built from the top three emotions of a profile."""
    top = ", ".join(f"{emotion} ({round(share * 100)}%)" for emotion, share in result.top_emotions(3))
    return f"Call completed. Detected primary emotions: {top}"


def build_client_update(
    emotion: EmotionResult,
    extracted: Dict[str, Any],
    entities: Dict[str, List[str]],
) -> Dict[str, Any]:
    """
    Merge extracted intake fields into a partial client update.

    Null, missing or blank fields are left out so the stored values survive.
    """
    update: Dict[str, Any] = {"status": "assessed", "emotion_profile": dict(emotion.profile)}

    for source, target in CLIENT_FIELD_MAP.items():
        value = extracted.get(source)
        if value is None:
            continue
        if isinstance(value, str) and not value.strip():
            continue
        update[target] = value

    entity_summary = format_entity_summary(entities)
    if entity_summary:
        notes = update.get("notes") or ""
        prefix = f"{notes}\n\n" if notes else ""
        update["notes"] = f"{prefix}Extracted entities: {entity_summary}"

    return update


class CallFinalizer:
    """
    Runs end-of-call aggregation exactly once per call.

    Removing the call from the registry is the last step, so a repeated
    finalize finds nothing to do.
    """

    def __init__(
        self,
        registry: CallRegistry,
        hub: BroadcastHub,
        storage: Storage,
        classifier: EmotionClassifier,
        engine: ConversationEngine,
        entity_extractor: Optional[EntityExtractor] = None,
        graph: Optional[GraphProjection] = None,
    ):
        self.registry = registry
        self.hub = hub
        self.storage = storage
        self.classifier = classifier
        self.engine = engine
        self.entity_extractor = entity_extractor or EntityExtractor()
        self.graph = graph or NullGraphProjection()
        self._in_progress: Set[str] = set()

    async def finalize(self, call_id: str) -> Optional[FinalizationReport]:
        """
        Finalize a call.

        Returns:
            FinalizationReport, or None if the call is not active or is
            already being finalized.
        """
        call = self.registry.get(call_id)
        if call is None or call_id in self._in_progress:
            return None

        self._in_progress.add(call_id)
        try:
            return await self._finalize(call_id)
        finally:
            self._in_progress.discard(call_id)

    async def _finalize(self, call_id: str) -> FinalizationReport:
        call = self.registry.get(call_id)
        client_id = call.client_id

        transcript = self.registry.full_transcript(call_id)
        emotion = await self.classifier.classify(transcript)

        try:
            entities = await self.entity_extractor.extract_entities(transcript)
        except Exception as e:
            logger.warning(f"Entity extraction during finalization failed: {e}")
            entities = {}

        intake = await self.engine.summarize(list(call.conversation_history))
        if intake.succeeded:
            summary = intake.summary
            extracted = intake.extracted_data
        else:
            logger.warning(f"Intake summary unavailable for call {call_id}, using emotion summary")
            summary = emotion_summary(emotion)
            extracted = {}

        client_update = build_client_update(emotion, extracted, entities)
        await self.storage.update_client(client_id, client_update)

        await self.storage.update_call(call_id, {
            "status": "completed",
            "ended_at": utcnow_iso(),
            "transcript": transcript,
            "emotion_data": [e.to_dict() for e in emotion.emotions],
            "sentiment_score": emotion.sentiment_score,
            "summary": summary,
        })

        try:
            await self.graph.record_call_completion(call_id, client_id, {
                "status": "completed",
                "sentiment_score": emotion.sentiment_score,
            })
        except Exception as e:
            logger.warning(f"Graph call node creation failed: {e}")

        await self.hub.publish_event(call_id, client_id, "call_ended", {
            "status": "completed",
            "summary": summary,
            "emotion_profile": dict(emotion.profile),
        })

        self.registry.remove(call_id)
        logger.info(f"Finalized call {call_id} (sentiment {emotion.sentiment_score:.2f})")

        return FinalizationReport(
            call_id=call_id,
            client_id=client_id,
            summary=summary,
            emotion=emotion,
            entities=entities,
            client_update=client_update,
        )
