"""Wires the Haven call core together for the API layer."""

import os
import logging
from typing import Optional

from haven.calls import BroadcastHub, CallFinalizer, CallOrchestrator, CallRegistry
from haven.llm import ConversationEngine, GroqClient, GroqConfig
from haven.nlp import EmotionClassifier, EmotionProviderConfig, PioneerEntityExtractor
from haven.storage import InMemoryStorage, NullGraphProjection, RedisStorage, Storage

logger = logging.getLogger(__name__)


def build_storage() -> Storage:
    """Select the storage backend from HAVEN_STORAGE (memory or redis)."""
    backend = os.getenv("HAVEN_STORAGE", "memory").lower()
    if backend == "redis":
        return RedisStorage()
    if backend != "memory":
        logger.warning(f"Unknown HAVEN_STORAGE '{backend}', using in-memory storage")
    return InMemoryStorage()


def build_orchestrator(storage: Optional[Storage] = None) -> CallOrchestrator:
    """Build an orchestrator from environment configuration."""
    groq_config = GroqConfig.from_env()
    llm = GroqClient(groq_config) if groq_config else None
    if llm is None:
        logger.warning("GROQ_API_KEY not set; conversation and emotion LLM paths use fallbacks")

    provider_config = EmotionProviderConfig.from_env()
    timeout = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "10"))

    registry = CallRegistry()
    hub = BroadcastHub()
    storage = storage or build_storage()
    classifier = EmotionClassifier(llm=llm, provider_config=provider_config, timeout=timeout)
    engine = ConversationEngine(llm)
    finalizer = CallFinalizer(
        registry=registry,
        hub=hub,
        storage=storage,
        classifier=classifier,
        engine=engine,
        entity_extractor=PioneerEntityExtractor(),
        graph=NullGraphProjection(),
    )
    return CallOrchestrator(
        registry=registry,
        hub=hub,
        storage=storage,
        classifier=classifier,
        engine=engine,
        finalizer=finalizer,
    )


class CallService:
    """Holds the process-wide orchestrator used by the routes."""

    def __init__(self):
        self._orchestrator: Optional[CallOrchestrator] = None

    @property
    def orchestrator(self) -> CallOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = build_orchestrator()
        return self._orchestrator

    @property
    def storage(self) -> Storage:
        return self.orchestrator.storage

    def set_orchestrator(self, orchestrator: Optional[CallOrchestrator]) -> None:
        self._orchestrator = orchestrator

    async def shutdown(self) -> None:
        """Release the storage connection and drop the orchestrator."""
        if self._orchestrator is None:
            return
        storage = self._orchestrator.storage
        active = len(self._orchestrator.registry)
        if active:
            logger.warning(f"Shutting down with {active} active call(s) left unfinalized")
        if isinstance(storage, RedisStorage):
            await storage.close()
        self._orchestrator = None

    def get_health_status(self) -> dict:
        orchestrator = self.orchestrator
        active = orchestrator.registry.active_calls()
        return {
            "active_calls": len(active),
            "call_phases": {call.call_id: call.phase.value for call in active},
            "subscribers": orchestrator.hub.connection_count(),
            "llm": "configured" if orchestrator.engine.has_llm else "fallback",
            "emotion": orchestrator.classifier.chain.get_summary(),
        }


call_service = CallService()
