"""
Async call orchestrator for Haven.

Drives the intake turn loop: caller text -> emotion classification ->
conversation engine -> transcript broadcast -> finalization.

Phases: GREETING -> LISTENING <-> PROCESSING -> (LISTENING | ENDED)
"""

import time
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from ..llm.conversation import ConversationEngine
from ..nlp.emotion import EmotionClassifier, SentenceEmotion, split_sentences
from ..storage.base import Storage, utcnow_iso
from .broadcast import BroadcastHub
from .finalizer import CallFinalizer
from .registry import (
    ActiveCall,
    CallAlreadyActiveError,
    CallNotFoundError,
    CallPhase,
    CallRegistry,
    TranscriptSegment,
)

logger = logging.getLogger(__name__)


class OrchestratorError(Exception):
    """Exception raised when the orchestrator encounters an error."""

    def __init__(self, message: str, component: Optional[str] = None):
        self.component = component
        super().__init__(message)


class ClientNotFoundError(Exception):
    """Raised when starting a call for an unknown client."""

    def __init__(self, client_id: str):
        self.client_id = client_id
        super().__init__(f"Client not found: {client_id}")


class TurnInProgressError(Exception):
    """Raised when a call already has a turn in flight."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"A turn is already in progress for call {call_id}")


@dataclass
class CallConfig:
    """Tunables for call handling."""
    agent_emotion: str = "neutral"
    agent_confidence: float = 0.8


@dataclass
class CallStart:
    """Result of starting a call."""
    call_id: str
    greeting_text: str


@dataclass
class TurnResult:
    """Result from a single caller turn."""
    agent_text: str
    sentence_emotions: List[SentenceEmotion] = field(default_factory=list)
    is_complete: bool = False
    latency_ms: float = 0.0


@dataclass
class LiveState:
    """Point-in-time snapshot of a call's transcript."""
    segments: List[TranscriptSegment]
    active: bool
    turn_index: int = 0


class CallOrchestrator:
    """
    Coordinates live intake calls.

    Registry and hub are injected so the one-turn-at-a-time rule and the
    broadcast contract can be exercised without a server.
    """

    def __init__(
        self,
        registry: CallRegistry,
        hub: BroadcastHub,
        storage: Storage,
        classifier: EmotionClassifier,
        engine: ConversationEngine,
        finalizer: CallFinalizer,
        config: Optional[CallConfig] = None,
        on_phase_change: Optional[Callable[[str, CallPhase], None]] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            registry: Active-call registry.
            hub: Broadcast hub for transcript and call events.
            storage: Client/call persistence.
            classifier: Emotion classifier for caller speech.
            engine: Conversation engine for agent replies.
            finalizer: End-of-call finalizer.
            config: Optional call tunables.
            on_phase_change: Callback when a call changes phase.
        """
        self.registry = registry
        self.hub = hub
        self.storage = storage
        self.classifier = classifier
        self.engine = engine
        self.finalizer = finalizer
        self.config = config or CallConfig()
        self.on_phase_change = on_phase_change

    def _set_phase(self, call_id: str, phase: CallPhase) -> None:
        """Update call phase and notify callback."""
        self.registry.set_phase(call_id, phase)
        if self.on_phase_change:
            self.on_phase_change(call_id, phase)

    def _require_call(self, call_id: str) -> ActiveCall:
        call = self.registry.get(call_id)
        if call is None:
            raise CallNotFoundError(call_id)
        return call

    async def _append_agent_line(self, call: ActiveCall, text: str) -> None:
        self.registry.append_history(call.call_id, "assistant", text)
        segment = self.registry.append_transcript(
            call.call_id, "agent", text,
            self.config.agent_emotion, self.config.agent_confidence,
        )
        if segment:
            await self.hub.publish_transcript(segment)

    async def start_call(self, client_id: str, external_ref: Optional[str] = None) -> CallStart:
        """
        Start an intake call for a client and produce the greeting.

        Raises:
            ClientNotFoundError: If the client does not exist.
            CallAlreadyActiveError: If the client already has a live call.
        """
        client = await self.storage.get_client(client_id)
        if not client:
            raise ClientNotFoundError(client_id)

        existing = self.registry.get_by_client(client_id)
        if existing is not None:
            # One live call per client
            raise CallAlreadyActiveError(existing.call_id)

        external_ref = external_ref or f"web-{int(time.time() * 1000)}"
        record = await self.storage.create_call({
            "client_id": client_id,
            "external_ref": external_ref,
            "status": "in-progress",
            "started_at": utcnow_iso(),
        })
        call_id = record["id"]

        call = self.registry.create(call_id, client_id, external_ref)
        self._set_phase(call_id, CallPhase.GREETING)
        await self.storage.update_client(client_id, {"status": "in-call"})

        await self.hub.publish_event(call_id, client_id, "call_started", {
            "call_id": call_id,
            "client_id": client_id,
            "client_name": client.get("name"),
        })

        greeting = await self.engine.generate_greeting()
        await self._append_agent_line(call, greeting)

        self._set_phase(call_id, CallPhase.LISTENING)
        logger.info(f"Started call {call_id} for client {client_id}")
        return CallStart(call_id=call_id, greeting_text=greeting)

    async def process_turn(self, call_id: str, caller_text: str) -> TurnResult:
        """
        Process one caller utterance and produce the agent's reply.

        Args:
            call_id: Active call id.
            caller_text: Transcribed caller speech.

        Raises:
            CallNotFoundError: If the call is not active.
            TurnInProgressError: If another turn for this call is in flight.
            OrchestratorError: If classification fails before anything was recorded.
        """
        start_time = time.perf_counter()
        call = self._require_call(call_id)

        if not caller_text or not caller_text.strip():
            return TurnResult(agent_text="", sentence_emotions=[], is_complete=False)

        if call.turn_lock.locked():
            raise TurnInProgressError(call_id)

        async with call.turn_lock:
            # The call may have ended while we waited to be scheduled
            call = self._require_call(call_id)
            self._set_phase(call_id, CallPhase.PROCESSING)

            try:
                sentence_emotions, overall = await asyncio.gather(
                    self.classifier.classify_sentences(split_sentences(caller_text)),
                    self.classifier.classify(caller_text),
                )
            except Exception as e:
                self._set_phase(call_id, CallPhase.LISTENING)
                raise OrchestratorError(f"Emotion classification failed: {e}", component="emotion") from e

            primary = overall.primary

            self.registry.append_history(call_id, "user", caller_text)
            caller_segment = self.registry.append_transcript(
                call_id, "caller", caller_text,
                primary.emotion, primary.confidence,
                sentence_emotions=sentence_emotions,
            )
            if caller_segment:
                await self.hub.publish_transcript(caller_segment)

            try:
                reply = await self.engine.next_turn(list(call.conversation_history), caller_text)
            except Exception as e:
                self._set_phase(call_id, CallPhase.LISTENING)
                raise OrchestratorError(f"Conversation engine failed: {e}", component="llm") from e

            await self._append_agent_line(call, reply.response_text)

            if reply.is_complete:
                logger.info(f"Conversation engine signalled completion for call {call_id}")
                try:
                    await self.finalizer.finalize(call_id)
                except Exception as e:
                    # Call stays registered so end_call can retry finalization
                    self._set_phase(call_id, CallPhase.LISTENING)
                    raise OrchestratorError(f"Finalization failed: {e}", component="finalizer") from e
                self._set_phase(call_id, CallPhase.ENDED)
            else:
                self._set_phase(call_id, CallPhase.LISTENING)

        latency_ms = (time.perf_counter() - start_time) * 1000
        return TurnResult(
            agent_text=reply.response_text,
            sentence_emotions=list(sentence_emotions),
            is_complete=reply.is_complete,
            latency_ms=latency_ms,
        )

    async def end_call(self, call_id: str) -> dict:
        """
        End a call on request, waiting for any in-flight turn first.

        Raises:
            CallNotFoundError: If the call is not active.
        """
        call = self._require_call(call_id)

        async with call.turn_lock:
            # A completing turn may have finalized the call already
            self._require_call(call_id)
            await self.finalizer.finalize(call_id)

        self._set_phase(call_id, CallPhase.ENDED)
        return {"status": "completed"}

    def get_live_state(self, call_id: str) -> LiveState:
        """Snapshot of the segments recorded so far for a call."""
        call = self.registry.get(call_id)
        if call is None:
            return LiveState(segments=[], active=False, turn_index=0)
        return LiveState(
            segments=list(call.transcript_segments),
            active=True,
            turn_index=call.turn_index,
        )
