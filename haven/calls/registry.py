"""
Active-call registry for Haven.

In-memory, process-lifetime store of calls that are currently in progress.
An entry exists exactly while its call is live; removing it is the only
terminal transition.
"""

import time
import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Sequence

from ..nlp.emotion import SentenceEmotion

logger = logging.getLogger(__name__)


class CallNotFoundError(Exception):
    """Raised when an operation references a call that is not active."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"No active call found: {call_id}")


class CallAlreadyActiveError(Exception):
    """Raised when creating a call whose id is already registered."""

    def __init__(self, call_id: str):
        self.call_id = call_id
        super().__init__(f"Call already active: {call_id}")


class CallPhase(Enum):
    """Phases of a live intake call."""

    GREETING = "greeting"
    LISTENING = "listening"
    PROCESSING = "processing"
    ENDED = "ended"


def _now_ms() -> int:
    return int(time.time() * 1000)


@dataclass(frozen=True)
class TranscriptSegment:
    """One speaker's contribution in one turn. Never mutated once appended."""
    call_id: str
    client_id: str
    speaker: str  # caller or agent
    text: str
    emotion: str
    confidence: float
    timestamp: int
    turn_index: int
    sentence_emotions: tuple = ()

    @property
    def speaker_label(self) -> str:
        return "Caller" if self.speaker == "caller" else "Agent"

    def to_dict(self) -> dict:
        data = {
            "call_id": self.call_id,
            "client_id": self.client_id,
            "speaker": self.speaker,
            "text": self.text,
            "emotion": self.emotion,
            "confidence": self.confidence,
            "timestamp": self.timestamp,
            "turn_index": self.turn_index,
        }
        if self.sentence_emotions:
            data["sentence_emotions"] = [s.to_dict() for s in self.sentence_emotions]
        return data


@dataclass
class ActiveCall:
    """Live state of one call."""
    call_id: str
    client_id: str
    external_ref: Optional[str] = None
    conversation_history: List[Dict[str, str]] = field(default_factory=list)
    transcript_segments: List[TranscriptSegment] = field(default_factory=list)
    turn_index: int = 0
    started_at: float = field(default_factory=time.time)
    phase: CallPhase = CallPhase.GREETING
    turn_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)


class CallRegistry:
    """
    Owned store of active calls, keyed by call id.

    The registry never raises for missing calls on mutation; callers check
    ``get`` first when they need to report NotFound.
    """

    def __init__(self):
        self._calls: Dict[str, ActiveCall] = {}
        self._by_external_ref: Dict[str, str] = {}

    def __contains__(self, call_id: str) -> bool:
        return call_id in self._calls

    def __len__(self) -> int:
        return len(self._calls)

    def create(self, call_id: str, client_id: str, external_ref: Optional[str] = None) -> ActiveCall:
        """
        Register a new active call.

        Raises:
            CallAlreadyActiveError: If the call id is already registered.
        """
        if call_id in self._calls:
            raise CallAlreadyActiveError(call_id)

        call = ActiveCall(call_id=call_id, client_id=client_id, external_ref=external_ref)
        self._calls[call_id] = call
        if external_ref:
            self._by_external_ref[external_ref] = call_id
        logger.info(f"Registered active call {call_id} for client {client_id}")
        return call

    def get(self, call_id: str) -> Optional[ActiveCall]:
        return self._calls.get(call_id)

    def get_by_external_ref(self, external_ref: str) -> Optional[ActiveCall]:
        call_id = self._by_external_ref.get(external_ref)
        if not call_id:
            return None
        return self._calls.get(call_id)

    def get_by_client(self, client_id: str) -> Optional[ActiveCall]:
        for call in self._calls.values():
            if call.client_id == client_id:
                return call
        return None

    def active_calls(self) -> List[ActiveCall]:
        return list(self._calls.values())

    def append_history(self, call_id: str, role: str, content: str) -> None:
        """Append a conversation turn. No-op if the call is absent."""
        call = self._calls.get(call_id)
        if not call:
            return
        call.conversation_history.append({"role": role, "content": content})

    def append_transcript(
        self,
        call_id: str,
        speaker: str,
        text: str,
        emotion: str,
        confidence: float,
        sentence_emotions: Optional[Sequence[SentenceEmotion]] = None,
    ) -> Optional[TranscriptSegment]:
        """
        Append a transcript segment with the current turn index, then
        advance the index.

        Returns:
            The appended segment, or None if the call is absent.
        """
        call = self._calls.get(call_id)
        if not call:
            return None

        segment = TranscriptSegment(
            call_id=call.call_id,
            client_id=call.client_id,
            speaker=speaker,
            text=text,
            emotion=emotion,
            confidence=confidence,
            timestamp=_now_ms(),
            turn_index=call.turn_index,
            sentence_emotions=tuple(sentence_emotions or ()),
        )
        call.transcript_segments.append(segment)
        call.turn_index += 1
        return segment

    def set_phase(self, call_id: str, phase: CallPhase) -> None:
        call = self._calls.get(call_id)
        if call:
            call.phase = phase

    def remove(self, call_id: str) -> Optional[ActiveCall]:
        """Remove a call. Removing an absent call is a silent no-op."""
        call = self._calls.pop(call_id, None)
        if call:
            if call.external_ref:
                self._by_external_ref.pop(call.external_ref, None)
            call.phase = CallPhase.ENDED
            logger.info(f"Removed active call {call_id} after {call.turn_index} segments")
        return call

    def full_transcript(self, call_id: str) -> str:
        """Render the transcript as ``Speaker: text`` lines in append order."""
        call = self._calls.get(call_id)
        if not call:
            return ""
        return "\n".join(f"{s.speaker_label}: {s.text}" for s in call.transcript_segments)
