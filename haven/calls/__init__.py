"""
Call handling for Haven.
Active-call registry, broadcast hub, orchestrator and finalizer.
"""

from .registry import (
    ActiveCall,
    CallAlreadyActiveError,
    CallNotFoundError,
    CallPhase,
    CallRegistry,
    TranscriptSegment,
)
from .broadcast import BroadcastHub, Connection, SubscriptionError
from .finalizer import CallFinalizer, FinalizationReport
from .orchestrator import (
    CallConfig,
    CallOrchestrator,
    CallStart,
    ClientNotFoundError,
    LiveState,
    OrchestratorError,
    TurnInProgressError,
    TurnResult,
)

__all__ = [
    "ActiveCall",
    "CallAlreadyActiveError",
    "CallNotFoundError",
    "CallPhase",
    "CallRegistry",
    "TranscriptSegment",
    "BroadcastHub",
    "Connection",
    "SubscriptionError",
    "CallFinalizer",
    "FinalizationReport",
    "CallConfig",
    "CallOrchestrator",
    "CallStart",
    "ClientNotFoundError",
    "LiveState",
    "OrchestratorError",
    "TurnInProgressError",
    "TurnResult",
]
