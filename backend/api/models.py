"""Pydantic models for API request/response validation."""

from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class CreateClientRequest(BaseModel):
    """Request model for registering a client before their intake call."""
    name: str = Field(..., min_length=1, description="Client name")
    phone_number: str = Field(..., min_length=1, description="Contact phone number")
    age: Optional[int] = Field(None, ge=0)
    gender: Optional[str] = None
    location: Optional[str] = Field(None, description="Current or preferred area")
    veteran_status: Optional[bool] = None
    has_disability: Optional[bool] = None
    has_dependents: Optional[bool] = None
    dependent_count: Optional[int] = Field(None, ge=0)
    employment_status: Optional[str] = None
    monthly_income: Optional[float] = None
    urgency_level: Optional[str] = None
    notes: Optional[str] = None


class ClientResponse(BaseModel):
    """Stored client record. Intake fields written by finalization pass through."""
    model_config = ConfigDict(extra="allow")

    id: str
    name: str
    phone_number: Optional[str] = None
    status: str = "new"


class StartCallRequest(BaseModel):
    """Request model for starting an intake call."""
    external_ref: Optional[str] = Field(None, description="Provider session id, generated if omitted")


class StartCallResponse(BaseModel):
    """Response model for a started call."""
    call_id: str = Field(..., description="Active call ID")
    greeting_text: str = Field(..., description="Opening line to vocalize")


class VoiceTurnRequest(BaseModel):
    """Request model for one caller turn."""
    text: Optional[str] = Field(None, description="Transcribed caller speech")


class SentenceEmotionModel(BaseModel):
    """Emotion label for one sentence."""
    text: str
    emotion: str
    confidence: float


class VoiceTurnResponse(BaseModel):
    """Response model for one caller turn."""
    agent_text: str = Field(..., description="Agent reply to vocalize")
    sentence_emotions: List[SentenceEmotionModel] = Field(default_factory=list)
    is_complete: bool = Field(False, description="Whether the call was finalized")
    latency_ms: float = Field(0.0, description="Processing latency in milliseconds")


class EndCallResponse(BaseModel):
    """Response model for ending a call."""
    status: str


class TranscriptSegmentModel(BaseModel):
    """One transcript segment."""
    call_id: str
    client_id: str
    speaker: str
    text: str
    emotion: str
    confidence: float
    timestamp: int
    turn_index: int
    sentence_emotions: Optional[List[SentenceEmotionModel]] = None


class LiveTranscriptResponse(BaseModel):
    """Point-in-time transcript of a call."""
    segments: List[TranscriptSegmentModel] = Field(default_factory=list)
    active: bool
    turn_index: int = 0


class HealthResponse(BaseModel):
    """Response model for health check."""
    status: str = Field(..., description="Service status")
    services: dict = Field(..., description="Status of individual services")
