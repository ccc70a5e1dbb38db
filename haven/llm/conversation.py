"""
Intake conversation engine for Haven.

Produces the agent's next spoken line from the dialogue so far, the opening
greeting, and the post-call structured summary.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from .groq_client import GroqClient

logger = logging.getLogger(__name__)

# Reserved in-band marker the model appends when the intake is finished.
COMPLETION_MARKER = "[CALL_COMPLETE]"

FALLBACK_CONTINUATION = (
    "Thank you for sharing that. Could you tell me a bit more about your situation?"
)
EMPTY_RESPONSE_FOLLOW_UP = "I appreciate you sharing that. Could you tell me a bit more?"
CLOSING_LINE = (
    "Thank you so much for talking with me today. "
    "A caseworker will follow up with you soon."
)
FALLBACK_GREETING = (
    "Hello, thank you for calling Haven Housing Assistance. I'm here to help "
    "connect you with housing resources. Can you start by telling me about "
    "your current living situation?"
)
FALLBACK_SUMMARY = "Call completed - manual review needed"

SYSTEM_PROMPT = """You are a compassionate housing intake specialist conducting a phone interview with someone experiencing homelessness or housing instability. Your goal is to gather the information needed to match them with appropriate housing programs.

You must gather the following information through natural, empathetic conversation:
1. Current living situation (shelter, street, couch surfing, car, etc.)
2. How long they've been without stable housing
3. Employment status and monthly income (if any)
4. Whether they have dependents (children/family members)
5. Veteran status
6. Any disabilities or health conditions
7. Whether they have identification documents (photo ID, SSN card, proof of income)
8. Their preferred location/area for housing
9. Any immediate safety concerns or urgency factors

Guidelines:
- Be warm, patient, and non-judgmental
- Ask one question at a time
- Acknowledge their responses before asking the next question
- If they share something emotional, validate their feelings briefly before continuing
- Keep responses concise (2-3 sentences max) since this is a phone call
- After gathering all key information (usually 8-12 turns), wrap up the call by thanking them and letting them know a caseworker will follow up
- When wrapping up, end your message with [CALL_COMPLETE] on its own line

IMPORTANT: You are speaking out loud on a phone call. Keep your language natural and conversational. Do not use bullet points, lists, or formatting."""

GREETING_REQUEST = "[SYSTEM: Generate an opening greeting for the phone call. Be warm and brief.]"

SUMMARY_PROMPT = """Analyze this housing intake call transcript and extract structured information. Respond in JSON format with these fields:
{
  "summary": "Brief 2-3 sentence summary of the call",
  "living_situation": "string or null",
  "employment_status": "employed/unemployed/part-time or null",
  "monthly_income": "number or null",
  "has_dependents": "boolean or null",
  "dependent_count": "number or null",
  "veteran_status": "boolean or null",
  "has_disability": "boolean or null",
  "has_id": "boolean or null",
  "has_ssn": "boolean or null",
  "has_proof_of_income": "boolean or null",
  "preferred_location": "string or null",
  "urgency_level": "low/medium/high/critical",
  "notes": "any additional relevant details"
}"""


@dataclass
class TurnReply:
    """The agent's next line and whether the intake is finished."""
    response_text: str
    is_complete: bool = False


@dataclass
class IntakeSummary:
    """Post-call summary with structured intake fields."""
    summary: str
    extracted_data: Dict[str, Any] = field(default_factory=dict)
    succeeded: bool = True


def parse_completion_marker(raw: str) -> Tuple[str, bool]:
    """
    Strip the completion marker from model output.

    Returns:
        Tuple of (cleaned text, whether the marker was present).
    """
    raw = raw or ""
    is_complete = COMPLETION_MARKER in raw
    return raw.replace(COMPLETION_MARKER, "").strip(), is_complete


class ConversationEngine:
    """
    Drives the intake dialogue through the LLM.

    Every method has a static fallback, so a provider outage never ends a
    call or fails a turn.
    """

    def __init__(self, llm: Optional[GroqClient] = None):
        """
        Args:
            llm: LLM client exposing ``complete`` and ``complete_json``.
                 Without one, only the static fallbacks are used.
        """
        self._llm = llm

    @property
    def has_llm(self) -> bool:
        return self._llm is not None

    async def next_turn(self, history: List[Dict[str, str]], latest_utterance: str) -> TurnReply:
        """
        Generate the agent's reply to the latest caller utterance.

        Args:
            history: Conversation so far (role/content dicts). May already end
                     with the latest utterance.
            latest_utterance: What the caller just said.
        """
        messages = [{"role": "system", "content": SYSTEM_PROMPT}, *history]
        last = history[-1] if history else None
        if not last or last.get("role") != "user" or last.get("content") != latest_utterance:
            messages.append({"role": "user", "content": latest_utterance})

        try:
            raw = await self._require_llm().complete(messages, max_tokens=300, temperature=0.7)
        except Exception as e:
            logger.error(f"Error generating next turn: {e}")
            return TurnReply(response_text=FALLBACK_CONTINUATION, is_complete=False)

        text, is_complete = parse_completion_marker(raw)
        if not text:
            text = CLOSING_LINE if is_complete else EMPTY_RESPONSE_FOLLOW_UP
        return TurnReply(response_text=text, is_complete=is_complete)

    async def generate_greeting(self) -> str:
        """Generate the opening line of the call."""
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": GREETING_REQUEST},
        ]
        try:
            raw = await self._require_llm().complete(messages, max_tokens=150, temperature=0.7)
        except Exception as e:
            logger.error(f"Error generating greeting: {e}")
            return FALLBACK_GREETING

        # A greeting never ends the call
        text, _ = parse_completion_marker(raw)
        return text or FALLBACK_GREETING

    async def summarize(self, history: List[Dict[str, str]]) -> IntakeSummary:
        """
        Summarize the call and extract structured intake fields.

        Args:
            history: Full conversation history.
        """
        messages = [{"role": "system", "content": SUMMARY_PROMPT}, *history]
        try:
            parsed = await self._require_llm().complete_json(messages, max_tokens=500, temperature=0.3)
        except Exception as e:
            logger.error(f"Error summarizing intake call: {e}")
            return IntakeSummary(summary=FALLBACK_SUMMARY, extracted_data={}, succeeded=False)

        if not isinstance(parsed, dict):
            logger.warning(f"Intake summary was not a JSON object: {type(parsed).__name__}")
            return IntakeSummary(summary=FALLBACK_SUMMARY, extracted_data={}, succeeded=False)

        summary = parsed.get("summary") or "Call completed"
        return IntakeSummary(summary=str(summary), extracted_data=parsed, succeeded=True)

    def _require_llm(self) -> GroqClient:
        if self._llm is None:
            raise RuntimeError("No LLM configured")
        return self._llm
