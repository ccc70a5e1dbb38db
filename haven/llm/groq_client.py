"""
Groq API client for Haven.
Provides chat completions for the intake conversation, summaries and
emotion classification.
"""

import os
import json
import asyncio
import logging
from dataclasses import dataclass
from typing import Optional, Dict, Any, List
from dotenv import load_dotenv

from ..fallback import UpstreamError

logger = logging.getLogger(__name__)

# Load environment variables
load_dotenv()


@dataclass
class GroqConfig:
    """Configuration for Groq API client."""
    api_key: str
    model: str = "llama-3.3-70b-versatile"
    temperature: float = 0.7
    max_tokens: int = 300
    timeout: float = 15.0

    @classmethod
    def from_env(cls) -> Optional["GroqConfig"]:
        """Build a config from the environment, or None if no key is set."""
        api_key = os.getenv("GROQ_API_KEY")
        if not api_key:
            return None
        return cls(
            api_key=api_key,
            model=os.getenv("GROQ_MODEL", cls.model),
            timeout=float(os.getenv("LLM_TIMEOUT_SECONDS", cls.timeout)),
        )


class GroqClient:
    """
    Client for the Groq chat completions API.

    The Groq SDK is synchronous; ``complete`` runs it in the default executor
    so a slow completion never blocks other calls.
    """

    def __init__(self, config: Optional[GroqConfig] = None):
        """
        Initialize the Groq client.

        Args:
            config: Optional GroqConfig. If not provided, uses environment variables.
        """
        if config is None:
            config = GroqConfig.from_env()
            if config is None:
                raise ValueError("GROQ_API_KEY environment variable is required")

        self.config = config
        self._client = None

    def _get_client(self):
        """Lazy initialization of Groq client."""
        if self._client is None:
            from groq import Groq
            self._client = Groq(api_key=self.config.api_key, timeout=self.config.timeout)
        return self._client

    def chat(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Send messages to the model and return the reply text.

        Args:
            messages: Chat messages (role/content dicts).
            max_tokens: Override for the configured max tokens.
            temperature: Override for the configured temperature.
            json_mode: Ask the model for a JSON object response.

        Returns:
            The assistant's response text (may be empty).
        """
        client = self._get_client()

        kwargs: Dict[str, Any] = {
            "model": self.config.model,
            "messages": messages,
            "temperature": self.config.temperature if temperature is None else temperature,
            "max_tokens": max_tokens or self.config.max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = client.chat.completions.create(**kwargs)

        if not response.choices:
            return ""
        return response.choices[0].message.content or ""

    async def complete(
        self,
        messages: List[Dict[str, str]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        json_mode: bool = False,
    ) -> str:
        """
        Async wrapper around ``chat`` bounded by the configured timeout.

        Raises:
            UpstreamError: If the request fails or times out.
        """
        loop = asyncio.get_running_loop()
        try:
            return await asyncio.wait_for(
                loop.run_in_executor(
                    None,
                    lambda: self.chat(messages, max_tokens, temperature, json_mode)
                ),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError:
            raise UpstreamError(f"Groq request timed out after {self.config.timeout}s", provider="groq")
        except UpstreamError:
            raise
        except Exception as e:
            raise UpstreamError(f"Groq request failed: {e}", provider="groq") from e

    async def complete_json(self, messages: List[Dict[str, str]], **kwargs) -> Any:
        """
        Request a JSON object response and parse it.

        Raises:
            UpstreamError: If the request fails or the payload is not JSON.
        """
        raw = await self.complete(messages, json_mode=True, **kwargs)
        return parse_json_payload(raw)


def parse_json_payload(raw: str) -> Any:
    """
    Parse a JSON object out of model output.

    Handles cases where the model wraps the object in extra text.

    Raises:
        UpstreamError: If no JSON object can be parsed.
    """
    json_str = (raw or "").strip()

    start_idx = json_str.find("{")
    end_idx = json_str.rfind("}") + 1
    if start_idx != -1 and end_idx > start_idx:
        json_str = json_str[start_idx:end_idx]

    try:
        return json.loads(json_str)
    except json.JSONDecodeError as e:
        logger.warning(f"Failed to parse JSON response: {e}")
        raise UpstreamError(f"Malformed JSON from model: {e}", provider="groq") from e
