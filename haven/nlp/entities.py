"""
Entity extraction for Haven.
Pulls intake-relevant entities out of call transcripts through the Pioneer
(Fastino GLiNER) inference API.
"""

import os
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

import requests
from dotenv import load_dotenv

from ..fallback import UpstreamError

logger = logging.getLogger(__name__)

load_dotenv()

ENTITY_CATEGORIES = (
    "housing_need",
    "location_preference",
    "health_condition",
    "employment_detail",
    "family_situation",
    "document_type",
    "urgency_indicator",
    "service_need",
)

MAX_TEXT_LENGTH = 8000


@dataclass
class PioneerConfig:
    """Configuration for the Pioneer inference API."""
    api_key: str
    base_url: str = "https://api.pioneer.ai"
    model_id: Optional[str] = None
    timeout: float = 15.0

    @classmethod
    def from_env(cls) -> Optional["PioneerConfig"]:
        api_key = os.getenv("FASTINO_API_KEY")
        if not api_key:
            return None
        return cls(
            api_key=api_key,
            base_url=os.getenv("PIONEER_API_URL", cls.base_url),
            model_id=os.getenv("PIONEER_MODEL_ID") or None,
            timeout=float(os.getenv("PIONEER_TIMEOUT_SECONDS", cls.timeout)),
        )


def normalize_entities(raw) -> Dict[str, List[str]]:
    """Keep only known categories with string values."""
    if not isinstance(raw, dict):
        return {}
    entities = {}
    for category in ENTITY_CATEGORIES:
        values = raw.get(category)
        if isinstance(values, list):
            cleaned = [str(v).strip() for v in values if isinstance(v, (str, int, float)) and str(v).strip()]
            if cleaned:
                entities[category] = cleaned
    return entities


def format_entity_summary(entities: Dict[str, List[str]]) -> str:
    """Render entities as ``category: a, b; category: c``."""
    return "; ".join(
        f"{category}: {', '.join(values)}"
        for category, values in entities.items()
        if values
    )


class EntityExtractor:
    """Base entity extractor. Returns no entities."""

    async def extract_entities(self, text: str) -> Dict[str, List[str]]:
        return {}


class PioneerEntityExtractor(EntityExtractor):
    """
    Entity extractor backed by the Pioneer API.

    A custom trained model is tried first when one is configured, then the
    base GLiNER model. Any failure yields an empty mapping.
    """

    def __init__(self, config: Optional[PioneerConfig] = None):
        """
        Args:
            config: Optional PioneerConfig. If not provided, uses environment variables.
        """
        self.config = config or PioneerConfig.from_env()

    @property
    def enabled(self) -> bool:
        return self.config is not None

    def _request(self, path: str, body: dict) -> dict:
        response = requests.post(
            f"{self.config.base_url}{path}",
            json=body,
            headers={
                "Content-Type": "application/json",
                "x-api-key": self.config.api_key,
            },
            timeout=self.config.timeout,
        )
        if not response.ok:
            raise UpstreamError(
                f"Pioneer API error ({response.status_code}): {response.text}",
                provider="pioneer",
            )
        return response.json()

    def _run_inference(self, text: str) -> dict:
        body = {
            "task": "extract_entities",
            "text": text[:MAX_TEXT_LENGTH],
            "schema": list(ENTITY_CATEGORIES),
        }

        if self.config.model_id:
            try:
                result = self._request("/inference", {"model_id": self.config.model_id, **body})
                logger.info(f"Custom model inference (extract_entities) with model {self.config.model_id}")
                return result
            except (UpstreamError, requests.exceptions.RequestException, ValueError) as e:
                logger.warning(f"Custom model inference failed, falling back to base: {e}")

        result = self._request("/gliner-2", body)
        logger.info("Base model inference (extract_entities) via /gliner-2")
        return result

    async def extract_entities(self, text: str) -> Dict[str, List[str]]:
        """
        Extract entities from text.

        Returns:
            Mapping of category to extracted strings; empty on any failure.
        """
        if not self.enabled or not text or not text.strip():
            return {}

        loop = asyncio.get_running_loop()
        try:
            data = await loop.run_in_executor(None, self._run_inference, text)
        except (UpstreamError, requests.exceptions.RequestException, ValueError) as e:
            logger.warning(f"Entity extraction failed: {e}")
            return {}

        result = data.get("result") if isinstance(data, dict) else None
        return normalize_entities((result or {}).get("entities") if isinstance(result, dict) else None)
