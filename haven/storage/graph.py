"""
Referral graph projection interface for Haven.
"""

import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class GraphProjection:
    """Receives call-completion nodes for the referral graph."""

    async def record_call_completion(self, call_id: str, client_id: str, data: Dict[str, Any]) -> None:
        raise NotImplementedError


class NullGraphProjection(GraphProjection):
    """Graph projection used when no graph database is configured."""

    async def record_call_completion(self, call_id: str, client_id: str, data: Dict[str, Any]) -> None:
        logger.debug(f"Graph projection disabled; skipping call {call_id} for client {client_id}")
