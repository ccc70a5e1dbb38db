"""
Storage interface for Haven client and call records.

Updates are partial: fields not present in an update are left unchanged.
"""

import uuid
import copy
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Storage(ABC):
    """Persistence collaborator for client and call records."""

    @abstractmethod
    async def get_client(self, client_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def create_client(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update_client(self, client_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def get_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    async def create_call(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        ...

    @abstractmethod
    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        ...


class InMemoryStorage(Storage):
    """Dictionary-backed storage for local development and tests."""

    def __init__(self):
        self._clients: Dict[str, Dict[str, Any]] = {}
        self._calls: Dict[str, Dict[str, Any]] = {}

    async def get_client(self, client_id: str) -> Optional[Dict[str, Any]]:
        client = self._clients.get(client_id)
        return copy.deepcopy(client) if client else None

    async def create_client(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        client = {"status": "new", "created_at": utcnow_iso(), **fields}
        client.setdefault("id", str(uuid.uuid4()))
        self._clients[client["id"]] = client
        return copy.deepcopy(client)

    async def update_client(self, client_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        client = self._clients.get(client_id)
        if client is None:
            return None
        client.update(copy.deepcopy(fields))
        return copy.deepcopy(client)

    async def get_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        call = self._calls.get(call_id)
        return copy.deepcopy(call) if call else None

    async def create_call(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        call = {"status": "pending", "created_at": utcnow_iso(), **fields}
        call.setdefault("id", str(uuid.uuid4()))
        self._calls[call["id"]] = call
        return copy.deepcopy(call)

    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        call = self._calls.get(call_id)
        if call is None:
            return None
        call.update(copy.deepcopy(fields))
        return copy.deepcopy(call)
