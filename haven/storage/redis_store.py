"""
Redis-backed storage for Haven.
Keeps client and call records as Redis hashes with JSON-encoded values.
"""

import os
import json
import uuid
import logging
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from .base import Storage, utcnow_iso

logger = logging.getLogger(__name__)

load_dotenv()


class RedisStorage(Storage):
    """
    Storage collaborator on top of Redis hashes.

    ``HSET`` with a mapping only touches the given fields, which gives
    partial-update semantics for free.
    """

    def __init__(
        self,
        host: Optional[str] = None,
        port: Optional[int] = None,
        db: Optional[int] = None,
        client=None,
    ):
        """
        Initialize Redis storage.

        Args:
            host: Redis host. Defaults to REDIS_HOST env var or 'localhost'.
            port: Redis port. Defaults to REDIS_PORT env var or 6379.
            db: Redis database number. Defaults to REDIS_DB env var or 0.
            client: Optional pre-built ``redis.asyncio.Redis`` client.
        """
        self.host = host or os.getenv("REDIS_HOST", "localhost")
        self.port = port or int(os.getenv("REDIS_PORT", "6379"))
        self.db = db if db is not None else int(os.getenv("REDIS_DB", "0"))
        self._client = client

    def _get_client(self):
        """Lazy initialization of Redis client."""
        if self._client is None:
            import redis.asyncio as redis
            self._client = redis.Redis(
                host=self.host,
                port=self.port,
                db=self.db,
                decode_responses=True,
                socket_connect_timeout=2,
            )
            logger.info(f"Using Redis storage at {self.host}:{self.port}/{self.db}")
        return self._client

    async def close(self) -> None:
        """Close the Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")

    # Key helpers

    def _client_key(self, client_id: str) -> str:
        return f"haven:client:{client_id}"

    def _call_key(self, call_id: str) -> str:
        return f"haven:call:{call_id}"

    # Encoding

    @staticmethod
    def _encode(fields: Dict[str, Any]) -> Dict[str, str]:
        return {key: json.dumps(value) for key, value in fields.items()}

    @staticmethod
    def _decode(data: Dict[str, str]) -> Dict[str, Any]:
        decoded = {}
        for key, value in data.items():
            try:
                decoded[key] = json.loads(value)
            except (TypeError, json.JSONDecodeError):
                decoded[key] = value
        return decoded

    async def _get(self, key: str) -> Optional[Dict[str, Any]]:
        data = await self._get_client().hgetall(key)
        return self._decode(data) if data else None

    async def _create(self, key_fn, defaults: Dict[str, Any], fields: Dict[str, Any]) -> Dict[str, Any]:
        record = {**defaults, **fields}
        record.setdefault("id", str(uuid.uuid4()))
        await self._get_client().hset(key_fn(record["id"]), mapping=self._encode(record))
        return record

    async def _update(self, key: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        client = self._get_client()
        if not await client.exists(key):
            return None
        if fields:
            await client.hset(key, mapping=self._encode(fields))
        return await self._get(key)

    # Clients

    async def get_client(self, client_id: str) -> Optional[Dict[str, Any]]:
        return await self._get(self._client_key(client_id))

    async def create_client(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._create(self._client_key, {"status": "new", "created_at": utcnow_iso()}, fields)

    async def update_client(self, client_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._update(self._client_key(client_id), fields)

    # Calls

    async def get_call(self, call_id: str) -> Optional[Dict[str, Any]]:
        return await self._get(self._call_key(call_id))

    async def create_call(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        return await self._create(self._call_key, {"status": "pending", "created_at": utcnow_iso()}, fields)

    async def update_call(self, call_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return await self._update(self._call_key(call_id), fields)
