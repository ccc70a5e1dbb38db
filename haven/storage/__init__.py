"""
Storage module for Haven.
Provides client/call persistence and the referral graph projection.
"""

from .base import Storage, InMemoryStorage
from .redis_store import RedisStorage
from .graph import GraphProjection, NullGraphProjection

__all__ = ["Storage", "InMemoryStorage", "RedisStorage", "GraphProjection", "NullGraphProjection"]
