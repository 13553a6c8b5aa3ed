"""
Distributed Store

Key-value capability the certificate exchange runs on, plus an
in-process implementation for single-host runs and tests.

Key Features:
- Multiple values per key (a key may be written by several holders)
- Idempotent overwrite of an identical value (TTL refreshed)
- TTL expiry on read
"""

import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Dict, List
import logging

logger = logging.getLogger(__name__)


DHT_TTL = 3600  # Seconds a published certificate stays in the store


@dataclass
class DhtEntry:
    """One value stored under a key."""

    key: str
    value: bytes
    ttl: int = DHT_TTL
    stored_at: float = field(default_factory=time.time)

    @property
    def expires_at(self) -> float:
        return self.stored_at + self.ttl

    def is_expired(self, now: float = None) -> bool:
        return (now or time.time()) >= self.expires_at


class DistributedStore(ABC):
    """Asynchronous key-value store with TTL."""

    @abstractmethod
    async def put(self, key: str, value: bytes, ttl: int = DHT_TTL) -> bool:
        """
        Store value under key.

        Returns:
            True if the store accepted the value
        """
        pass

    @abstractmethod
    async def get(self, key: str) -> List[DhtEntry]:
        """
        Retrieve every live value stored under key.

        Returns:
            List of entries (empty if none)
        """
        pass


class InMemoryDht(DistributedStore):
    """
    Process-local distributed store.

    Shared between several engines it behaves like a single-hop DHT.
    """

    def __init__(self):
        self.storage: Dict[str, List[DhtEntry]] = {}
        self.stats = {
            "puts": 0,
            "gets": 0,
            "hits": 0,
            "expired": 0
        }

    async def put(self, key: str, value: bytes, ttl: int = DHT_TTL) -> bool:
        value = bytes(value)
        entries = self.storage.setdefault(key, [])
        self.stats["puts"] += 1

        for entry in entries:
            if entry.value == value:
                entry.ttl = ttl
                entry.stored_at = time.time()
                logger.debug(f"Refreshed key: {key[:16]}... ({len(value)} bytes)")
                return True

        entries.append(DhtEntry(key=key, value=value, ttl=ttl))
        logger.debug(f"Stored key: {key[:16]}... ({len(value)} bytes)")
        return True

    async def get(self, key: str) -> List[DhtEntry]:
        self.stats["gets"] += 1
        self._expire(key)
        entries = list(self.storage.get(key, []))
        if entries:
            self.stats["hits"] += 1
        return entries

    def _expire(self, key: str):
        now = time.time()
        entries = self.storage.get(key)
        if not entries:
            return
        live = [entry for entry in entries if not entry.is_expired(now)]
        self.stats["expired"] += len(entries) - len(live)
        if live:
            self.storage[key] = live
        else:
            del self.storage[key]

    def get_stats(self) -> Dict:
        """Get store statistics."""
        return {
            **self.stats,
            "keys": len(self.storage),
            "values": sum(len(entries) for entries in self.storage.values())
        }
