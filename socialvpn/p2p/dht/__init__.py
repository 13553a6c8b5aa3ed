"""
Distributed store and certificate exchange.

Certificates are published and retrieved by fingerprint through a
key-value store with TTL.
"""

from .store import DistributedStore, InMemoryDht, DhtEntry, DHT_TTL
from .exchange import DhtExchange, PendingFetch

__all__ = [
    "DistributedStore",
    "InMemoryDht",
    "DhtEntry",
    "DHT_TTL",
    "DhtExchange",
    "PendingFetch",
]
