"""
Certificate exchange over the distributed store.

Publishes the local certificate under its fingerprint and retrieves
friends' certificates by fingerprint. Every retrieved value is
re-hashed before use: a value whose fingerprint differs from the key it
was stored under is discarded.

Key Features:
- Fire-and-forget publish/fetch as asyncio tasks
- Coalescing of concurrent fetches for the same key
- Short-circuit for local, known and malformed keys
- Grant/deny intent carried from request to certificate sink
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, List, Optional
import logging

from socialvpn.core.certificate import compute_fingerprint, is_valid_key
from socialvpn.p2p.dht.store import DHT_TTL, DistributedStore

logger = logging.getLogger(__name__)


CertificateSink = Callable[[bytes, bool], Awaitable]


@dataclass
class PendingFetch:
    """An in-flight fetch and the intent it was issued with."""

    fingerprint: str
    grant: bool
    task: Optional[asyncio.Task] = None
    started_at: float = field(default_factory=time.time)


class DhtExchange:
    """
    Publishes and retrieves identity certificates.

    All methods must be called from the event loop that owns the
    engine; completions run on that loop.
    """

    def __init__(
        self,
        store: DistributedStore,
        local_fingerprint: str,
        is_known: Callable[[str], bool],
        on_certificate: CertificateSink,
        ttl: int = DHT_TTL,
        on_published: Optional[Callable[[], None]] = None
    ):
        """
        Initialize certificate exchange.

        Args:
            store: Distributed store
            local_fingerprint: Fingerprint of the local certificate
            is_known: Returns True for fingerprints already validated
            on_certificate: Coroutine receiving (cert_bytes, grant) for
                every value that passes the integrity check
            ttl: Lifetime of published values in seconds
            on_published: Called after each successful publish
        """
        self.store = store
        self.local_fingerprint = local_fingerprint
        self.is_known = is_known
        self.on_certificate = on_certificate
        self.ttl = ttl
        self.on_published = on_published

        self.published = False
        self._pending: Dict[str, PendingFetch] = {}

        self.stats = {
            "fetches_issued": 0,
            "integrity_failures": 0,
            "certificates_accepted": 0,
            "publishes_ok": 0,
            "publishes_failed": 0,
            "coalesced": 0,
            "short_circuited": 0,
            "sink_errors": 0
        }

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------
    def publish(self, fingerprint: str, cert_data: bytes) -> asyncio.Task:
        """
        Publish a certificate under its fingerprint.

        Failures are logged; the next reconciliation cycle republishes.

        Returns:
            Task resolving to True on success
        """
        return asyncio.ensure_future(self._publish(fingerprint, bytes(cert_data)))

    async def _publish(self, fingerprint: str, cert_data: bytes) -> bool:
        try:
            stored = await self.store.put(fingerprint, cert_data, self.ttl)
        except Exception as e:
            self.stats["publishes_failed"] += 1
            logger.error(f"DHT publish error for {fingerprint[:16]}...: {e}")
            return False

        if not stored:
            self.stats["publishes_failed"] += 1
            logger.warning(f"DHT publish rejected for {fingerprint[:16]}...")
            return False

        self.published = True
        self.stats["publishes_ok"] += 1
        logger.debug(f"Published certificate {fingerprint[:16]}...")
        if self.on_published:
            self.on_published()
        return True

    # ------------------------------------------------------------------
    # Fetch
    # ------------------------------------------------------------------
    def is_pending(self, fingerprint: str) -> bool:
        return fingerprint in self._pending

    def pending_keys(self) -> List[str]:
        return list(self._pending.keys())

    def fetch(self, fingerprint: str, grant: bool = True) -> Optional[asyncio.Task]:
        """
        Retrieve a friend's certificate by fingerprint.

        No lookup is issued for the local fingerprint, an already
        validated fingerprint, or a key too short to be a fingerprint.
        A fetch for a key already in flight joins the existing one and
        keeps its original intent.

        Args:
            fingerprint: Certificate fingerprint (DHT key)
            grant: Allow the friend once the certificate validates

        Returns:
            The in-flight task, or None when short-circuited
        """
        if (
            not is_valid_key(fingerprint)
            or fingerprint == self.local_fingerprint
            or self.is_known(fingerprint)
        ):
            self.stats["short_circuited"] += 1
            return None

        pending = self._pending.get(fingerprint)
        if pending is not None:
            self.stats["coalesced"] += 1
            logger.debug(f"Fetch already pending for {fingerprint[:16]}...")
            return pending.task

        pending = PendingFetch(fingerprint=fingerprint, grant=grant)
        self._pending[fingerprint] = pending
        self.stats["fetches_issued"] += 1
        pending.task = asyncio.ensure_future(self._fetch(pending))
        return pending.task

    async def _fetch(self, pending: PendingFetch) -> bool:
        key = pending.fingerprint
        try:
            try:
                entries = await self.store.get(key)
            except Exception as e:
                logger.error(f"DHT fetch error for {key[:16]}...: {e}")
                return False

            for entry in entries:
                computed = compute_fingerprint(entry.value)
                if computed != key:
                    self.stats["integrity_failures"] += 1
                    logger.warning(
                        f"Integrity failure: requested {key[:16]}... "
                        f"got {computed[:16]}..."
                    )
                    continue

                self.stats["certificates_accepted"] += 1
                try:
                    await self.on_certificate(entry.value, pending.grant)
                except Exception as e:
                    self.stats["sink_errors"] += 1
                    logger.error(f"Certificate handler failed for {key[:16]}...: {e}")
                    return False
                return True

            logger.debug(f"No certificate found for {key[:16]}...")
            return False
        finally:
            self._pending.pop(key, None)

    def get_stats(self) -> Dict:
        return {
            **self.stats,
            "pending": len(self._pending),
            "published": self.published
        }
