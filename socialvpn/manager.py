"""
Social Connection Manager

Drives the reconciliation loop that converges local friend state with
the social graph, and serves management requests.

Cycle (timer, login or presence triggered):
1. Aggregate friend uids from the social networks
2. Track new uids as Pending
3. For every new or still-pending uid: query fingerprints, attach them
   to the record, fetch unknown certificates with grant intent
4. Feed provider-supplied certificates to the trust gate
5. Publish the local fingerprint and certificate

Blocking backend calls run in worker threads; everything that touches
the friend store runs on the event loop.
"""

import asyncio
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional
import logging

from socialvpn.core.certificate import is_valid_key, is_valid_uid
from socialvpn.core.friend_store import FriendStore
from socialvpn.core.state import SocialState
from socialvpn.p2p.dht.exchange import DhtExchange
from socialvpn.p2p.discovery.presence import parse_announcement
from socialvpn.trust.gate import TrustGate

logger = logging.getLogger(__name__)


# Timer constants
START_DELAY = 30  # Seconds before the first cycle
INTERVAL = 300  # Seconds between cycles


class CycleState(str, Enum):
    """Phase of the reconciliation cycle."""
    IDLE = "idle"
    AGGREGATING = "aggregating"
    FETCHING = "fetching"
    PUBLISHING = "publishing"


class SocialConnectionManager:
    """
    Reconciliation loop and management request handler.

    Coordinates:
    - Friend uid aggregation
    - Certificate fetches for pending friends
    - Local certificate publication
    - Allow / block requests from the management surface
    """

    def __init__(
        self,
        store: FriendStore,
        aggregator,
        exchange: DhtExchange,
        gate: TrustGate,
        publish_certificate: Callable[[], Any],
        get_state: Callable[[bool], SocialState],
        default_backend: str = "static",
        start_delay: float = START_DELAY,
        interval: float = INTERVAL
    ):
        """
        Initialize connection manager.

        Args:
            store: Friend store
            aggregator: ProviderAggregator
            exchange: Certificate exchange
            gate: Trust gate
            publish_certificate: Publishes the local certificate
            get_state: Builds the state snapshot (True also writes it)
            default_backend: Backend used by login requests naming none
            start_delay: Seconds before the first timer cycle
            interval: Seconds between timer cycles
        """
        self.store = store
        self.aggregator = aggregator
        self.exchange = exchange
        self.gate = gate
        self.publish_certificate = publish_certificate
        self.get_state = get_state
        self.default_backend = default_backend
        self.start_delay = start_delay
        self.interval = interval

        self.state = CycleState.IDLE
        self.running = False
        self._timer_task: Optional[asyncio.Task] = None
        self._triggered: List[asyncio.Task] = []
        self._cycle_lock = asyncio.Lock()

        self.stats = {
            "cycles": 0,
            "cycle_errors": 0,
            "requests": 0,
            "presence_events": 0,
            "triggers_coalesced": 0
        }

    # ------------------------------------------------------------------
    # Timer
    # ------------------------------------------------------------------
    async def start(self):
        """Start the reconciliation timer."""
        if self.running:
            logger.warning("Connection manager already running")
            return

        self.running = True
        self._timer_task = asyncio.create_task(self._timer_loop())
        logger.info(
            f"Connection manager started (delay={self.start_delay}s, interval={self.interval}s)"
        )

    async def stop(self):
        """Stop the timer and triggered cycles. Outstanding fetches are not drained."""
        self.running = False
        tasks = [task for task in [self._timer_task] + self._triggered if task]
        if not tasks:
            return

        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timer_task = None
        self._triggered.clear()

        logger.info("Connection manager stopped")

    async def _timer_loop(self):
        """Background task running a cycle every interval."""
        try:
            await asyncio.sleep(self.start_delay)
        except asyncio.CancelledError:
            return

        while self.running:
            try:
                await self.run_cycle()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self.stats["cycle_errors"] += 1
                logger.error(f"Error in reconciliation cycle: {e}")

            try:
                await asyncio.sleep(self.interval)
            except asyncio.CancelledError:
                break

    def trigger(self) -> asyncio.Task:
        """
        Schedule an immediate cycle outside the timer.

        While a triggered cycle is queued or running, further triggers
        join it instead of queueing another one.
        """
        self._triggered = [task for task in self._triggered if not task.done()]
        if self._triggered:
            self.stats["triggers_coalesced"] += 1
            return self._triggered[-1]

        task = asyncio.ensure_future(self._triggered_cycle())
        self._triggered.append(task)
        return task

    async def _triggered_cycle(self):
        try:
            await self.run_cycle()
        except Exception as e:
            self.stats["cycle_errors"] += 1
            logger.error(f"Error in triggered reconciliation cycle: {e}")

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------
    async def run_cycle(self) -> Dict[str, int]:
        """
        Run one reconciliation cycle.

        Returns:
            Summary counts of the cycle
        """
        async with self._cycle_lock:
            try:
                self.state = CycleState.AGGREGATING
                uids = await asyncio.to_thread(self.aggregator.list_friend_identifiers)
                new_uids = [uid for uid in sorted(uids) if self.store.track_uid(uid)]
                targets = self.store.pending_uids()

                self.state = CycleState.FETCHING
                fetches = await self._update_uids(targets)

                if targets:
                    certificates = await asyncio.to_thread(
                        self.aggregator.list_certificates, targets
                    )
                    for cert_data in certificates:
                        await self.gate.add_certificate(cert_data, grant=True)

                self.state = CycleState.PUBLISHING
                await asyncio.to_thread(self.aggregator.store_fingerprint)
                self.publish_certificate()

                if new_uids:
                    self.get_state(True)
            finally:
                self.state = CycleState.IDLE
                self.stats["cycles"] += 1

        logger.info(
            f"Reconciliation cycle: {len(uids)} friends, {len(new_uids)} new, "
            f"{len(targets)} pending, {fetches} fetches"
        )
        return {
            "friends": len(uids),
            "new": len(new_uids),
            "pending": len(targets),
            "fetches": fetches
        }

    async def _update_uids(self, uids: Iterable[str]) -> int:
        """Attach provider fingerprints to uids and fetch unknown certificates."""
        fetches = 0
        for uid in uids:
            fingerprints = await asyncio.to_thread(self.aggregator.list_fingerprints, [uid])
            self.store.add_fingerprints(uid, fingerprints)
            for fingerprint in sorted(fingerprints):
                if self.exchange.fetch(fingerprint, grant=True) is not None:
                    fetches += 1
        return fetches

    # ------------------------------------------------------------------
    # Presence
    # ------------------------------------------------------------------
    def handle_presence(self, key: str) -> Optional[asyncio.Task]:
        """
        React to a peer announcing its certificate.

        An announcement from an unknown uid refreshes the friend list;
        the certificate is fetched either way and only admitted if a
        provider vouches for it.

        Returns:
            The fetch task, or None if nothing was fetched
        """
        announcement = parse_announcement(key)
        if announcement is None:
            return None

        self.stats["presence_events"] += 1
        if announcement.uid is None or not self.store.is_tracked(announcement.uid):
            self.trigger()
        return self.exchange.fetch(announcement.fingerprint, grant=True)

    # ------------------------------------------------------------------
    # Management
    # ------------------------------------------------------------------
    async def add_friends(self, uids: Iterable[str]) -> int:
        """Track uids by hand and fetch their certificates."""
        valid = [uid for uid in uids if is_valid_uid(uid)]
        for uid in valid:
            self.store.track_uid(uid)
        fetches = await self._update_uids(valid)
        if valid:
            self.get_state(True)
        return fetches

    def add_fingerprints(self, fingerprints: Iterable[str]) -> int:
        """Fetch certificates by fingerprint with grant intent."""
        fetches = 0
        for fingerprint in fingerprints:
            if self.exchange.fetch(fingerprint, grant=True) is not None:
                fetches += 1
        return fetches

    def allow_friends(self, keys: Iterable[str]) -> int:
        """Allow friends by fingerprint (or every device of a uid)."""
        changed = 0
        for key in keys:
            if is_valid_key(key):
                changed += int(self.gate.allow(key))
            else:
                changed += self.gate.allow_user(key)
        return changed

    def block_friends(self, keys: Iterable[str]) -> int:
        """Block friends by fingerprint (or every device of a uid)."""
        changed = 0
        for key in keys:
            if is_valid_key(key):
                changed += int(self.gate.block(key))
            else:
                changed += self.gate.block_user(key)
        return changed

    async def login(self, backend: str, username: str, password: str) -> bool:
        """Sign in to a backend; on success start a cycle."""
        online = await asyncio.to_thread(self.aggregator.login, backend, username, password)
        self.get_state(True)
        if online:
            self.trigger()
        return online

    async def process_request(self, request: Dict[str, Any]) -> str:
        """
        Handle one management request.

        Args:
            request: Parsed request ("m" plus "uids", "fprs", "user",
                "pass" or "backend" as the method needs)

        Returns:
            The serialized state snapshot
        """
        self.stats["requests"] += 1
        method = request.get("m")

        if method == "add":
            await self.add_friends(request.get("uids", []))
        elif method == "addfpr":
            self.add_fingerprints(request.get("fprs", []))
        elif method == "allow":
            self.allow_friends(request.get("fprs", []))
        elif method == "block":
            self.block_friends(request.get("fprs", []))
        elif method == "login":
            await self.login(
                request.get("backend") or self.default_backend,
                request.get("user", ""),
                request.get("pass", "")
            )
        elif method:
            logger.debug(f"Ignoring unknown management method: {method}")

        return self.get_state(False).to_json()

    def get_stats(self) -> Dict:
        return {
            **self.stats,
            "state": self.state.value,
            "running": self.running
        }
