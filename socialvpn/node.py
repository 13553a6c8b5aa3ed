"""
Social Node

Wires the trust engine together around the local certificate:

    ProviderAggregator -> SocialConnectionManager -> DhtExchange
                                  |                      |
                                  v                      v
                              TrustGate  <---------------+
                                  |
                      FriendStore + ConnectivityManager -> state snapshot

At startup friend certificates found in the certificate directory are
re-admitted; friends recorded as Blocked in the last snapshot come back
Blocked.
"""

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional
import logging

from socialvpn.backends import ProviderAggregator, load_backends
from socialvpn.config import SocialConfig
from socialvpn.core.certificate import CERT_FILENAME, CERT_SUFFIX, IdentityCertificate
from socialvpn.core.friend_store import FriendStore
from socialvpn.core.identity import Identity
from socialvpn.core.state import SocialState, read_state, write_state
from socialvpn.exceptions import CertificateError
from socialvpn.manager import SocialConnectionManager
from socialvpn.p2p.connectivity import ConnectivityManager
from socialvpn.p2p.dht.exchange import DhtExchange
from socialvpn.p2p.dht.store import DistributedStore
from socialvpn.trust.gate import TrustGate

logger = logging.getLogger(__name__)


def read_local_certificate(cert_dir: Path) -> IdentityCertificate:
    """
    Load <cert_dir>/local.cert.

    Raises:
        CertificateError: if missing or malformed
    """
    cert_path = Path(cert_dir) / CERT_FILENAME
    try:
        with open(cert_path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise CertificateError(f"Cannot read local certificate {cert_path}: {e}") from e
    return IdentityCertificate.from_bytes(data)


class SocialNode:
    """
    The SocialVPN trust engine for one local identity.

    Features:
    - Local identity derived from local.cert
    - Backends loaded from configuration
    - Certificate publication and retrieval through the DHT
    - Reconciliation timer and management requests
    - State snapshot persistence
    """

    def __init__(
        self,
        config: SocialConfig,
        store: DistributedStore,
        connectivity: ConnectivityManager
    ):
        """
        Initialize social node.

        Args:
            config: Engine configuration
            store: Distributed store certificates are exchanged through
            connectivity: Tunnel / address-mapping layer

        Raises:
            CertificateError: if the local certificate cannot be loaded
        """
        self.config = config
        self.store = store
        self.connectivity = connectivity

        self.local_cert = read_local_certificate(config.cert_dir)
        self.local_user = Identity.from_certificate(self.local_cert)

        self.friends = FriendStore(self.local_user)
        self.local_user.ip = connectivity.map_alias(self.local_user.alias, self.local_user.address)

        self.aggregator = ProviderAggregator(self.local_user)
        load_backends(config, self.local_user, self.aggregator)

        self.gate = TrustGate(
            store=self.friends,
            validator=self.aggregator,
            connectivity=connectivity,
            cert_dir=config.cert_dir,
            on_change=self._write_state
        )
        self.exchange = DhtExchange(
            store=store,
            local_fingerprint=self.local_user.fingerprint,
            is_known=self.friends.is_known,
            on_certificate=self.gate.add_certificate,
            ttl=config.dht_ttl,
            on_published=self._on_published
        )
        self.manager = SocialConnectionManager(
            store=self.friends,
            aggregator=self.aggregator,
            exchange=self.exchange,
            gate=self.gate,
            publish_certificate=self.publish_certificate,
            get_state=self.get_state,
            default_backend=config.default_backend,
            start_delay=config.start_delay,
            interval=config.interval
        )

        logger.info(
            f"Initialized social node {self.local_user.short()} "
            f"as {self.local_user.alias} ({self.local_user.ip})"
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self):
        """Reload stored friends and start the reconciliation timer."""
        await self.load_certificates()
        await self.manager.start()

    async def stop(self):
        await self.manager.stop()
        self.get_state(True)
        logger.info("Social node stopped")

    async def load_certificates(self) -> int:
        """
        Re-admit friend certificates from the certificate directory.

        Each certificate is also trusted manually so validation does not
        depend on a provider being reachable. Friends recorded as Blocked
        in the previous snapshot are re-admitted Blocked, without any
        connectivity.

        Returns:
            Number of friends admitted
        """
        previous = read_state(self.config.state_path)
        blocked = set(previous.blocked_fingerprints()) if previous is not None else set()
        cert_dir = Path(self.config.cert_dir)

        loaded = 0
        for cert_path in sorted(cert_dir.glob(f"*{CERT_SUFFIX}")):
            if cert_path.name == CERT_FILENAME:
                continue
            try:
                with open(cert_path, "rb") as f:
                    cert_data = f.read()
                cert = IdentityCertificate.from_bytes(cert_data)
            except (OSError, CertificateError) as e:
                logger.warning(f"Skipping certificate {cert_path.name}: {e}")
                continue

            self.aggregator.add_manual_friend(cert.uid, cert.fingerprint)
            grant = cert.fingerprint not in blocked
            if await self.gate.add_certificate(cert_data, grant=grant) is not None:
                loaded += 1

        logger.info(f"Loaded {loaded} friend certificates from {cert_dir}")
        return loaded

    # ------------------------------------------------------------------
    # Certificate publication
    # ------------------------------------------------------------------
    def publish_certificate(self) -> asyncio.Task:
        """Publish the local certificate under its fingerprint."""
        return self.exchange.publish(self.local_user.fingerprint, self.local_cert.data)

    def _on_published(self):
        logger.info(f"Published local certificate {self.local_user.fingerprint[:16]}...")

    @property
    def cert_published(self) -> bool:
        return self.exchange.published

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------
    def get_state(self, write_to_file: bool = False) -> SocialState:
        """
        Build the state snapshot.

        Args:
            write_to_file: Also persist it to state_path

        Returns:
            SocialState
        """
        state = SocialState(
            local_user=self.local_user.to_dict(),
            certificate=self.local_cert.to_base64(),
            status=self.aggregator.status.value,
            friends=self.friends.export_friends()
        )
        if write_to_file:
            write_state(state, self.config.state_path)
        return state

    def _write_state(self):
        self.get_state(True)

    # ------------------------------------------------------------------
    # Inbound events
    # ------------------------------------------------------------------
    def handle_presence(self, key: str) -> Optional[asyncio.Task]:
        return self.manager.handle_presence(key)

    async def process_request(self, request: Dict[str, Any]) -> str:
        return await self.manager.process_request(request)

    def get_stats(self) -> Dict:
        return {
            "friends": self.friends.get_stats(),
            "aggregator": dict(self.aggregator.stats),
            "exchange": self.exchange.get_stats(),
            "trust": self.gate.get_stats(),
            "manager": self.manager.get_stats()
        }
