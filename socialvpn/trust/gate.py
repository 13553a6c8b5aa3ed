"""
Trust Gate

Decides which certificates become friends and what network access each
friend gets.

Admission pipeline (add_certificate):
1. Parse the certificate (malformed -> dropped)
2. Skip the local certificate and already-validated ones
3. Validate against the identity providers (unvouched -> dropped)
4. Allocate an alias
5. Grant: register the address, map the alias, acknowledge, mark Allowed
   (a connectivity failure drops the friend again so it is retried)
   Deny: mark Blocked, establish no connectivity
6. Persist the certificate as <alias>.cert

Access lifecycle: Pending -> Allowed <-> Blocked
"""

import asyncio
from pathlib import Path
from typing import Callable, Dict, Optional
import logging

from socialvpn.core.certificate import CERT_SUFFIX, IdentityCertificate
from socialvpn.core.friend_store import FriendStore
from socialvpn.core.identity import AccessState, Identity
from socialvpn.exceptions import CertificateError

logger = logging.getLogger(__name__)


class TrustGate:
    """
    Admits validated certificates and toggles friend access.

    The validator is an IdentityProvider (normally the aggregator); its
    blocking validate_certificate call runs in a worker thread.
    """

    def __init__(
        self,
        store: FriendStore,
        validator,
        connectivity,
        cert_dir: Path,
        on_change: Optional[Callable[[], None]] = None
    ):
        """
        Initialize trust gate.

        Args:
            store: Friend store
            validator: Object with validate_certificate(identity, cert_data)
            connectivity: ConnectivityManager
            cert_dir: Directory friend certificates are persisted to
            on_change: Called after every state change (writes the snapshot)
        """
        self.store = store
        self.validator = validator
        self.connectivity = connectivity
        self.cert_dir = Path(cert_dir)
        self.on_change = on_change

        self.stats = {
            "certificates_seen": 0,
            "malformed": 0,
            "validation_failures": 0,
            "friends_added": 0,
            "allowed": 0,
            "blocked": 0,
            "grant_failures": 0
        }

    def _changed(self):
        if self.on_change:
            self.on_change()

    # ------------------------------------------------------------------
    # Admission
    # ------------------------------------------------------------------
    async def add_certificate(self, cert_data: bytes, grant: bool = True) -> Optional[Identity]:
        """
        Admit a friend certificate.

        Args:
            cert_data: DER certificate bytes
            grant: Allow the friend (True) or add it Blocked (False)

        Returns:
            Copy of the new friend identity, or None if nothing was added
        """
        self.stats["certificates_seen"] += 1
        try:
            cert = IdentityCertificate.from_bytes(cert_data)
        except CertificateError as e:
            self.stats["malformed"] += 1
            logger.warning(f"Dropping malformed certificate: {e}")
            return None

        fingerprint = cert.fingerprint
        if self.store.is_local(fingerprint):
            logger.debug(f"Ignoring local certificate {fingerprint[:16]}...")
            return None
        if self.store.is_known(fingerprint):
            logger.debug(f"Certificate already known {fingerprint[:16]}...")
            return None

        identity = Identity.from_certificate(cert)
        validated = await asyncio.to_thread(
            self.validator.validate_certificate, identity, cert.data
        )
        if not validated:
            self.stats["validation_failures"] += 1
            logger.warning(f"Certificate not vouched for by any provider: {identity.short()}")
            return None

        # Another completion may have admitted it while validation ran
        if self.store.is_known(fingerprint):
            return None

        stored = self.store.add_identity(identity)
        if grant:
            if not self._grant(stored):
                # Left unknown so a later fetch or cycle retries it
                self.store.remove_identity(fingerprint)
                return None
        else:
            self.store.set_access(fingerprint, AccessState.BLOCKED)
            self.stats["blocked"] += 1
            logger.info(f"Added friend {stored.short()} blocked")

        self.stats["friends_added"] += 1
        self._save_certificate(stored.alias, cert.data)
        self._changed()
        return self.store.get(fingerprint)

    def _save_certificate(self, alias: str, cert_data: bytes) -> bool:
        path = self.cert_dir / f"{alias}{CERT_SUFFIX}"
        try:
            self.cert_dir.mkdir(parents=True, exist_ok=True)
            with open(path, "wb") as f:
                f.write(cert_data)
            return True
        except OSError as e:
            logger.error(f"Failed to save certificate {path}: {e}")
            return False

    # ------------------------------------------------------------------
    # Access control
    # ------------------------------------------------------------------
    def _grant(self, identity: Identity) -> bool:
        try:
            self.connectivity.register_address(identity.address)
            ip = self.connectivity.map_alias(identity.alias, identity.address)
            self.connectivity.acknowledge(identity.address)
        except Exception as e:
            self.stats["grant_failures"] += 1
            logger.error(f"Cannot connect {identity.short()}: {e}")
            self.connectivity.unregister_address(identity.address)
            self.connectivity.unmap_alias(identity.alias)
            return False

        self.store.set_access(identity.fingerprint, AccessState.ALLOWED, ip)
        self.stats["allowed"] += 1
        logger.info(f"Allowed {identity.short()} as {identity.alias} ({ip})")
        return True

    def _revoke(self, identity: Identity):
        if identity.access == AccessState.ALLOWED:
            self.connectivity.unregister_address(identity.address)
            self.connectivity.unmap_alias(identity.alias)
        self.store.set_access(identity.fingerprint, AccessState.BLOCKED)
        self.stats["blocked"] += 1
        logger.info(f"Blocked {identity.short()}")

    def allow(self, fingerprint: str) -> bool:
        """
        Allow a friend by fingerprint.

        Returns:
            True if the access state changed
        """
        identity = self.store.get(fingerprint)
        if identity is None:
            logger.warning(f"Allow for unknown fingerprint {fingerprint[:16]}...")
            return False
        if identity.access == AccessState.ALLOWED:
            return False

        if not self._grant(identity):
            return False
        self._changed()
        return True

    def block(self, fingerprint: str) -> bool:
        """
        Block a friend by fingerprint.

        Returns:
            True if the access state changed
        """
        identity = self.store.get(fingerprint)
        if identity is None:
            logger.warning(f"Block for unknown fingerprint {fingerprint[:16]}...")
            return False
        if identity.access == AccessState.BLOCKED:
            return False

        self._revoke(identity)
        self._changed()
        return True

    def allow_user(self, uid: str) -> int:
        """Allow every identity of uid. Returns the number changed."""
        changed = 0
        for identity in self.store.identities_for_uid(uid):
            if identity.access != AccessState.ALLOWED and self._grant(identity):
                changed += 1
        if changed:
            self._changed()
        return changed

    def block_user(self, uid: str) -> int:
        """Block every identity of uid. Returns the number changed."""
        changed = 0
        for identity in self.store.identities_for_uid(uid):
            if identity.access != AccessState.BLOCKED:
                self._revoke(identity)
                changed += 1
        if changed:
            self._changed()
        return changed

    def get_stats(self) -> Dict:
        return dict(self.stats)
