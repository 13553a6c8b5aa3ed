"""
Provider Aggregator

Merges friend identifiers, fingerprints and certificates from every
registered backend plus a manually curated local list.

Features:
- Backend registry by name (identity-provider and/or social-network role)
- Set-semantics deduplication across overlapping backends
- Filtering of short identifiers and fingerprints
- Per-backend fault isolation (a failing backend contributes nothing)
- Login status machine: offline -> connecting -> online | failed | error
"""

import base64
import binascii
import threading
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Set, Union
import logging

from socialvpn.backends.base import IdentityProvider, SocialNetwork
from socialvpn.core.certificate import is_valid_key, is_valid_uid
from socialvpn.core.identity import Identity

logger = logging.getLogger(__name__)


Backend = Union[IdentityProvider, SocialNetwork]


class ProviderStatus(str, Enum):
    """Aggregate login status."""
    OFFLINE = "offline"
    CONNECTING = "connecting"
    ONLINE = "online"
    FAILED = "failed"
    ERROR = "error"


class ProviderAggregator(IdentityProvider, SocialNetwork):
    """
    Front for all identity providers and social networks.

    Backends are untrusted: anything they return is filtered, and any
    exception they raise is logged and treated as an empty answer.
    """

    def __init__(self, local_user: Identity):
        """
        Initialize aggregator.

        Args:
            local_user: The local identity
        """
        self.local_user = local_user

        # name -> backend, per role
        self._providers: Dict[str, IdentityProvider] = {}
        self._networks: Dict[str, SocialNetwork] = {}

        # Manually added friends (uid -> fingerprints) and certificates
        self._manual_friends: Dict[str, List[str]] = {}
        self._manual_certificates: List[bytes] = []

        self._status = ProviderStatus.OFFLINE
        self._status_lock = threading.Lock()

        self.stats = {
            "backend_errors": 0,
            "rejected_uids": 0,
            "rejected_fingerprints": 0,
            "rejected_certificates": 0,
            "logins": 0
        }

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------
    def register_backend(self, name: str, backend: Backend) -> None:
        """
        Register a backend under name in every role it implements.

        Raises:
            TypeError: if backend implements neither role
        """
        if not isinstance(backend, (IdentityProvider, SocialNetwork)):
            raise TypeError(f"Backend {name} implements no backend role")

        if isinstance(backend, IdentityProvider):
            self._providers[name] = backend
        if isinstance(backend, SocialNetwork):
            self._networks[name] = backend

        logger.info(
            f"Registered backend {name} "
            f"(provider={name in self._providers}, network={name in self._networks})"
        )

    def backend_names(self) -> List[str]:
        return sorted(set(self._providers) | set(self._networks))

    @property
    def status(self) -> ProviderStatus:
        with self._status_lock:
            return self._status

    def _guarded(self, name: str, operation: str, func: Callable, *args) -> Any:
        try:
            return func(*args)
        except Exception as e:
            self.stats["backend_errors"] += 1
            logger.error(f"Backend {name} failed on {operation}: {e}")
            return None

    def _results(self, name: str, operation: str, func: Callable, *args) -> List[Any]:
        """Guarded call whose answer must be a collection (None counts as empty)."""
        result = self._guarded(name, operation, func, *args)
        if result is None:
            return []
        try:
            return list(result)
        except TypeError:
            self.stats["backend_errors"] += 1
            logger.error(f"Backend {name} returned {type(result).__name__} from {operation}")
            return []

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------
    def login(self, backend_id: str, username: str, password: str) -> bool:
        """
        Sign in to one backend.

        The lock only guards status transitions; the backend call runs
        outside it. The final status is set before this returns, so the
        caller never sees "connecting" afterwards.

        Args:
            backend_id: Registered backend name
            username: Backend username
            password: Backend password

        Returns:
            True if the backend is now online
        """
        with self._status_lock:
            self._status = ProviderStatus.CONNECTING
            self.stats["logins"] += 1

        provider = self._providers.get(backend_id)
        network = self._networks.get(backend_id)
        if provider is None and network is None:
            logger.warning(f"Login to unknown backend: {backend_id}")
            return self._set_status(ProviderStatus.FAILED)

        try:
            provider_login = True
            network_login = True
            if provider is not None:
                provider_login = provider.login(backend_id, username, password)
            if network is not None and network is not provider:
                network_login = network.login(backend_id, username, password)
        except Exception as e:
            logger.error(f"Login error on {backend_id}: {e}")
            return self._set_status(ProviderStatus.ERROR)

        status = ProviderStatus.ONLINE if provider_login and network_login else ProviderStatus.FAILED
        logger.info(f"Login {backend_id} as {username}: {status.value}")
        return self._set_status(status)

    def _set_status(self, status: ProviderStatus) -> bool:
        with self._status_lock:
            self._status = status
        return status == ProviderStatus.ONLINE

    def logout(self) -> bool:
        """Sign out of every backend."""
        backends = {id(b): (name, b) for name, b in {**self._providers, **self._networks}.items()}
        for name, backend in backends.values():
            self._guarded(name, "logout", backend.logout)
        self._set_status(ProviderStatus.OFFLINE)
        return True

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------
    def get_friends(self) -> List[str]:
        return sorted(self.list_friend_identifiers())

    def list_friend_identifiers(self) -> Set[str]:
        """
        Union of friend uids from all social networks and the manual list.

        Returns:
            Set of uids, each at least MIN_UID_LENGTH long
        """
        friends: Set[str] = set()
        for name, network in self._networks.items():
            for uid in self._results(name, "get_friends", network.get_friends):
                if is_valid_uid(uid):
                    friends.add(uid)
                else:
                    self.stats["rejected_uids"] += 1

        friends.update(self._manual_friends.keys())
        friends.discard(self.local_user.uid)
        logger.debug(f"Aggregated {len(friends)} friend uids")
        return friends

    def get_fingerprints(self, uids: Iterable[str]) -> List[str]:
        return sorted(self.list_fingerprints(uids))

    def list_fingerprints(self, uids: Iterable[str]) -> Set[str]:
        """
        Union of fingerprints for uids from all providers and the manual list.

        A provider error is indistinguishable from "no fingerprints" here;
        it is only visible in the log and the backend_errors counter.

        Args:
            uids: Friend uids

        Returns:
            Set of fingerprints, each at least MIN_KEY_LENGTH long
        """
        uids = list(uids)
        fingerprints: Set[str] = set()
        for name, provider in self._providers.items():
            for fpr in self._results(name, "get_fingerprints", provider.get_fingerprints, uids):
                if is_valid_key(fpr):
                    fingerprints.add(fpr)
                else:
                    self.stats["rejected_fingerprints"] += 1

        for uid in uids:
            fingerprints.update(self._manual_friends.get(uid, []))
        return fingerprints

    def get_certificates(self, uids: Iterable[str]) -> List[bytes]:
        return self.list_certificates(uids)

    def list_certificates(self, uids: Iterable[str]) -> List[bytes]:
        """
        Certificates offered by providers plus manually added ones.

        Best-effort; most providers offer none.

        Returns:
            Deduplicated list of certificate blobs
        """
        uids = list(uids)
        certificates: List[bytes] = []
        for name, provider in self._providers.items():
            for cert in self._results(name, "get_certificates", provider.get_certificates, uids):
                if not isinstance(cert, (bytes, bytearray)):
                    self.stats["rejected_certificates"] += 1
                    continue
                cert = bytes(cert)
                if cert not in certificates:
                    certificates.append(cert)

        for cert in self._manual_certificates:
            if cert not in certificates:
                certificates.append(cert)
        return certificates

    def validate_certificate(self, identity: Identity, cert_data: bytes) -> bool:
        """
        Check a certificate against every provider, then the manual list.

        Returns:
            True if any provider vouches for it or (uid, fingerprint) was
            added manually
        """
        for name, provider in self._providers.items():
            if self._guarded(name, "validate_certificate",
                             provider.validate_certificate, identity, cert_data):
                return True

        return identity.fingerprint in self._manual_friends.get(identity.uid, [])

    def store_fingerprint(self) -> bool:
        """Ask every provider to publish the local fingerprint."""
        logger.debug(
            f"Storing fingerprint {self.local_user.fingerprint[:16]}... "
            f"({self.local_user.address})"
        )
        success = False
        for name, provider in self._providers.items():
            stored = self._guarded(name, "store_fingerprint", provider.store_fingerprint)
            success = bool(stored) or success
        return success

    # ------------------------------------------------------------------
    # Manual curation
    # ------------------------------------------------------------------
    def add_manual_friend(self, uid: str, fingerprint: str) -> bool:
        """
        Trust a (uid, fingerprint) pair by hand.

        Returns:
            True if the pair was valid and added
        """
        if not is_valid_uid(uid) or not is_valid_key(fingerprint):
            logger.warning(f"Skipping malformed manual friend: {uid!r} {fingerprint!r}")
            return False
        fprs = self._manual_friends.setdefault(uid, [])
        if fingerprint not in fprs:
            fprs.append(fingerprint)
        return True

    def add_friends(self, friends: Iterable[str]) -> int:
        """
        Add manual friends from "uid fingerprint" lines.

        Malformed lines are skipped.

        Returns:
            Number of pairs added
        """
        added = 0
        for line in friends:
            parts = line.split()
            if len(parts) != 2:
                logger.warning(f"Skipping malformed friend line: {line!r}")
                continue
            if self.add_manual_friend(parts[0], parts[1]):
                added += 1
        return added

    def add_certificate(self, cert_string: str) -> bool:
        """
        Add a base64-encoded certificate by hand.

        Returns:
            True if the string decoded
        """
        try:
            cert_data = base64.b64decode(cert_string.replace("\n", ""), validate=True)
        except (binascii.Error, ValueError) as e:
            logger.warning(f"Skipping malformed certificate string: {e}")
            return False
        if cert_data not in self._manual_certificates:
            self._manual_certificates.append(cert_data)
        return True
