"""
Friend Store

In-memory trust store of everything the engine knows about its friends.

Features:
- Friend records keyed by social uid (Pending until a certificate validates)
- Validated identities indexed by fingerprint (one per certificate/device)
- Collision-free alias allocation ("alice.ipop", "alice1.ipop", ...)
- Overlay address → fingerprint reverse mapping
- Copy-out accessors: callers never receive live records

The store is only mutated by the engine (controller task and fetch
completions); every access is serialized through one re-entrant lock.
"""

import re
import threading
from dataclasses import dataclass, field, replace
from typing import Dict, Iterable, List, Optional, Set
import logging

from socialvpn.core.identity import AccessState, Identity

logger = logging.getLogger(__name__)


DNS_SUFFIX = "ipop"  # Suffix of every alias


@dataclass
class FriendRecord:
    """Everything known about one social uid."""

    uid: str
    fingerprints: Set[str] = field(default_factory=set)  # From providers
    identities: Dict[str, Identity] = field(default_factory=dict)  # fpr -> Identity

    @property
    def access(self) -> AccessState:
        """Pending until validated; Allowed if any device is allowed."""
        if not self.identities:
            return AccessState.PENDING
        states = {identity.access for identity in self.identities.values()}
        if AccessState.ALLOWED in states:
            return AccessState.ALLOWED
        if states == {AccessState.BLOCKED}:
            return AccessState.BLOCKED
        return AccessState.PENDING


class FriendStore:
    """
    Trust store for friends of the local identity.

    Records are created on first sight of a uid or fingerprint and are
    never removed automatically.
    """

    def __init__(self, local_user: Identity, dns_suffix: str = DNS_SUFFIX):
        """
        Initialize friend store.

        Args:
            local_user: The local identity (its alias is reserved first)
            dns_suffix: Suffix appended to every alias
        """
        self._lock = threading.RLock()
        self.dns_suffix = dns_suffix

        # uid -> FriendRecord (insertion ordered)
        self._records: Dict[str, FriendRecord] = {}

        # fingerprint -> Identity
        self._by_fingerprint: Dict[str, Identity] = {}

        # alias -> fingerprint
        self._aliases: Dict[str, str] = {}

        # overlay address -> fingerprint
        self._addr_to_key: Dict[str, str] = {}

        self.local_user = local_user
        self.create_alias(local_user)

        self.stats = {
            "uids_tracked": 0,
            "identities_added": 0,
            "access_changes": 0
        }

    # ------------------------------------------------------------------
    # Aliases
    # ------------------------------------------------------------------
    def _format_alias(self, labels: List[str], counter: int) -> str:
        first = labels[0] + (str(counter) if counter else "")
        return ".".join([first] + labels[1:] + [self.dns_suffix]).lower()

    def create_alias(self, identity: Identity) -> str:
        """
        Assign a unique alias to an identity.

        The uid is split on '@' and '.', its last label (top-level
        domain) dropped and the pcid prepended when present. On collision
        a counter is appended to the first label.

        Args:
            identity: Identity to name (its alias field is set)

        Returns:
            The alias
        """
        with self._lock:
            labels = [part for part in re.split(r"[@.]", identity.uid) if part]
            if len(labels) > 1:
                labels = labels[:-1]
            if not labels:
                labels = ["friend"]
            if identity.pcid:
                labels = [identity.pcid] + labels

            counter = 0
            alias = self._format_alias(labels, counter)
            while alias in self._aliases:
                counter += 1
                alias = self._format_alias(labels, counter)

            self._aliases[alias] = identity.fingerprint
            identity.alias = alias
            return alias

    def fingerprint_for_alias(self, alias: str) -> Optional[str]:
        with self._lock:
            return self._aliases.get(alias.lower())

    # ------------------------------------------------------------------
    # Uid tracking
    # ------------------------------------------------------------------
    def track_uid(self, uid: str) -> bool:
        """
        Start tracking a uid as a Pending friend.

        Returns:
            True if the uid was not tracked before
        """
        with self._lock:
            if uid in self._records:
                return False
            self._records[uid] = FriendRecord(uid=uid)
            self.stats["uids_tracked"] += 1
            logger.debug(f"Tracking friend uid: {uid}")
            return True

    def is_tracked(self, uid: str) -> bool:
        with self._lock:
            return uid in self._records

    def uids(self) -> List[str]:
        with self._lock:
            return list(self._records.keys())

    def pending_uids(self) -> List[str]:
        """Uids that have no validated certificate yet."""
        with self._lock:
            return [uid for uid, rec in self._records.items() if not rec.identities]

    def add_fingerprints(self, uid: str, fingerprints: Iterable[str]) -> Set[str]:
        """
        Attach provider fingerprints to a uid's record.

        Returns:
            The fingerprints that were new to this record
        """
        with self._lock:
            self.track_uid(uid)
            record = self._records[uid]
            new = set(fingerprints) - record.fingerprints
            record.fingerprints.update(new)
            return new

    def record_access(self, uid: str) -> Optional[AccessState]:
        with self._lock:
            record = self._records.get(uid)
            return record.access if record else None

    # ------------------------------------------------------------------
    # Identities
    # ------------------------------------------------------------------
    def is_local(self, fingerprint: str) -> bool:
        return fingerprint == self.local_user.fingerprint

    def is_known(self, fingerprint: str) -> bool:
        """True if a validated identity exists for fingerprint."""
        with self._lock:
            return fingerprint in self._by_fingerprint

    def add_identity(self, identity: Identity) -> Identity:
        """
        Store a validated identity, allocating its alias.

        The store keeps its own copy; the returned value is a snapshot.

        Returns:
            Copy of the stored identity (alias assigned)
        """
        with self._lock:
            if identity.fingerprint in self._by_fingerprint:
                return replace(self._by_fingerprint[identity.fingerprint])

            owned = replace(identity)
            if not owned.alias:
                self.create_alias(owned)

            self.track_uid(owned.uid)
            record = self._records[owned.uid]
            record.fingerprints.add(owned.fingerprint)
            record.identities[owned.fingerprint] = owned

            self._by_fingerprint[owned.fingerprint] = owned
            self._addr_to_key[owned.address] = owned.fingerprint
            self.stats["identities_added"] += 1

            logger.info(f"Added friend {owned.short()} as {owned.alias}")
            return replace(owned)

    def remove_identity(self, fingerprint: str) -> bool:
        """
        Drop a stored identity and release its alias.

        The uid record and its provider fingerprints stay, so the uid
        is Pending again if it has no other identity.

        Returns:
            True if an identity was removed
        """
        with self._lock:
            identity = self._by_fingerprint.pop(fingerprint, None)
            if identity is None:
                return False

            record = self._records.get(identity.uid)
            if record is not None:
                record.identities.pop(fingerprint, None)
            if self._addr_to_key.get(identity.address) == fingerprint:
                del self._addr_to_key[identity.address]
            if self._aliases.get(identity.alias) == fingerprint:
                del self._aliases[identity.alias]

            logger.info(f"Removed friend {identity.short()}")
            return True

    def get(self, fingerprint: str) -> Optional[Identity]:
        """Copy of the identity for fingerprint, or None."""
        with self._lock:
            identity = self._by_fingerprint.get(fingerprint)
            return replace(identity) if identity else None

    def identities_for_uid(self, uid: str) -> List[Identity]:
        with self._lock:
            record = self._records.get(uid)
            if not record:
                return []
            return [replace(identity) for identity in record.identities.values()]

    def key_for_address(self, address: str) -> Optional[str]:
        with self._lock:
            return self._addr_to_key.get(address)

    def set_access(self, fingerprint: str, access: AccessState, ip: str = "") -> bool:
        """
        Change the access state of a stored identity.

        Args:
            fingerprint: Identity fingerprint
            access: New access state
            ip: Virtual IP assigned by the connectivity layer ("" clears)

        Returns:
            True if the state changed
        """
        with self._lock:
            identity = self._by_fingerprint.get(fingerprint)
            if identity is None or identity.access == access:
                return False
            identity.access = access
            identity.ip = ip
            self.stats["access_changes"] += 1
            return True

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------
    def export_friends(self) -> List[Dict]:
        """
        Ordered friend entries for the state snapshot.

        One entry per validated identity; uids without any validated
        identity yield one Pending entry without a fingerprint.
        """
        with self._lock:
            entries = []
            for uid, record in self._records.items():
                if record.identities:
                    entries.extend(
                        identity.to_dict() for identity in record.identities.values()
                    )
                else:
                    entries.append({
                        "uid": uid,
                        "fingerprint": "",
                        "access": AccessState.PENDING.value
                    })
            return entries

    def get_stats(self) -> Dict:
        with self._lock:
            return {
                **self.stats,
                "friends": len(self._records),
                "identities": len(self._by_fingerprint),
                "pending": len(self.pending_uids()),
                "aliases": len(self._aliases)
            }
