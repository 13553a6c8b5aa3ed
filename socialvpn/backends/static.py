"""
Static in-memory backend.

Serves a fixed friend list and uid → fingerprint directory. Useful for
closed groups configured by hand and for running the engine without a
social-network service.
"""

import logging
from typing import Dict, Iterable, List, Optional

from socialvpn.backends.base import IdentityProvider, SocialNetwork
from socialvpn.core.identity import Identity

logger = logging.getLogger(__name__)


class StaticBackend(IdentityProvider, SocialNetwork):
    """
    Backend backed by a dictionary.

    Example options (from configuration):
        {"directory": {"bob@example.org": ["svpn:3F2A..."]},
         "friends": ["bob@example.org"]}
    """

    def __init__(
        self,
        local_user: Identity,
        directory: Optional[Dict[str, List[str]]] = None,
        friends: Optional[List[str]] = None,
        certificates: Optional[List[bytes]] = None
    ):
        """
        Initialize static backend.

        Args:
            local_user: The local identity
            directory: uid -> fingerprints
            friends: Friend uids (defaults to every uid in directory)
            certificates: Certificates this backend hands out
        """
        self.local_user = local_user
        self.directory: Dict[str, List[str]] = {
            uid: list(fprs) for uid, fprs in (directory or {}).items()
        }
        self.friends: List[str] = list(friends) if friends is not None else list(self.directory)
        self.certificates: List[bytes] = list(certificates or [])
        self.logged_in = False
        self.username: Optional[str] = None

    @classmethod
    def from_options(cls, local_user: Identity, options: Dict) -> "StaticBackend":
        return cls(
            local_user=local_user,
            directory=options.get("directory"),
            friends=options.get("friends")
        )

    def login(self, backend_id: str, username: str, password: str) -> bool:
        self.logged_in = True
        self.username = username
        logger.info(f"Static backend {backend_id} login as {username}")
        return True

    def logout(self) -> bool:
        self.logged_in = False
        return True

    def get_friends(self) -> List[str]:
        return [uid for uid in self.friends if uid != self.local_user.uid]

    def get_fingerprints(self, uids: Iterable[str]) -> List[str]:
        fingerprints = []
        for uid in uids:
            fingerprints.extend(self.directory.get(uid, []))
        return fingerprints

    def get_certificates(self, uids: Iterable[str]) -> List[bytes]:
        return list(self.certificates)

    def validate_certificate(self, identity: Identity, cert_data: bytes) -> bool:
        return identity.fingerprint in self.directory.get(identity.uid, [])

    def store_fingerprint(self) -> bool:
        fprs = self.directory.setdefault(self.local_user.uid, [])
        if self.local_user.fingerprint not in fprs:
            fprs.append(self.local_user.fingerprint)
            logger.debug(f"Stored local fingerprint {self.local_user.fingerprint[:16]}...")
        return True
