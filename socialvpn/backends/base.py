"""
Backend interfaces.

A backend plays one or both roles:
- IdentityProvider: maps uids to certificate fingerprints and vouches
  for certificates
- SocialNetwork: lists the local user's friends

Backends are untrusted input sources; the aggregator filters and
deduplicates whatever they return.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from socialvpn.core.identity import Identity


class IdentityProvider(ABC):
    """Identity-provider capability."""

    @abstractmethod
    def login(self, backend_id: str, username: str, password: str) -> bool:
        """Authenticate against the backend."""
        pass

    @abstractmethod
    def logout(self) -> bool:
        pass

    @abstractmethod
    def get_fingerprints(self, uids: Iterable[str]) -> Optional[List[str]]:
        """
        Fingerprints registered for the given uids.

        Args:
            uids: Friend identifiers

        Returns:
            List of fingerprints (None is treated as empty)
        """
        pass

    def get_certificates(self, uids: Iterable[str]) -> Optional[List[bytes]]:
        """Certificates held by the backend. Most backends hold none."""
        return None

    @abstractmethod
    def validate_certificate(self, identity: Identity, cert_data: bytes) -> bool:
        """
        Vouch for a certificate.

        Args:
            identity: Identity parsed from the certificate
            cert_data: Raw certificate bytes

        Returns:
            True if the backend recognizes the certificate as the uid's
        """
        pass

    @abstractmethod
    def store_fingerprint(self) -> bool:
        """Publish the local fingerprint to the backend if absent."""
        pass


class SocialNetwork(ABC):
    """Social-network capability."""

    @abstractmethod
    def login(self, backend_id: str, username: str, password: str) -> bool:
        pass

    @abstractmethod
    def logout(self) -> bool:
        pass

    @abstractmethod
    def get_friends(self) -> Optional[List[str]]:
        """Friend uids of the local user (None is treated as empty)."""
        pass
