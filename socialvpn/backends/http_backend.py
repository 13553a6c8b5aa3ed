"""
HTTP directory backend.

Talks to a web directory service that keeps each user's friend list and
registered fingerprints. Requests are form-encoded POSTs selected by the
"m" parameter; responses are comma-delimited lists.

    m=getfriends&uid=<uid>          -> "bob@x.org,carol@y.org"
    m=getfprs&uids=<uid>,<uid>      -> "svpn:3F2A...,svpn:91C0..."
    m=store&uid=<uid>&fpr=<fpr>     -> ignored
"""

import logging
from typing import Dict, Iterable, List

import requests

from socialvpn.backends.base import IdentityProvider, SocialNetwork
from socialvpn.core.identity import Identity
from socialvpn.exceptions import BackendError

logger = logging.getLogger(__name__)


DELIM = ","
REQUEST_TIMEOUT = 10  # Seconds


class HttpSocialBackend(IdentityProvider, SocialNetwork):
    """Identity provider and social network served over HTTP."""

    def __init__(self, local_user: Identity, url: str, timeout: float = REQUEST_TIMEOUT):
        """
        Initialize HTTP backend.

        Args:
            local_user: The local identity
            url: Directory service API endpoint
            timeout: Per-request timeout in seconds
        """
        self.local_user = local_user
        self.url = url
        self.timeout = timeout
        self.session = requests.Session()

    @classmethod
    def from_options(cls, local_user: Identity, options: Dict) -> "HttpSocialBackend":
        return cls(
            local_user=local_user,
            url=options["url"],
            timeout=float(options.get("timeout", REQUEST_TIMEOUT))
        )

    def _request(self, parameters: Dict[str, str]) -> str:
        logger.debug(f"HTTP request: {self.url} m={parameters.get('m')}")
        try:
            response = self.session.post(self.url, data=parameters, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            raise BackendError(f"{parameters.get('m')} request to {self.url} failed: {e}") from e
        return response.text

    @staticmethod
    def _split(response: str) -> List[str]:
        return [item.strip() for item in response.split(DELIM) if item.strip()]

    def login(self, backend_id: str, username: str, password: str) -> bool:
        # The directory service is unauthenticated
        return True

    def logout(self) -> bool:
        return True

    def get_friends(self) -> List[str]:
        response = self._request({"m": "getfriends", "uid": self.local_user.uid})
        return self._split(response)

    def get_fingerprints(self, uids: Iterable[str]) -> List[str]:
        response = self._request({"m": "getfprs", "uids": DELIM.join(uids)})
        return self._split(response)

    def validate_certificate(self, identity: Identity, cert_data: bytes) -> bool:
        return identity.fingerprint in self.get_fingerprints([identity.uid])

    def store_fingerprint(self) -> bool:
        """Register the local fingerprint unless the service already has it."""
        fingerprints = self.get_fingerprints([self.local_user.uid])
        if self.local_user.fingerprint not in fingerprints:
            self._request({
                "m": "store",
                "uid": self.local_user.uid,
                "fpr": self.local_user.fingerprint
            })
            logger.info(f"Stored fingerprint {self.local_user.fingerprint[:16]}... at {self.url}")
        return True
