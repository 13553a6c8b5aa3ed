"""
SocialVPN Core Module

Data model of the trust engine:
- Identity certificates and fingerprints
- Peer identities and access states
- Friend store (trust store)
- State snapshots
"""

from socialvpn.core.certificate import (
    IdentityCertificate,
    build_certificate,
    create_certificate,
    compute_fingerprint,
    generate_overlay_address,
    is_valid_key,
    is_valid_uid,
    DHT_PREFIX,
    MIN_KEY_LENGTH,
    MIN_UID_LENGTH,
    CERT_FILENAME,
    CERT_SUFFIX,
    VERSION,
)
from socialvpn.core.identity import AccessState, Identity
from socialvpn.core.friend_store import FriendStore, FriendRecord
from socialvpn.core.state import SocialState, read_state, write_state

__all__ = [
    "IdentityCertificate",
    "build_certificate",
    "create_certificate",
    "compute_fingerprint",
    "generate_overlay_address",
    "is_valid_key",
    "is_valid_uid",
    "DHT_PREFIX",
    "MIN_KEY_LENGTH",
    "MIN_UID_LENGTH",
    "CERT_FILENAME",
    "CERT_SUFFIX",
    "VERSION",
    "AccessState",
    "Identity",
    "FriendStore",
    "FriendRecord",
    "SocialState",
    "read_state",
    "write_state",
]
