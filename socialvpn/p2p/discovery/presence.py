"""
Presence announcements.

Peers announce themselves on the overlay with a key naming their
certificate, optionally followed by their social uid:

    svpn:3F2A...            fingerprint only
    svpn:3F2A...:bob@x.org  fingerprint and uid

The fingerprint itself contains one ':' (after the "svpn" namespace),
so the uid, if any, follows the second one.
"""

from dataclasses import dataclass
from typing import Optional
import logging

from socialvpn.core.certificate import DHT_PREFIX, MIN_KEY_LENGTH, is_valid_key, is_valid_uid

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Announcement:
    """A parsed presence announcement."""

    fingerprint: str
    uid: Optional[str] = None


def format_announcement(fingerprint: str, uid: Optional[str] = None) -> str:
    """Build the announcement key for a certificate (and uid)."""
    return f"{fingerprint}:{uid}" if uid else fingerprint


def parse_announcement(key: str) -> Optional[Announcement]:
    """
    Parse an announcement key.

    Args:
        key: "<fingerprint>" or "<fingerprint>:<uid>"

    Returns:
        Announcement, or None if the fingerprint is malformed
    """
    if not isinstance(key, str) or not key.startswith(DHT_PREFIX):
        logger.debug(f"Ignoring announcement without key prefix: {key!r}")
        return None

    fingerprint = key[:MIN_KEY_LENGTH]
    rest = key[MIN_KEY_LENGTH:]
    if not is_valid_key(fingerprint) or (rest and not rest.startswith(":")):
        logger.debug(f"Ignoring malformed announcement: {key!r}")
        return None

    uid = rest[1:] or None
    if uid is not None and not is_valid_uid(uid):
        uid = None
    return Announcement(fingerprint=fingerprint, uid=uid)
