"""
State snapshots.

The snapshot is the only view of the engine handed to the outside
world: local identity, aggregator status and the ordered friend list.
It is written to disk on every mutating operation and read back at
startup to restore Blocked friends.
"""

import json
import os
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from socialvpn.core.certificate import VERSION
from socialvpn.core.identity import AccessState

logger = logging.getLogger(__name__)


@dataclass
class SocialState:
    """Serializable state of the engine."""

    local_user: Dict[str, Any]
    certificate: str  # Base64 DER of the local certificate
    status: str = "offline"
    friends: List[Dict[str, Any]] = field(default_factory=list)
    version: str = VERSION

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": self.version,
            "status": self.status,
            "certificate": self.certificate,
            "local_user": self.local_user,
            "friends": self.friends
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SocialState":
        return cls(
            local_user=dict(data.get("local_user", {})),
            certificate=data.get("certificate", ""),
            status=data.get("status", "offline"),
            friends=list(data.get("friends", [])),
            version=data.get("version", VERSION)
        )

    def blocked_fingerprints(self) -> List[str]:
        """Fingerprints of friends recorded as Blocked."""
        return [
            friend["fingerprint"]
            for friend in self.friends
            if friend.get("access") == AccessState.BLOCKED.value and friend.get("fingerprint")
        ]


def write_state(state: SocialState, path: Path) -> bool:
    """
    Atomically write a snapshot to disk (temp file + rename).

    Returns:
        True if written
    """
    path = Path(path)
    tmp_path = path.with_name(path.name + ".tmp")
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(state.to_json())
        os.replace(tmp_path, path)
        return True
    except OSError as e:
        logger.error(f"Failed to write state to {path}: {e}")
        return False


def read_state(path: Path) -> Optional[SocialState]:
    """
    Load a snapshot from disk.

    Returns:
        SocialState, or None if missing or unreadable
    """
    path = Path(path)
    if not path.exists():
        return None
    try:
        with open(path, "r", encoding="utf-8") as f:
            return SocialState.from_dict(json.load(f))
    except (OSError, ValueError) as e:
        logger.error(f"Failed to read state from {path}: {e}")
        return None
