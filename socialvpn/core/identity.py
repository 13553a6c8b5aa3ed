"""
Peer identities.

An Identity is the engine's own copy of everything it knows about one
certificate holder (local user or friend).
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Dict, Optional

from socialvpn.core.certificate import IdentityCertificate


class AccessState(str, Enum):
    """Network access granted to a friend."""
    PENDING = "Pending"
    ALLOWED = "Allowed"
    BLOCKED = "Blocked"


@dataclass
class Identity:
    """A peer known by certificate."""

    uid: str
    fingerprint: str
    address: str
    name: str = ""
    pcid: str = ""
    alias: str = ""
    ip: str = ""
    access: AccessState = AccessState.PENDING

    @classmethod
    def from_certificate(cls, cert: IdentityCertificate) -> "Identity":
        """Copy the identity fields out of a parsed certificate."""
        return cls(
            uid=cert.uid,
            fingerprint=cert.fingerprint,
            address=cert.address,
            name=cert.name,
            pcid=cert.pcid,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["access"] = self.access.value
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Identity":
        return cls(
            uid=data["uid"],
            fingerprint=data["fingerprint"],
            address=data.get("address", ""),
            name=data.get("name", ""),
            pcid=data.get("pcid", ""),
            alias=data.get("alias", ""),
            ip=data.get("ip", ""),
            access=access_from_string(data.get("access")),
        )

    def short(self) -> str:
        """Short form for log lines."""
        return f"{self.uid} {self.fingerprint[:16]}..."


def access_from_string(value: Optional[str]) -> AccessState:
    """Parse an access state, treating unknown values as Pending."""
    try:
        return AccessState(value)
    except ValueError:
        return AccessState.PENDING
