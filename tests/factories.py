"""
Test factories: certificates, identities, configs and nodes.
"""

import threading
from pathlib import Path
from typing import Dict, List, Optional

from socialvpn.config import SocialConfig
from socialvpn.core.certificate import (
    IdentityCertificate,
    build_certificate,
    create_certificate,
    generate_overlay_address,
)
from socialvpn.core.identity import Identity
from socialvpn.backends.static import StaticBackend
from socialvpn.node import SocialNode
from socialvpn.p2p.connectivity import AddressMapper
from socialvpn.p2p.dht.store import InMemoryDht


class SlowLoginBackend(StaticBackend):
    """Static backend whose login blocks until released."""

    def __init__(self, local_user, **kwargs):
        super().__init__(local_user, **kwargs)
        self.entered = threading.Event()
        self.release = threading.Event()

    def login(self, backend_id, username, password):
        self.entered.set()
        self.release.wait(timeout=5)
        return super().login(backend_id, username, password)


def make_certificate(uid: str, name: str = "", pcid: str = "") -> IdentityCertificate:
    """Build a fresh self-signed certificate for uid."""
    der, _ = build_certificate(
        uid=uid,
        name=name or uid.split("@")[0],
        address=generate_overlay_address(),
        pcid=pcid
    )
    return IdentityCertificate.from_bytes(der)


def make_identity(uid: str, pcid: str = "") -> Identity:
    return Identity.from_certificate(make_certificate(uid, pcid=pcid))


def make_config(tmp_path: Path, **overrides) -> SocialConfig:
    values = {
        "cert_dir": tmp_path / "certificates",
        "state_path": tmp_path / "state.json",
        "key_path": tmp_path / "private_key.pem",
        "start_delay": 0,
        "interval": 300,
        "backends": [],
    }
    values.update(overrides)
    return SocialConfig(**values)


def make_node(
    tmp_path: Path,
    uid: str = "a@x.edu",
    directory: Optional[Dict[str, List[str]]] = None,
    friends: Optional[List[str]] = None,
    store: Optional[InMemoryDht] = None,
    **overrides
) -> SocialNode:
    """
    Create a local certificate under tmp_path and build a node around it.

    A StaticBackend named "static" is registered with the given
    directory and friend list.
    """
    config = make_config(tmp_path, **overrides)
    if not (Path(config.cert_dir) / "local.cert").exists():
        create_certificate(
            uid=uid,
            name=uid.split("@")[0],
            pcid="",
            version="SVPN_0.3.X",
            country="US",
            address=generate_overlay_address(),
            cert_dir=config.cert_dir,
            key_path=config.key_path
        )
    node = SocialNode(
        config=config,
        store=store if store is not None else InMemoryDht(),
        connectivity=AddressMapper(config.network)
    )
    backend = StaticBackend(node.local_user, directory=directory or {}, friends=friends)
    node.aggregator.register_backend("static", backend)
    node.backend = backend
    return node
