"""
Trust gate tests.

Test Coverage:
- Admission with grant and deny intent
- Replay of local and known certificates
- Validation failures
- Idempotent allow/block toggles
"""

import pytest

from socialvpn.backends import ProviderAggregator, StaticBackend
from socialvpn.core.friend_store import FriendStore
from socialvpn.core.identity import AccessState, Identity
from socialvpn.p2p.connectivity import AddressMapper
from socialvpn.trust.gate import TrustGate

from factories import make_certificate


class FullMapper(AddressMapper):
    """Mapper with no virtual addresses left."""

    def map_alias(self, alias, address):
        raise RuntimeError("virtual network exhausted")


class TestTrustGate:
    """Test certificate admission and access toggles."""

    def setup_method(self):
        """Set up test fixtures."""
        self.local_cert = make_certificate("a@x.edu")
        self.bob = make_certificate("b@x.edu")
        self.carol = make_certificate("c@x.edu")

        self.local = Identity.from_certificate(self.local_cert)
        self.store = FriendStore(self.local)

        self.backend = StaticBackend(self.local, directory={
            "b@x.edu": [self.bob.fingerprint],
            "c@x.edu": [self.carol.fingerprint],
        })
        self.aggregator = ProviderAggregator(self.local)
        self.aggregator.register_backend("static", self.backend)

        self.connectivity = AddressMapper("10.254.0.0/24")
        self.changes = 0

    def make_gate(self, cert_dir):
        def on_change():
            self.changes += 1

        return TrustGate(
            store=self.store,
            validator=self.aggregator,
            connectivity=self.connectivity,
            cert_dir=cert_dir,
            on_change=on_change
        )

    @pytest.mark.asyncio
    async def test_grant_admits_and_connects(self, tmp_path):
        gate = self.make_gate(tmp_path)
        identity = await gate.add_certificate(self.bob.data, grant=True)

        assert identity.access == AccessState.ALLOWED
        assert identity.alias == "b.x.ipop"
        assert identity.ip == "10.254.0.1"
        assert self.connectivity.is_registered(self.bob.address)
        assert self.bob.address in self.connectivity.acknowledged
        assert self.connectivity.ip_for_alias("b.x.ipop") == "10.254.0.1"
        assert (tmp_path / "b.x.ipop.cert").read_bytes() == self.bob.data
        assert self.changes == 1

    @pytest.mark.asyncio
    async def test_deny_admits_blocked_without_connectivity(self, tmp_path):
        gate = self.make_gate(tmp_path)
        identity = await gate.add_certificate(self.bob.data, grant=False)

        assert identity.access == AccessState.BLOCKED
        assert not self.connectivity.is_registered(self.bob.address)
        assert self.connectivity.stats["registrations"] == 0
        assert self.store.is_known(self.bob.fingerprint)

    @pytest.mark.asyncio
    async def test_local_and_known_are_noops(self, tmp_path):
        gate = self.make_gate(tmp_path)

        assert await gate.add_certificate(self.local_cert.data) is None
        assert await gate.add_certificate(self.bob.data) is not None
        assert await gate.add_certificate(self.bob.data) is None

        assert self.connectivity.stats["registrations"] == 1
        assert self.changes == 1

    @pytest.mark.asyncio
    async def test_unvouched_certificate_rejected(self, tmp_path):
        gate = self.make_gate(tmp_path)
        stranger = make_certificate("d@x.edu")

        assert await gate.add_certificate(stranger.data) is None
        assert not self.store.is_known(stranger.fingerprint)
        assert gate.stats["validation_failures"] == 1
        assert self.changes == 0

    @pytest.mark.asyncio
    async def test_malformed_certificate_dropped(self, tmp_path):
        gate = self.make_gate(tmp_path)
        assert await gate.add_certificate(b"\x30\x03garbage") is None
        assert gate.stats["malformed"] == 1

    @pytest.mark.asyncio
    async def test_block_allow_toggle_idempotent(self, tmp_path):
        """Repeated blocks unregister once; repeated allows register once."""
        gate = self.make_gate(tmp_path)
        await gate.add_certificate(self.bob.data, grant=True)
        fpr = self.bob.fingerprint

        assert gate.block(fpr) is True
        assert gate.block(fpr) is False
        assert self.connectivity.stats["unregistrations"] == 1
        assert not self.connectivity.is_registered(self.bob.address)
        assert self.store.get(fpr).access == AccessState.BLOCKED

        assert gate.allow(fpr) is True
        assert gate.allow(fpr) is False
        assert self.connectivity.stats["registrations"] == 2
        assert self.store.get(fpr).access == AccessState.ALLOWED

        # admission + block + allow
        assert self.changes == 3

    @pytest.mark.asyncio
    async def test_allow_after_deny_connects(self, tmp_path):
        gate = self.make_gate(tmp_path)
        await gate.add_certificate(self.bob.data, grant=False)

        assert gate.allow(self.bob.fingerprint) is True
        assert self.connectivity.is_registered(self.bob.address)
        assert self.connectivity.stats["unregistrations"] == 0

    def test_unknown_fingerprint(self, tmp_path):
        gate = self.make_gate(tmp_path)
        assert gate.allow("svpn:" + "F" * 40) is False
        assert gate.block("svpn:" + "F" * 40) is False
        assert self.changes == 0

    @pytest.mark.asyncio
    async def test_user_level_toggles(self, tmp_path):
        gate = self.make_gate(tmp_path)
        second_device = make_certificate("b@x.edu", pcid="phone")
        self.backend.directory["b@x.edu"].append(second_device.fingerprint)

        await gate.add_certificate(self.bob.data)
        await gate.add_certificate(second_device.data)

        assert gate.block_user("b@x.edu") == 2
        assert gate.block_user("b@x.edu") == 0
        assert self.store.record_access("b@x.edu") == AccessState.BLOCKED

        assert gate.allow_user("b@x.edu") == 2
        assert self.store.record_access("b@x.edu") == AccessState.ALLOWED

    @pytest.mark.asyncio
    async def test_connectivity_failure_rolls_back(self, tmp_path):
        """A friend that cannot be connected is not kept half-admitted."""
        self.connectivity = FullMapper("10.254.0.0/24")
        gate = self.make_gate(tmp_path)

        assert await gate.add_certificate(self.bob.data, grant=True) is None
        assert not self.store.is_known(self.bob.fingerprint)
        assert self.store.pending_uids() == ["b@x.edu"]
        assert self.store.fingerprint_for_alias("b.x.ipop") is None
        assert not self.connectivity.is_registered(self.bob.address)
        assert not (tmp_path / "b.x.ipop.cert").exists()
        assert gate.stats["grant_failures"] == 1
        assert gate.stats["friends_added"] == 0
        assert self.changes == 0

    @pytest.mark.asyncio
    async def test_allow_fails_softly(self, tmp_path):
        self.connectivity = FullMapper("10.254.0.0/24")
        gate = self.make_gate(tmp_path)
        await gate.add_certificate(self.bob.data, grant=False)
        self.changes = 0

        assert gate.allow(self.bob.fingerprint) is False
        assert gate.allow_user("b@x.edu") == 0
        assert self.store.get(self.bob.fingerprint).access == AccessState.BLOCKED
        assert self.changes == 0
