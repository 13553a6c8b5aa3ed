"""
Friend store and state snapshot tests.
"""

from socialvpn.core.friend_store import FriendStore
from socialvpn.core.identity import AccessState
from socialvpn.core.state import SocialState, read_state, write_state

from factories import make_identity


class TestAliases:
    """Test alias allocation."""

    def test_local_alias_reserved(self, local_identity):
        store = FriendStore(local_identity)
        assert local_identity.alias == "alice.example.ipop"

        # A friend deriving the same base alias gets a counter
        friend = make_identity("alice@example.com")
        stored = store.add_identity(friend)
        assert stored.alias == "alice1.example.ipop"

    def test_collisions_are_numbered(self, local_identity):
        """Two devices of the same uid get distinct, ordered aliases."""
        store = FriendStore(local_identity)
        first = store.add_identity(make_identity("bob@org"))
        second = store.add_identity(make_identity("bob@org"))
        third = store.add_identity(make_identity("bob@org"))

        assert first.alias == "bob.ipop"
        assert second.alias == "bob1.ipop"
        assert third.alias == "bob2.ipop"

    def test_pcid_prefix(self, local_identity):
        store = FriendStore(local_identity)
        stored = store.add_identity(make_identity("Carol@Example.org", pcid="Laptop"))
        assert stored.alias == "laptop.carol.example.ipop"

    def test_alias_is_stable(self, local_identity):
        store = FriendStore(local_identity)
        stored = store.add_identity(make_identity("dave@example.org"))
        store.set_access(stored.fingerprint, AccessState.ALLOWED, "172.31.0.2")
        assert store.get(stored.fingerprint).alias == stored.alias
        assert store.fingerprint_for_alias(stored.alias) == stored.fingerprint


class TestRecords:
    """Test friend records."""

    def test_track_uid_once(self, local_identity):
        store = FriendStore(local_identity)
        assert store.track_uid("bob@example.org") is True
        assert store.track_uid("bob@example.org") is False
        assert store.uids() == ["bob@example.org"]
        assert store.pending_uids() == ["bob@example.org"]
        assert store.record_access("bob@example.org") == AccessState.PENDING

    def test_add_fingerprints_returns_new(self, local_identity):
        store = FriendStore(local_identity)
        fpr_a = "svpn:" + "A" * 40
        fpr_b = "svpn:" + "B" * 40

        assert store.add_fingerprints("bob@example.org", [fpr_a]) == {fpr_a}
        assert store.add_fingerprints("bob@example.org", [fpr_a, fpr_b]) == {fpr_b}

    def test_identity_validates_record(self, local_identity):
        store = FriendStore(local_identity)
        store.track_uid("bob@example.org")
        identity = make_identity("bob@example.org")

        store.add_identity(identity)
        assert store.pending_uids() == []
        assert store.is_known(identity.fingerprint)
        assert store.key_for_address(identity.address) == identity.fingerprint

    def test_copies_are_returned(self, local_identity):
        """Mutating a returned identity does not change the store."""
        store = FriendStore(local_identity)
        identity = make_identity("bob@example.org")
        stored = store.add_identity(identity)

        stored.access = AccessState.ALLOWED
        identity.alias = "changed"
        fresh = store.get(identity.fingerprint)
        assert fresh.access == AccessState.PENDING
        assert fresh.alias == "bob.example.ipop"

    def test_remove_identity_makes_uid_pending(self, local_identity):
        store = FriendStore(local_identity)
        stored = store.add_identity(make_identity("bob@example.org"))

        assert store.remove_identity(stored.fingerprint) is True
        assert store.remove_identity(stored.fingerprint) is False
        assert not store.is_known(stored.fingerprint)
        assert store.key_for_address(stored.address) is None
        assert store.pending_uids() == ["bob@example.org"]

        # The alias is free again
        assert store.add_identity(make_identity("bob@example.org")).alias == "bob.example.ipop"

    def test_set_access_reports_change(self, local_identity):
        store = FriendStore(local_identity)
        stored = store.add_identity(make_identity("bob@example.org"))

        assert store.set_access(stored.fingerprint, AccessState.ALLOWED, "172.31.0.2") is True
        assert store.set_access(stored.fingerprint, AccessState.ALLOWED, "172.31.0.2") is False
        assert store.get(stored.fingerprint).ip == "172.31.0.2"
        assert store.record_access("bob@example.org") == AccessState.ALLOWED

        assert store.set_access("svpn:" + "0" * 40, AccessState.BLOCKED) is False


class TestExport:
    """Test snapshot export."""

    def test_pending_and_validated_entries(self, local_identity):
        store = FriendStore(local_identity)
        fpr = "svpn:" + "C" * 40
        store.add_fingerprints("carol@example.org", [fpr])
        bob = store.add_identity(make_identity("bob@example.org"))

        friends = store.export_friends()
        assert len(friends) == 2

        pending = friends[0]
        assert pending["uid"] == "carol@example.org"
        assert pending["access"] == "Pending"
        assert pending["fingerprint"] == ""

        validated = friends[1]
        assert validated["fingerprint"] == bob.fingerprint
        assert validated["alias"] == "bob.example.ipop"

    def test_state_file_roundtrip(self, local_identity, tmp_path):
        store = FriendStore(local_identity)
        bob = store.add_identity(make_identity("bob@example.org"))
        store.set_access(bob.fingerprint, AccessState.BLOCKED)

        state = SocialState(
            local_user=local_identity.to_dict(),
            certificate="",
            status="online",
            friends=store.export_friends()
        )
        path = tmp_path / "state.json"
        assert write_state(state, path) is True
        assert not (tmp_path / "state.json.tmp").exists()

        loaded = read_state(path)
        assert loaded.status == "online"
        assert loaded.blocked_fingerprints() == [bob.fingerprint]

    def test_missing_or_corrupt_state(self, tmp_path):
        assert read_state(tmp_path / "missing.json") is None

        corrupt = tmp_path / "corrupt.json"
        corrupt.write_text("{not json")
        assert read_state(corrupt) is None
