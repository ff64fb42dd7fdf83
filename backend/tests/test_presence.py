"""Tests for the presence registry."""
import random

from chatrelay.chat.presence import PresenceRegistry


class TestPresenceRegistry:
    """Tests for register/remove/snapshot."""

    def test_empty_snapshot(self):
        assert PresenceRegistry().snapshot() == []

    def test_register_adds_name(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        assert registry.snapshot() == ["alice"]
        assert "c1" in registry
        assert registry.display_name("c1") == "alice"

    def test_register_overwrites_same_connection(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        registry.register("c1", "alicia")
        assert registry.snapshot() == ["alicia"]
        assert len(registry) == 1

    def test_duplicate_names_collapse(self):
        """Two connections sharing a name appear once in the snapshot."""
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        registry.register("c2", "alice")
        assert registry.snapshot() == ["alice"]
        assert len(registry) == 2

    def test_name_survives_until_last_connection_leaves(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        registry.register("c2", "alice")
        registry.remove("c1")
        assert registry.snapshot() == ["alice"]
        registry.remove("c2")
        assert registry.snapshot() == []

    def test_remove_reports_whether_removed(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        assert registry.remove("c1") is True
        assert registry.remove("c1") is False

    def test_remove_unknown_connection_is_noop(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        assert registry.remove("never-registered") is False
        assert registry.snapshot() == ["alice"]

    def test_empty_name_is_accepted(self):
        registry = PresenceRegistry()
        registry.register("c1", "")
        assert registry.snapshot() == [""]

    def test_clear(self):
        registry = PresenceRegistry()
        registry.register("c1", "alice")
        registry.clear()
        assert len(registry) == 0

    def test_snapshot_matches_registered_names_for_random_sequences(self):
        """The snapshot is exactly the set of names with a live connection."""
        rng = random.Random(1234)
        names = ["alice", "bob", "carol", "dave"]
        connections = [f"c{i}" for i in range(8)]

        for _ in range(50):
            registry = PresenceRegistry()
            expected = {}
            for _ in range(40):
                conn_id = rng.choice(connections)
                if rng.random() < 0.6:
                    name = rng.choice(names)
                    registry.register(conn_id, name)
                    expected[conn_id] = name
                else:
                    removed = registry.remove(conn_id)
                    assert removed == (expected.pop(conn_id, None) is not None)
                assert set(registry.snapshot()) == set(expected.values())
                assert len(registry.snapshot()) == len(set(expected.values()))
