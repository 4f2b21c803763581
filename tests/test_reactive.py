"""Tests for the lazy dependency-tracking Store."""

import sys
from pathlib import Path

import pytest

repo_root = Path(__file__).parent.parent
if str(repo_root) not in sys.path:
    sys.path.insert(0, str(repo_root))

from reactive import Store


@pytest.fixture
def store():
    s = Store()
    s.atom("a", 1)
    s.atom("b", 10)
    s.computed("parity", ("a",), lambda a: a % 2)
    s.computed("scaled", ("parity",), lambda p: p * 100)
    s.computed("total", ("a", "b"), lambda a, b: a + b)
    return s


class TestRegistration:
    def test_unknown_dependency(self):
        s = Store()
        with pytest.raises(KeyError):
            s.computed("x", ("missing",), lambda m: m)

    def test_duplicate_name(self, store):
        with pytest.raises(ValueError):
            store.atom("a", 2)

    def test_cannot_set_derived(self, store):
        with pytest.raises(TypeError):
            store.set("total", 5)
        with pytest.raises(TypeError):
            store.update({"total": 5})

    def test_names_in_registration_order(self, store):
        assert store.names == ["a", "b", "parity", "scaled", "total"]


class TestRecomputation:
    def test_lazy_until_read(self, store):
        assert store.recompute_count["total"] == 0
        assert store.get("total") == 11
        assert store.get("total") == 11
        assert store.recompute_count["total"] == 1

    def test_only_affected_nodes_recompute(self, store):
        store.get("total")
        store.get("scaled")
        store.set("b", 20)
        assert store.get("total") == 21
        assert store.get("scaled") == 100
        assert store.recompute_count["parity"] == 1
        assert store.recompute_count["scaled"] == 1
        assert store.recompute_count["total"] == 2

    def test_unchanged_intermediate_stops_propagation(self, store):
        store.get("scaled")
        store.set("a", 3)
        assert store.get("scaled") == 100
        assert store.recompute_count["parity"] == 2
        assert store.recompute_count["scaled"] == 1

    def test_setting_same_value_is_a_no_op(self, store):
        version = store.version("a")
        assert store.set("a", 1) is False
        assert store.version("a") == version

    def test_dependents_are_topologically_ordered(self, store):
        assert store.dependents(["a"]) == ["parity", "scaled", "total"]
        assert store.dependents(["b"]) == ["total"]


class TestSubscriptions:
    def test_listener_fires_on_change_only(self, store):
        seen = []
        store.get("scaled")
        store.subscribe("scaled", seen.append)
        store.set("a", 3)
        assert seen == []
        store.set("a", 2)
        assert seen == [0]

    def test_update_notifies_once(self, store):
        seen = []
        store.subscribe("total", seen.append)
        changed = store.update({"a": 5, "b": 5})
        assert changed == ["a", "b"]
        assert seen == [10]

    def test_unsubscribe(self, store):
        seen = []
        unsubscribe = store.subscribe("b", seen.append)
        store.set("b", 11)
        unsubscribe()
        store.set("b", 12)
        assert seen == [11]
