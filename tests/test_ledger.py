"""Tests for frontier nodes and ledger entries"""
from sixdegrees.ledger import ConnectionInfo, Node, breadth_first, closest_to_goal
from sixdegrees.utils import display_key, normalize_hashtag
from sixdegrees.models import UserResult


def test_nodes_are_equal_by_value_only():
    assert Node("cats", 0) == Node("cats", 3)
    assert Node("cats", 0) != Node("dogs", 0)
    assert len({Node("cats", 0), Node("cats", 2)}) == 1


def test_connection_info_caps_edges():
    info = ConnectionInfo(distance=1, max_connections=2)

    assert info.add(Node("a", 2))
    assert info.add(Node("b", 2))
    assert not info.add(Node("c", 2))

    assert info.values() == ["a", "b"]
    assert info.is_full
    assert len(info) == 2


def test_connection_info_ignores_repeated_edges():
    info = ConnectionInfo(max_connections=5)
    info.add(Node("a", 1))
    info.add(Node("a", 4))

    assert info.values() == ["a"]
    assert info.connections[Node("a", 1)] == 1


def test_heuristics_order_candidates():
    frontier = [Node("old", 1), Node("new", 2)]

    assert [n.value for n in sorted(frontier, key=lambda n: closest_to_goal(n, 2))] == ["new", "old"]
    assert [n.value for n in sorted(frontier, key=lambda n: breadth_first(n, 2))] == ["old", "new"]


def test_display_key_prefers_screen_name():
    assert display_key(UserResult(id="7", screen_name="alice")) == "alice"
    assert display_key(UserResult(id="7")) == "7"
    assert display_key("cats") == "cats"


def test_normalize_hashtag():
    assert normalize_hashtag("  #CatPhotos ") == "catphotos"
