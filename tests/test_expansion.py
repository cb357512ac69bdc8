"""Tests for single-origin expansion"""
import asyncio

import pytest

from sixdegrees.exceptions import CollaboratorFailure, InvalidQuery


def run(coro):
    return asyncio.run(coro)


def test_edge_cap_applies_and_depth_limit_stops_expansion(finder, make_lookup, network):
    network.graph = {"a": ["b", "c", "d"]}

    result = run(finder.expand_connections("a", 1, 10, 2, make_lookup(network.neighbors)))

    assert len(result["a"]) == 2
    assert set(result["a"]) <= {"b", "c", "d"}
    assert set(result) == {"a"} | set(result["a"])
    assert network.calls == ["a"]


def test_expansion_is_depth_first(finder, make_lookup, network):
    # Most recently pushed entity is queried next
    network.graph = {"a": ["b", "c"], "b": ["d"], "c": ["e"]}

    result = run(finder.expand_connections("a", 3, 10, 50, make_lookup(network.neighbors)))

    assert network.calls == ["a", "c", "e", "b", "d"]
    assert result == {"a": ["b", "c"], "b": ["d"], "c": ["e"], "d": [], "e": []}


def test_expansion_respects_call_budget(finder, make_lookup, network):
    network.graph = {"a": ["b", "c"], "b": ["d"], "c": ["e"]}

    result = run(finder.expand_connections("a", 6, 2, 50, make_lookup(network.neighbors)))

    assert len(network.calls) == 2
    # Entities discovered but never queried still appear in the ledger
    assert result["b"] == []
    assert result["e"] == []


def test_duplicates_and_self_references_are_dropped(finder, make_lookup, network):
    network.graph = {"a": ["b", "b", "a", "c"]}

    result = run(finder.expand_connections("a", 1, 10, 50, make_lookup(network.neighbors)))

    assert result["a"] == ["b", "c"]


def test_already_seen_entities_are_not_queued_twice(finder, make_lookup, network):
    network.graph = {"a": ["b", "c"], "c": ["b", "a"]}

    run(finder.expand_connections("a", 6, 10, 50, make_lookup(network.neighbors)))

    assert sorted(network.calls) == ["a", "b", "c"]


def test_cached_entities_do_not_use_budget(finder, cache, make_lookup, network):
    cache.record_edges("Hashtag", "a", ["b"])
    network.graph = {"b": ["c"]}

    result = run(finder.expand_connections("a", 6, 1, 50, make_lookup(network.neighbors)))

    assert network.calls == ["b"]
    assert result["a"] == ["b"]
    assert result["b"] == ["c"]


@pytest.mark.parametrize("query, degrees, calls, connections", [
    ("", 6, 10, 50),
    ("a", 0, 10, 50),
    ("a", 6, 0, 50),
    ("a", 6, 10, 0),
])
def test_invalid_parameters(finder, make_lookup, network, query, degrees, calls, connections):
    with pytest.raises(InvalidQuery):
        run(finder.expand_connections(query, degrees, calls, connections, make_lookup(network.neighbors)))

    assert network.calls == []


def test_lookup_failure_is_reported(finder, make_lookup, network):
    network.fail_on = {"a"}

    with pytest.raises(CollaboratorFailure):
        run(finder.expand_connections("a", 2, 10, 50, make_lookup(network.neighbors)))
