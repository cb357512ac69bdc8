"""Tests for the connection cache"""
import pytest

from sixdegrees import cache as cache_module
from sixdegrees import database
from sixdegrees.cache import ConnectionCache
from sixdegrees.models import UserResult


@pytest.fixture
def db_path(tmp_path, monkeypatch):
    path = tmp_path / "connections.db"
    monkeypatch.setattr(database, "DATABASE_NAME", str(path))
    database.init_db()
    return path


def values(path):
    return [node.value for node in path]


def test_record_and_find_neighbors(cache):
    assert not cache.has_been_queried("Hashtag", "cats")
    assert cache.find_neighbors("Hashtag", "cats") == []

    cache.record_edges("Hashtag", "cats", ["pets", "kittens"])

    assert cache.has_been_queried("Hashtag", "cats")
    assert cache.find_neighbors("Hashtag", "cats") == ["pets", "kittens"]


def test_labels_are_partitioned(cache):
    cache.record_edges("Hashtag", "42", ["43"])

    assert not cache.has_been_queried("User", "42")
    assert cache.find_shortest_paths("42", "43", 6, "User") is None
    assert cache.find_shortest_paths("42", "43", 6, "Hashtag") is not None


def test_find_neighbors_returns_a_copy(cache):
    cache.record_edges("User", "a", ["b"])

    cache.find_neighbors("User", "a").append("mutated")

    assert cache.find_neighbors("User", "a") == ["b"]


def test_shortest_paths_walk_edges_in_both_directions(cache):
    cache.record_edges("User", "a", ["b"])
    cache.record_edges("User", "c", ["b"])

    paths = cache.find_shortest_paths("a", "c", 6, "User")

    assert [values(p) for p in paths] == [["a", "b", "c"]]
    assert [[node.distance for node in p] for p in paths] == [[0, 1, 2]]


def test_all_equally_short_paths_are_returned(cache):
    cache.record_edges("User", "a", ["b", "c", "x"])
    cache.record_edges("User", "d", ["b", "c"])
    cache.record_edges("User", "x", ["y"])
    cache.record_edges("User", "y", ["d"])

    paths = cache.find_shortest_paths("a", "d", 6, "User")

    assert sorted(values(p) for p in paths) == [["a", "b", "d"], ["a", "c", "d"]]


def test_paths_longer_than_max_degrees_are_ignored(cache):
    cache.record_edges("User", "a", ["b"])
    cache.record_edges("User", "b", ["c"])
    cache.record_edges("User", "c", ["d"])

    assert cache.find_shortest_paths("a", "d", 2, "User") is None
    assert values(cache.find_shortest_paths("a", "d", 3, "User")[0]) == ["a", "b", "c", "d"]


def test_evidence_is_kept_with_the_entry(cache):
    cache.record_edges("Hashtag", "cats", ["dogs"], {"doc-1": ["cats", "dogs"]})

    assert cache.find_evidence("Hashtag", "cats") == {"doc-1": ("cats", "dogs")}
    assert cache.find_evidence("Hashtag", "dogs") == {}


def test_lru_eviction_drops_reverse_edges():
    cache = ConnectionCache(max_size=2, enable_db_persistence=False)
    cache.record_edges("User", "a", ["b"])
    cache.record_edges("User", "c", ["d"])
    cache.record_edges("User", "e", ["f"])

    assert not cache.has_been_queried("User", "a")
    assert cache.find_shortest_paths("b", "a", 6, "User") is None
    assert cache.get_stats()["size"] == 2


def test_stats_track_hits_and_misses(cache):
    cache.record_edges("User", "a", ["b"])
    cache.has_been_queried("User", "a")
    cache.has_been_queried("User", "zzz")

    stats = cache.get_stats()
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 50.0

    cache.clear()
    assert cache.get_stats()["size"] == 0


def test_entries_persist_to_database(db_path):
    writer = ConnectionCache(enable_db_persistence=True)
    writer.record_edges("Hashtag", "cats", ["pets"], {"doc-1": ["cats", "pets"]})
    writer.record_edges("Hashtag", "dogs", ["pets"])

    reader = ConnectionCache(enable_db_persistence=True)

    assert reader.has_been_queried("Hashtag", "cats")
    assert reader.find_neighbors("Hashtag", "cats") == ["pets"]
    assert reader.find_evidence("Hashtag", "cats") == {"doc-1": ("cats", "pets")}
    # dogs is only reachable through the database reverse index
    assert values(reader.find_shortest_paths("cats", "dogs", 3, "Hashtag")[0]) == ["cats", "pets", "dogs"]


def test_user_values_round_trip_through_database(db_path):
    alice = UserResult(id="1", screen_name="alice")
    bob = UserResult(id="2", screen_name="bob")
    ConnectionCache(enable_db_persistence=True).record_edges("User", alice, [bob])

    neighbors = ConnectionCache(enable_db_persistence=True).find_neighbors("User", alice)

    assert neighbors == [bob]
    assert neighbors[0].screen_name == "bob"


def test_warm_cache_from_database(db_path):
    ConnectionCache(enable_db_persistence=True).record_edges("User", "a", ["b"])

    warmed = ConnectionCache(enable_db_persistence=True)
    warmed.warm_cache_from_db(limit=10)

    assert warmed.get_stats()["size"] == 1


def test_database_failures_do_not_break_recording(cache, monkeypatch):
    cache.enable_db_persistence = True

    def fail(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(database, "save_connections", fail)
    cache.record_edges("User", "a", ["b"])

    assert cache.find_neighbors("User", "a") == ["b"]


def test_cleanup_removes_stale_entries(db_path):
    ConnectionCache(enable_db_persistence=True).record_edges("User", "a", ["b"])

    with database.get_db() as conn:
        conn.execute("UPDATE queried_nodes SET last_used = datetime('now', '-60 days')")

    assert database.cleanup_old_connections(days_old=30) == 1
    assert database.get_connections("User", "a") is None


def test_rerecording_replaces_stored_evidence(db_path):
    writer = ConnectionCache(enable_db_persistence=True)
    writer.record_edges("Hashtag", "cats", ["pets"], {"doc-1": ["cats", "pets"]})
    writer.record_edges("Hashtag", "cats", ["dogs"], {"doc-2": ["cats", "dogs"]})

    assert writer.find_evidence("Hashtag", "cats") == {"doc-2": ("cats", "dogs")}
    assert ConnectionCache(enable_db_persistence=True).find_evidence("Hashtag", "cats") == {
        "doc-2": ("cats", "dogs")
    }

    writer.record_edges("Hashtag", "cats", ["dogs"])

    assert writer.find_evidence("Hashtag", "cats") == {}
    assert database.get_evidence("Hashtag", "cats") == {}


def test_global_cache_drops_stale_entries_on_startup(db_path, monkeypatch):
    ConnectionCache(enable_db_persistence=True).record_edges("User", "old", ["x"])
    ConnectionCache(enable_db_persistence=True).record_edges("User", "new", ["y"])
    with database.get_db() as conn:
        conn.execute("UPDATE queried_nodes SET last_used = datetime('now', '-60 days') WHERE node = ?",
                     (database.encode_value("old"),))

    monkeypatch.setattr(cache_module, "_global_cache", None)
    monkeypatch.setattr(cache_module, "CACHE_ENABLE_DB_PERSISTENCE", True)
    monkeypatch.setattr(cache_module, "CACHE_RETENTION_DAYS", 30)

    global_cache = cache_module.get_cache()

    assert database.get_connections("User", "old") is None
    assert global_cache.get_stats()["size"] == 1
    assert global_cache.find_neighbors("User", "new") == ["y"]
