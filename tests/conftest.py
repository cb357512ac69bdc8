"""Pytest configuration and fixtures"""
import pytest
from fastapi.testclient import TestClient

from sixdegrees.cache import ConnectionCache, get_cache
from sixdegrees.evidence import EvidenceResult, FlatResult
from sixdegrees.lookup import CachedLookup
from sixdegrees.main import (
    app, get_hashtag_fetch, get_user_fetch, get_user_profile_fetch, get_user_resolver, limiter
)
from sixdegrees.rate_limit import QueryType, RateBudgetGate, get_gate
from sixdegrees.search import LinkFinder


class FakeNetwork:
    """In-memory stand-in for the remote neighbor service"""

    def __init__(self, graph=None, documents=None, users=None, fail_on=()):
        self.graph = graph or {}
        self.documents = documents or {}
        self.users = users or {}
        self.fail_on = set(fail_on)
        self.calls = []

    async def neighbors(self, value):
        self.calls.append(value)
        if value in self.fail_on:
            raise RuntimeError(f"lookup failed for {value}")
        return FlatResult(tuple(self.graph.get(value, ())))

    async def documents_for(self, value):
        self.calls.append(value)
        if value in self.fail_on:
            raise RuntimeError(f"lookup failed for {value}")
        return EvidenceResult(dict(self.documents.get(value, {})))

    async def resolve(self, screen_name):
        return self.users.get(screen_name)


@pytest.fixture
def cache():
    return ConnectionCache(max_size=1000, enable_db_persistence=False)


@pytest.fixture
def gate():
    return RateBudgetGate()


@pytest.fixture
def finder(cache, gate):
    return LinkFinder(cache, gate, QueryType.HASHTAG_CONNECTIONS_BY_HASHTAG, identity="tester")


@pytest.fixture
def make_lookup(cache, gate):
    """Billed lookup over a fetch function, served from the cache when possible"""
    def factory(fetch, label="Hashtag"):
        return CachedLookup(fetch, cache, gate, label, QueryType.HASHTAG_CONNECTIONS_BY_HASHTAG, "tester")
    return factory


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def client(cache, gate, network):
    """Test client for the FastAPI app wired to in-memory collaborators"""
    app.dependency_overrides[get_cache] = lambda: cache
    app.dependency_overrides[get_gate] = lambda: gate
    app.dependency_overrides[get_hashtag_fetch] = lambda: network.documents_for
    app.dependency_overrides[get_user_fetch] = lambda: network.neighbors
    app.dependency_overrides[get_user_profile_fetch] = lambda: network.neighbors
    app.dependency_overrides[get_user_resolver] = lambda: network.resolve
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
        limiter.enabled = True
