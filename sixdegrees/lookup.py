"""
Remote lookup adapters

A lookup is any awaitable callable taking one entity value and returning a
FlatResult or an EvidenceResult. CachedLookup puts the connection cache and
the rate budget in front of a remote fetch; NeighborServiceClient is the
httpx client for the JSON neighbor service.
"""

import asyncio
import logging
from functools import wraps
from typing import Any, Awaitable, Callable, Hashable, List, Optional, Protocol

import httpx

from sixdegrees.cache import ConnectionCache
from sixdegrees.config import MAX_USER_LOOKUP_COUNT, NEIGHBOR_SERVICE_URL, USER_LOOKUP_BATCH_SIZE
from sixdegrees.evidence import EvidenceResult, FlatResult, LookupResult
from sixdegrees.models import UserResult
from sixdegrees.rate_limit import RateBudgetGate
from sixdegrees.utils import normalize_hashtag

logger = logging.getLogger(__name__)


class Lookup(Protocol):
    async def __call__(self, value: Hashable) -> LookupResult: ...


# Retry decorator for API calls
def retry_on_failure(max_retries: int = 3, backoff_factor: float = 0.5):
    """
    Decorator to retry async functions on transient failures

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        backoff_factor: Multiplier for exponential backoff (default: 0.5)

    Retries on:
    - httpx.TimeoutException (network timeouts)
    - httpx.ConnectError (connection failures)
    - httpx.ReadError (read failures)

    Does NOT retry on:
    - httpx.HTTPStatusError (4xx, 5xx responses)
    - Other exceptions
    """
    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            for attempt in range(max_retries):
                try:
                    return await func(*args, **kwargs)

                except (httpx.TimeoutException, httpx.ConnectError, httpx.ReadError) as e:
                    if attempt < max_retries - 1:
                        # Exponential backoff: 0.5s, 1s, 2s
                        sleep_time = backoff_factor * (2 ** attempt)
                        logger.warning(
                            "Lookup call failed, retrying",
                            extra={
                                "error_type": type(e).__name__,
                                "retry_delay": sleep_time,
                                "attempt": attempt + 1,
                                "max_retries": max_retries
                            }
                        )
                        await asyncio.sleep(sleep_time)
                        continue

                    logger.error(f"Lookup call failed after {max_retries} attempts", extra={"error": str(e)})
                    raise

        return wrapper
    return decorator


# Shared HTTP client for all requests (connection pooling)
_shared_http_client: Optional[httpx.AsyncClient] = None


async def get_shared_http_client() -> httpx.AsyncClient:
    """
    Get or create the shared HTTP client for neighbor service requests.

    Returns:
        httpx.AsyncClient: The shared HTTP client instance
    """
    global _shared_http_client

    if _shared_http_client is None:
        timeout = httpx.Timeout(
            connect=5.0,   # Time to establish connection
            read=30.0,     # Time to read response
            write=5.0,     # Time to send request
            pool=5.0       # Time to acquire connection from pool
        )
        limits = httpx.Limits(
            max_connections=100,
            max_keepalive_connections=20
        )
        _shared_http_client = httpx.AsyncClient(
            timeout=timeout,
            limits=limits,
            headers={'User-Agent': 'SixDegrees/1.0'},
            http2=True
        )

    return _shared_http_client


async def close_shared_http_client():
    global _shared_http_client
    if _shared_http_client is not None:
        await _shared_http_client.aclose()
        _shared_http_client = None


class NeighborServiceClient:
    """Client for the JSON neighbor service fronting the social network API"""

    def __init__(self, base_url: str = NEIGHBOR_SERVICE_URL, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip('/')
        self.client = client

    async def _get_json(self, path: str, params=None):
        if self.client is None:
            self.client = await get_shared_http_client()
        response = await self.client.get(f"{self.base_url}{path}", params=params)
        response.raise_for_status()
        return response.json()

    @retry_on_failure(max_retries=3, backoff_factor=0.5)
    async def hashtag_documents(self, hashtag: str) -> EvidenceResult:
        """
        Documents mentioning a hashtag, keyed by document URL

        Only documents that actually carry the queried hashtag are kept, and
        every hashtag is lower-cased so that '#Cats' and '#cats' meet.
        """
        query = normalize_hashtag(hashtag)
        data = await self._get_json(f"/hashtags/{query}", params={'exclude_repeats': 1})

        links = {}
        for document in data.get('documents', []):
            tags = []
            for tag in document.get('hashtags', []):
                tag = normalize_hashtag(tag)
                if tag not in tags:
                    tags.append(tag)
            if query in tags and document.get('url') not in links:
                links[document['url']] = tuple(tags)

        logger.debug(f"Hashtag lookup '{query}': {len(links)} documents")
        return EvidenceResult(links)

    @retry_on_failure(max_retries=3, backoff_factor=0.5)
    async def user_connections(self, user: str) -> FlatResult:
        """Follower and friend identifiers of a user (may contain duplicates)"""
        data = await self._get_json(f"/users/{user}/connections")
        ids = [str(i) for i in data.get('followers', [])] + [str(i) for i in data.get('friends', [])]
        return FlatResult(tuple(ids))

    @retry_on_failure(max_retries=3, backoff_factor=0.5)
    async def get_user(self, screen_name: str) -> Optional[UserResult]:
        """Resolve a screen name (with or without '@'); None when no such user exists"""
        screen_name = screen_name.strip().lstrip('@')
        try:
            data = await self._get_json(f"/users/by-name/{screen_name}")
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 404:
                return None
            raise
        return _to_user_result(data)

    @retry_on_failure(max_retries=3, backoff_factor=0.5)
    async def _lookup_batch(self, ids: List[str]) -> List[UserResult]:
        data = await self._get_json("/users/lookup", params={'ids': ','.join(ids)})
        return [_to_user_result(item) for item in data.get('users', [])]

    async def lookup_users(self, ids: List[str], limit: int = MAX_USER_LOOKUP_COUNT) -> List[UserResult]:
        """
        Profiles for a list of user ids, fetched in batches

        Args:
            ids: User ids to resolve
            limit: Maximum number of profiles to return
        """
        results = []
        remaining = list(ids)
        while remaining and len(results) < limit:
            batch, remaining = remaining[:USER_LOOKUP_BATCH_SIZE], remaining[USER_LOOKUP_BATCH_SIZE:]
            profiles = await self._lookup_batch(batch)
            results.extend(profiles[:limit - len(results)])
        return results

    async def user_profiles(self, user: UserResult) -> FlatResult:
        """Followers and friends of a user as profiles, so results can be keyed by screen name"""
        ids = (await self.user_connections(user.id)).neighbors(exclude=user.id)
        profiles = await self.lookup_users(ids)
        logger.debug(f"User lookup '{user}': {len(ids)} ids, {len(profiles)} profiles")
        return FlatResult(tuple(profiles))


def _to_user_result(data) -> UserResult:
    return UserResult(id=str(data['id']), screen_name=data.get('screen_name'), name=data.get('name'))


class CachedLookup:
    """
    Serve lookups from the connection cache, falling back to a remote fetch

    Cache hits cost nothing; every remote fetch is charged to the rate
    budget gate for the configured query class and identity.
    """

    def __init__(self, fetch: Callable[[Hashable], Awaitable[LookupResult]], cache: ConnectionCache,
                 gate: RateBudgetGate, label: str, query_class, identity=None):
        self.fetch = fetch
        self.cache = cache
        self.gate = gate
        self.label = label
        self.query_class = query_class
        self.identity = identity

    async def __call__(self, value: Hashable) -> LookupResult:
        if self.cache.has_been_queried(self.label, value):
            evidence = self.cache.find_evidence(self.label, value)
            if evidence:
                return EvidenceResult(evidence)
            return FlatResult(tuple(self.cache.find_neighbors(self.label, value)))

        result = await self.fetch(value)
        self.gate.consume(self.query_class, self.identity)
        return result
