from fastapi import FastAPI, Request, Depends, Query, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
import asyncio
import logging
from typing import List, Optional

from sixdegrees.cache import ConnectionCache, get_cache
from sixdegrees.config import API_TITLE, API_VERSION, CORS_ORIGINS, HASHTAG_SEARCH_DEFAULTS, USER_SEARCH_DEFAULTS
from sixdegrees.exceptions import BadRequest, CollaboratorFailure, InvalidQuery, SixDegreesError
from sixdegrees.lookup import CachedLookup, NeighborServiceClient, close_shared_http_client
from sixdegrees.models import ExpansionResponse, LinkData, RateLimitStatus, UserResult
from sixdegrees.rate_limit import QueryType, RateBudgetGate, get_gate
from sixdegrees.search import LinkFinder
from sixdegrees.utils import normalize_hashtag

# Configure structured logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler()
    ]
)

logger = logging.getLogger(__name__)

HASHTAG_LABEL = "Hashtag"
USER_LABEL = "User"
USER_PROFILE_LABEL = "UserProfile"

# Outer deadline for one search request
SEARCH_TIMEOUT_SECONDS = 300

# Initialize rate limiter
limiter = Limiter(key_func=get_remote_address)

app = FastAPI(title=API_TITLE, version=API_VERSION)

# Add rate limit exception handler
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.exception_handler(BadRequest)
async def bad_request_handler(request: Request, exc: BadRequest):
    """Search errors are reported as 400 with the underlying message"""
    logger.warning("Rejected search", extra={"path": request.url.path, "error": str(exc)})
    return JSONResponse(status_code=400, content={"detail": str(exc)})


app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET"],
    allow_headers=["*"],
)


# Security headers middleware
@app.middleware("http")
async def add_security_headers(request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


_neighbor_client: Optional[NeighborServiceClient] = None


def get_neighbor_client() -> NeighborServiceClient:
    global _neighbor_client
    if _neighbor_client is None:
        _neighbor_client = NeighborServiceClient()
    return _neighbor_client


def get_hashtag_fetch(client: NeighborServiceClient = Depends(get_neighbor_client)):
    return client.hashtag_documents


def get_user_fetch(client: NeighborServiceClient = Depends(get_neighbor_client)):
    return client.user_connections


def get_user_profile_fetch(client: NeighborServiceClient = Depends(get_neighbor_client)):
    return client.user_profiles


def get_user_resolver(client: NeighborServiceClient = Depends(get_neighbor_client)):
    return client.get_user


def get_identity(request: Request) -> str:
    """Budget owner: the signed-in user header, or the client address"""
    return request.headers.get("X-User-Id") or get_remote_address(request)


@app.on_event("shutdown")
async def shutdown_http_client():
    """Cleanup: Close the shared HTTP client on application shutdown"""
    await close_shared_http_client()


async def _run_with_deadline(coro):
    try:
        async with asyncio.timeout(SEARCH_TIMEOUT_SECONDS):
            return await coro
    except TimeoutError:
        raise HTTPException(
            status_code=504,
            detail=f'Search timeout exceeded ({SEARCH_TIMEOUT_SECONDS} seconds). Try lowering the search limits.'
        )


def _log_outcome(kind: str, result: LinkData):
    logger.info(
        f"{kind} link search finished",
        extra={"found": result.found, "paths": len(result.paths), "calls": result.metadata.calls}
    )


async def _resolve_users(resolve, *screen_names) -> List[UserResult]:
    """Look up each screen name; any unknown name rejects the request"""
    try:
        users = [await resolve(name) for name in screen_names]
    except SixDegreesError:
        raise
    except Exception as e:
        logger.error(f"User resolution failed: {e}", extra={"screen_names": list(screen_names)})
        raise CollaboratorFailure(str(e)) from e
    if any(user is None for user in users):
        raise InvalidQuery("Unable to find given users.")
    return users


@app.get("/api/search/degrees/hashtags", response_model=LinkData)
@limiter.limit("10/minute")
async def hashtag_link(
    request: Request,
    start: str = Query(..., max_length=140),
    end: str = Query(..., max_length=140),
    max_degrees: int = HASHTAG_SEARCH_DEFAULTS['max_degrees'],
    max_calls: int = HASHTAG_SEARCH_DEFAULTS['max_calls'],
    max_connections: int = HASHTAG_SEARCH_DEFAULTS['max_connections'],
    cache: ConnectionCache = Depends(get_cache),
    gate: RateBudgetGate = Depends(get_gate),
    identity: str = Depends(get_identity),
    fetch=Depends(get_hashtag_fetch),
):
    """
    Find a link between two hashtags (each shared document is one degree)

    The response carries, for every edge of every path, the document that
    mentions both hashtags.
    """
    query_class = QueryType.HASHTAG_CONNECTIONS_BY_HASHTAG
    max_api_calls = gate.call_budget(query_class, identity, max_calls)
    logger.info(
        "Starting hashtag link search",
        extra={"start": start, "end": end, "max_calls": max_api_calls, "identity": identity}
    )

    finder = LinkFinder(cache, gate, query_class, identity)
    lookup = CachedLookup(fetch, cache, gate, HASHTAG_LABEL, query_class, identity)
    result = await _run_with_deadline(finder.find_link(
        normalize_hashtag(start), normalize_hashtag(end),
        max_degrees, max_api_calls, max_connections, HASHTAG_LABEL, lookup
    ))
    _log_outcome("Hashtag", result)
    return result


@app.get("/api/search/degrees/hashtags/single", response_model=ExpansionResponse)
@limiter.limit("10/minute")
async def single_hashtag_connections(
    request: Request,
    query: str = Query(..., max_length=140),
    max_degrees: int = HASHTAG_SEARCH_DEFAULTS['max_degrees'],
    max_calls: int = HASHTAG_SEARCH_DEFAULTS['max_calls'],
    max_connections: int = HASHTAG_SEARCH_DEFAULTS['max_connections'],
    cache: ConnectionCache = Depends(get_cache),
    gate: RateBudgetGate = Depends(get_gate),
    identity: str = Depends(get_identity),
    fetch=Depends(get_hashtag_fetch),
):
    """Hashtags within the given number of degrees of a hashtag"""
    query_class = QueryType.HASHTAG_CONNECTIONS_BY_HASHTAG
    max_api_calls = gate.call_budget(query_class, identity, max_calls)

    finder = LinkFinder(cache, gate, query_class, identity)
    lookup = CachedLookup(fetch, cache, gate, HASHTAG_LABEL, query_class, identity)
    tag = normalize_hashtag(query)
    connections = await _run_with_deadline(finder.expand_connections(
        tag, max_degrees, max_api_calls, max_connections, lookup
    ))
    return ExpansionResponse(query=tag, connections=connections)


@app.get("/api/search/degrees/users", response_model=LinkData)
@limiter.limit("10/minute")
async def user_link(
    request: Request,
    start: str = Query(..., max_length=64),
    end: str = Query(..., max_length=64),
    max_degrees: int = USER_SEARCH_DEFAULTS['max_degrees'],
    max_calls: int = USER_SEARCH_DEFAULTS['max_calls'],
    max_connections: int = USER_SEARCH_DEFAULTS['max_connections'],
    lookup_ids: bool = False,
    cache: ConnectionCache = Depends(get_cache),
    gate: RateBudgetGate = Depends(get_gate),
    identity: str = Depends(get_identity),
    resolve=Depends(get_user_resolver),
    fetch=Depends(get_user_fetch),
    profile_fetch=Depends(get_user_profile_fetch),
):
    """
    Find a link between two users (screen names) through followers and friends

    By default the search walks user ids. With lookup_ids the search walks
    user profiles instead, so connections are keyed by screen name and paths
    carry full profiles.
    """
    query_class = QueryType.USER_CONNECTIONS_BY_ID
    max_api_calls = gate.call_budget(query_class, identity, max_calls)
    start_user, end_user = await _resolve_users(resolve, start, end)
    logger.info(
        "Starting user link search",
        extra={"start": start_user.id, "end": end_user.id, "max_calls": max_api_calls,
               "identity": identity, "lookup_ids": lookup_ids}
    )

    finder = LinkFinder(cache, gate, query_class, identity)
    if lookup_ids:
        lookup = CachedLookup(profile_fetch, cache, gate, USER_PROFILE_LABEL, query_class, identity)
        search = finder.find_link(start_user, end_user, max_degrees, max_api_calls, max_connections,
                                  USER_PROFILE_LABEL, lookup)
    else:
        lookup = CachedLookup(fetch, cache, gate, USER_LABEL, query_class, identity)
        search = finder.find_link(start_user.id, end_user.id, max_degrees, max_api_calls, max_connections,
                                  USER_LABEL, lookup)
    result = await _run_with_deadline(search)
    _log_outcome("User", result)
    return result


@app.get("/api/search/degrees/users/single", response_model=ExpansionResponse)
@limiter.limit("10/minute")
async def single_user_connections(
    request: Request,
    query: str = Query(..., max_length=64),
    max_degrees: int = USER_SEARCH_DEFAULTS['max_degrees'],
    max_calls: int = USER_SEARCH_DEFAULTS['max_calls'],
    max_connections: int = USER_SEARCH_DEFAULTS['max_connections'],
    cache: ConnectionCache = Depends(get_cache),
    gate: RateBudgetGate = Depends(get_gate),
    identity: str = Depends(get_identity),
    resolve=Depends(get_user_resolver),
    fetch=Depends(get_user_profile_fetch),
):
    """Users within the given number of degrees of a user, keyed by screen name"""
    query_class = QueryType.USER_CONNECTIONS_BY_ID
    max_api_calls = gate.call_budget(query_class, identity, max_calls)
    (user,) = await _resolve_users(resolve, query)

    finder = LinkFinder(cache, gate, query_class, identity)
    lookup = CachedLookup(fetch, cache, gate, USER_PROFILE_LABEL, query_class, identity)
    connections = await _run_with_deadline(finder.expand_connections(
        user, max_degrees, max_api_calls, max_connections, lookup
    ))
    return ExpansionResponse(query=str(user), connections=connections)


@app.get('/api/cache/stats')
async def get_cache_stats(cache: ConnectionCache = Depends(get_cache)):
    """
    Get connection cache statistics

    Returns cache performance metrics including:
    - Cache size and capacity
    - Hit/miss rates
    - Total requests
    """
    return cache.get_stats()


@app.get('/api/rate-limits', response_model=List[RateLimitStatus])
async def get_rate_limits(gate: RateBudgetGate = Depends(get_gate), identity: str = Depends(get_identity)):
    """Remaining remote calls for the caller in the current window"""
    return [
        RateLimitStatus(query_class=query_class.value, remaining=gate.remaining_calls(query_class, identity))
        for query_class in QueryType
    ]


if __name__ == '__main__':
    import uvicorn
    import os
    port = int(os.environ.get('PORT', 8000))
    uvicorn.run(app, host='0.0.0.0', port=port)
