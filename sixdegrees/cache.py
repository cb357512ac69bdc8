"""
Connection caching for budget-friendly link searches

This module keeps the neighbors discovered for every queried entity so that
later searches can:
- serve a lookup without spending a remote call
- answer a whole search from already-known shortest paths

Entries are partitioned by label ("Hashtag", "User") so unrelated entity
graphs never mix. The in-memory store uses LRU eviction, is guarded by a
reentrant lock for concurrent searches and writes through to sqlite.
"""

from collections import OrderedDict, deque
from typing import Dict, Hashable, List, Optional, Tuple
import threading
import logging

from sixdegrees import database
from sixdegrees.config import CACHE_ENABLE_DB_PERSISTENCE, CACHE_MAX_SIZE, CACHE_RETENTION_DAYS, MAX_CACHED_PATHS
from sixdegrees.ledger import Node

logger = logging.getLogger(__name__)


class ConnectionCache:
    """
    In-memory LRU cache of queried entities and their neighbors

    Every queried entity is stored with its full neighbor list (and the
    evidence behind it, when the lookup produced any). A reverse index lets
    path queries treat the cached graph as undirected: an edge discovered
    from either end can be walked in both directions.

    Features:
    - LRU eviction when cache is full
    - Thread-safe operations
    - Automatic database persistence
    - Cache warming from database on startup
    """

    def __init__(self, max_size: int = 10000, enable_db_persistence: bool = True):
        """
        Initialize the connection cache

        Args:
            max_size: Maximum number of queried entities to keep in memory (default: 10000)
            enable_db_persistence: Whether to sync with database (default: True)
        """
        self.max_size = max_size
        self.enable_db_persistence = enable_db_persistence
        self._neighbors = OrderedDict()  # (label, node) -> [neighbor, ...]
        self._evidence = {}  # (label, node) -> {evidence_id: (entity, ...)}
        self._referenced_by = {}  # (label, neighbor) -> {node, ...}
        self._lock = threading.RLock()  # Reentrant lock for nested operations
        self._hits = 0
        self._misses = 0

        logger.info(f"ConnectionCache initialized with max_size={max_size}, db_persistence={enable_db_persistence}")

    def _load(self, label: str, node: Hashable) -> Optional[List[Hashable]]:
        """Neighbors of a queried entity, loading from the database on a miss"""
        key = (label, node)

        with self._lock:
            if key in self._neighbors:
                self._neighbors.move_to_end(key)
                self._hits += 1
                logger.debug(f"Cache HIT: [{label}] {node}")
                return self._neighbors[key]

            self._misses += 1
            logger.debug(f"Cache MISS: [{label}] {node}")

            if self.enable_db_persistence:
                neighbors = database.get_connections(label, node)
                if neighbors is not None:
                    logger.debug(f"Loaded from DB: [{label}] {node}")
                    evidence = database.get_evidence(label, node)
                    self._put_internal(label, node, neighbors, evidence, update_db=False)
                    return self._neighbors[key]

            return None

    def has_been_queried(self, label: str, node: Hashable) -> bool:
        return self._load(label, node) is not None

    def find_neighbors(self, label: str, node: Hashable) -> List[Hashable]:
        """
        Neighbors recorded for an entity

        Returns:
            Copy of the neighbor list, empty if the entity was never queried
        """
        neighbors = self._load(label, node)
        return list(neighbors) if neighbors is not None else []

    def find_evidence(self, label: str, node: Hashable) -> Dict[str, Tuple[Hashable, ...]]:
        """Evidence recorded when the entity was queried, as {evidence_id: entities}"""
        with self._lock:
            if self._load(label, node) is None:
                return {}
            return dict(self._evidence.get((label, node), {}))

    def record_edges(self, label: str, node: Hashable, neighbors, evidence=None):
        """
        Store the neighbors discovered for a queried entity

        Args:
            label: Cache partition
            node: The queried entity
            neighbors: Distinct neighbors in discovery order
            evidence: Optional mapping of evidence id -> entities it names
        """
        with self._lock:
            self._put_internal(label, node, list(neighbors), evidence, update_db=True)

    def _put_internal(self, label, node, neighbors, evidence, update_db: bool):
        """
        Internal method to store an entry (without acquiring lock)

        Args:
            label: Cache partition
            node: Queried entity
            neighbors: Neighbor list
            evidence: Evidence mapping or None
            update_db: Whether to persist to database
        """
        key = (label, node)

        if key in self._neighbors:
            self._unindex(key)
        self._neighbors[key] = neighbors
        self._neighbors.move_to_end(key)
        if evidence:
            self._evidence[key] = {evidence_id: tuple(values) for evidence_id, values in evidence.items()}
        else:
            self._evidence.pop(key, None)
        for neighbor in neighbors:
            self._referenced_by.setdefault((label, neighbor), set()).add(node)

        # Evict LRU if cache is full
        while len(self._neighbors) > self.max_size:
            evicted_key = next(iter(self._neighbors))
            self._unindex(evicted_key)
            del self._neighbors[evicted_key]
            self._evidence.pop(evicted_key, None)
            logger.debug(f"Evicted LRU entry: {evicted_key}")

        # Persist to database
        if update_db and self.enable_db_persistence:
            try:
                database.save_connections(label, node, neighbors, evidence)
            except Exception as e:
                logger.error(f"Failed to save connections to database: {e}")

    def _unindex(self, key):
        label, node = key
        for neighbor in self._neighbors[key]:
            referencing = self._referenced_by.get((label, neighbor))
            if referencing is not None:
                referencing.discard(node)
                if not referencing:
                    del self._referenced_by[(label, neighbor)]

    def find_adjacent(self, label: str, node: Hashable) -> List[Hashable]:
        """Entities joined to node by a cached edge in either direction"""
        adjacent = list(self.find_neighbors(label, node))
        seen = set(adjacent)

        with self._lock:
            referencing = list(self._referenced_by.get((label, node), ()))

        if self.enable_db_persistence:
            referencing.extend(database.get_referencing_nodes(label, node))

        for other in referencing:
            if other not in seen:
                seen.add(other)
                adjacent.append(other)
        return adjacent

    def find_shortest_paths(self, start, end, max_degrees: int, label: str) -> Optional[List[List[Node]]]:
        """
        All shortest cached paths between two entities

        Runs a layered BFS over the cached (undirected) graph, stopping at the
        first layer that reaches the end or after max_degrees edges.

        Args:
            start: First entity
            end: Last entity
            max_degrees: Maximum number of edges in a path
            label: Cache partition

        Returns:
            Up to MAX_CACHED_PATHS paths of Nodes with distances 0..n, or None
        """
        if start == end or max_degrees < 1:
            return None

        parents = {start: []}
        layer = [start]
        depth = 0
        reached = False

        while layer and depth < max_degrees and not reached:
            depth += 1
            next_layer = []
            in_next_layer = set()
            for current in layer:
                for neighbor in self.find_adjacent(label, current):
                    if neighbor in parents and neighbor not in in_next_layer:
                        continue
                    if neighbor not in parents:
                        parents[neighbor] = []
                        next_layer.append(neighbor)
                        in_next_layer.add(neighbor)
                    parents[neighbor].append(current)
                    if neighbor == end:
                        reached = True
            layer = next_layer

        if not reached:
            return None

        paths = []
        stack = deque([[end]])
        while stack and len(paths) < MAX_CACHED_PATHS:
            partial = stack.pop()
            head = partial[-1]
            if head == start:
                values = list(reversed(partial))
                paths.append([Node(value, distance) for distance, value in enumerate(values)])
                continue
            for parent in reversed(parents[head]):
                stack.append(partial + [parent])

        logger.info(f"Cache path lookup: [{label}] {start} → {end} ({len(paths)} paths, {depth} hops)")
        return paths

    def warm_cache_from_db(self, limit: int = 1000):
        """
        Pre-load recently used entries from database

        Args:
            limit: Maximum number of entries to load
        """
        if not self.enable_db_persistence:
            logger.warning("Database persistence disabled, skipping cache warming")
            return

        logger.info(f"Warming cache from database (limit={limit})...")

        try:
            recent = database.get_recent_nodes(limit)
            with self._lock:
                # Oldest first so the most recent end up at the MRU end
                for label, node in reversed(recent):
                    neighbors = database.get_connections(label, node)
                    if neighbors is None:
                        continue
                    evidence = database.get_evidence(label, node)
                    self._put_internal(label, node, neighbors, evidence, update_db=False)

            logger.info(f"Warmed cache with {len(recent)} entries from database")

        except Exception as e:
            logger.error(f"Failed to warm cache from database: {e}")

    def get_stats(self) -> dict:
        """
        Get cache statistics

        Returns:
            Dictionary with cache metrics
        """
        with self._lock:
            total_requests = self._hits + self._misses
            hit_rate = (self._hits / total_requests * 100) if total_requests > 0 else 0

            return {
                'size': len(self._neighbors),
                'max_size': self.max_size,
                'hits': self._hits,
                'misses': self._misses,
                'hit_rate': round(hit_rate, 2),
                'total_requests': total_requests
            }

    def clear(self):
        """Clear all cached entries"""
        with self._lock:
            self._neighbors.clear()
            self._evidence.clear()
            self._referenced_by.clear()
            self._hits = 0
            self._misses = 0
            logger.info("Cache cleared")


# Global cache instance
_global_cache: Optional[ConnectionCache] = None


def get_cache() -> ConnectionCache:
    """
    Get or create the global cache instance

    Returns:
        The global ConnectionCache instance
    """
    global _global_cache

    if _global_cache is None:
        _global_cache = ConnectionCache(max_size=CACHE_MAX_SIZE, enable_db_persistence=CACHE_ENABLE_DB_PERSISTENCE)
        if CACHE_ENABLE_DB_PERSISTENCE:
            database.init_db()
            removed = database.cleanup_old_connections(days_old=CACHE_RETENTION_DAYS)
            if removed:
                logger.info(f"Removed {removed} stale entries from database")
            # Warm cache on first access
            _global_cache.warm_cache_from_db(limit=1000)

    return _global_cache
