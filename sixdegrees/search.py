"""
Budgeted link search between two entities

LinkFinder runs two kinds of searches against a remote lookup that can only
be called a limited number of times per window:

- find_link: bidirectional frontier search that stops as soon as the two
  frontiers share an entity, then reads the canonical shortest paths back
  from the connection cache
- expand_connections: single-origin, depth-first expansion out to N degrees

Both count a call as billed only when the rate budget gate reports fewer
remaining calls after the lookup than before it, so lookups served from a
cache cost nothing.
"""

import logging
import time
from typing import Dict, Hashable, List, Optional

from sixdegrees.cache import ConnectionCache
from sixdegrees.evidence import EvidenceResult, EvidenceTracker
from sixdegrees.exceptions import BudgetUnavailable, CollaboratorFailure, InvalidQuery, SixDegreesError
from sixdegrees.ledger import ConnectionInfo, Heuristic, Node, closest_to_goal
from sixdegrees.lookup import Lookup
from sixdegrees.models import LinkData, LinkMetadata
from sixdegrees.rate_limit import RateBudgetGate
from sixdegrees.utils import display_key

logger = logging.getLogger(__name__)


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class LinkFinder:
    """
    Link search engine bound to its collaborators

    Args:
        cache: Connection cache holding previously discovered edges and paths
        gate: Rate budget gate consulted around every lookup
        query_class: Query class the lookups are billed under
        identity: Caller identity the budget belongs to
    """

    def __init__(self, cache: ConnectionCache, gate: RateBudgetGate, query_class, identity=None):
        self.cache = cache
        self.gate = gate
        self.query_class = query_class
        self.identity = identity

    async def _query(self, lookup: Lookup, value: Hashable):
        """
        Run one lookup and report whether it was billed

        Returns:
            Tuple of (lookup result, billed)
        """
        previous_limit = self.gate.remaining_calls(self.query_class, self.identity)
        result = await lookup(value)
        new_limit = self.gate.remaining_calls(self.query_class, self.identity)
        return result, new_limit < previous_limit

    async def find_link(self, start, end, max_degrees: int, max_calls: int, max_connections: int,
                        label: str, lookup: Lookup, heuristic: Heuristic = closest_to_goal) -> LinkData:
        """
        Find how two entities are connected

        Args:
            start: Starting entity
            end: Ending entity
            max_degrees: Maximum number of edges in a path
            max_calls: Maximum number of billed lookups
            max_connections: Maximum edges recorded (and neighbors expanded) per entity
            label: Cache partition the entities belong to
            lookup: Remote lookup for one entity's neighbors
            heuristic: Frontier ordering, lower values are queried first

        Returns:
            LinkData; paths and links are empty when no link was found within budget

        Raises:
            InvalidQuery: For degenerate parameters (BudgetUnavailable when max_calls < 1)
            CollaboratorFailure: When the lookup or the cache fails
        """
        if max_calls < 1:
            raise BudgetUnavailable()
        if _is_missing(start) or _is_missing(end) or max_degrees < 1 or max_connections < 1:
            raise InvalidQuery("Invalid query.")
        if start == end:
            raise InvalidQuery("Start and end must differ.")

        try:
            return await self._find_link(start, end, max_degrees, max_calls, max_connections,
                                         label, lookup, heuristic)
        except SixDegreesError:
            raise
        except Exception as e:
            logger.error(f"Link search failed: {e}", extra={"start": str(start), "end": str(end), "label": label})
            raise CollaboratorFailure(str(e)) from e

    async def _find_link(self, start, end, max_degrees, max_calls, max_connections, label, lookup, heuristic):
        start_time = time.time()
        logger.info(f"Link search: [{label}] {start} → {end} (degrees={max_degrees}, calls={max_calls})")

        cached_paths = self.cache.find_shortest_paths(start, end, max_degrees, label)
        if cached_paths:
            logger.info(f"✓ Cache HIT: {len(cached_paths)} known path(s) for {start} → {end}")
            return self._format_cached_link_data(max_connections, label, start_time, cached_paths)

        tracker = EvidenceTracker()
        remaining_from_start = [Node(start, 0)]
        remaining_from_end = [Node(end, 0)]
        seen_values = {start, end}
        seen_at_start = {start}
        seen_at_end = {end}
        connections: Dict[Hashable, ConnectionInfo] = {
            start: ConnectionInfo(0, max_connections),
            end: ConnectionInfo(0, max_connections),
        }

        calls_made = 0
        found_link = False
        searching_from_start = True

        while not found_link and calls_made < max_calls and (remaining_from_start or remaining_from_end):
            remaining = remaining_from_start if searching_from_start else remaining_from_end
            seen_in_direction = seen_at_start if searching_from_start else seen_at_end
            goal_values = seen_at_end if searching_from_start else seen_at_start

            if remaining:
                node = remaining.pop(0)
                result, billed = await self._query(lookup, node.value)
                if billed:
                    calls_made += 1

                neighbors = result.neighbors(exclude=node.value)
                result.merge_into(tracker)
                self.cache.record_edges(label, node.value, neighbors, result.evidence)

                next_distance = node.distance + 1
                ledger_entry = connections[node.value]
                for value in neighbors:
                    ledger_entry.add(Node(value, next_distance))
                    if value not in seen_values:
                        discovered = Node(value, next_distance)
                        if next_distance < max_degrees - 1:
                            remaining.append(discovered)
                        connections[value] = ConnectionInfo(next_distance, max_connections)
                        seen_values.add(value)
                        seen_in_direction.add(value)

                remaining.sort(key=lambda candidate: heuristic(candidate, next_distance))
                found_link = result.contains_link(goal_values)

                logger.debug(
                    f"Expanded {node.value!r} ({'start' if searching_from_start else 'end'} side, "
                    f"distance {node.distance}): {len(neighbors)} neighbors, billed={billed}"
                )

            searching_from_start = not searching_from_start

        paths = self.cache.find_shortest_paths(start, end, max_degrees, label) if found_link else None
        self._merge_cached_evidence(tracker, paths, label)
        if found_link:
            logger.info(f"✓ Link found: {start} → {end} after {calls_made} billed call(s)")
        else:
            logger.info(f"○ No link found: {start} → {end} after {calls_made} billed call(s)")

        return LinkData(
            connections=self._format_connections(connections),
            paths=self._format_paths(paths),
            links=self._format_links(tracker, paths),
            metadata=LinkMetadata(elapsed=time.time() - start_time, calls=calls_made),
        )

    def _format_cached_link_data(self, max_connections, label, start_time, cached_paths) -> LinkData:
        """Result for paths already known to the cache, built without any lookup"""
        tracker = EvidenceTracker()
        cached_connections = {}
        for path in cached_paths:
            for node in path:
                adjacent = self.cache.find_adjacent(label, node.value)
                cached_connections[display_key(node.value)] = adjacent[:max_connections]
        self._merge_cached_evidence(tracker, cached_paths, label)

        return LinkData(
            connections=cached_connections,
            paths=self._format_paths(cached_paths),
            links=self._format_links(tracker, cached_paths),
            metadata=LinkMetadata(elapsed=time.time() - start_time, calls=0),
        )

    def _merge_cached_evidence(self, tracker: EvidenceTracker, paths: Optional[List[List[Node]]], label: str):
        """Add evidence cached for path entities, so edges learned by earlier searches can be attributed"""
        for path in paths or []:
            for node in path:
                EvidenceResult(self.cache.find_evidence(label, node.value)).merge_into(tracker)

    @staticmethod
    def _format_connections(connections: Dict[Hashable, ConnectionInfo]) -> Dict[str, List]:
        return {
            display_key(value): info.values()
            for value, info in connections.items()
            if len(info) > 0
        }

    @staticmethod
    def _format_paths(paths: Optional[List[List[Node]]]) -> List[Dict[int, Hashable]]:
        return [{node.distance: node.value for node in path} for path in paths or []]

    @staticmethod
    def _format_links(tracker: EvidenceTracker, paths: Optional[List[List[Node]]]) -> List[List[Optional[str]]]:
        if not tracker or not paths:
            return []
        return [tracker.links_for_path([node.value for node in path]) for path in paths]

    async def expand_connections(self, query, max_degrees: int, max_calls: int, max_connections: int,
                                 lookup: Lookup) -> Dict[str, List]:
        """
        Collect entities within max_degrees of a single origin

        Exploration uses a stack, so it runs depth-first: the most recently
        discovered entity is queried next.

        Args:
            query: Origin entity
            max_degrees: Entities are expanded only while their distance stays below this
            max_calls: Maximum number of billed lookups
            max_connections: Maximum edges recorded (and neighbors queued) per entity
            lookup: Remote lookup for one entity's neighbors

        Returns:
            Ledger of every discovered entity mapped to its recorded edges
        """
        if _is_missing(query) or max_degrees < 1 or max_calls < 1 or max_connections < 1:
            raise InvalidQuery("Invalid query.")

        try:
            return await self._expand_connections(query, max_degrees, max_calls, max_connections, lookup)
        except SixDegreesError:
            raise
        except Exception as e:
            logger.error(f"Connection expansion failed: {e}", extra={"query": str(query)})
            raise CollaboratorFailure(str(e)) from e

    async def _expand_connections(self, query, max_degrees, max_calls, max_connections, lookup):
        calls_made = 0
        remaining = [query]
        results: Dict[Hashable, ConnectionInfo] = {query: ConnectionInfo(0, max_connections)}

        while calls_made < max_calls and remaining:
            to_query = remaining.pop()
            result, billed = await self._query(lookup, to_query)
            if billed:
                calls_made += 1

            neighbors = result.neighbors(exclude=to_query)
            entry = results[to_query]
            for value in neighbors:
                if not entry.add(Node(value, entry.distance + 1)):
                    break

            next_distance = entry.distance + 1
            unseen = [value for value in neighbors if value not in results]
            for value in unseen[:max_connections]:
                if next_distance < max_degrees:
                    remaining.append(value)
                results[value] = ConnectionInfo(next_distance, max_connections)

        logger.info(f"Expanded {query!r}: {len(results)} entities after {calls_made} billed call(s)")
        return {display_key(value): info.values() for value, info in results.items()}
