"""
Frontier nodes and the per-node connection ledger

A search keeps one ConnectionInfo per entity it has discovered. The ledger
records the entity's distance from the origin that found it and the edges
discovered when the entity was queried, capped at a fixed fan-out.
"""

from collections import OrderedDict
from typing import Callable, Hashable, List


class Node:
    """
    A discovered entity and its distance from the origin that found it

    Two nodes are equal when their values are equal; the distance is
    metadata and takes no part in identity.
    """

    __slots__ = ('value', 'distance')

    def __init__(self, value: Hashable, distance: int):
        self.value = value
        self.distance = distance

    def __eq__(self, other):
        if not isinstance(other, Node):
            return NotImplemented
        return self.value == other.value

    def __hash__(self):
        return hash(self.value)

    def __repr__(self):
        return f"Node({self.value!r}, {self.distance})"


Heuristic = Callable[[Node, int], float]


def closest_to_goal(node: Node, next_distance: int) -> float:
    """
    Default frontier ordering

    Nodes whose distance is nearest the next expansion distance were found
    deepest into the search, which puts them closest to the opposite
    frontier. Lower values are dequeued first.
    """
    return abs(next_distance - node.distance)


def breadth_first(node: Node, next_distance: int) -> float:
    """Shallowest nodes first"""
    return node.distance


class ConnectionInfo:
    """
    Ledger entry for one entity

    Edges are kept in discovery order and map each neighbor Node to a
    weight. Only presence is tracked, so every weight is 1.
    """

    def __init__(self, distance: int = 0, max_connections: int = 500):
        self.distance = distance
        self.max_connections = max_connections
        self.connections = OrderedDict()

    @property
    def is_full(self) -> bool:
        return len(self.connections) >= self.max_connections

    def add(self, node: Node, weight: int = 1) -> bool:
        """Record an edge; returns False once the entry is full"""
        if node in self.connections:
            return True
        if self.is_full:
            return False
        self.connections[node] = weight
        return True

    def values(self) -> List[Hashable]:
        return [node.value for node in self.connections]

    def __len__(self):
        return len(self.connections)
