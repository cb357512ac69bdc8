"""
Lookup result variants and the evidence tracker

A remote lookup answers with one of two shapes:

- FlatResult: the entity's neighbors as a flat, possibly duplicated sequence
- EvidenceResult: evidence items (e.g. tweet URLs) mapped to the entities
  each one names, used when every edge must be explainable

Both variants expose the same operations so the search engines never have to
inspect which shape they were given.
"""

from dataclasses import dataclass, field
from typing import Dict, Hashable, Iterable, List, Optional, Tuple, Union


def _distinct(values: Iterable[Hashable], exclude: Optional[Hashable] = None) -> List[Hashable]:
    seen = set()
    result = []
    for value in values:
        if value == exclude or value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


class EvidenceTracker:
    """
    Maps each evidence item to the distinct entities it links

    An item is recorded at most once; later sightings of the same item are
    ignored.
    """

    def __init__(self):
        self._links: Dict[str, Tuple[Hashable, ...]] = {}

    def record(self, evidence_id: str, values: Iterable[Hashable]) -> bool:
        if evidence_id in self._links:
            return False
        self._links[evidence_id] = tuple(_distinct(values))
        return True

    def link_between(self, first: Hashable, second: Hashable) -> Optional[str]:
        """First evidence item naming both entities, in recording order"""
        for evidence_id, values in self._links.items():
            if first in values and second in values:
                return evidence_id
        return None

    def links_for_path(self, path: List[Hashable]) -> List[Optional[str]]:
        return [self.link_between(path[i], path[i + 1]) for i in range(len(path) - 1)]

    def __contains__(self, evidence_id):
        return evidence_id in self._links

    def __len__(self):
        return len(self._links)

    def __bool__(self):
        return bool(self._links)


@dataclass(frozen=True)
class FlatResult:
    values: Tuple[Hashable, ...] = ()

    def neighbors(self, exclude: Optional[Hashable] = None) -> List[Hashable]:
        return _distinct(self.values, exclude)

    def merge_into(self, tracker: EvidenceTracker) -> None:
        pass

    def contains_link(self, goals) -> bool:
        return any(value in goals for value in self.values)

    @property
    def evidence(self) -> Optional[Dict[str, Tuple[Hashable, ...]]]:
        return None


@dataclass(frozen=True)
class EvidenceResult:
    links: Dict[str, Tuple[Hashable, ...]] = field(default_factory=dict)

    def neighbors(self, exclude: Optional[Hashable] = None) -> List[Hashable]:
        return _distinct((value for values in self.links.values() for value in values), exclude)

    def merge_into(self, tracker: EvidenceTracker) -> None:
        for evidence_id, values in self.links.items():
            tracker.record(evidence_id, values)

    def contains_link(self, goals) -> bool:
        return any(value in goals for values in self.links.values() for value in values)

    @property
    def evidence(self) -> Optional[Dict[str, Tuple[Hashable, ...]]]:
        return self.links


LookupResult = Union[FlatResult, EvidenceResult]
