from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional


class UserResult(BaseModel):
    """A user account in the follower/friend graph"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    screen_name: Optional[str] = None
    name: Optional[str] = None

    def __eq__(self, other):
        if not isinstance(other, UserResult):
            return NotImplemented
        return self.id == other.id

    def __hash__(self):
        return hash(self.id)

    def __str__(self):
        return self.screen_name or self.id


class LinkMetadata(BaseModel):
    """Timing and billing information for one search"""
    elapsed: float = Field(..., ge=0, description="Wall-clock duration in seconds")
    calls: int = Field(..., ge=0, description="Remote calls that were billed against the rate budget")


class LinkData(BaseModel):
    """Result envelope of a link search"""
    connections: Dict[str, List[Any]] = {}
    paths: List[Dict[int, Any]] = []
    links: List[List[Optional[str]]] = []
    metadata: LinkMetadata

    @property
    def found(self) -> bool:
        return bool(self.paths)


class ExpansionResponse(BaseModel):
    """Response model for single-origin expansion"""
    query: str
    connections: Dict[str, List[Any]]


class RateLimitStatus(BaseModel):
    """Remaining allowance for one query class"""
    query_class: str
    remaining: int
