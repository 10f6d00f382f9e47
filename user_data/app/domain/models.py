"""
Payload models for the user endpoints.
"""

from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Set

from pydantic import BaseModel, ConfigDict, Field


class AccessLevel(str, Enum):
    """Viewer's access to a profile, as reported by the profile endpoint."""
    OWNER = "OWNER"
    PUBLIC = "PUBLIC"
    PRIVATE = "PRIVATE"

    @classmethod
    def from_profile(cls, profile: Optional[Dict[str, Any]]) -> Optional["AccessLevel"]:
        if not profile:
            return None
        try:
            return cls(profile.get("accessLevel"))
        except ValueError:
            return None


class PageResponse(BaseModel):
    """One page of a paginated sub-resource.

    A missing ``nextCursor`` marks the end of the collection.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    data: List[Any] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")
    total: Optional[int] = None
    has_more: Optional[bool] = Field(default=None, alias="hasMore")


def entity_id(entity: Any) -> Optional[str]:
    """Identity of an entity, or None when it has no usable id."""
    if not isinstance(entity, dict):
        return None
    value = entity.get("id")
    if value is None or value == "":
        return None
    return str(value)


def unique_by_id(entities: Iterable[Any], seen: Optional[Set[str]] = None) -> List[Dict[str, Any]]:
    """Keep the first entity per id, skipping ids already in seen.

    ``seen`` is updated in place so successive pages can share it.
    """
    seen = set() if seen is None else seen
    unique = []
    for entity in entities:
        key = entity_id(entity)
        if key is None or key in seen:
            continue
        seen.add(key)
        unique.append(entity)
    return unique
