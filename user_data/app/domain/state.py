"""
Aggregate state exposed to UI consumers.
"""

import copy
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from shared.errors import ErrorResponse

from .models import AccessLevel

FIELDS = ("profile", "reviews", "lists", "restaurants")


class FieldState(str, Enum):
    """Lifecycle of one sub-resource for the current owner."""
    EMPTY = "empty"
    LOADING = "loading"
    FRESH = "fresh"
    STALE = "stale"
    ERROR = "error"


def _per_field(value: Any) -> Dict[str, Any]:
    return {name: value for name in FIELDS}


@dataclass
class UserAggregate:
    """Composed view of one profile owner's data.

    ``error`` is only set when the profile failed and nothing is left to
    render; failures behind still-visible data are reported per field in
    ``field_errors``. ``not_found`` marks a private or missing profile.
    """

    owner_id: Optional[str] = None
    profile: Optional[Dict[str, Any]] = None
    reviews: List[Dict[str, Any]] = field(default_factory=list)
    lists: List[Dict[str, Any]] = field(default_factory=list)
    restaurants: List[Dict[str, Any]] = field(default_factory=list)
    loading: bool = False
    loading_per_field: Dict[str, bool] = field(default_factory=lambda: _per_field(False))
    field_states: Dict[str, FieldState] = field(default_factory=lambda: _per_field(FieldState.EMPTY))
    field_errors: Dict[str, Optional[ErrorResponse]] = field(default_factory=lambda: _per_field(None))
    error: Optional[ErrorResponse] = None
    not_found: bool = False
    cursor: Optional[str] = None
    has_more_restaurants: bool = True

    @property
    def access_level(self) -> Optional[AccessLevel]:
        return AccessLevel.from_profile(self.profile)

    @property
    def is_own_profile(self) -> bool:
        return self.access_level == AccessLevel.OWNER

    @property
    def is_public_profile(self) -> bool:
        return self.access_level == AccessLevel.PUBLIC

    @property
    def can_view_private_data(self) -> bool:
        return self.access_level in (AccessLevel.OWNER, AccessLevel.PRIVATE)

    def has_data(self, name: str) -> bool:
        if name == "profile":
            return self.profile is not None
        return bool(getattr(self, name))

    def snapshot(self) -> "UserAggregate":
        """Detached copy; consumers never hold the live object."""
        return copy.deepcopy(self)
