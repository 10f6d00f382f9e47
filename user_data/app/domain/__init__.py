"""
Domain types for aggregate user data.
"""

from .models import AccessLevel, PageResponse, entity_id, unique_by_id
from .state import FIELDS, FieldState, UserAggregate

__all__ = [
    "AccessLevel",
    "FIELDS",
    "FieldState",
    "PageResponse",
    "UserAggregate",
    "entity_id",
    "unique_by_id",
]
