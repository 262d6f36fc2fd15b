"""In-memory caches shared across dashboard sessions."""

from .view_cache import (
    LEAVE_INVALIDATION_PREFIXES,
    REFRESH_SCOPES,
    ViewCache,
    cache_key,
    view_cache,
)

__all__ = [
    "LEAVE_INVALIDATION_PREFIXES",
    "REFRESH_SCOPES",
    "ViewCache",
    "cache_key",
    "view_cache",
]
