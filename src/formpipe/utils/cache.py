"""Caching utilities for the submission pipeline API."""

import hashlib
import json
from functools import wraps
from typing import Any, Callable

from cachetools import TTLCache
from pydantic import BaseModel

# Analytics are recomputed from a snapshot; a short TTL keeps "today" counts fresh
CACHE_TTL_SECONDS = 300  # 5 minutes
_form_analytics_cache: TTLCache = TTLCache(maxsize=500, ttl=CACHE_TTL_SECONDS)


def _key_default(obj: Any) -> Any:
    if isinstance(obj, BaseModel):
        return obj.model_dump(mode="json")
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    return str(obj)


def get_cache_key(*args, **kwargs) -> str:
    """Generate a cache key from function arguments (pydantic models included)."""
    key_data = json.dumps(
        {"args": args, "kwargs": kwargs}, sort_keys=True, default=_key_default
    )
    # MD5 is used here only for cache key generation, not for security purposes
    return hashlib.md5(key_data.encode(), usedforsecurity=False).hexdigest()


def cached_form_analytics(func: Callable) -> Callable:
    """Cache decorator for form analytics (5-minute TTL)."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        cache_key = get_cache_key(*args, **kwargs)
        if cache_key in _form_analytics_cache:
            return _form_analytics_cache[cache_key]
        result = func(*args, **kwargs)
        _form_analytics_cache[cache_key] = result
        return result

    return wrapper


def get_form_analytics_cache() -> TTLCache:
    """Get the form analytics cache for direct access."""
    return _form_analytics_cache


def clear_all_caches() -> None:
    """Clear all caches. Useful for testing."""
    _form_analytics_cache.clear()


CACHE_CONTROL_PRIVATE = "private, no-cache"  # Submission data is never shared-cacheable
