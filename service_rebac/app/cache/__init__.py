"""
Cache package for the ReBAC service.

Decision caches memoize check results for a bounded time. They are an
optimization only: a miss always falls back to evaluating the policies.

- base: DecisionCache interface and the no-op cache used when caching is off.
- memory_cache: In-process TTL cache with a periodic sweep.
- redis_cache: Redis-backed cache for deployments with several workers.
"""

from .base import DecisionCache, NullDecisionCache, DEFAULT_TTL_SECONDS, DEFAULT_SWEEP_INTERVAL_SECONDS
from .memory_cache import MemoryDecisionCache, CacheEntry
from .redis_cache import RedisDecisionCache

__all__ = [
    "CacheEntry",
    "DecisionCache",
    "DEFAULT_SWEEP_INTERVAL_SECONDS",
    "DEFAULT_TTL_SECONDS",
    "MemoryDecisionCache",
    "NullDecisionCache",
    "RedisDecisionCache",
]
