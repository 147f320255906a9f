"""
Decision cache interface.
"""

from abc import ABC, abstractmethod
from typing import Optional

from ..policy.models import CheckResult


DEFAULT_TTL_SECONDS = 300
DEFAULT_SWEEP_INTERVAL_SECONDS = 60.0


class DecisionCache(ABC):
    """Expiring key/value store for memoized check results."""

    @abstractmethod
    async def get(self, key: str) -> Optional[CheckResult]:
        """Return the cached result, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: CheckResult, ttl: Optional[int] = None) -> None:
        """Store a result, replacing any previous entry for the key."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry."""

    async def start(self) -> None:
        """Acquire resources or background tasks."""

    async def stop(self) -> None:
        """Release resources or background tasks."""

    async def health_check(self) -> bool:
        return True


class NullDecisionCache(DecisionCache):
    """Cache used when caching is disabled: stores nothing, never hits."""

    async def get(self, key: str) -> Optional[CheckResult]:
        return None

    async def set(self, key: str, value: CheckResult, ttl: Optional[int] = None) -> None:
        return None

    async def clear(self) -> None:
        return None
