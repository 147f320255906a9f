"""
Policy evaluation engine for the ReBAC service.
"""

import asyncio
import inspect
import time
from contextvars import ContextVar
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple, Union
from urllib.parse import quote

from shared.logging import get_logger
from shared.errors import ConditionRecursionError, PolicyEngineNotInitializedError
from shared.metrics import MetricsCollector
from .models import (
    GLOBAL_RESOURCE_ID, AggregateResult, CheckResult, DetailedCheckResult,
    MultiActionCheck, NamedCheck, Policies, Role, SingleActionCheck, coerce_named_check,
)
from ..cache import DecisionCache, MemoryDecisionCache, NullDecisionCache, DEFAULT_TTL_SECONDS


DEFAULT_MAX_CONDITION_DEPTH = 32

# Nesting depth of condition calls in the current task (conditions may call back into the engine).
_condition_depth: ContextVar[int] = ContextVar("rebac_condition_depth", default=0)


def _key_resource_id(resource_id: Optional[str]) -> str:
    return GLOBAL_RESOURCE_ID if resource_id is None else resource_id


def _key(operation: str, *parts: str) -> str:
    # Parts are percent-encoded so a ":" inside an id cannot shift field boundaries.
    return ":".join([operation] + [quote(str(part), safe="") for part in parts])


async def _gather_or_cancel(awaitables: Iterable[Awaitable[Any]]) -> List[Any]:
    """Run awaitables concurrently; if one fails, cancel the rest before re-raising."""
    tasks = [asyncio.ensure_future(awaitable) for awaitable in awaitables]
    try:
        return await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise


def _condition_resource_id(resource_id: Optional[str]) -> Optional[str]:
    return None if resource_id == GLOBAL_RESOURCE_ID else resource_id


def role_cache_key(resource_type: str, role_name: str, user_id: str, resource_id: Optional[str]) -> str:
    """Cache key of a role check."""
    return _key("hasRole", resource_type, role_name, user_id, _key_resource_id(resource_id))


def permission_cache_key(user_id: str, action: str, resource_type: str, resource_id: Optional[str]) -> str:
    """Cache key of a permission check."""
    return _key("hasPermission", user_id, action, resource_type, _key_resource_id(resource_id))


class PolicyEngine:
    """Evaluates role and permission checks against an immutable policy registry.

    The engine never stores relationships. Each role carries a condition
    ``(user_id, resource_id) -> bool`` (sync or async); the engine decides
    when and how often conditions run and memoizes the outcome in its
    decision cache. A condition may call back into the engine to follow a
    relationship to another resource (file -> folder -> project).

    Unknown resource types, roles and actions are denials, not errors.
    Exceptions raised by a condition propagate to the caller unchanged.
    """

    def __init__(
        self,
        policies: Optional[Policies],
        caching_enabled: bool = True,
        cache: Optional[DecisionCache] = None,
        cache_ttl: int = DEFAULT_TTL_SECONDS,
        max_condition_depth: Optional[int] = DEFAULT_MAX_CONDITION_DEPTH,
        metrics: Optional[MetricsCollector] = None,
    ):
        if policies is None:
            raise PolicyEngineNotInitializedError()

        self.logger = get_logger("rebac.engine")
        self.policies: Mapping = MappingProxyType(dict(policies))
        self.caching_enabled = caching_enabled
        self.cache_ttl = cache_ttl
        self.max_condition_depth = max_condition_depth
        self.metrics = metrics

        if not caching_enabled:
            self.cache: DecisionCache = NullDecisionCache()
        else:
            self.cache = cache if cache is not None else MemoryDecisionCache(default_ttl=cache_ttl)

        self.logger.info(
            "Policy engine initialized",
            resource_types=sorted(self.policies),
            caching_enabled=caching_enabled,
            cache=type(self.cache).__name__,
        )

    async def start(self):
        await self.cache.start()

    async def stop(self):
        await self.cache.stop()

    # Evaluation core

    async def role_check(
        self,
        resource_type: str,
        role_name: str,
        user_id: str,
        resource_id: Optional[str] = None,
    ) -> CheckResult:
        """Check whether the user holds ``role_name`` on the resource."""
        started = time.perf_counter()
        cache_key = role_cache_key(resource_type, role_name, user_id, resource_id)

        cached = await self._cache_get(cache_key)
        if cached is not None:
            return cached

        resource = self.policies.get(resource_type)
        if resource is None:
            result = CheckResult(False, f"Unknown resource type '{resource_type}'")
        else:
            role = resource.get_role(role_name)
            if role is None:
                result = CheckResult(False, f"Unknown role '{role_name}' for resource '{resource_type}'")
            else:
                allowed = await self._invoke_condition(role, user_id, resource_id)
                verdict = "allowed" if allowed else "denied"
                result = CheckResult(allowed, f"Role '{role_name}' {verdict} on {resource_type}")

        await self._cache_set(cache_key, result)
        self._record("role_check", result, started)
        self.logger.debug(
            "Role check",
            resource_type=resource_type,
            role=role_name,
            user_id=user_id,
            resource_id=resource_id,
            allowed=result.allowed,
        )
        return result

    async def permission_check(
        self,
        user_id: str,
        action: str,
        resource_type: str,
        resource_id: Optional[str] = None,
    ) -> CheckResult:
        """Check whether any role granting ``action`` holds for the user.

        Roles are tried in declared order and the scan stops at the first
        condition that returns true.
        """
        started = time.perf_counter()
        cache_key = permission_cache_key(user_id, action, resource_type, resource_id)

        cached = await self._cache_get(cache_key)
        if cached is not None:
            return cached

        resource = self.policies.get(resource_type)
        if resource is None:
            result = CheckResult(False, f"Unknown resource type '{resource_type}'")
        elif action not in resource.actions:
            result = CheckResult(False, f"Unknown action '{action}' for resource '{resource_type}'")
        else:
            result = CheckResult(False, f"Action '{action}' denied on {resource_type}")
            for role in resource.roles:
                if not role.grants(action):
                    continue
                if await self._invoke_condition(role, user_id, resource_id):
                    result = CheckResult(True, f"Action '{action}' allowed on {resource_type}")
                    break

        await self._cache_set(cache_key, result)
        self._record("permission_check", result, started)
        self.logger.debug(
            "Permission check",
            resource_type=resource_type,
            action=action,
            user_id=user_id,
            resource_id=resource_id,
            allowed=result.allowed,
        )
        return result

    # Aggregation

    async def multi_role_check(
        self,
        user_id: str,
        roles: Mapping[str, Sequence[str]],
        resource_id: Optional[str] = None,
    ) -> AggregateResult:
        """Check several roles at once; allowed only if every role is held."""
        return await self._aggregate(
            "roles",
            roles,
            lambda resource_type, role_name: self.role_check(resource_type, role_name, user_id, resource_id),
        )

    async def multi_permission_check(
        self,
        user_id: str,
        permissions: Mapping[str, Sequence[str]],
        resource_id: Optional[str] = None,
    ) -> AggregateResult:
        """Check several actions at once; allowed only if every action is permitted."""
        return await self._aggregate(
            "permissions",
            permissions,
            lambda resource_type, action: self.permission_check(user_id, action, resource_type, resource_id),
        )

    async def named_checks(
        self,
        user_id: str,
        checks: Mapping[str, Union[NamedCheck, Mapping, None]],
    ) -> Dict[str, Union[CheckResult, DetailedCheckResult]]:
        """Evaluate independently named checks concurrently.

        Single-action entries yield a CheckResult, multi-action entries a
        DetailedCheckResult. An entry naming no action is denied on its own
        without affecting its siblings.
        """
        names = list(checks)
        outcomes = await _gather_or_cancel(self._named_check(user_id, checks[name]) for name in names)
        return dict(zip(names, outcomes))

    async def _named_check(
        self,
        user_id: str,
        spec: Union[NamedCheck, Mapping, None],
    ) -> Union[CheckResult, DetailedCheckResult]:
        check = coerce_named_check(spec)

        if isinstance(check, SingleActionCheck):
            return await self.permission_check(user_id, check.action, check.resource_type, check.resource_id)

        if isinstance(check, MultiActionCheck):
            actions = list(dict.fromkeys(check.actions))
            outcomes = await _gather_or_cancel(
                self.permission_check(user_id, action, check.resource_type, check.resource_id)
                for action in actions
            )
            results = {action: outcome.allowed for action, outcome in zip(actions, outcomes)}
            denied = [action for action, allowed in results.items() if not allowed]
            if denied:
                message = f"Some permissions denied for {check.resource_type}: {', '.join(denied)}"
            else:
                message = f"All permissions granted for {check.resource_type}"
            return DetailedCheckResult(allowed=not denied, message=message, results=results)

        return CheckResult(False, "No action or actions specified")

    async def _aggregate(
        self,
        kind: str,
        items: Mapping[str, Sequence[str]],
        evaluate: Callable[[str, str], Awaitable[CheckResult]],
    ) -> AggregateResult:
        pairs: List[Tuple[str, str]] = [
            (group, item)
            for group, names in items.items()
            for item in dict.fromkeys(names)
        ]
        outcomes = await _gather_or_cancel(evaluate(group, item) for group, item in pairs)

        results: Dict[str, Dict[str, bool]] = {group: {} for group in items}
        denied: List[str] = []
        for (group, item), outcome in zip(pairs, outcomes):
            results[group][item] = outcome.allowed
            if not outcome.allowed:
                denied.append(f"{group}:{item}")

        if denied:
            message = f"Some {kind} denied: {', '.join(denied)}"
        else:
            message = f"All {kind} granted"

        return AggregateResult(allowed=not denied, message=message, results=results)

    # Internals

    async def _invoke_condition(self, role: Role, user_id: str, resource_id: Optional[str]) -> bool:
        depth = _condition_depth.get()
        if self.max_condition_depth is not None and depth >= self.max_condition_depth:
            self.logger.error("Condition depth exceeded", role=role.name, depth=depth)
            raise ConditionRecursionError(self.max_condition_depth, details={"role": role.name})

        token = _condition_depth.set(depth + 1)
        try:
            outcome = role.condition(user_id, _condition_resource_id(resource_id))
            if inspect.isawaitable(outcome):
                outcome = await outcome
        finally:
            _condition_depth.reset(token)

        return bool(outcome)

    async def _cache_get(self, key: str) -> Optional[CheckResult]:
        if not self.caching_enabled:
            return None

        cached = await self.cache.get(key)
        if self.metrics:
            self.metrics.increment_counter("authz_cache_requests_total", result="miss" if cached is None else "hit")
        return cached

    async def _cache_set(self, key: str, result: CheckResult) -> None:
        if self.caching_enabled:
            await self.cache.set(key, result, ttl=self.cache_ttl)

    def _record(self, operation: str, result: CheckResult, started: float) -> None:
        if not self.metrics:
            return
        self.metrics.increment_counter(
            "authz_checks_total",
            operation=operation,
            decision="allow" if result.allowed else "deny",
        )
        self.metrics.observe_histogram(
            "authz_check_duration_seconds",
            time.perf_counter() - started,
            operation=operation,
        )
