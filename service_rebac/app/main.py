"""
ReBAC authorization service.
"""

from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import Depends, Header, Request
from fastapi.responses import JSONResponse

from shared.base_service import BaseService
from shared.config import ServiceConfig
from shared.errors import AccessLayerException, AuthenticationError, PolicyEngineNotInitializedError
from shared.logging import set_user_context

from .cache import DecisionCache, MemoryDecisionCache, RedisDecisionCache
from .policy.engine import PolicyEngine
from .policy.loader import load_policies
from .policy.models import (
    Policies,
    RoleCheckRequest, PermissionCheckRequest,
    MultiRoleCheckRequest, MultiPermissionCheckRequest, NamedChecksRequest,
    CheckResponse, AggregateResponse, NamedCheckResponse,
)


async def get_user_id(x_user_id: Optional[str] = Header(None, alias="X-User-ID")) -> str:
    """Resolve the caller's user id from the session header."""
    if not x_user_id:
        raise AuthenticationError("Missing user identity", details={"header": "X-User-ID"})
    set_user_context(x_user_id)
    return x_user_id


class RebacService(BaseService):
    """ReBAC authorization service implementation."""

    def __init__(
        self,
        policies: Optional[Policies] = None,
        caching_enabled: Optional[bool] = None,
        cache: Optional[DecisionCache] = None,
        config: Optional[ServiceConfig] = None,
    ):
        super().__init__("rebac", 8013, config=config)

        self.engine: Optional[PolicyEngine] = None

        if policies is None and self.config.authz_policies:
            policies = load_policies(self.config.authz_policies)
        if policies is not None:
            self.initialize_policy_engine(policies, caching_enabled=caching_enabled, cache=cache)
        else:
            self.logger.warning("ReBAC service started without policies; checks will fail until initialized")

        self._setup_rebac_routes()

    def initialize_policy_engine(
        self,
        policies: Policies,
        caching_enabled: Optional[bool] = None,
        cache: Optional[DecisionCache] = None,
    ) -> PolicyEngine:
        """Create the policy engine for ``policies`` and make it serve all checks."""
        enabled = self.config.authz_cache_enabled if caching_enabled is None else caching_enabled
        if enabled and cache is None:
            cache = self._build_cache()

        self.engine = PolicyEngine(
            policies,
            caching_enabled=enabled,
            cache=cache,
            cache_ttl=self.config.authz_cache_ttl_seconds,
            max_condition_depth=self.config.authz_max_condition_depth,
            metrics=self.metrics,
        )
        return self.engine

    def _build_cache(self) -> DecisionCache:
        if self.config.authz_cache_backend == "redis":
            return RedisDecisionCache(self.config.redis_url, default_ttl=self.config.authz_cache_ttl_seconds)
        return MemoryDecisionCache(
            default_ttl=self.config.authz_cache_ttl_seconds,
            sweep_interval=self.config.authz_cache_sweep_seconds,
        )

    def require_engine(self) -> PolicyEngine:
        if self.engine is None:
            raise PolicyEngineNotInitializedError()
        return self.engine

    async def _evaluate(self, operation: str, evaluate: Callable[[PolicyEngine], Awaitable[Any]]) -> Any:
        """Run a check against the engine, mapping condition failures to a 500 denial."""
        engine = self.require_engine()
        try:
            return await evaluate(engine)
        except AccessLayerException:
            raise
        except Exception as e:
            self.logger.error("Authorization check failed", operation=operation, error=str(e), exc_info=True)
            self.metrics.record_error("condition_failure")
            return JSONResponse(
                status_code=500,
                content={"allowed": False, "message": "Internal server error"}
            )

    def _setup_rebac_routes(self):
        """Set up authorization routes."""

        @self.app.exception_handler(PolicyEngineNotInitializedError)
        async def not_initialized_handler(request: Request, exc: PolicyEngineNotInitializedError):
            self.logger.error("Check requested before policies were supplied", path=request.url.path)
            self.metrics.record_error(exc.code)
            return JSONResponse(
                status_code=exc.status_code,
                content={"allowed": False, "message": exc.message, "code": exc.code}
            )

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "rebac",
                "message": "ReBAC Authorization Service",
                "version": "1.0.0",
                "initialized": self.engine is not None,
                "capabilities": ["role_checks", "permission_checks", "named_checks", "caching"]
            }

        @self.app.post("/authz/has-role", response_model=CheckResponse)
        async def has_role(request: RoleCheckRequest, user_id: str = Depends(get_user_id)):
            """Check a single role on a resource."""
            async def evaluate(engine: PolicyEngine):
                result = await engine.role_check(
                    request.resource_type, request.role_name, user_id, request.resource_id
                )
                return CheckResponse(**result.to_dict())

            return await self._evaluate("has_role", evaluate)

        @self.app.post("/authz/has-roles", response_model=AggregateResponse)
        async def has_roles(request: MultiRoleCheckRequest, user_id: str = Depends(get_user_id)):
            """Check several roles; allowed only when all are held."""
            async def evaluate(engine: PolicyEngine):
                result = await engine.multi_role_check(user_id, request.roles, request.resource_id)
                return AggregateResponse(**result.to_dict())

            return await self._evaluate("has_roles", evaluate)

        @self.app.post("/authz/has-permission", response_model=CheckResponse)
        async def has_permission(request: PermissionCheckRequest, user_id: str = Depends(get_user_id)):
            """Check a single action on a resource."""
            async def evaluate(engine: PolicyEngine):
                result = await engine.permission_check(
                    user_id, request.action, request.resource_type, request.resource_id
                )
                return CheckResponse(**result.to_dict())

            return await self._evaluate("has_permission", evaluate)

        @self.app.post("/authz/has-permissions", response_model=AggregateResponse)
        async def has_permissions(request: MultiPermissionCheckRequest, user_id: str = Depends(get_user_id)):
            """Check several actions; allowed only when all are permitted."""
            async def evaluate(engine: PolicyEngine):
                result = await engine.multi_permission_check(user_id, request.permissions, request.resource_id)
                return AggregateResponse(**result.to_dict())

            return await self._evaluate("has_permissions", evaluate)

        @self.app.post(
            "/authz/named-checks",
            response_model=Dict[str, NamedCheckResponse],
            response_model_exclude_none=True,
        )
        async def named_checks(request: NamedChecksRequest, user_id: str = Depends(get_user_id)):
            """Evaluate independently named single- or multi-action checks."""
            async def evaluate(engine: PolicyEngine):
                checks = {name: spec.to_check() for name, spec in request.checks.items()}
                results = await engine.named_checks(user_id, checks)
                return {name: NamedCheckResponse(**result.to_dict()) for name, result in results.items()}

            return await self._evaluate("named_checks", evaluate)

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check ReBAC service dependencies."""
        dependencies = {"policy_engine": "ok" if self.engine is not None else "not_initialized"}

        if self.engine is None or not self.engine.caching_enabled:
            dependencies["cache"] = "disabled"
        else:
            try:
                dependencies["cache"] = "ok" if await self.engine.cache.health_check() else "error"
            except Exception:
                dependencies["cache"] = "error"

        return dependencies

    async def start(self):
        """Start ReBAC service components."""
        if self.engine is not None:
            await self.engine.start()
        self.logger.info("ReBAC service started", initialized=self.engine is not None)

    async def stop(self):
        """Stop ReBAC service components."""
        if self.engine is not None:
            await self.engine.stop()
        self.logger.info("ReBAC service stopped")


def create_app(policies: Optional[Policies] = None, caching_enabled: Optional[bool] = None):
    """Create ReBAC service application."""
    service = RebacService(policies=policies, caching_enabled=caching_enabled)
    return service.app


if __name__ == "__main__":
    service = RebacService()
    service.run()
