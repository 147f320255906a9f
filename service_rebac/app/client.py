"""
Async HTTP client for the ReBAC service endpoints.
"""

from typing import Any, Dict, Mapping, Optional, Sequence, Union

import httpx

from shared.config import BaseConfig
from shared.logging import get_logger
from shared.errors import ExternalServiceError
from .policy.models import (
    GLOBAL_RESOURCE_ID,
    AggregateResult, CheckResult, DetailedCheckResult,
    MultiActionCheck, NamedCheck, SingleActionCheck,
)


class RebacClient:
    """Client for calling the ReBAC service on behalf of one user.

    Returns the same result types as the in-process engine. A 500 answer
    carrying ``{allowed, message}`` (engine not initialized, failing
    condition) is raised as ExternalServiceError with that message.
    Without a base_url the configured ACCESS_REBAC_SERVICE_URL is used.
    """

    def __init__(self, base_url: Optional[str], user_id: str, timeout: float = 10.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or BaseConfig().rebac_service_url).rstrip("/")
        self.user_id = user_id
        self.timeout = timeout
        self.transport = transport
        self.logger = get_logger("rebac.client")

    async def _post(self, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self.transport,
                headers={"X-User-ID": self.user_id},
            ) as client:
                response = await client.post(path, json=payload)

        except httpx.HTTPError as e:
            self.logger.error("ReBAC service HTTP error", path=path, error=str(e))
            raise ExternalServiceError("rebac", "Service unavailable", details={"http_error": str(e)})

        if response.status_code == 200:
            return response.json()

        try:
            body = response.json()
        except ValueError:
            body = {}
        message = body.get("message") or f"Unexpected status {response.status_code}"

        self.logger.error("ReBAC service error", path=path, status_code=response.status_code, message=message)
        raise ExternalServiceError("rebac", message, details={"status_code": response.status_code})

    async def has_role(self, resource_type: str, role_name: str,
                       resource_id: Optional[str] = None) -> CheckResult:
        data = await self._post("/authz/has-role", {
            "resourceType": resource_type,
            "roleName": role_name,
            "resourceId": resource_id or GLOBAL_RESOURCE_ID,
        })
        return CheckResult.from_dict(data)

    async def has_roles(self, roles: Mapping[str, Sequence[str]],
                        resource_id: Optional[str] = None) -> AggregateResult:
        data = await self._post("/authz/has-roles", {
            "roles": {resource_type: list(names) for resource_type, names in roles.items()},
            "resourceId": resource_id or GLOBAL_RESOURCE_ID,
        })
        return AggregateResult(allowed=data["allowed"], message=data["message"], results=data.get("results", {}))

    async def has_permission(self, action: str, resource_type: str,
                             resource_id: Optional[str] = None) -> CheckResult:
        data = await self._post("/authz/has-permission", {
            "action": action,
            "resourceType": resource_type,
            "resourceId": resource_id or GLOBAL_RESOURCE_ID,
        })
        return CheckResult.from_dict(data)

    async def has_permissions(self, permissions: Mapping[str, Sequence[str]],
                              resource_id: Optional[str] = None) -> AggregateResult:
        data = await self._post("/authz/has-permissions", {
            "permissions": {resource_type: list(actions) for resource_type, actions in permissions.items()},
            "resourceId": resource_id or GLOBAL_RESOURCE_ID,
        })
        return AggregateResult(allowed=data["allowed"], message=data["message"], results=data.get("results", {}))

    async def named_checks(
        self, checks: Mapping[str, NamedCheck]
    ) -> Dict[str, Union[CheckResult, DetailedCheckResult]]:
        payload: Dict[str, Dict[str, Any]] = {}
        for name, check in checks.items():
            entry: Dict[str, Any] = {
                "resourceType": check.resource_type,
                "resourceId": check.resource_id or GLOBAL_RESOURCE_ID,
            }
            if isinstance(check, SingleActionCheck):
                entry["action"] = check.action
            elif isinstance(check, MultiActionCheck):
                entry["actions"] = list(check.actions)
            payload[name] = entry

        data = await self._post("/authz/named-checks", {"checks": payload})

        results: Dict[str, Union[CheckResult, DetailedCheckResult]] = {}
        for name, item in data.items():
            if "results" in item:
                results[name] = DetailedCheckResult(
                    allowed=item["allowed"], message=item["message"], results=item["results"]
                )
            else:
                results[name] = CheckResult.from_dict(item)
        return results
