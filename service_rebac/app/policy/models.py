"""
Policy data models for the ReBAC authorization service.
"""

from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple, Union
from dataclasses import dataclass, field

from pydantic import BaseModel, ConfigDict, Field


# Stands in for an absent resource id in cache keys and on the wire.
GLOBAL_RESOURCE_ID = "__global__"

Condition = Callable[[str, Optional[str]], Union[bool, Awaitable[bool]]]


@dataclass(frozen=True)
class Role:
    """A named bundle of granted actions plus the predicate deciding who holds it."""
    name: str
    actions: FrozenSet[str]
    condition: Condition = field(compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "actions", frozenset(self.actions))

    def grants(self, action: str) -> bool:
        return action in self.actions


@dataclass(frozen=True)
class ResourceDefinition:
    """Recognized actions and the ordered role list of one resource type."""
    actions: FrozenSet[str]
    roles: Tuple[Role, ...] = ()

    def __post_init__(self):
        object.__setattr__(self, "actions", frozenset(self.actions))
        object.__setattr__(self, "roles", tuple(self.roles))

        seen = set()
        for role in self.roles:
            if role.name in seen:
                raise ValueError(f"Duplicate role '{role.name}'")
            seen.add(role.name)

    def get_role(self, name: str) -> Optional[Role]:
        for role in self.roles:
            if role.name == name:
                return role
        return None


Policies = Mapping[str, ResourceDefinition]


@dataclass(frozen=True)
class CheckResult:
    """Outcome of a single role or permission check."""
    allowed: bool
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": self.allowed, "message": self.message}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "CheckResult":
        return cls(allowed=bool(data["allowed"]), message=str(data["message"]))


@dataclass(frozen=True)
class DetailedCheckResult:
    """Outcome of a multi-action named check, with one flag per action."""
    allowed: bool
    message: str
    results: Dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {"allowed": self.allowed, "message": self.message, "results": dict(self.results)}


@dataclass(frozen=True)
class AggregateResult:
    """Folded outcome of a batch of checks grouped by resource type."""
    allowed: bool
    message: str
    results: Dict[str, Dict[str, bool]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "allowed": self.allowed,
            "message": self.message,
            "results": {group: dict(items) for group, items in self.results.items()},
        }


@dataclass(frozen=True)
class SingleActionCheck:
    """Named check against one action."""
    resource_type: str
    action: str
    resource_id: Optional[str] = None


@dataclass(frozen=True)
class MultiActionCheck:
    """Named check against several actions on the same resource."""
    resource_type: str
    actions: Tuple[str, ...]
    resource_id: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.actions, str):
            raise ValueError("MultiActionCheck actions must be a sequence of names, not a string")
        object.__setattr__(self, "actions", tuple(self.actions))
        if not self.actions:
            raise ValueError("MultiActionCheck requires at least one action")


NamedCheck = Union[SingleActionCheck, MultiActionCheck]


def coerce_named_check(spec: Union[NamedCheck, Mapping[str, Any], None]) -> Optional[NamedCheck]:
    """Turn an untyped named-check mapping into its variant.

    Accepts both camelCase wire keys and snake_case keys. ``action`` wins
    over ``actions``. Returns None when neither selects anything, when
    ``actions`` is not a list of names, or when there is no spec at all.
    """
    if spec is None:
        return None
    if isinstance(spec, (SingleActionCheck, MultiActionCheck)):
        return spec

    resource_type = spec.get("resource_type", spec.get("resourceType"))
    resource_id = spec.get("resource_id", spec.get("resourceId"))
    action = spec.get("action")
    actions: Optional[Iterable[str]] = spec.get("actions")

    if isinstance(action, str) and action:
        return SingleActionCheck(resource_type=resource_type, action=action, resource_id=resource_id)
    if actions and not isinstance(actions, (str, bytes, Mapping)):
        return MultiActionCheck(resource_type=resource_type, actions=tuple(actions), resource_id=resource_id)
    return None


class _WireModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class RoleCheckRequest(_WireModel):
    """Request model for a single role check."""
    resource_type: str = Field(..., alias="resourceType", description="Resource type")
    role_name: str = Field(..., alias="roleName", description="Role name")
    resource_id: str = Field(GLOBAL_RESOURCE_ID, alias="resourceId", description="Resource instance ID")


class PermissionCheckRequest(_WireModel):
    """Request model for a single permission check."""
    action: str = Field(..., description="Action to perform")
    resource_type: str = Field(..., alias="resourceType", description="Resource type")
    resource_id: str = Field(GLOBAL_RESOURCE_ID, alias="resourceId", description="Resource instance ID")


class MultiRoleCheckRequest(_WireModel):
    """Request model for a batched role check."""
    roles: Dict[str, List[str]] = Field(..., description="Resource type to role names")
    resource_id: str = Field(GLOBAL_RESOURCE_ID, alias="resourceId", description="Resource instance ID")


class MultiPermissionCheckRequest(_WireModel):
    """Request model for a batched permission check."""
    permissions: Dict[str, List[str]] = Field(..., description="Resource type to actions")
    resource_id: str = Field(GLOBAL_RESOURCE_ID, alias="resourceId", description="Resource instance ID")


class NamedCheckSpec(_WireModel):
    """One entry of a named-check request; action and actions are both optional on the wire."""
    resource_type: str = Field(..., alias="resourceType", description="Resource type")
    action: Optional[str] = Field(None, description="Single action")
    actions: Optional[List[str]] = Field(None, description="Several actions")
    resource_id: str = Field(GLOBAL_RESOURCE_ID, alias="resourceId", description="Resource instance ID")

    def to_check(self) -> Optional[NamedCheck]:
        return coerce_named_check({
            "resource_type": self.resource_type,
            "action": self.action,
            "actions": self.actions,
            "resource_id": self.resource_id,
        })


class NamedChecksRequest(_WireModel):
    """Request model for named checks."""
    checks: Dict[str, NamedCheckSpec] = Field(..., description="Caller-chosen name to check")


class CheckResponse(BaseModel):
    """Response model for single checks."""
    allowed: bool = Field(..., description="Whether the check passed")
    message: str = Field(..., description="Human-readable explanation")


class AggregateResponse(CheckResponse):
    """Response model for batched role/permission checks."""
    results: Dict[str, Dict[str, bool]] = Field(default_factory=dict, description="Outcome per resource type and item")


class NamedCheckResponse(CheckResponse):
    """Response model for one named check."""
    results: Optional[Dict[str, bool]] = Field(None, description="Outcome per action for multi-action checks")
