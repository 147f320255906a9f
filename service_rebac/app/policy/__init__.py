"""
Policy package.

Holds the immutable policy registry model and the evaluation engine of
the ReBAC service. Resource types declare their actions and an ordered
list of roles; each role grants actions and carries a condition that
decides, per user and resource instance, whether the role holds.

Modules of interest:
- models: Role, ResourceDefinition, check results and named-check variants.
- engine: Role/permission checks, decision caching and batched checks.
- loader: Import of the registry from a configured module path.
"""

from .models import (
    GLOBAL_RESOURCE_ID,
    AggregateResult,
    CheckResult,
    DetailedCheckResult,
    MultiActionCheck,
    NamedCheck,
    Policies,
    ResourceDefinition,
    Role,
    SingleActionCheck,
    coerce_named_check,
)
from .loader import load_policies

__all__ = [
    "GLOBAL_RESOURCE_ID",
    "AggregateResult",
    "CheckResult",
    "DetailedCheckResult",
    "MultiActionCheck",
    "NamedCheck",
    "Policies",
    "ResourceDefinition",
    "Role",
    "SingleActionCheck",
    "coerce_named_check",
    "load_policies",
]
