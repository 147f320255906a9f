"""
Loading of the policy registry from a configured import path.
"""

import importlib
from typing import Mapping

from shared.errors import ValidationError
from shared.logging import get_logger
from .models import Policies, ResourceDefinition

logger = get_logger("rebac.policy_loader")


def load_policies(import_path: str) -> Policies:
    """Import the ``Policies`` mapping named by ``package.module:attribute``.

    The attribute may also be a zero-argument callable returning the
    mapping, which lets configuration modules build conditions lazily.
    """
    module_name, sep, attribute = import_path.partition(":")
    if not sep or not module_name or not attribute:
        raise ValidationError(
            "Policies path must look like 'package.module:attribute'",
            details={"path": import_path},
        )

    module = importlib.import_module(module_name)
    try:
        policies = getattr(module, attribute)
    except AttributeError:
        raise ValidationError(
            f"Module '{module_name}' has no attribute '{attribute}'",
            details={"path": import_path},
        ) from None

    if callable(policies):
        policies = policies()

    if not isinstance(policies, Mapping) or not all(
        isinstance(definition, ResourceDefinition) for definition in policies.values()
    ):
        raise ValidationError(
            "Policies must map resource type names to ResourceDefinition objects",
            details={"path": import_path},
        )

    logger.info("Policies loaded", path=import_path, resource_types=sorted(policies))
    return policies
