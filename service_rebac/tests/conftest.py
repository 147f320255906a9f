"""
Shared fixtures for ReBAC service tests.
"""

import pytest
from unittest.mock import AsyncMock

from service_rebac.app.policy.models import ResourceDefinition, Role


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def fake_clock():
    """Create a controllable clock."""
    return FakeClock()


@pytest.fixture
def owner_condition():
    """Owner condition: user-1 owns project p1."""
    return AsyncMock(side_effect=lambda user_id, resource_id: user_id == "user-1" and resource_id == "p1")


@pytest.fixture
def editor_condition():
    """Editor condition: user-2 edits every project."""
    return AsyncMock(side_effect=lambda user_id, resource_id: user_id == "user-2")


@pytest.fixture
def viewer_condition():
    """Viewer condition: everybody views."""
    return AsyncMock(return_value=True)


@pytest.fixture
def project_policies(owner_condition, editor_condition, viewer_condition):
    """Registry with a single project resource type."""
    return {
        "project": ResourceDefinition(
            actions={"create", "read", "update", "delete"},
            roles=[
                Role("owner", {"create", "read", "update", "delete"}, owner_condition),
                Role("editor", {"read", "update"}, editor_condition),
                Role("viewer", {"read"}, viewer_condition),
            ],
        )
    }
