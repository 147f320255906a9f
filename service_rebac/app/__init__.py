"""
ReBAC authorization service package.

This package decides whether a user may hold a role or perform an action
on a resource instance. It provides:

- app.main: API surface for role, permission, batched and named checks.
- app.policy: Policy registry model and the evaluation engine.
- app.cache: Decision caches (in-memory TTL, Redis, disabled).
- app.client: Async HTTP client for the service endpoints.

Guidelines:
- Relationships are not stored here; role conditions look them up and
  may call back into the engine for related resources.
- Denials are results, never exceptions.
- Cache only speeds up repeated checks; it is never a source of truth.
"""
