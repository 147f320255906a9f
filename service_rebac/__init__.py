"""ReBAC authorization service."""
