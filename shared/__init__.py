"""
Shared utilities for the Smart Cache CLI.

This package aggregates common building blocks consumed by the CLI and
its rule engine:

- config: Settings via pydantic-settings
- logging: Structured logging with session correlation
- errors: Canonical error types and responses
- test_helpers: Factories and an in-memory Redis double for tests

Do not import from smartcache_cli into shared/.
"""
