"""Stateful decode-cache core: indexing, shared cache, scheduling, execution context."""
