"""Shared utilities (configuration constants, env loading, logging)."""
