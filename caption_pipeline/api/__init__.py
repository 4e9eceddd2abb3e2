"""HTTP API for render, export, transcript and integration partner routes."""
