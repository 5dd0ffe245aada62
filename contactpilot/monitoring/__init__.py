"""Service health and metrics endpoints."""
