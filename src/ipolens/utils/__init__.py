"""Logging, metrics and resilience helpers."""
