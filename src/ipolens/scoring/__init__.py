"""Scoring and risk assessment of merged IPO records."""

from .engine import DEFAULT_POLICY, ScoringEngine, ScoringPolicy, score

__all__ = ["DEFAULT_POLICY", "ScoringEngine", "ScoringPolicy", "score"]
