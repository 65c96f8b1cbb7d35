"""Persistence for merged IPO records: SQL repository and Parquet snapshots."""

from .repository import SqlIpoRepository, create_session_factory
from .snapshots import write_snapshot

__all__ = ["SqlIpoRepository", "create_session_factory", "write_snapshot"]
