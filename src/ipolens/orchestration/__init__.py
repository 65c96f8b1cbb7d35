"""Sync orchestration, market monitoring and scheduled flows.

Flows live in ``ipolens.orchestration.flows`` and are imported on demand so
that the sync path does not pull in Prefect.
"""

from .monitor import Alert, AlertSeverity, MarketMonitor, check_alerts, is_bidding_hours, next_poll_interval
from .sync import SyncOrchestrator, build_sync_orchestrator, changed_fields

__all__ = [
    "Alert",
    "AlertSeverity",
    "MarketMonitor",
    "SyncOrchestrator",
    "build_sync_orchestrator",
    "changed_fields",
    "check_alerts",
    "is_bidding_hours",
    "next_poll_interval",
]
