"""Prefect flows for scheduled syncs and market polling."""

from __future__ import annotations

from prefect import flow, task

from ipolens.core.config import get_config
from ipolens.core.errors import PersistenceError
from ipolens.models import SyncStatus
from ipolens.orchestration.monitor import MarketMonitor
from ipolens.orchestration.sync import build_sync_orchestrator
from ipolens.utils import metrics
from ipolens.utils.logger import get_logger

logger = get_logger(__name__)


def _start_metrics(metrics_port: int) -> None:
    try:
        metrics.start_metrics_server(port=metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as e:
        logger.warning("metrics_server_already_running", port=metrics_port, error=str(e))


@task(
    name="run-ipo-sync",
    retries=2,
    retry_delay_seconds=60,
)
async def run_sync_task(clean: bool = False) -> dict:
    """Run one sync; storage failures raise so Prefect retries them.

    Returns:
        The SyncResult as a JSON-ready dict
    """
    orchestrator = build_sync_orchestrator()
    try:
        result = await orchestrator.sync(clean=clean)
    finally:
        await orchestrator.aggregator.aclose()

    if result.status == SyncStatus.FAILED:
        raise PersistenceError(result.error or "sync failed")
    return result.model_dump(mode="json")


@task(
    name="poll-market",
    retries=1,
    retry_delay_seconds=30,
)
async def poll_market_task() -> list[dict]:
    orchestrator = build_sync_orchestrator()
    monitor = MarketMonitor(orchestrator.aggregator, orchestrator.repository)
    try:
        alerts = await monitor.poll()
    finally:
        await orchestrator.aggregator.aclose()
    return [alert.model_dump(mode="json") for alert in alerts]


@flow(
    name="ipo-sync",
    description="Aggregate all IPO sources, score and reconcile with storage",
    log_prints=True,
)
async def ipo_sync_flow(
    clean: bool = False,
    metrics_port: int = 9090,
    start_metrics_server_flag: bool = False,
) -> dict:
    """Scheduled sync.

    A total outage is reported in the returned summary, not raised: the
    next scheduled run simply tries again.
    """
    if start_metrics_server_flag:
        _start_metrics(metrics_port)

    logger.info("starting_ipo_sync_flow", clean=clean)
    summary = await run_sync_task(clean)
    if summary["status"] == SyncStatus.TOTAL_OUTAGE.value:
        logger.error("ipo_sync_flow_total_outage", error=summary["error"])
    else:
        logger.info("ipo_sync_flow_complete", **{k: summary[k] for k in ("created", "updated", "marked_as_listed", "total")})
    return summary


@flow(
    name="market-monitor",
    description="Poll live subscription and GMP figures and raise alerts",
    log_prints=True,
)
async def market_monitor_flow() -> list[dict]:
    alerts = await poll_market_task()
    logger.info("market_monitor_flow_complete", alerts=len(alerts))
    return alerts


def serve_flows(sync_interval: int | None = None, monitor_interval: int | None = None) -> None:
    """Serve both flows on fixed intervals until interrupted.

    Args:
        sync_interval: Seconds between clean syncs (default from SchedulerConfig)
        monitor_interval: Seconds between market polls (default: active interval)
    """
    from prefect import serve

    scheduler = get_config().scheduler
    sync_deployment = ipo_sync_flow.to_deployment(
        name="ipo-sync-scheduled",
        interval=sync_interval or scheduler.sync_interval_seconds,
        parameters={"clean": True},
    )
    monitor_deployment = market_monitor_flow.to_deployment(
        name="market-monitor-scheduled",
        interval=monitor_interval or scheduler.active_interval_seconds,
    )
    logger.info(
        "serving_flows",
        sync_interval=sync_interval or scheduler.sync_interval_seconds,
        monitor_interval=monitor_interval or scheduler.active_interval_seconds,
    )
    serve(sync_deployment, monitor_deployment)
