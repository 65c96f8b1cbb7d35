"""Parquet snapshots of the merged and scored IPO set."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from pathlib import Path

import polars as pl

from ipolens.models import MergedIpoRecord, utcnow
from ipolens.utils.logger import get_logger

logger = get_logger(__name__)


LIST_COLUMNS = ("sources", "conflicts", "red_flags", "pros")


def records_frame(records: Sequence[MergedIpoRecord]) -> pl.DataFrame:
    """Flatten records into one row per IPO; enums and dates become strings."""
    rows = []
    for record in records:
        row = record.model_dump(mode="json")
        row["sources"] = sorted(record.sources)
        rows.append(row)
    frame = pl.DataFrame(
        rows,
        schema_overrides={name: pl.List(pl.Utf8) for name in LIST_COLUMNS},
        infer_schema_length=None,
    )
    # Columns no record reported have no inferable type
    return frame.with_columns(pl.col(pl.Null).cast(pl.Utf8))


def write_snapshot(
    records: Sequence[MergedIpoRecord],
    snapshot_dir: str | Path,
    compression: str = "snappy",
    taken_at: datetime | None = None,
) -> Path | None:
    """Write one snapshot file and return its path; nothing is written for no records.

    Example:
        >>> write_snapshot(records, "data/snapshots")
        PosixPath('data/snapshots/ipos_20250114T093000Z.parquet')
    """
    if not records:
        logger.info("snapshot_skipped_empty")
        return None

    taken_at = taken_at or utcnow()
    snapshot_dir = Path(snapshot_dir)
    snapshot_dir.mkdir(parents=True, exist_ok=True)
    path = snapshot_dir / f"ipos_{taken_at:%Y%m%dT%H%M%SZ}.parquet"

    frame = records_frame(records)
    frame.write_parquet(path, compression=compression)
    logger.info("snapshot_written", path=str(path), rows=frame.height, compression=compression)
    return path
