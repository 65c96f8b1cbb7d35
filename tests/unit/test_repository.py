"""Tests for the SQL repository and Parquet snapshots."""

from datetime import datetime, timezone

import polars as pl
import pytest

from ipolens.core.errors import PersistenceError
from ipolens.models import Confidence, IpoStatus, RiskLevel, utcnow
from ipolens.storage import SqlIpoRepository, create_session_factory, write_snapshot
from ipolens.storage import snapshots
from ipolens.storage.snapshots import records_frame


class TestSqlIpoRepository:
    """Test suite for SqlIpoRepository."""

    def test_upsert_creates_and_reads_back(self, repository, merged_record):
        """Test that every merged field survives a round trip."""
        stored = repository.upsert(merged_record.model_copy(update={"risk_level": RiskLevel.MODERATE}))

        found = repository.find_by_symbol("abc")
        assert found.id == stored.id
        assert found.company_name == "ABC Technologies Ltd"
        assert found.status == IpoStatus.OPEN
        assert found.confidence == Confidence.HIGH
        assert found.risk_level == RiskLevel.MODERATE
        assert found.sources == {"nse", "investorgain"}
        assert found.open_date == merged_record.open_date
        assert found.archived_at is None

    def test_upsert_with_fields_only_writes_those(self, repository, merged_record):
        """Test field-level updates."""
        repository.upsert(merged_record)

        repository.upsert(merged_record.model_copy(update={"gmp": 40.0, "price_max": 999.0}), fields=["gmp"])

        found = repository.find_by_symbol("ABC")
        assert found.gmp == 40.0
        assert found.price_max == 100.0

    def test_find_missing(self, repository):
        """Test lookup of an unknown symbol."""
        assert repository.find_by_symbol("NOPE") is None

    def test_list_filters_and_order(self, repository, merged_record):
        """Test status filter, score filter and score ordering."""
        repository.upsert(merged_record.model_copy(update={"overall_score": 6.0}))
        repository.upsert(merged_record.model_copy(update={"symbol": "HIGH", "overall_score": 8.0}))
        repository.upsert(
            merged_record.model_copy(update={"symbol": "LATER", "status": IpoStatus.UPCOMING, "overall_score": None})
        )

        assert [r.symbol for r in repository.list_ipos()] == ["HIGH", "ABC", "LATER"]
        assert [r.symbol for r in repository.list_ipos(status=IpoStatus.UPCOMING)] == ["LATER"]
        assert [r.symbol for r in repository.list_ipos(min_score=7)] == ["HIGH"]
        assert [r.symbol for r in repository.list_ipos(limit=1, offset=1)] == ["ABC"]

    def test_mark_archived(self, repository, merged_record):
        """Test that archiving lists an active IPO and keeps the row."""
        repository.upsert(merged_record)

        assert repository.mark_archived("ABC")
        assert not repository.mark_archived("ABC")
        assert not repository.mark_archived("NOPE")

        found = repository.find_by_symbol("ABC")
        assert found.status == IpoStatus.LISTED
        assert found.archived_at is not None
        assert repository.active_symbols() == set()

    def test_reactivation_clears_archive_mark(self, repository, merged_record):
        """Test that an archived IPO reported active again is restored."""
        repository.upsert(merged_record)
        repository.mark_archived("ABC")

        repository.upsert(merged_record, fields=["status"])

        assert repository.find_by_symbol("ABC").archived_at is None

    def test_transaction_rolls_back_everything(self, repository, merged_record):
        """Test that a failing unit leaves no partial writes."""
        with pytest.raises(RuntimeError):
            with repository.transaction():
                repository.upsert(merged_record)
                raise RuntimeError("boom")

        assert repository.find_by_symbol("ABC") is None

    def test_database_errors_become_persistence_errors(self, repository, merged_record):
        """Test translation of SQLAlchemy errors."""
        repository.upsert(merged_record)

        with pytest.raises(PersistenceError):
            with repository.transaction() as repo:
                repo.upsert(merged_record.model_copy(update={"company_name": None}), fields=["company_name"])

    def test_file_database_is_created(self, tmp_path, merged_record):
        """Test a file-backed SQLite database."""
        url = f"sqlite:///{(tmp_path / 'ipolens.db').as_posix()}"
        repository = SqlIpoRepository(create_session_factory(url))

        repository.upsert(merged_record)

        assert (tmp_path / "ipolens.db").exists()
        assert SqlIpoRepository(create_session_factory(url)).find_by_symbol("ABC") is not None

    def test_timestamps_use_the_shared_utc_clock(self, repository, merged_record):
        """Test that storage stamps rows with the models' UTC clock."""
        assert snapshots.utcnow is utcnow
        assert utcnow().tzinfo == timezone.utc

        stored = repository.upsert(merged_record)

        assert stored.last_updated is not None
        assert stored.created_at is not None


class TestSnapshots:
    """Test suite for Parquet snapshots."""

    def test_frame_flattens_records(self, merged_record):
        """Test one row per record with string lists."""
        frame = records_frame([merged_record])

        assert frame.height == 1
        assert frame["sources"].to_list() == [["investorgain", "nse"]]
        assert frame["status"].to_list() == ["open"]
        assert frame.schema["conflicts"] == pl.List(pl.Utf8)

    def test_write_snapshot(self, tmp_path, merged_record):
        """Test the snapshot file name and contents."""
        taken_at = datetime(2025, 6, 10, 4, 0, tzinfo=timezone.utc)

        path = write_snapshot([merged_record], tmp_path, taken_at=taken_at)

        assert path.name == "ipos_20250610T040000Z.parquet"
        assert pl.read_parquet(path)["symbol"].to_list() == ["ABC"]

    def test_empty_set_writes_nothing(self, tmp_path):
        """Test that no file is written without records."""
        assert write_snapshot([], tmp_path) is None
        assert list(tmp_path.iterdir()) == []
