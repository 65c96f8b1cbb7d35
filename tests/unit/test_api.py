"""Tests for the IPO Lens REST API."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from ipolens.analysis import IpoAnalyzer
from ipolens.api.config import APISettings, get_api_settings
from ipolens.api.dependencies import get_analyzer, get_orchestrator, get_repository
from ipolens.api.main import create_app
from ipolens.core.errors import PersistenceError
from ipolens.models import DataKind, IpoStatus, SourceOutcome, SyncResult, SyncStatus


@pytest.fixture
def stored_repository(repository, merged_record):
    """Repository holding one open and one upcoming IPO."""
    repository.upsert(merged_record.model_copy(update={"overall_score": 7.5}))
    repository.upsert(
        merged_record.model_copy(
            update={"symbol": "XYZFOODS", "company_name": "XYZ Foods", "status": IpoStatus.UPCOMING, "overall_score": 4.0}
        )
    )
    return repository


@pytest.fixture
def mock_orchestrator():
    """Create mock sync orchestrator."""
    orchestrator = MagicMock()
    orchestrator.running = False
    orchestrator.sync = AsyncMock(return_value=SyncResult(success=True, status=SyncStatus.COMPLETED, created=2, total=2))
    orchestrator.aggregator.source_stats = MagicMock(
        return_value={"nse": {"calls": 3, "success_rate": 1.0, "circuit": "closed"}}
    )
    orchestrator.aggregator.test_connections = AsyncMock(
        return_value=[SourceOutcome(source="nse", kind=DataKind.IPOS, success=True, count=4, response_time_ms=120.0)]
    )
    return orchestrator


def build_client(repository, orchestrator, settings: APISettings | None = None) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_repository] = lambda: repository
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_analyzer] = lambda: IpoAnalyzer(None)
    if settings is not None:
        app.dependency_overrides[get_api_settings] = lambda: settings
    return TestClient(app)


@pytest.fixture
def client(stored_repository, mock_orchestrator):
    """Create test client with overridden dependencies."""
    return build_client(stored_repository, mock_orchestrator)


class TestRootEndpoints:
    """Tests for root endpoints."""

    def test_root_endpoint(self, client):
        """Test root endpoint."""
        response = client.get("/")
        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "IPO Lens API"
        assert "docs" in data

    def test_health_check(self, client):
        """Test health check endpoint."""
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_trace_header(self, client):
        """Test that every response carries a trace id."""
        response = client.get("/health")
        assert response.headers["X-Trace-Id"].startswith("api-")


class TestIpoEndpoints:
    """Tests for IPO read endpoints."""

    def test_list_best_scored_first(self, client):
        """Test default listing order."""
        response = client.get("/api/v1/ipos")
        assert response.status_code == 200
        data = response.json()
        assert [row["symbol"] for row in data["data"]] == ["ABC", "XYZFOODS"]
        assert data["count"] == 2
        assert not data["has_more"]

    def test_list_filters(self, client):
        """Test status and score filters."""
        upcoming = client.get("/api/v1/ipos", params={"status": "upcoming"}).json()
        scored = client.get("/api/v1/ipos", params={"min_score": 5}).json()

        assert [row["symbol"] for row in upcoming["data"]] == ["XYZFOODS"]
        assert [row["symbol"] for row in scored["data"]] == ["ABC"]

    def test_list_pagination(self, client):
        """Test page size and has_more."""
        first = client.get("/api/v1/ipos", params={"page_size": 1}).json()
        second = client.get("/api/v1/ipos", params={"page_size": 1, "page": 2}).json()

        assert first["has_more"] and not second["has_more"]
        assert second["data"][0]["symbol"] == "XYZFOODS"

    @pytest.mark.parametrize("params", [{"page": 0}, {"page_size": 1000}])
    def test_invalid_pagination(self, client, params):
        """Test pagination bounds."""
        assert client.get("/api/v1/ipos", params=params).status_code == 400

    def test_invalid_score_filter(self, client):
        """Test query validation."""
        assert client.get("/api/v1/ipos", params={"min_score": 11}).status_code == 422

    def test_get_ipo_case_insensitive(self, client):
        """Test single IPO lookup."""
        response = client.get("/api/v1/ipos/abc")
        assert response.status_code == 200
        data = response.json()
        assert data["company_name"] == "ABC Technologies Ltd"
        assert sorted(data["sources"]) == ["investorgain", "nse"]
        assert data["confidence"] == "high"

    def test_get_missing_ipo(self, client):
        """Test 404 for an unknown symbol."""
        response = client.get("/api/v1/ipos/nothere")
        assert response.status_code == 404
        assert response.json()["detail"] == "IPO not found: NOTHERE"

    def test_analysis_fallback(self, client):
        """Test analysis without a configured provider."""
        response = client.post("/api/v1/ipos/ABC/analysis")
        assert response.status_code == 200
        assert response.json()["fallback"] is True

    def test_storage_error_maps_to_503(self, mock_orchestrator):
        """Test rendering of domain errors."""
        repository = MagicMock()
        repository.find_by_symbol.side_effect = PersistenceError("database is locked")
        client = build_client(repository, mock_orchestrator)

        response = client.get("/api/v1/ipos/ABC")

        assert response.status_code == 503
        body = response.json()
        assert body["error"] == "PERSISTENCE_ERROR"
        assert body["retryable"] is True


class TestAdminEndpoints:
    """Tests for admin endpoints."""

    def test_sync_completed(self, client, mock_orchestrator):
        """Test a successful sync trigger."""
        response = client.post("/api/v1/admin/sync", params={"clean": "true"})
        assert response.status_code == 200
        assert response.json()["created"] == 2
        mock_orchestrator.sync.assert_awaited_once_with(clean=True)

    @pytest.mark.parametrize(
        "sync_status,status_code",
        [(SyncStatus.REJECTED, 409), (SyncStatus.FAILED, 503), (SyncStatus.TOTAL_OUTAGE, 200)],
    )
    def test_sync_status_codes(self, client, mock_orchestrator, sync_status, status_code):
        """Test HTTP codes per sync outcome."""
        mock_orchestrator.sync.return_value = SyncResult(success=False, status=sync_status, error="x")

        response = client.post("/api/v1/admin/sync")

        assert response.status_code == status_code
        assert response.json()["status"] == sync_status.value

    def test_sources(self, client):
        """Test source stats without a live check."""
        data = client.get("/api/v1/admin/sources").json()
        assert data["sources"]["nse"]["circuit"] == "closed"
        assert data["connectivity"] is None
        assert data["sync_running"] is False

    def test_sources_with_check(self, client, mock_orchestrator):
        """Test the live connectivity check."""
        data = client.get("/api/v1/admin/sources", params={"check": "true"}).json()
        assert data["connectivity"][0]["count"] == 4
        mock_orchestrator.aggregator.test_connections.assert_awaited_once()

    def test_admin_token_required_when_configured(self, stored_repository, mock_orchestrator):
        """Test bearer token enforcement."""
        client = build_client(stored_repository, mock_orchestrator, APISettings(admin_token="secret"))

        assert client.post("/api/v1/admin/sync").status_code == 401
        assert client.post("/api/v1/admin/sync", headers={"Authorization": "Bearer wrong"}).status_code == 401
        ok = client.post("/api/v1/admin/sync", headers={"Authorization": "Bearer secret"})
        assert ok.status_code == 200

    def test_reads_need_no_token(self, stored_repository, mock_orchestrator):
        """Test that read endpoints stay public."""
        client = build_client(stored_repository, mock_orchestrator, APISettings(admin_token="secret"))

        assert client.get("/api/v1/ipos").status_code == 200
