"""
Unit tests for the ops and feed routes: mocked workers, in-memory SQLite database.
No network calls. Fast.

Run with: pytest tests/test_routes.py -v
"""
import secrets
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from griva.config import Settings, get_settings
from griva.database import get_db, get_session_factory
from griva.errors import register_error_handlers
from griva.metrics import compute_metrics
from griva.models import NewsArticle, ResearchPaper
from griva.routes.feed import router as feed_router
from griva.routes.ops import router as ops_router
from griva.schemas import WorkerResult
from griva.workers import WorkerOutcome

SECRET = "test-secret"

# Minimal test app: no lifespan, no background scheduler
_app = FastAPI()
register_error_handlers(_app)
_app.include_router(ops_router)
_app.include_router(feed_router)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def client(db, session_factory):
    _app.dependency_overrides[get_db] = lambda: db
    _app.dependency_overrides[get_session_factory] = lambda: session_factory
    _app.dependency_overrides[get_settings] = lambda: Settings(CRON_SECRET=SECRET, FETCH_INTERVAL_SECONDS=300)
    yield TestClient(_app)
    _app.dependency_overrides.clear()


def outcomes(**overrides):
    """Four fulfilled outcomes; pass name=WorkerOutcome(...) to replace one."""
    defaults = {
        "news": WorkerOutcome("news", "fulfilled", WorkerResult(count=12)),
        "papers": WorkerOutcome("papers", "fulfilled", WorkerResult(count=7, errors=["Papers[cs.RO]: HTTP 503"])),
        "models": WorkerOutcome("models", "fulfilled", WorkerResult(count=40)),
        "metrics": WorkerOutcome("metrics", "fulfilled"),
    }
    defaults.update(overrides)
    return list(defaults.values())


# ---------------------------------------------------------------------------
# GET /cron
# ---------------------------------------------------------------------------

class TestCron:
    @pytest.mark.parametrize("query", ["", "?secret=wrong", "?secret=wrong&action=run"])
    def test_rejects_bad_secret_without_running_anything(self, client, query):
        with patch("griva.routes.ops.run_all_workers", new_callable=AsyncMock) as run_all, \
                patch("griva.routes.ops.run_worker", new_callable=AsyncMock) as run_one:
            response = client.get(f"/cron{query}")

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}
        run_all.assert_not_awaited()
        run_one.assert_not_awaited()

    def test_secret_is_compared_in_constant_time(self, client):
        with patch("griva.routes.ops.secrets.compare_digest", wraps=secrets.compare_digest) as compare:
            rejected = client.get("/cron", params={"secret": SECRET[:-1] + "x"})
            accepted = client.get("/cron", params={"secret": SECRET})

        assert rejected.status_code == 401
        assert accepted.status_code == 200
        assert compare.call_count == 2

    def test_rejects_non_ascii_secret(self, client):
        response = client.get("/cron", params={"secret": "tëst-sécret"})
        assert response.status_code == 401

    def test_missing_secret_rejected_even_when_configured_empty(self, client):
        _app.dependency_overrides[get_settings] = lambda: Settings(CRON_SECRET="")
        assert client.get("/cron").status_code == 401
        assert client.get("/cron?secret=").status_code == 200

    def test_status_is_default_action(self, client):
        response = client.get(f"/cron?secret={SECRET}")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "scheduled"
        assert data["schedule"] == "every 300s via the app scheduler"
        assert data["workers"] == ["news", "papers", "models", "metrics"]

    def test_unknown_action_reports_status(self, client):
        with patch("griva.routes.ops.run_worker", new_callable=AsyncMock) as run_one:
            response = client.get(f"/cron?secret={SECRET}&action=bogus")

        assert response.json()["status"] == "scheduled"
        run_one.assert_not_awaited()

    def test_run_reports_each_worker_status(self, client):
        mixed = outcomes(models=WorkerOutcome("models", "rejected", error="boom"))
        with patch("griva.routes.ops.run_all_workers", new_callable=AsyncMock, return_value=mixed):
            response = client.get(f"/cron?secret={SECRET}&action=run")

        data = response.json()
        assert data["status"] == "completed"
        assert data["workers"] == ["fulfilled", "fulfilled", "rejected", "fulfilled"]
        assert "started" in data

    @pytest.mark.parametrize("action", ["news", "papers", "models"])
    def test_single_worker_returns_its_result(self, client, action):
        result = WorkerResult(count=3, errors=["News[Example]: Timeout after 15s: Example"])
        with patch("griva.routes.ops.run_worker", new_callable=AsyncMock, return_value=result) as run_one:
            response = client.get(f"/cron?secret={SECRET}&action={action}")

        data = response.json()
        assert data["count"] == 3
        assert data["errors"] == result.errors
        assert run_one.await_args.args[0] == action

    def test_metrics_action(self, client):
        with patch("griva.routes.ops.run_worker", new_callable=AsyncMock, return_value=None) as run_one:
            response = client.get(f"/cron?secret={SECRET}&action=metrics")

        assert response.json()["status"] == "completed"
        assert run_one.await_args.args[0] == "metrics"


# ---------------------------------------------------------------------------
# GET /ingest
# ---------------------------------------------------------------------------

class TestIngest:
    def test_rejects_bad_secret(self, client):
        with patch("griva.routes.ops.run_all_workers", new_callable=AsyncMock) as run_all:
            response = client.get("/ingest?secret=nope")

        assert response.status_code == 401
        run_all.assert_not_awaited()

    def test_summarizes_counts_and_errors(self, client):
        with patch("griva.routes.ops.run_all_workers", new_callable=AsyncMock, return_value=outcomes()):
            response = client.get(f"/ingest?secret={SECRET}")

        data = response.json()
        assert data["success"] is True
        assert data["ingested"] == {"news": 12, "papers": 7, "models": 40}
        assert data["errors"] == ["Papers[cs.RO]: HTTP 503"]
        assert data["started"] <= data["finished"]

    def test_rejected_worker_counts_as_zero(self, client):
        mixed = outcomes(news=WorkerOutcome("news", "rejected", error="database is locked"))
        with patch("griva.routes.ops.run_all_workers", new_callable=AsyncMock, return_value=mixed):
            response = client.get(f"/ingest?secret={SECRET}")

        data = response.json()
        assert data["ingested"]["news"] == 0
        assert data["ingested"]["models"] == 40
        assert "database is locked" in data["errors"]


# ---------------------------------------------------------------------------
# GET /metrics
# ---------------------------------------------------------------------------

class TestMetrics:
    def test_computes_on_first_request(self, client, db):
        db.add(NewsArticle(url="https://n/1", title="n", source="s", published_at=datetime(2025, 1, 1)))
        db.commit()

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.json()["total_news"] == 1
        assert response.json()["total_documents"] == 1

    def test_serves_cached_row(self, client, db):
        compute_metrics(db)
        db.add(ResearchPaper(arxiv_id="1", title="p", published_date=datetime(2025, 1, 1)))
        db.commit()

        assert client.get("/metrics").json()["total_papers"] == 0
        assert client.get("/metrics?refresh=true").json()["total_papers"] == 1


# ---------------------------------------------------------------------------
# GET /feed, GET /context
# ---------------------------------------------------------------------------

class TestFeed:
    def seed(self, db):
        db.add_all([
            NewsArticle(url="https://n/1", title="LLM release", source="OpenAI",
                        published_at=datetime(2025, 1, 2, tzinfo=timezone.utc)),
            ResearchPaper(arxiv_id="2401.1", title="Sparse attention", authors="A",
                          published_date=datetime(2025, 1, 3, tzinfo=timezone.utc)),
        ])
        db.commit()

    def test_returns_merged_items(self, client, db):
        self.seed(db)

        data = client.get("/feed").json()

        assert [item["type"] for item in data] == ["paper", "news"]
        assert data[0]["url"] == "https://arxiv.org/abs/2401.1"
        assert data[1]["subtitle"] == "OpenAI"

    def test_type_filter(self, client, db):
        self.seed(db)
        data = client.get("/feed?type=news").json()
        assert [item["title"] for item in data] == ["LLM release"]

    def test_invalid_type(self, client):
        assert client.get("/feed?type=podcast").status_code == 422

    def test_search(self, client, db):
        self.seed(db)
        data = client.get("/feed?q=ATTENTION").json()
        assert [item["title"] for item in data] == ["Sparse attention"]

    def test_empty_feed(self, client):
        assert client.get("/feed").json() == []


class TestContext:
    def test_returns_snippets(self, client, db):
        db.add(NewsArticle(url="https://n/1", title="LLM release", source="OpenAI", summary="New model",
                           published_at=datetime(2025, 1, 2)))
        db.commit()

        response = client.get("/context?q=llm")

        assert response.json() == {"context": "[News: OpenAI] LLM release: New model"}

    def test_no_match(self, client):
        assert client.get("/context?q=nothing").json() == {"context": None}

    def test_query_required(self, client):
        assert client.get("/context").status_code == 422
