import httpx
import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from services.ledger.src.ledger.adapters.indexer import IndexerClient
from services.ledger.src.ledger.config import Settings
from services.ledger.src.ledger.main import app, configure

client = TestClient(app)


def make_indexer(status_code: int) -> IndexerClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if status_code != 200:
            return httpx.Response(status_code)
        return httpx.Response(200, json={"data": {"__schema": {"queryType": {"name": "q"}}}})

    return IndexerClient("http://indexer.test/v1/graphql", transport=httpx.MockTransport(handler))


def test_health_returns_ok():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_root_points_to_docs():
    response = client.get("/")
    assert response.json()["docs"] == "/docs"


def test_health_reports_reachable_query_service(monkeypatch):
    monkeypatch.setattr(app.state, "indexer_client", make_indexer(200), raising=False)

    response = client.get("/health")

    assert response.json() == {"status": "ok", "query_service": "ok"}


def test_health_reports_unreachable_query_service(monkeypatch):
    monkeypatch.setattr(app.state, "indexer_client", make_indexer(503), raising=False)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "degraded", "query_service": "unreachable"}


class TestConfigure:

    def settings(self, tmp_path, **overrides) -> Settings:
        return Settings(database_url=f"sqlite:///{tmp_path / 'ledger.db'}", **overrides)

    def test_database_history_has_no_indexer_client(self, tmp_path):
        target = FastAPI()

        configure(target, self.settings(tmp_path, history_source="database"))

        assert target.state.indexer_client is None
        assert target.state.read_aggregate("0x" + "11" * 20) is None

    def test_indexer_history_exposes_client(self, tmp_path):
        target = FastAPI()

        configure(target, self.settings(tmp_path, history_source="indexer"))

        assert isinstance(target.state.indexer_client, IndexerClient)
        assert target.state.read_aggregate == target.state.indexer_client.fetch_aggregate

    def test_rejects_unknown_history_source(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown history source"):
            configure(FastAPI(), self.settings(tmp_path, history_source="subgraph"))
