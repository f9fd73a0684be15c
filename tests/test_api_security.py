from fastapi.testclient import TestClient

from crypto_recommendation.app.api import create_app
from crypto_recommendation.config import Settings
from crypto_recommendation.ingest import CsvSource
from crypto_recommendation.storage import InMemoryPriceStore


def _client(**overrides) -> TestClient:
    values = {"ingest_on_startup": False, "api_key": "test-api-key", "rate_limit": "1000/minute"}
    values.update(overrides)
    return TestClient(create_app(Settings(**values), store=InMemoryPriceStore()))


def test_guarded_path_requires_bearer_token(auth_headers):
    with _client() as client:
        missing = client.get("/ingestion/report")
        wrong = client.get("/ingestion/report", headers={"Authorization": "Bearer nope"})
        basic = client.get("/ingestion/report", headers={"Authorization": "Basic test-api-key"})
        allowed = client.get("/ingestion/report", headers=auth_headers)

    for response in (missing, wrong, basic):
        assert response.status_code == 401
        assert response.json() == {"detail": "Authentication required"}
        assert response.headers["WWW-Authenticate"] == "Bearer"
    # Authenticated, but ingestion was skipped so there is no report.
    assert allowed.status_code == 404


def test_guarded_path_returns_report(auth_headers):
    app = create_app(
        Settings(api_key="test-api-key", rate_limit="1000/minute"),
        store=InMemoryPriceStore(),
        sources=[CsvSource.from_bytes("a.csv", b"timestamp,symbol,price\n0,BTC,1\n")],
    )

    with TestClient(app) as client:
        response = client.get("/ingestion/report", headers=auth_headers)

    assert response.status_code == 200
    assert response.json()["rows_loaded"] == 1


def test_guarded_path_rejected_without_configured_key(auth_headers):
    with _client(api_key=None) as client:
        response = client.get("/ingestion/report", headers=auth_headers)

    assert response.status_code == 401


def test_public_paths_do_not_need_a_key():
    with _client() as client:
        assert client.get("/cryptos/normalized-range").status_code == 200
        assert client.get("/healthz").status_code == 200
        assert client.get("/openapi.json").status_code == 200


def test_rate_limit_rejects_excess_requests():
    with _client(rate_limit="3/minute") as client:
        statuses = [client.get("/cryptos/normalized-range").status_code for _ in range(4)]

    assert statuses == [200, 200, 200, 429]


def test_rate_limit_is_keyed_by_forwarded_client():
    with _client(rate_limit="2/minute") as client:
        first = [
            client.get("/cryptos/normalized-range", headers={"X-Forwarded-For": "203.0.113.1"})
            for _ in range(3)
        ]
        other = client.get(
            "/cryptos/normalized-range", headers={"X-Forwarded-For": "203.0.113.2, 10.0.0.1"}
        )

    assert [response.status_code for response in first] == [200, 200, 429]
    assert other.status_code == 200
