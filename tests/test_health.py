"""
Tests for health probes and the metrics endpoint.
"""

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.storage import Base, engine


@pytest.fixture(scope="function")
def client(db):
    with TestClient(app) as test_client:
        yield test_client


def test_liveness(client):
    response = client.get("/health/live")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "reason": None}


def test_readiness(client):
    response = client.get("/health/ready")

    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_readiness_without_schema(client):
    Base.metadata.drop_all(bind=engine)

    response = client.get("/health/ready")

    assert response.status_code == 503
    assert response.json()["status"] == "not_ready"


def test_request_id_header(client):
    response = client.get("/health/live")

    assert response.headers["X-Request-ID"]


def test_metrics_exposition(client):
    client.get("/health/live")

    response = client.get("/metrics")

    assert response.status_code == 200
    assert 'http_requests_total{method="GET",path="/health/live",status="200"}' in response.text
