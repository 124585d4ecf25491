from unittest import mock

import pytest
from fastapi.testclient import TestClient

from storage_usage.api import create_app


@pytest.fixture
def client_for():
    def build(backend=None, error=None):
        async def backend_factory():
            if error:
                raise error
            return backend

        return TestClient(create_app(backend_factory=backend_factory))

    return build


def test_storage_route_returns_report(client_for, fake_backend):
    with client_for(fake_backend) as client:
        response = client.get("/api/admin/storage")

    assert response.status_code == 200
    body = response.json()
    assert body["totalSizeBytes"] == 1350
    assert sorted(body["bucketUsage"], key=lambda b: b["name"]) == [
        {"name": "docs", "sizeBytes": 350},
        {"name": "images", "sizeBytes": 1000},
    ]


def test_storage_route_fails_when_buckets_cannot_be_listed(client_for, make_backend):
    backend = make_backend({"docs": {}}, fail_bucket_listing=True)

    with client_for(backend) as client:
        response = client.get("/api/admin/storage")

    assert response.status_code == 500
    assert response.json() == {"error": "Could not fetch storage buckets."}


def test_storage_route_fails_when_backend_is_misconfigured(client_for):
    with client_for(error=ValueError("SUPABASE_URL must be set")) as client:
        response = client.get("/api/admin/storage")

    assert response.status_code == 500
    assert "SUPABASE_URL" in response.json()["error"]


def test_storage_route_computes_a_fresh_report_per_request(client_for, fake_backend):
    with client_for(fake_backend) as client:
        first = client.get("/api/admin/storage").json()
        fake_backend.buckets["docs"]["new.bin"] = 650
        second = client.get("/api/admin/storage").json()

    assert first["totalSizeBytes"] == 1350
    assert second["totalSizeBytes"] == 2000


def test_backend_is_built_once_and_closed_on_shutdown(fake_backend):
    backend_factory = mock.AsyncMock(return_value=fake_backend)

    with (
        mock.patch.object(fake_backend, "aclose", new=mock.AsyncMock()) as aclose,
        TestClient(create_app(backend_factory=backend_factory)) as client,
    ):
        assert client.get("/api/admin/storage").status_code == 200
        assert client.get("/api/admin/storage").status_code == 200
        aclose.assert_not_awaited()

    backend_factory.assert_awaited_once()
    aclose.assert_awaited_once()


def test_backend_build_is_retried_after_a_failure(make_backend):
    backend = make_backend({"docs": {"a.txt": 5}})
    backend_factory = mock.AsyncMock(side_effect=[ValueError("not ready"), backend])

    with TestClient(create_app(backend_factory=backend_factory)) as client:
        first = client.get("/api/admin/storage")
        second = client.get("/api/admin/storage")

    assert first.status_code == 500
    assert second.json()["totalSizeBytes"] == 5
    assert backend_factory.await_count == 2


def test_health(client_for, fake_backend):
    with client_for(fake_backend) as client:
        assert client.get("/health").json() == {"status": "ok"}
