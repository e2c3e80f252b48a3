"""Tests for web routes."""

import base64
import time

import pytest
from fastapi.testclient import TestClient

from shelf_agent.catalog.chain import CatalogResolutionChain
from shelf_agent.catalog.registry import SettingsRegistry
from shelf_agent.pipeline.factory import build_pipeline
from shelf_agent.web.app import create_app
from stubs import StubAdapter, StubEnricher, StubExtractor, candidate, detected

IMAGE = base64.b64encode(b"fake-image-bytes").decode("ascii")
USER = {"X-User-Id": "u1"}
OTHER_USER = {"X-User-Id": "u2"}


@pytest.fixture
def components(session_factory):
    """Pipeline wired to the test database and in-memory providers."""
    adapter = StubAdapter(
        results={
            "Dune": [candidate("Dune", "Frank Herbert", year=1965)],
            "Foundation": [candidate("Foundation", "Isaac Asimov", year=1951)],
        }
    )
    return build_pipeline(
        registry=SettingsRegistry(),
        session_factory=session_factory,
        extractor=StubExtractor([detected("Dune", 0.95, "Frank Herbert"), detected("Dnue", 0.3)]),
        enricher=StubEnricher(),
        chain=CatalogResolutionChain([adapter]),
    )


@pytest.fixture
def client(components):
    """Create a test client running the app lifespan."""
    with TestClient(create_app(components)) as client:
        yield client


def _scan(client: TestClient, shelf_id: str = "s1", **body) -> dict:
    payload = {"imageBase64": IMAGE, "kind": "book", "async": False, **body}
    response = client.post(f"/shelves/{shelf_id}/vision", json=payload, headers=USER)
    assert response.status_code == 200
    return response.json()


def _wait_for(client: TestClient, job_id: str) -> dict:
    for _ in range(200):
        data = client.get(f"/vision/{job_id}/status", headers=USER).json()
        if data["status"] in ("completed", "failed", "aborted"):
            return data
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish")


class TestHealth:
    """Tests for the health endpoint."""

    def test_health(self, client) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"


class TestVisionRoutes:
    """Tests for photo submission and job status."""

    def test_requires_user_header(self, client) -> None:
        response = client.post("/shelves/s1/vision", json={"imageBase64": IMAGE})
        assert response.status_code == 401
        assert client.get("/vision/anything/status").status_code == 401

    def test_async_submission_and_polling(self, client) -> None:
        """Test the 202 then poll flow."""
        response = client.post(
            "/shelves/s1/vision", json={"imageBase64": IMAGE, "kind": "books"}, headers=USER
        )

        assert response.status_code == 202
        body = response.json()
        assert body["status"] == "processing"
        assert body["jobId"].startswith("vision-u1-s1-")

        done = _wait_for(client, body["jobId"])
        assert done["status"] == "completed"
        assert done["progress"] == 100
        assert done["result"]["addedCount"] == 1
        assert done["result"]["needsReviewCount"] == 1

    def test_sync_mode_returns_terminal_job(self, client) -> None:
        job = _scan(client)

        assert job["status"] == "completed"
        assert job["result"]["added"][0]["source"] == "catalog-match"
        assert job["result"]["needsReview"][0]["title"] == "Dnue"

    def test_accepts_data_uri(self, client) -> None:
        job = _scan(client, imageBase64=f"data:image/jpeg;base64,{IMAGE}")
        assert job["status"] == "completed"

    def test_rejects_invalid_image(self, client) -> None:
        response = client.post(
            "/shelves/s1/vision", json={"imageBase64": "%%%not-base64"}, headers=USER
        )
        assert response.status_code == 400

    def test_status_ownership(self, client) -> None:
        job = _scan(client)

        assert client.get(f"/vision/{job['jobId']}/status", headers=OTHER_USER).status_code == 403
        assert client.get("/vision/vision-u1-s1-zz-00000000/status", headers=USER).status_code == 404

    def test_abort_finished_job(self, client) -> None:
        job = _scan(client)

        response = client.post(f"/vision/{job['jobId']}/abort", headers=USER)

        assert response.status_code == 200
        assert response.json() == {"aborted": False, "jobId": job["jobId"]}
        assert client.post(f"/vision/{job['jobId']}/abort", headers=OTHER_USER).status_code == 403
        assert client.post("/vision/missing/abort", headers=USER).status_code == 404


class TestReviewRoutes:
    """Tests for the review queue routes."""

    def test_list_and_complete(self, client) -> None:
        _scan(client)

        listing = client.get("/shelves/s1/review", headers=USER).json()
        assert listing["available"] is True
        assert [item["raw_data"]["title"] for item in listing["items"]] == ["Dnue"]
        review_id = listing["items"][0]["id"]

        response = client.post(
            f"/shelves/s1/review/{review_id}/complete",
            json={"edits": {"title": "Dune Messiah", "creator": "Frank Herbert"}},
            headers=USER,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["created"] is True
        assert body["collectable"]["title"] == "Dune Messiah"
        assert body["shelfItem"]["shelf_id"] == "s1"
        assert client.get("/shelves/s1/review", headers=USER).json()["items"] == []

    def test_complete_through_other_shelf_is_not_found(self, client) -> None:
        _scan(client)
        review_id = client.get("/shelves/s1/review", headers=USER).json()["items"][0]["id"]

        response = client.post(f"/shelves/s2/review/{review_id}/complete", headers=USER)

        assert response.status_code == 404

    def test_complete_without_title_is_rejected(self, client) -> None:
        _scan(client)
        review_id = client.get("/shelves/s1/review", headers=USER).json()["items"][0]["id"]

        response = client.post(
            f"/shelves/s1/review/{review_id}/complete",
            json={"edits": {"title": " "}},
            headers=USER,
        )

        assert response.status_code == 422

    def test_dismiss(self, client) -> None:
        _scan(client)
        review_id = client.get("/shelves/s1/review", headers=USER).json()["items"][0]["id"]

        response = client.post(f"/shelves/s1/review/{review_id}/dismiss", headers=USER)

        assert response.json() == {"dismissed": True}
        again = client.post(f"/shelves/s1/review/{review_id}/dismiss", headers=USER)
        assert again.status_code == 404

    def test_other_users_items_are_hidden(self, client) -> None:
        _scan(client)
        assert client.get("/shelves/s1/review", headers=OTHER_USER).json()["items"] == []


class TestCollectableSearch:
    """Tests for the collectable search route."""

    def test_database_hit(self, client) -> None:
        _scan(client)

        response = client.post(
            "/collectables/search",
            json={"title": "Dune", "creator": "Frank Herbert", "kind": "book"},
            headers=USER,
        )

        body = response.json()
        assert response.status_code == 200
        assert body["searched"] == {"database": True, "api": False}
        assert body["suggestions"][0]["source"] == "fingerprint"
        assert body["suggestions"][0]["record"]["title"] == "Dune"

    def test_catalog_fallback(self, client) -> None:
        response = client.post(
            "/collectables/search", json={"title": "Foundation", "kind": "book"}, headers=USER
        )

        body = response.json()
        assert body["searched"]["api"] is True
        assert body["suggestions"][0]["source"] == "api"
        assert body["suggestions"][0]["candidate"]["year"] == 1951

    def test_empty_title_is_invalid(self, client) -> None:
        response = client.post("/collectables/search", json={"title": ""}, headers=USER)
        assert response.status_code == 422
