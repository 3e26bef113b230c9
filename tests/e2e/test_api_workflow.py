"""E2E tests for the resolve -> select -> deliver workflow.

Tests the full request flow:
1. POST /api/v1/resolve - Resolve a link into quality choices
2. POST /api/v1/select - Pick a quality
3. GET /api/v1/flows/{id} - Poll the flow until it is delivered
4. POST /api/v1/select again - Served from the result cache
"""

import time
from typing import Any, Dict

import pytest
from fastapi.testclient import TestClient

TERMINAL_STATES = {
    "delivered",
    "duplicate_in_flight",
    "fetch_failed",
    "upload_failed",
    "queue_rejected",
}


def resolve(client: TestClient, url: str) -> Dict[str, Any]:
    response = client.post("/api/v1/resolve", json={"url": url, "user_id": 1001})
    assert response.status_code == 200
    return response.json()


def wait_for_flow(client: TestClient, flow_id: str, timeout: float = 10.0) -> Dict[str, Any]:
    """Poll a flow until it reaches a terminal state."""
    deadline = time.time() + timeout
    while time.time() < deadline:
        response = client.get(f"/api/v1/flows/{flow_id}")
        assert response.status_code == 200
        data = response.json()
        if data["state"] in TERMINAL_STATES:
            return data
        time.sleep(0.05)
    pytest.fail(f"Flow {flow_id} did not finish within {timeout}s")


@pytest.mark.e2e
class TestResolve:
    """E2E tests for link resolution."""

    def test_resolve_demo_video(self, e2e_client: TestClient, demo_video_url: str) -> None:
        data = resolve(e2e_client, demo_video_url)

        assert data["state"] == "presenting"
        assert data["resource_id"] == "dQw4w9WgXcQ"
        assert data["uploader"] == "Rick Astley"
        assert [c["rendition"] for c in data["choices"]] == ["1080p", "720p", "360p", "audio"]
        assert data["session_id"]

    def test_resolve_without_usable_format(
        self, e2e_client: TestClient, low_res_video_url: str
    ) -> None:
        response = e2e_client.post("/api/v1/resolve", json={"url": low_res_video_url})

        assert response.status_code == 422
        assert response.json()["error_code"] == "NO_USABLE_FORMAT"

    def test_resolve_unavailable_video(self, e2e_client: TestClient) -> None:
        response = e2e_client.post(
            "/api/v1/resolve", json={"url": "https://www.youtube.com/watch?v=XXXXXXXXXXX"}
        )

        assert response.status_code == 422
        data = response.json()
        assert data["error_code"] == "RESOLUTION_FAILED"
        assert data["suggestion"]

    def test_resolve_rejects_non_http_url(self, e2e_client: TestClient) -> None:
        response = e2e_client.post("/api/v1/resolve", json={"url": "ftp://example.com/video"})

        assert response.status_code == 422


@pytest.mark.e2e
class TestSelectWorkflow:
    """E2E tests for the full download workflow."""

    def test_download_then_cache_hit(self, e2e_client: TestClient, demo_video_url: str) -> None:
        session = resolve(e2e_client, demo_video_url)

        response = e2e_client.post(
            "/api/v1/select",
            json={
                "session_id": session["session_id"],
                "format_id": "136",
                "rendition": "720p",
                "user_id": 1001,
                "chat_id": 1001,
            },
        )
        assert response.status_code == 202
        queued = response.json()
        assert queued["state"] == "queued"

        flow = wait_for_flow(e2e_client, queued["flow_id"])
        assert flow["state"] == "delivered"
        assert flow["archived"] is True
        assert flow["from_cache"] is False

        # A second user asking for the same rendition is served by reference
        other_session = resolve(e2e_client, demo_video_url)
        response = e2e_client.post(
            "/api/v1/select",
            json={
                "session_id": other_session["session_id"],
                "format_id": "136",
                "rendition": "720p",
                "user_id": 2002,
                "chat_id": 2002,
            },
        )
        assert response.status_code == 200
        hit = response.json()
        assert hit["state"] == "delivered"
        assert hit["from_cache"] is True

        stats = e2e_client.get("/api/v1/stats").json()
        assert stats["cache"]["total_entries"] >= 1
        assert stats["cache"]["total_hits"] >= 1

    def test_audio_download(self, e2e_client: TestClient, demo_video_url: str) -> None:
        session = resolve(e2e_client, demo_video_url)

        response = e2e_client.post(
            "/api/v1/select",
            json={
                "session_id": session["session_id"],
                "format_id": "140",
                "rendition": "audio",
                "user_id": 1001,
                "chat_id": 1001,
            },
        )

        assert response.status_code in (200, 202)
        flow = wait_for_flow(e2e_client, response.json()["flow_id"])
        assert flow["state"] == "delivered"
        assert flow["rendition"] == "audio"

    def test_list_flows(self, e2e_client: TestClient) -> None:
        response = e2e_client.get("/api/v1/flows", params={"state": "delivered"})

        assert response.status_code == 200
        data = response.json()
        assert data["total"] == len(data["flows"])
        assert all(f["state"] == "delivered" for f in data["flows"])


@pytest.mark.e2e
class TestSelectErrors:
    """E2E tests for selection errors."""

    def test_unknown_session(self, e2e_client: TestClient) -> None:
        response = e2e_client.post(
            "/api/v1/select",
            json={
                "session_id": "does-not-exist",
                "format_id": "137",
                "rendition": "1080p",
                "user_id": 1001,
                "chat_id": 1001,
            },
        )

        assert response.status_code == 410
        data = response.json()
        assert data["error_code"] == "SESSION_EXPIRED"
        assert data["message"] == "The link has expired. Send the video again."

    def test_format_not_offered(self, e2e_client: TestClient, demo_video_url: str) -> None:
        session = resolve(e2e_client, demo_video_url)

        response = e2e_client.post(
            "/api/v1/select",
            json={
                "session_id": session["session_id"],
                "format_id": "401",
                "rendition": "2160p",
                "user_id": 1001,
                "chat_id": 1001,
            },
        )

        assert response.status_code == 422
        assert response.json()["error_code"] == "FORMAT_NOT_OFFERED"

    def test_missing_fields(self, e2e_client: TestClient) -> None:
        response = e2e_client.post("/api/v1/select", json={"session_id": "abc"})

        assert response.status_code == 422

    def test_unknown_flow(self, e2e_client: TestClient) -> None:
        response = e2e_client.get("/api/v1/flows/does-not-exist")

        assert response.status_code == 404
        assert response.json()["detail"]["error_code"] == "FLOW_NOT_FOUND"


@pytest.mark.e2e
class TestOperationalEndpoints:
    """E2E tests for health, stats and metrics."""

    def test_health(self, e2e_client: TestClient) -> None:
        response = e2e_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["test_mode"] is True
        assert data["components"]["database"]["status"] == "healthy"

    def test_liveness(self, e2e_client: TestClient) -> None:
        response = e2e_client.get("/liveness")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    def test_readiness(self, e2e_client: TestClient) -> None:
        response = e2e_client.get("/readiness")

        assert response.status_code == 200
        assert response.json()["ready"] is True

    def test_request_id_echoed(self, e2e_client: TestClient) -> None:
        response = e2e_client.get("/liveness", headers={"X-Request-ID": "req_e2e"})

        assert response.headers["X-Request-ID"] == "req_e2e"

    def test_stats_shape(self, e2e_client: TestClient) -> None:
        response = e2e_client.get("/api/v1/stats")

        assert response.status_code == 200
        data = response.json()
        assert set(data) == {"queue", "cache", "sessions", "flows"}
        assert data["queue"]["queued"] >= 0

    def test_metrics(self, e2e_client: TestClient) -> None:
        e2e_client.get("/liveness")

        response = e2e_client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "admission_queue_active" in response.text
