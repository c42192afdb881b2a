"""Integration tests for API endpoints using FastAPI TestClient."""

from __future__ import annotations

from dataclasses import replace

import orjson
import pytest
from unittest.mock import AsyncMock

from fastapi.testclient import TestClient

from imagebroker.adapters.inbound.sse import run_in_background
from imagebroker.adapters.outbound.persistence.memory import InMemoryStore
from imagebroker.config import get_settings
from imagebroker.dependencies import build_container, set_container
from imagebroker.domain.entities import User
from imagebroker.domain.enums import GenerationStatus
from imagebroker.domain.value_objects import RemoteStatus
from imagebroker.main import create_app
from imagebroker.seed import DEFAULT_PROVIDERS
from imagebroker.shared.security import create_access_token

SECRET = "test-secret-key-256-bits-long-enough"
PROMPT = {"prompt": "a lighthouse at dusk, oil painting", "parameters": {"size": "1024x1024"}}


def _client(store: InMemoryStore | None = None, **overrides) -> TestClient:
    settings = get_settings(
        storage_backend="memory",
        jwt_secret_key=SECRET,
        **overrides,
    )
    status_adapter = AsyncMock()
    status_adapter.check_remote_status.return_value = RemoteStatus(
        reachable=True, remote_quota_hint=7, detail="HTTP 200"
    )
    container = build_container(
        settings, store=store or InMemoryStore(), status_adapter=status_adapter
    )
    return TestClient(create_app(container=container))


def _headers(user_id: str = "test-user") -> dict[str, str]:
    token = create_access_token(
        data={"sub": user_id, "email": f"{user_id}@example.test"},
        secret_key=SECRET,
    )
    return {"Authorization": f"Bearer {token}"}


def _frames(body: str) -> list[dict]:
    return [
        orjson.loads(chunk[len("data: "):])
        for chunk in body.split("\n\n")
        if chunk.startswith("data: ")
    ]


@pytest.fixture
def client():
    with _client() as client:
        yield client
    set_container(None)


@pytest.fixture
def auth_headers():
    return _headers()


def _generate(client: TestClient, headers: dict[str, str]) -> dict:
    resp = client.post("/api/v1/images/generate?stream=false", json=PROMPT, headers=headers)
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestHealthEndpoints:
    def test_health_check(self, client):
        resp = client.get("/api/v1/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "ok"
        assert "version" in data
        assert data["services"]["storage"] == "memory"

    def test_metrics_endpoint(self, client):
        client.get("/api/v1/health")
        resp = client.get("/api/v1/metrics")
        assert resp.status_code == 200
        assert b"http_requests_total" in resp.content
        assert b"generation_runs_total" in resp.content

    def test_metrics_can_be_disabled(self):
        with _client(prometheus_enabled=False) as client:
            assert client.get("/api/v1/metrics").status_code == 404

    def test_request_id_header(self, client):
        resp = client.get("/api/v1/health", headers={"X-Request-ID": "req-123"})
        assert resp.headers.get("X-Request-ID") == "req-123"


class TestAuth:
    def test_missing_token(self, client):
        resp = client.get("/api/v1/images/history")
        assert resp.status_code == 401
        assert resp.json()["code"] == "AUTHENTICATION_ERROR"

    def test_bad_token(self, client):
        resp = client.get(
            "/api/v1/images/history", headers={"Authorization": "Bearer not-a-token"}
        )
        assert resp.status_code == 401

    def test_token_signed_with_other_secret(self, client):
        token = create_access_token({"sub": "test-user"}, secret_key="another-secret")
        resp = client.get("/api/v1/images/history", headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 401


class TestGenerateEndpoint:
    def test_generate_without_streaming(self, client, auth_headers):
        body = _generate(client, auth_headers)
        assert body["step"] == "end"
        assert body["success"] is True
        assert body["data"]["provider_used"] == "stablediffusion"
        assert body["data"]["history"]["status"] == "completed"
        assert body["data"]["provider_transitions"] == ["Attempt 1: stablediffusion"]

    def test_generate_streams_progress(self, client, auth_headers):
        resp = client.post("/api/v1/images/generate", json=PROMPT, headers=auth_headers)

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        frames = _frames(resp.text)
        steps = [f["step"] for f in frames]
        assert steps[0] == "start"
        assert steps[-1] == "end"
        assert steps.count("end") == 1
        assert frames[-1]["success"] is True
        assert all(f["version"] == 1 for f in frames)

    def test_failover_across_providers(self):
        with _client(paper_failure_providers="stablediffusion,kieai") as client:
            body = _generate(client, _headers())
        assert body["data"]["provider_used"] == "photai"
        assert body["data"]["provider_transitions"] == [
            "Attempt 1: stablediffusion",
            "Attempt 2: kieai",
            "Attempt 3: photai",
        ]

    def test_every_adapter_failing_is_a_bad_gateway(self):
        with _client(paper_failure_providers="stablediffusion,kieai,photai,gemini") as client:
            resp = client.post(
                "/api/v1/images/generate?stream=false", json=PROMPT, headers=_headers()
            )
        assert resp.status_code == 502
        body = resp.json()
        assert body["success"] is False
        assert body["error"]["kind"] == "adapter"
        assert len(body["error"]["attempted_providers"]) == 4

    def test_exhausted_catalogue_is_unavailable(self):
        store = InMemoryStore()
        for default in DEFAULT_PROVIDERS:
            limit = default.quota_limit or 1
            store.providers[default.name] = replace(
                default, unconstrained=False, quota_credits=limit, usage_count=limit
            )
        with _client(store=store, unconstrained_providers="") as client:
            resp = client.post(
                "/api/v1/images/generate?stream=false", json=PROMPT, headers=_headers()
            )
        assert resp.status_code == 503
        assert resp.json()["error"]["kind"] == "exhaustion"

    def test_blank_prompt_is_rejected(self, client, auth_headers):
        resp = client.post(
            "/api/v1/images/generate", json={"prompt": "   "}, headers=auth_headers
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"
        history = client.get("/api/v1/images/history", headers=auth_headers).json()
        assert history["total"] == 0

    def test_missing_prompt_is_rejected(self, client, auth_headers):
        resp = client.post("/api/v1/images/generate", json={}, headers=auth_headers)
        assert resp.status_code == 422


class TestHistoryEndpoints:
    def test_history_lists_newest_first(self, client, auth_headers):
        first = _generate(client, auth_headers)["data"]["history_id"]
        second = _generate(client, auth_headers)["data"]["history_id"]

        resp = client.get("/api/v1/images/history?page=1&limit=10", headers=auth_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 2
        assert data["total_pages"] == 1
        assert [item["id"] for item in data["items"]] == [second, first]

    def test_history_is_per_user(self, client, auth_headers):
        _generate(client, auth_headers)
        resp = client.get("/api/v1/images/history", headers=_headers("other-user"))
        assert resp.json()["total"] == 0

    def test_history_detail_and_logs(self, client, auth_headers):
        history_id = _generate(client, auth_headers)["data"]["history_id"]

        detail = client.get(f"/api/v1/images/history/{history_id}", headers=auth_headers)
        assert detail.status_code == 200
        assert detail.json()["status"] == "completed"

        logs = client.get(f"/api/v1/images/history/{history_id}/logs", headers=auth_headers)
        assert logs.status_code == 200
        steps = [entry["step"] for entry in logs.json()]
        assert steps[0] == "start"
        assert steps[-1] == "end"

    def test_other_users_record_is_hidden(self, client, auth_headers):
        history_id = _generate(client, auth_headers)["data"]["history_id"]
        resp = client.get(f"/api/v1/images/history/{history_id}", headers=_headers("other-user"))
        assert resp.status_code == 404
        assert resp.json()["code"] == "GENERATION_NOT_FOUND"

    def test_delete_history(self, client, auth_headers):
        history_id = _generate(client, auth_headers)["data"]["history_id"]

        forbidden = client.delete(
            f"/api/v1/images/history/{history_id}", headers=_headers("other-user")
        )
        assert forbidden.status_code == 403

        resp = client.delete(f"/api/v1/images/history/{history_id}", headers=auth_headers)
        assert resp.status_code == 204
        missing = client.get(f"/api/v1/images/history/{history_id}", headers=auth_headers)
        assert missing.status_code == 404

    def test_regenerate(self, client, auth_headers):
        history_id = _generate(client, auth_headers)["data"]["history_id"]

        resp = client.post(
            f"/api/v1/images/history/{history_id}/regenerate?stream=false", headers=auth_headers
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert body["data"]["history_id"] == history_id
        history = client.get("/api/v1/images/history", headers=auth_headers).json()
        assert history["total"] == 1

    def test_regenerate_streams(self, client, auth_headers):
        history_id = _generate(client, auth_headers)["data"]["history_id"]
        resp = client.post(
            f"/api/v1/images/history/{history_id}/regenerate?stream=true", headers=auth_headers
        )
        steps = [f["step"] for f in _frames(resp.text)]
        assert steps[0] == "regeneration_requested"
        assert steps[-1] == "end"

    def test_regenerate_unknown_record(self, client, auth_headers):
        resp = client.post("/api/v1/images/history/nope/regenerate", headers=auth_headers)
        assert resp.status_code == 404

    def test_dashboard(self, client, auth_headers):
        _generate(client, auth_headers)

        resp = client.get("/api/v1/images/dashboard", headers=auth_headers)

        assert resp.status_code == 200
        data = resp.json()
        assert data["total_images"] == 1
        assert data["provider_usage"] == {"stablediffusion": 1}
        by_name = {p["name"]: p for p in data["providers"]}
        assert by_name["stablediffusion"]["usage_count"] == 1
        assert by_name["stablediffusion"]["remaining"] == 26


class TestProviderEndpoints:
    def test_list_providers(self, client, auth_headers):
        resp = client.get("/api/v1/providers", headers=auth_headers)
        assert resp.status_code == 200
        by_name = {p["name"]: p for p in resp.json()}
        assert set(by_name) == {"stablediffusion", "kieai", "photai", "gemini"}
        assert by_name["gemini"]["remaining"] is None
        assert by_name["gemini"]["unconstrained"] is True
        assert by_name["kieai"]["quota_limit"] == 8

    def test_get_provider(self, client, auth_headers):
        resp = client.get("/api/v1/providers/photai", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json()["display_name"] == "Phot.AI"

    def test_unknown_provider(self, client, auth_headers):
        resp = client.get("/api/v1/providers/dalle", headers=auth_headers)
        assert resp.status_code == 404
        assert resp.json()["code"] == "PROVIDER_NOT_FOUND"

    def test_provider_status(self, client, auth_headers):
        resp = client.get("/api/v1/providers/kieai/status", headers=auth_headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["reachable"] is True
        assert data["remote_quota_hint"] == 7
        assert data["provider"]["last_checked"] is not None


class TestPreferenceEndpoints:
    def test_defaults(self, client, auth_headers):
        resp = client.get("/api/v1/users/me/preferences", headers=auth_headers)
        assert resp.status_code == 200
        assert resp.json() == {"preferred_provider": "auto", "prioritize_free": True}

    def test_update_steers_generation(self, client, auth_headers):
        resp = client.put(
            "/api/v1/users/me/preferences",
            json={"preferred_provider": "gemini"},
            headers=auth_headers,
        )
        assert resp.status_code == 200
        assert resp.json()["preferred_provider"] == "gemini"

        body = _generate(client, auth_headers)
        assert body["data"]["provider_used"] == "gemini"
        assert body["data"]["preferred_provider"] == "gemini"

    def test_unknown_provider_is_rejected(self, client, auth_headers):
        resp = client.put(
            "/api/v1/users/me/preferences",
            json={"preferred_provider": "dalle"},
            headers=auth_headers,
        )
        assert resp.status_code == 422
        assert resp.json()["code"] == "VALIDATION_ERROR"


class TestLifecycle:
    def test_shutdown_lets_in_flight_runs_finish(self):
        store = InMemoryStore()
        store.users["drain-user"] = User(id="drain-user")
        client = _client(store, paper_latency_seconds=0.2)

        with client:
            orchestrator = client.app.state.container.orchestrator

            async def _start():
                run_in_background(orchestrator.generate("drain-user", PROMPT["prompt"]))

            client.portal.call(_start)
        set_container(None)

        records = list(store.records.values())
        assert len(records) == 1
        assert records[0].status == GenerationStatus.COMPLETED
        assert store.providers["stablediffusion"].usage_count == 1
