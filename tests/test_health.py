"""
Tests for health probes, the metrics endpoint and request accounting.
"""

import inspect

from fastapi import FastAPI
from fastapi.routing import APIRoute
from fastapi.testclient import TestClient
from prometheus_client import REGISTRY

from conftest import auth
from samvad.logging_utils import RequestLoggingMiddleware
from samvad.main import app
from samvad.metrics import http_requests_total


def path_labels(prefix: str) -> set:
    """Distinct path label values of http_requests_total under a prefix."""
    return {
        sample.labels["path"]
        for metric in http_requests_total.collect()
        for sample in metric.samples
        if sample.name == "http_requests_total" and sample.labels["path"].startswith(prefix)
    }


class TestHealth:
    """Test liveness and readiness probes."""

    def test_live(self, client):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "reason": None}

    def test_ready_when_schema_applied(self, client):
        response = client.get("/health/ready")

        assert response.status_code == 200
        assert response.json()["status"] == "ready"


class TestMetrics:
    """Test Prometheus exposition."""

    def test_metrics_exposes_domain_counters(self, client, people):
        client.post(
            "/api/conversations/create",
            json={"type": "group", "participants": [people["bob"]]},
            headers=auth(people["alice"]),
        )
        client.get("/api/conversations/999", headers=auth(people["alice"]))

        response = client.get("/metrics")

        assert response.status_code == 200
        body = response.text
        assert 'conversations_created_total{type="group"}' in body
        assert 'domain_errors_total{error="not_found"}' in body
        assert "http_requests_total" in body

    def test_paths_are_labelled_by_route_template(self, client, people):
        conversation_id = client.post(
            "/api/conversations/create",
            json={"participant_id": people["bob"]},
            headers=auth(people["alice"]),
        ).json()["data"]["id"]
        for i in range(5):
            message_id = client.post(
                f"/api/conversations/{conversation_id}/messages",
                json={"content": f"message {i}"},
                headers=auth(people["alice"]),
            ).json()["data"]["id"]
            client.put(f"/api/messages/{message_id}/read", headers=auth(people["bob"]))

        message_paths = path_labels("/api/messages/")
        assert "/api/messages/{message_id}/read" in message_paths
        assert all("{message_id}" in path for path in message_paths)
        assert "/api/conversations/{conversation_id}/messages" in path_labels("/api/conversations/")
        assert f"/api/conversations/{conversation_id}/messages" not in path_labels("/api/conversations/")

    def test_unmatched_path_keeps_raw_label(self, client):
        client.get("/no/such/route")

        assert "/no/such/route" in path_labels("/no/")


class TestUnhandledErrors:
    """Test that requests failing with an unhandled exception are still accounted."""

    def test_failed_request_is_counted_and_logged(self, caplog):
        failing_app = FastAPI()
        failing_app.add_middleware(RequestLoggingMiddleware)

        @failing_app.get("/explode")
        def explode():
            raise RuntimeError("boom")

        with TestClient(failing_app, raise_server_exceptions=False) as client:
            response = client.get("/explode")

        assert response.status_code == 500
        counted = REGISTRY.get_sample_value(
            "http_requests_total", {"method": "GET", "path": "/explode", "status": "500"}
        )
        assert counted >= 1
        completed = [
            record for record in caplog.records
            if record.name == "samvad.requests" and getattr(record, "path", None) == "/explode"
        ]
        assert completed and completed[-1].status == 500


class TestRouting:
    """Test how API endpoints are dispatched."""

    def test_api_handlers_run_in_threadpool(self):
        api_routes = [route for route in app.routes if isinstance(route, APIRoute) and route.path.startswith("/api")]

        assert api_routes
        assert [route.path for route in api_routes if inspect.iscoroutinefunction(route.endpoint)] == []
