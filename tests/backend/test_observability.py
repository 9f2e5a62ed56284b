from __future__ import annotations

from backend.app.observability import MetricsRegistry


def test_metrics_endpoint_exposes_counters(client) -> None:
    health = client.get("/health")
    assert health.status_code == 200

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    body = metrics.text
    assert "coreflow_requests_total" in body
    assert "coreflow_requests_5xx_total" in body
    assert 'coreflow_route_requests_total{route="/health",status="200"} 1' in body
    assert 'coreflow_stage_transitions_total{result="applied"} 0' in body


def test_readiness_endpoint(client) -> None:
    response = client.get("/health/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


def test_registry_tracks_transition_outcomes() -> None:
    registry = MetricsRegistry()
    registry.record_transition(applied=True)
    registry.record_transition(applied=True)
    registry.record_transition(applied=False)
    registry.record(route="/jobs", status_code=503, latency_ms=12.0)

    snapshot = registry.snapshot()
    assert snapshot.transitions_applied == 2
    assert snapshot.transitions_rejected == 1
    assert snapshot.requests_5xx == 1
    assert "coreflow_request_avg_latency_ms 12.00" in registry.to_prometheus()
