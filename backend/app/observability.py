from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from threading import Lock

from fastapi import Request

logger = logging.getLogger("coreflow")


@dataclass
class MetricsSnapshot:
    requests_total: int
    requests_5xx: int
    total_latency_ms: float
    transitions_applied: int
    transitions_rejected: int


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = Lock()
        self._requests_total = 0
        self._requests_5xx = 0
        self._total_latency_ms = 0.0
        self._transitions_applied = 0
        self._transitions_rejected = 0
        self._by_route_status: dict[tuple[str, int], int] = {}

    def record(self, *, route: str, status_code: int, latency_ms: float) -> None:
        with self._lock:
            self._requests_total += 1
            if status_code >= 500:
                self._requests_5xx += 1
            self._total_latency_ms += latency_ms
            key = (route, status_code)
            self._by_route_status[key] = self._by_route_status.get(key, 0) + 1

    def record_transition(self, *, applied: bool) -> None:
        with self._lock:
            if applied:
                self._transitions_applied += 1
            else:
                self._transitions_rejected += 1

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                requests_total=self._requests_total,
                requests_5xx=self._requests_5xx,
                total_latency_ms=self._total_latency_ms,
                transitions_applied=self._transitions_applied,
                transitions_rejected=self._transitions_rejected,
            )

    def to_prometheus(self) -> str:
        snap = self.snapshot()
        avg_latency = (
            snap.total_latency_ms / snap.requests_total if snap.requests_total else 0.0
        )
        lines = [
            "# HELP coreflow_requests_total Total HTTP requests",
            "# TYPE coreflow_requests_total counter",
            f"coreflow_requests_total {snap.requests_total}",
            "# HELP coreflow_requests_5xx_total Total 5xx HTTP requests",
            "# TYPE coreflow_requests_5xx_total counter",
            f"coreflow_requests_5xx_total {snap.requests_5xx}",
            "# HELP coreflow_request_avg_latency_ms Average request latency ms",
            "# TYPE coreflow_request_avg_latency_ms gauge",
            f"coreflow_request_avg_latency_ms {avg_latency:.2f}",
            "# HELP coreflow_stage_transitions_total Candidate stage moves by outcome",
            "# TYPE coreflow_stage_transitions_total counter",
            f'coreflow_stage_transitions_total{{result="applied"}} {snap.transitions_applied}',
            f'coreflow_stage_transitions_total{{result="rejected"}} {snap.transitions_rejected}',
        ]
        with self._lock:
            for (route, status_code), count in sorted(self._by_route_status.items()):
                lines.append(
                    'coreflow_route_requests_total'
                    f'{{route="{route}",status="{status_code}"}} {count}'
                )
        return "\n".join(lines) + "\n"


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def route_label(request: Request) -> str:
    # Templated path, so per-candidate URLs share one series.
    route = request.scope.get("route")
    return getattr(route, "path", None) or request.url.path


async def observe_request(
    request: Request,
    call_next,
    *,
    metrics: MetricsRegistry,
):
    start = time.perf_counter()
    try:
        response = await call_next(request)
        latency_ms = (time.perf_counter() - start) * 1000.0
        route = route_label(request)
        metrics.record(route=route, status_code=response.status_code, latency_ms=latency_ms)
        logger.info(
            "request_complete method=%s route=%s path=%s status=%s latency_ms=%.2f",
            request.method,
            route,
            request.url.path,
            response.status_code,
            latency_ms,
        )
        return response
    except Exception:
        latency_ms = (time.perf_counter() - start) * 1000.0
        route = route_label(request)
        metrics.record(route=route, status_code=500, latency_ms=latency_ms)
        logger.exception(
            "request_failed method=%s route=%s path=%s latency_ms=%.2f",
            request.method,
            route,
            request.url.path,
            latency_ms,
        )
        raise
