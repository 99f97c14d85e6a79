"""
Prometheus metrics for the arbitrage pipeline.

Exposes scan, opportunity, gate and bundle metrics, plus an optional
aiohttp server for the /metrics and /health endpoints.
"""

import logging
import threading
from typing import Optional

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from .types import Opportunity, RiskState, ThresholdSet

logger = logging.getLogger(__name__)


class ArbitrageMetrics:
    """Pipeline metrics with an injectable registry."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or REGISTRY
        self._lock = threading.RLock()
        self._runner: Optional[web.AppRunner] = None
        self._site: Optional[web.TCPSite] = None
        self._initialize_metrics()

    def _initialize_metrics(self):
        self.scans_total = Counter(
            "flashloan_arbitrage_scans_total",
            "Scan cycles completed",
            ["scan_key", "result"],
            registry=self.registry,
        )
        self.scan_duration_seconds = Histogram(
            "flashloan_arbitrage_scan_duration_seconds",
            "Scan cycle duration",
            ["scan_key"],
            buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
            registry=self.registry,
        )
        self.opportunities_total = Counter(
            "flashloan_arbitrage_opportunities_total",
            "Opportunities passing the scan filters",
            ["kind"],
            registry=self.registry,
        )
        self.gate_denials_total = Counter(
            "flashloan_arbitrage_gate_denials_total",
            "Execution requests denied by the risk governor",
            ["reason"],
            registry=self.registry,
        )
        self.bundles_total = Counter(
            "flashloan_arbitrage_bundles_total",
            "Bundle attempts by outcome",
            ["outcome"],
            registry=self.registry,
        )
        self.price_rejections_total = Counter(
            "flashloan_arbitrage_price_rejections_total",
            "Quotes rejected for deviating from their reference price",
            ["scan_key"],
            registry=self.registry,
        )
        self.errors_total = Counter(
            "flashloan_arbitrage_errors_total",
            "Errors caught by the orchestrator",
            ["where"],
            registry=self.registry,
        )
        self.breaker_tripped = Gauge(
            "flashloan_arbitrage_breaker_tripped",
            "1 when the circuit breaker is tripped",
            registry=self.registry,
        )
        self.cumulative_loss = Gauge(
            "flashloan_arbitrage_cumulative_loss",
            "Cumulative realized loss in native units",
            registry=self.registry,
        )
        self.min_spread_bps = Gauge(
            "flashloan_arbitrage_min_spread_bps",
            "Current minimum spread threshold",
            registry=self.registry,
        )

    def record_scan(self, key: str, found: int, errors: int, duration: float) -> None:
        result = "error" if errors and not found else ("found" if found else "empty")
        with self._lock:
            self.scans_total.labels(scan_key=key, result=result).inc()
            self.scan_duration_seconds.labels(scan_key=key).observe(duration)

    def record_opportunity(self, opportunity: Opportunity) -> None:
        with self._lock:
            self.opportunities_total.labels(kind=opportunity.kind.value).inc()

    def record_price_rejections(self, key: str, count: int) -> None:
        with self._lock:
            self.price_rejections_total.labels(scan_key=key).inc(count)

    def record_gate_denial(self, reason: str) -> None:
        with self._lock:
            self.gate_denials_total.labels(reason=reason).inc()

    def record_bundle(self, outcome: str) -> None:
        with self._lock:
            self.bundles_total.labels(outcome=outcome).inc()

    def record_error(self, where: str) -> None:
        with self._lock:
            self.errors_total.labels(where=where).inc()

    def update_risk_state(self, state: RiskState) -> None:
        with self._lock:
            self.breaker_tripped.set(1 if state.breaker_tripped else 0)
            self.cumulative_loss.set(float(state.cumulative_loss))

    def update_thresholds(self, thresholds: ThresholdSet) -> None:
        with self._lock:
            self.min_spread_bps.set(thresholds.min_spread_bps)

    # === SERVER MANAGEMENT ===

    async def start_server(
        self, port: int = 8000, host: str = "0.0.0.0", path: str = "/metrics"
    ) -> bool:
        """Start the Prometheus metrics HTTP server."""
        try:
            app = web.Application()
            app.router.add_get(path, self._metrics_handler)
            app.router.add_get("/health", self._health_handler)

            self._runner = web.AppRunner(app)
            await self._runner.setup()
            self._site = web.TCPSite(self._runner, host, port)
            await self._site.start()
        except OSError as e:
            logger.error(f"Failed to start metrics server: {e}")
            return False

        logger.info(f"Metrics server started on http://{host}:{port}{path}")
        return True

    async def stop_server(self) -> None:
        if self._site:
            await self._site.stop()
        if self._runner:
            await self._runner.cleanup()
        self._site = None
        self._runner = None
        logger.info("Metrics server stopped")

    async def _metrics_handler(self, request):
        output = generate_latest(self.registry)
        content_type = CONTENT_TYPE_LATEST.split(";")[0]
        return web.Response(text=output.decode("utf-8"), content_type=content_type)

    async def _health_handler(self, request):
        return web.json_response({"status": "healthy", "service": "flashloan_arbitrage"})
